APP_NAME = "flareroute"
AUTHOR = "flareroute"

token_envvar = "CLOUDFLARE_API_TOKEN"
binary_envvar = "CLOUDFLARED_BIN"
binary_name = "cloudflared"

identity_prefix = "tunnel_"
config_prefix = "config_"
cert_filename = "cert.pem"

default_poll_interval = 2.0
default_convergence_timeout = 60.0

# Grace period between SIGTERM and SIGKILL for the foreground daemon
terminate_grace = 5.0
