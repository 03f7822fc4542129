from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from flareroute import consts
from flareroute.errors import PreconditionMissing
from flareroute.models import config_filename
from flareroute.typealias import Domain


def default_state_dir() -> Path:
    return Path.home() / ".cloudflared"


class Settings(BaseModel):
    """
    Everything a run needs, passed explicitly into the Reconciler.
    Nothing downstream reads the environment or the working directory.
    """
    model_config = ConfigDict(frozen=True)

    api_token: SecretStr
    state_dir: Path = Field(default_factory=default_state_dir)
    cloudflared: Path = Path(consts.binary_name)
    local_host: str = "localhost"
    poll_interval: float = Field(default=consts.default_poll_interval, gt=0)
    convergence_timeout: float = Field(default=consts.default_convergence_timeout, gt=0)

    @property
    def cert_path(self) -> Path:
        return self.state_dir / consts.cert_filename

    def config_path(self, domain: Domain) -> Path:
        return self.state_dir / config_filename(domain)

    def check_preconditions(self) -> None:
        if not self.api_token.get_secret_value():
            raise PreconditionMissing(f"API token is empty, set {consts.token_envvar}")
        if not self.cert_path.is_file():
            raise PreconditionMissing(
                f"Tunnel certificate not found at {self.cert_path}. "
                f"Run `cloudflared tunnel login` first, or point --state-dir at the directory holding cert.pem"
            )
