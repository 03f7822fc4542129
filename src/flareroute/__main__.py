from flareroute.cli import app

app(prog_name="flareroute")
