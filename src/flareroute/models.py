import re
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from flareroute import consts
from flareroute.typealias import Domain, RecordId, TunnelId, TunnelName, ZoneId, ZoneName

_label_pattern = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_domain(domain: str) -> Domain:
    """
    Lower-case, strip and drop the trailing root dot, then validate every label.
    Raises ValueError for anything that can't be a hostname under a zone.
    """
    cleaned = domain.strip().lower().rstrip(".")
    labels = cleaned.split(".")
    if len(labels) < 2:
        raise ValueError(f"'{domain}' needs at least a name and a zone, e.g. api.example.com")
    for label in labels:
        if not _label_pattern.match(label):
            raise ValueError(f"'{domain}' has an invalid label: '{label}'")
    return cleaned


def _slug(domain: Domain) -> str:
    # Labels never contain '_', so replacing the dots keeps distinct domains distinct
    return normalize_domain(domain).replace(".", "_")


def tunnel_identity(domain: Domain) -> TunnelName:
    return f"{consts.identity_prefix}{_slug(domain)}"


def config_filename(domain: Domain) -> str:
    return f"{consts.config_prefix}{_slug(domain)}.yml"


def parent_zone_name(domain: Domain) -> ZoneName:
    return normalize_domain(domain).split(".", 1)[1]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ZoneRef(_Frozen):
    zone_id: ZoneId
    zone_name: ZoneName


class DnsRecordRef(_Frozen):
    record_id: RecordId
    fqdn: Domain


class TunnelHandle(_Frozen):
    tunnel_id: TunnelId
    name: TunnelName
    credentials_path: Path


class TunnelListing(BaseModel):
    """One entry of `cloudflared tunnel list --output json`."""
    id: str
    name: str


class CreatedTunnel(BaseModel):
    """Output of `cloudflared tunnel create --output json`."""
    id: str = Field(min_length=1)
    name: str


class TunnelConfig(_Frozen):
    local_url: str
    tunnel_id: TunnelId
    credentials_file: Path

    @classmethod
    def for_handle(cls, handle: TunnelHandle, host: str, port: int) -> Self:
        if not handle.tunnel_id:
            raise ValueError("Tunnel config needs a tunnel id")
        return cls(
            local_url=f"http://{host}:{port}",
            tunnel_id=handle.tunnel_id,
            credentials_file=handle.credentials_path,
        )

    def render(self) -> str:
        return (
            f"url: {self.local_url}\n"
            f"tunnel: {self.tunnel_id}\n"
            f"credentials-file: {self.credentials_file}\n"
        )

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        # newline="" keeps the bytes identical across platforms
        with open(path, "w", encoding="utf-8", newline="") as file:
            file.write(self.render())
        return path
