import os
from collections.abc import Awaitable, Callable, Iterable

Domain = str
Port = int

ZoneId = str
ZoneName = str
RecordId = str

TunnelId = str
TunnelName = str

type CmdArg = str | os.PathLike[str]
type CmdArgs = Iterable[CmdArg]

type ExistenceCheck = Callable[[], Awaitable[bool]]
type ReadyHook = Callable[[str], None]
