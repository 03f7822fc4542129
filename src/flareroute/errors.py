from enum import StrEnum, auto


class FailureKind(StrEnum):
    UNAUTHORIZED = auto()
    NOT_FOUND = auto()
    RATE_LIMITED = auto()
    NETWORK = auto()
    MALFORMED = auto()
    CONFLICT = auto()
    REJECTED = auto()  # refused for a reason none of the above describe


class ProviderFailure(Exception):
    """A DNS API or daemon call that did not produce a usable result."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class TunnelError(Exception):
    """Base for everything that ends a run with a diagnostic."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class PreconditionMissing(TunnelError):
    pass


class ProviderLookupFailed(TunnelError):
    pass


class ProviderWriteFailed(TunnelError):
    pass


class ConfigWriteFailed(TunnelError):
    pass


class ConvergenceTimeout(TunnelError):
    pass


class DaemonRunFailure(TunnelError):
    def __init__(self, message: str, return_code: int | None = None, stage: str | None = None):
        super().__init__(message, stage)
        self.return_code = return_code
