"""Error taxonomy shared by the core services and the API layer."""

from __future__ import annotations


class WorkshopError(Exception):
    """Base class for failures surfaced to callers as a kind plus a message."""

    kind: str = "WorkshopError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.message}


class NotFound(WorkshopError):
    """No session is filed under the given join-code."""

    kind = "NotFound"


class GuardViolation(WorkshopError):
    """The command is not legal in the session's current phase."""

    kind = "GuardViolation"


class CodeExhaustion(WorkshopError):
    """A collision-free join-code could not be minted in the allowed attempts."""

    kind = "CodeExhaustion"


class StoreFailure(WorkshopError):
    """The underlying persistence call failed."""

    kind = "StoreFailure"


class Unauthorized(WorkshopError):
    """The administrator credential was missing or wrong."""

    kind = "Unauthorized"


class ValidationError(WorkshopError):
    """A required field was missing or malformed."""

    kind = "ValidationError"
