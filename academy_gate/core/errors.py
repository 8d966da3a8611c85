"""
Domain errors and failure classification for access and guild reconciliation.

Only UserNotFound, IdentityAlreadyLinked and PreconditionFailed ever reach a caller.
GuildTransportError stays inside the guild client; OAuthExchangeError surfaces
from the connect flow before anything is persisted.
"""
from enum import Enum


class AccessGateError(Exception):
    """Base class for all academy_gate errors."""


class UserNotFound(AccessGateError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class IdentityAlreadyLinked(AccessGateError):
    """The external identity is linked to a different user."""

    def __init__(self, external_identity_id: str, owner_id: str | None = None) -> None:
        super().__init__(f"identity {external_identity_id} is already linked to another user")
        self.external_identity_id = external_identity_id
        self.owner_id = owner_id


class PreconditionFailed(AccessGateError):
    """
    Conditional write lost against a concurrent change.
    Caller should re-read the record and redo the whole decision.
    """

    def __init__(self, user_id: str, precondition: dict) -> None:
        super().__init__(f"record {user_id} changed since read (precondition on {sorted(precondition)})")
        self.user_id = user_id
        self.precondition = precondition


class GuildTransportError(AccessGateError):
    """Transient failure talking to the guild API (429, 5xx, timeout, network)."""

    def __init__(self, status_code: int | None, message: str = "") -> None:
        super().__init__(message or f"guild transport failure (status={status_code})")
        self.status_code = status_code


class OAuthExchangeError(AccessGateError):
    """Discord OAuth2 code exchange or identity lookup failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FailureType(str, Enum):
    """Classification of a failed guild call, for logs and metrics."""

    TRANSIENT = "transient"  # 429, 5xx, timeout, breaker open
    CLIENT = "client"  # 4xx except 429 (bad token, missing permissions)


def classify_failure(status_code: int | None) -> FailureType:
    if status_code is None:
        return FailureType.TRANSIENT
    if status_code == 429 or 500 <= status_code < 600:
        return FailureType.TRANSIENT
    return FailureType.CLIENT
