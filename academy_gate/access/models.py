"""
DTO access: EntitlementRecord (input of decide_access), AccessDecision, status enums.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class AccountType(str, Enum):
    STANDARD = "STANDARD"
    ADMIN = "ADMIN"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRIALING = "TRIALING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    LIFETIME_ACCESS = "LIFETIME_ACCESS"
    SMMA_ONLY = "SMMA_ONLY"


# Statuses that grant access (and keep the user in the guild).
ALLOWED_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.LIFETIME_ACCESS,
    SubscriptionStatus.SMMA_ONLY,
})

# Statuses whose manually granted period can lapse into PAST_DUE.
EXPIRABLE_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.SMMA_ONLY,
})


def is_allowed_status(status: SubscriptionStatus | str | None) -> bool:
    if status is None:
        return False
    try:
        return SubscriptionStatus(status) in ALLOWED_STATUSES
    except ValueError:
        return False


class DenyReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    STATUS_NOT_ALLOWED = "STATUS_NOT_ALLOWED"
    PERIOD_EXPIRED_DOWNGRADED = "PERIOD_EXPIRED_DOWNGRADED"


# ----- Projection of the user row that access and reconciliation need -----


class EntitlementRecord(BaseModel):
    """Entitlement fields of one user, as read from the store."""

    id: str
    account_type: AccountType = AccountType.STANDARD
    subscription_status: SubscriptionStatus | None = None
    external_billing_ref: str | None = None
    current_period_end: datetime | None = None
    external_identity_id: str | None = None
    external_identity_token: str | None = None
    # Notice recipient; not used by the decision itself.
    email: str | None = None
    display_name: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _identity_pair(self) -> "EntitlementRecord":
        if (self.external_identity_id is None) != (self.external_identity_token is None):
            raise ValueError("external_identity_id and external_identity_token must be set together")
        return self

    @property
    def is_linked(self) -> bool:
        return self.external_identity_id is not None


# ----- Decision (pure logic, no I/O) -----


class AccessDecision(BaseModel):
    """Result of decide_access: ALLOW, or DENY with one of the DenyReason codes."""

    allowed: bool
    reason: DenyReason | None = Field(None, description="Set iff allowed is False")
    downgrade: bool = Field(
        False,
        description="True = this evaluation moves the record to PAST_DUE (must be persisted)",
    )

    model_config = {"frozen": True}

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason, downgrade: bool = False) -> "AccessDecision":
        return cls(allowed=False, reason=reason, downgrade=downgrade)

    @property
    def outcome(self) -> str:
        return "allow" if self.allowed else self.reason.value.lower()
