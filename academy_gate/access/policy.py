"""
Decision only: decide_access(record, now) -> AccessDecision.
Pure function, no I/O. Persisting the downgrade it asks for is AccessGate's job.
"""
from __future__ import annotations

from datetime import datetime, timezone

from academy_gate.access.models import (
    ALLOWED_STATUSES,
    EXPIRABLE_STATUSES,
    AccessDecision,
    AccountType,
    DenyReason,
    EntitlementRecord,
)


def as_utc(value: datetime) -> datetime:
    """Naive timestamps (e.g. from SQLite) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_period_expired(record: EntitlementRecord, now: datetime) -> bool:
    """
    Manually administered period ran out.

    Only applies to installment-plan users: a billing reference means the
    provider owns renewal and will move the status itself.
    """
    if record.subscription_status not in EXPIRABLE_STATUSES:
        return False
    if record.external_billing_ref:
        return False
    if record.current_period_end is None:
        return False
    return as_utc(now) > as_utc(record.current_period_end)


def decide_access(record: EntitlementRecord | None, now: datetime) -> AccessDecision:
    """
    Decide ALLOW/DENY for one request.

    Order matters:
    - no record -> DENY(NOT_FOUND)
    - ADMIN -> ALLOW regardless of every other field
    - status outside the allowed set -> DENY(STATUS_NOT_ALLOWED)
    - expired manual period -> DENY(PERIOD_EXPIRED_DOWNGRADED) with downgrade=True
    - otherwise ALLOW
    """
    if record is None:
        return AccessDecision.deny(DenyReason.NOT_FOUND)

    if record.account_type == AccountType.ADMIN:
        return AccessDecision.allow()

    if record.subscription_status not in ALLOWED_STATUSES:
        return AccessDecision.deny(DenyReason.STATUS_NOT_ALLOWED)

    if is_period_expired(record, now):
        return AccessDecision.deny(DenyReason.PERIOD_EXPIRED_DOWNGRADED, downgrade=True)

    return AccessDecision.allow()
