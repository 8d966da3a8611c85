"""
Access gating by subscription status (internal library).
Decision (policy) and persistence of the lazy downgrade (academy_gate.access.gate)
are separate; the contract between them is EntitlementRecord -> AccessDecision.
"""
from academy_gate.access.models import (
    ALLOWED_STATUSES,
    AccessDecision,
    AccountType,
    DenyReason,
    EntitlementRecord,
    SubscriptionStatus,
    is_allowed_status,
)
from academy_gate.access.policy import decide_access

__all__ = [
    "ALLOWED_STATUSES",
    "AccessDecision",
    "AccountType",
    "DenyReason",
    "EntitlementRecord",
    "SubscriptionStatus",
    "decide_access",
    "is_allowed_status",
]
