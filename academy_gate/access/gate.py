"""
AccessGate: runs decide_access on every gated request and persists the lazy downgrade.

Read-decide-write is a compare-and-set on the fields the decision was based on:
of N concurrent requests from the same expired user exactly one write lands,
only that one dispatches the notice and guild removal, and the rest re-read
PAST_DUE and are denied.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from academy_gate.access.models import AccessDecision, DenyReason, EntitlementRecord, SubscriptionStatus
from academy_gate.access.policy import decide_access
from academy_gate.core.errors import PreconditionFailed, UserNotFound
from academy_gate.services.notifications.service import NotificationPort
from academy_gate.services.users.store import UserRecordStore
from academy_gate.utils.metrics import access_decisions_total, subscription_downgrades_total

logger = logging.getLogger(__name__)

# Re-read/re-decide rounds when the record keeps changing under the downgrade write.
MAX_DECISION_ATTEMPTS = 3

SubscriptionChangeTrigger = Callable[[str, SubscriptionStatus], None]


class AccessGate:
    def __init__(
        self,
        store: UserRecordStore,
        notifier: NotificationPort,
        on_subscription_changed: SubscriptionChangeTrigger,
    ):
        self.store = store
        self.notifier = notifier
        self.on_subscription_changed = on_subscription_changed

    @staticmethod
    def evaluate(record: EntitlementRecord | None, now: datetime) -> AccessDecision:
        """Pure decision for an already-loaded record; no writes."""
        return decide_access(record, now)

    def evaluate_access(self, user_id: str, now: datetime | None = None) -> AccessDecision:
        now = now or datetime.now(timezone.utc)

        for _ in range(MAX_DECISION_ATTEMPTS):
            record = self.store.get(user_id)
            decision = self.evaluate(record, now)
            if not decision.downgrade:
                return self._finish(user_id, decision)

            try:
                self._persist_downgrade(record)
            except PreconditionFailed:
                logger.info("access_downgrade_raced", extra={"user_id": user_id})
                continue
            except UserNotFound:
                return self._finish(user_id, AccessDecision.deny(DenyReason.NOT_FOUND))

            subscription_downgrades_total.inc()
            logger.info(
                "access_downgraded",
                extra={
                    "user_id": user_id,
                    "subscription_status": record.subscription_status.value,
                    "new_status": SubscriptionStatus.PAST_DUE.value,
                },
            )
            self._dispatch_side_effects(record)
            return self._finish(user_id, decision)

        # Fail closed: the record never settled long enough to decide on.
        logger.warning("access_decision_contention", extra={"user_id": user_id})
        return self._finish(user_id, AccessDecision.deny(DenyReason.STATUS_NOT_ALLOWED))

    def _persist_downgrade(self, record: EntitlementRecord) -> None:
        """PAST_DUE only if nothing the decision relied on moved. current_period_end is kept."""
        self.store.update(
            record.id,
            precondition={
                "subscription_status": record.subscription_status,
                "external_billing_ref": record.external_billing_ref,
                "current_period_end": record.current_period_end,
            },
            fields={"subscription_status": SubscriptionStatus.PAST_DUE},
        )

    def _dispatch_side_effects(self, record: EntitlementRecord) -> None:
        """After the write committed: notice + guild removal, neither may affect the decision."""
        try:
            self.notifier.send_expiry_notice(record.email or record.id, record.display_name)
        except Exception:
            logger.exception("expiry_notice_dispatch_error", extra={"user_id": record.id})
        try:
            self.on_subscription_changed(record.id, SubscriptionStatus.PAST_DUE)
        except Exception:
            logger.exception("subscription_change_dispatch_error", extra={"user_id": record.id})

    def _finish(self, user_id: str, decision: AccessDecision) -> AccessDecision:
        access_decisions_total.labels(outcome=decision.outcome).inc()
        if not decision.allowed:
            logger.info("access_denied", extra={"user_id": user_id, "reason": decision.reason.value})
        return decision
