"""
Production wiring: AccessGate side effects go to Celery, so the request only
waits for the downgrade write. A broker outage is logged, never raised.
"""
import logging

from sqlalchemy.orm import Session

from academy_gate.access.gate import AccessGate
from academy_gate.access.models import SubscriptionStatus
from academy_gate.services.discord.client import GuildClient
from academy_gate.services.membership.service import MembershipReconciler
from academy_gate.services.notifications.service import NotificationPort
from academy_gate.services.users.store import SqlUserRecordStore
from academy_gate.workers.tasks import membership as tasks

logger = logging.getLogger(__name__)


class QueuedNotifier(NotificationPort):
    """NotificationPort that hands the notice to the worker."""

    def send_expiry_notice(self, email_or_id: str, display_name: str | None) -> None:
        try:
            tasks.send_expiry_notice.delay(email_or_id, display_name)
        except Exception:
            logger.exception("enqueue_failed", extra={"task": "send_expiry_notice", "user_id": email_or_id})


def enqueue_subscription_change(user_id: str, new_status: SubscriptionStatus) -> None:
    try:
        tasks.handle_subscription_change.delay(user_id, SubscriptionStatus(new_status).value)
    except Exception:
        logger.exception("enqueue_failed", extra={"task": "handle_subscription_change", "user_id": user_id})


def build_access_gate(db: Session) -> AccessGate:
    return AccessGate(
        store=SqlUserRecordStore(db),
        notifier=QueuedNotifier(),
        on_subscription_changed=enqueue_subscription_change,
    )


def build_reconciler(db: Session, guild: GuildClient | None = None) -> MembershipReconciler:
    return MembershipReconciler(SqlUserRecordStore(db), guild or GuildClient())
