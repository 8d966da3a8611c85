"""
Celery tasks: side effects of the lazy downgrade and guild presence reconciliation.
Every task opens and closes its own DB session and never raises to the broker.
"""
import logging

from academy_gate.core.celery_app import celery_app
from academy_gate.db.session import SessionLocal
from academy_gate.services.discord.client import GuildClient
from academy_gate.services.membership.service import MembershipReconciler
from academy_gate.services.notifications.service import EmailNotifier
from academy_gate.services.users.store import SqlUserRecordStore

logger = logging.getLogger(__name__)


@celery_app.task(name="academy_gate.workers.tasks.membership.send_expiry_notice")
def send_expiry_notice(email_or_id: str, display_name: str | None = None) -> dict:
    """Send the access-ended email (best-effort)."""
    EmailNotifier().send_expiry_notice(email_or_id, display_name)
    return {"ok": True}


@celery_app.task(name="academy_gate.workers.tasks.membership.handle_subscription_change")
def handle_subscription_change(user_id: str, new_status: str) -> dict:
    """Kick a lapsed user from the guild; identity link is kept."""
    db = SessionLocal()
    guild = GuildClient()
    try:
        MembershipReconciler(SqlUserRecordStore(db), guild).on_subscription_changed(user_id, new_status)
        return {"ok": True}
    finally:
        guild.close()
        db.close()


@celery_app.task(name="academy_gate.workers.tasks.membership.sync_presence")
def sync_presence(user_id: str) -> dict:
    """One presence check: clear the link only if the guild confirms the member is gone."""
    db = SessionLocal()
    guild = GuildClient()
    try:
        outcome = MembershipReconciler(SqlUserRecordStore(db), guild).sync_presence(user_id)
        return {"user_id": user_id, "outcome": outcome.value}
    finally:
        guild.close()
        db.close()


@celery_app.task(name="academy_gate.workers.tasks.membership.sync_linked_members")
def sync_linked_members() -> dict:
    """Periodic sweep: enqueue sync_presence for every linked user."""
    db = SessionLocal()
    enqueued = 0
    try:
        for user_id, _ in SqlUserRecordStore(db).iter_linked():
            sync_presence.delay(user_id)
            enqueued += 1
        logger.info("sync_linked_members_done", extra={"enqueued": enqueued})
        return {"enqueued": enqueued}
    except Exception:
        logger.exception("sync_linked_members_error", extra={"enqueued": enqueued})
        return {"enqueued": enqueued, "error": "exception"}
    finally:
        db.close()
