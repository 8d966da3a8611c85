"""
MembershipReconciler: keeps Discord guild membership convergent with the entitlement record.

Guild membership is derived state. Nothing here ever changes subscription_status,
and no guild failure ever rolls back a committed record write.
"""
import logging

from academy_gate.access.models import SubscriptionStatus, is_allowed_status
from academy_gate.core.errors import IdentityAlreadyLinked, PreconditionFailed, UserNotFound
from academy_gate.services.discord.client import GuildClient, MembershipState
from academy_gate.services.discord.oauth import DiscordOAuthClient
from academy_gate.services.membership.models import LinkOutcome, PresenceOutcome, UnlinkOutcome
from academy_gate.services.users.store import UserRecordStore
from academy_gate.utils.metrics import guild_reconciliations_total

logger = logging.getLogger(__name__)

_CLEARED_IDENTITY = {"external_identity_id": None, "external_identity_token": None}


class MembershipReconciler:
    def __init__(
        self,
        store: UserRecordStore,
        guild: GuildClient,
        oauth: DiscordOAuthClient | None = None,
    ):
        self.store = store
        self.guild = guild
        self.oauth = oauth

    def _require(self, user_id: str):
        record = self.store.get(user_id)
        if record is None:
            raise UserNotFound(user_id)
        return record

    # ----- Explicit user actions: structured outcome, entitlement side commits first -----

    def link(self, user_id: str, external_identity_id: str, access_token: str) -> LinkOutcome:
        """
        Persist the identity pair, then try to add it to the guild.

        A failed join does not undo the link: the outcome comes back degraded
        and a later ensure_guild_membership/sync can finish the job.
        Raises UserNotFound, IdentityAlreadyLinked, PreconditionFailed.
        """
        record = self._require(user_id)

        owner = self.store.find_by_external_identity(external_identity_id)
        if owner is not None and owner.id != user_id:
            logger.warning(
                "identity_already_linked",
                extra={"user_id": user_id, "external_id": external_identity_id},
            )
            raise IdentityAlreadyLinked(external_identity_id, owner.id)

        if record.external_identity_id and record.external_identity_id != external_identity_id:
            logger.info(
                "identity_relinked",
                extra={"user_id": user_id, "external_id": external_identity_id},
            )

        self.store.update(
            user_id,
            precondition={
                "external_identity_id": record.external_identity_id,
                "external_identity_token": record.external_identity_token,
            },
            fields={
                "external_identity_id": external_identity_id,
                "external_identity_token": access_token,
            },
        )
        return self._join(user_id, external_identity_id, access_token, operation="link")

    def connect_with_code(self, user_id: str, code: str) -> LinkOutcome:
        """OAuth2 callback: code -> token -> identity -> link."""
        oauth = self.oauth or DiscordOAuthClient()
        try:
            access_token = oauth.exchange_code(code)
            identity = oauth.fetch_identity(access_token)
        finally:
            if oauth is not self.oauth:
                oauth.close()
        outcome = self.link(user_id, identity.id, access_token)
        return outcome.model_copy(update={"username": identity.username, "avatar_url": identity.avatar_url})

    def ensure_guild_membership(self, user_id: str) -> LinkOutcome:
        """
        Re-run the guild-add step for the stored identity (e.g. after resubscription).
        Idempotent: "already a member" is success. No identity = nothing to do.
        """
        record = self._require(user_id)
        if not record.is_linked:
            return LinkOutcome(user_id=user_id)
        return self._join(
            user_id,
            record.external_identity_id,
            record.external_identity_token,
            operation="rejoin",
        )

    def _join(self, user_id: str, external_id: str, access_token: str, operation: str) -> LinkOutcome:
        result = self.guild.add_member(external_id, access_token)
        if result.ok:
            guild_reconciliations_total.labels(operation=operation, result="ok").inc()
            logger.info(
                "guild_joined",
                extra={"user_id": user_id, "external_id": external_id, "status_code": result.status_code},
            )
        else:
            guild_reconciliations_total.labels(operation=operation, result="degraded").inc()
            logger.warning(
                "guild_add_failed",
                extra={"user_id": user_id, "external_id": external_id, "status_code": result.status_code},
            )
        return LinkOutcome(
            user_id=user_id,
            external_identity_id=external_id,
            guild_joined=result.ok,
            degraded=not result.ok,
            guild_status_code=result.status_code,
        )

    def unlink(self, user_id: str) -> UnlinkOutcome:
        """
        Kick the linked identity, then clear the pair regardless of the kick result.
        If a link of the same identity lands meanwhile, it is re-added before
        PreconditionFailed propagates.
        Raises UserNotFound, PreconditionFailed.
        """
        record = self._require(user_id)
        if not record.is_linked:
            return UnlinkOutcome(user_id=user_id, had_identity=False)

        result = self.guild.remove_member(record.external_identity_id)
        if not result.ok:
            logger.warning(
                "guild_remove_failed",
                extra={
                    "user_id": user_id,
                    "external_id": record.external_identity_id,
                    "status_code": result.status_code,
                    "operation": "unlink",
                },
            )

        try:
            self.store.update(
                user_id,
                precondition={
                    "external_identity_id": record.external_identity_id,
                    "external_identity_token": record.external_identity_token,
                },
                fields=dict(_CLEARED_IDENTITY),
            )
        except PreconditionFailed:
            if result.ok:
                self._restore_after_kick(user_id, record.external_identity_id)
            raise
        guild_reconciliations_total.labels(operation="unlink", result="ok" if result.ok else "degraded").inc()
        logger.info("identity_unlinked", extra={"user_id": user_id, "external_id": record.external_identity_id})
        return UnlinkOutcome(
            user_id=user_id,
            had_identity=True,
            guild_removed=result.ok,
            degraded=not result.ok,
            guild_status_code=result.status_code,
        )

    def _restore_after_kick(self, user_id: str, kicked_id: str) -> None:
        """A link committed while the kick was in flight: re-add the identity it kept."""
        current = self.store.get(user_id)
        if current is None or current.external_identity_id != kicked_id:
            return
        logger.warning("unlink_lost_to_link", extra={"user_id": user_id, "external_id": kicked_id})
        self._join(user_id, kicked_id, current.external_identity_token, operation="restore")

    # ----- Best-effort paths: never raise -----

    def on_subscription_changed(self, user_id: str, new_status: SubscriptionStatus | str | None) -> None:
        """
        Remove a lapsed user from the guild. The identity pair stays, so a
        resubscribed user can be re-added without re-authorizing.
        """
        try:
            if is_allowed_status(new_status):
                return
            record = self.store.get(user_id)
            if record is None or not record.is_linked:
                return

            status_value = getattr(new_status, "value", new_status)
            logger.info(
                "subscription_lapsed_guild_removal",
                extra={"user_id": user_id, "external_id": record.external_identity_id, "new_status": status_value},
            )
            result = self.guild.remove_member(record.external_identity_id)
            guild_reconciliations_total.labels(
                operation="subscription_changed", result="ok" if result.ok else "degraded"
            ).inc()
            if not result.ok:
                logger.warning(
                    "guild_remove_failed",
                    extra={
                        "user_id": user_id,
                        "external_id": record.external_identity_id,
                        "status_code": result.status_code,
                        "operation": "subscription_changed",
                    },
                )
        except Exception:
            logger.exception("subscription_change_reconcile_error", extra={"user_id": user_id})

    def sync_presence(self, user_id: str, external_identity_id: str | None = None) -> PresenceOutcome:
        """
        Check the linked identity is still in the guild.

        Confirmed absent (404) clears the pair. Anything indeterminate (429, 5xx,
        timeout, breaker open) keeps the link: a transient failure must not sever it.
        """
        try:
            return self._sync_presence(user_id, external_identity_id)
        except Exception:
            logger.exception("presence_sync_error", extra={"user_id": user_id})
            return PresenceOutcome.STILL_LINKED

    def _sync_presence(self, user_id: str, external_identity_id: str | None) -> PresenceOutcome:
        if external_identity_id is None:
            record = self.store.get(user_id)
            if record is None or not record.is_linked:
                return PresenceOutcome.UNLINKED
            external_identity_id = record.external_identity_id

        check = self.guild.get_membership(external_identity_id)
        if check.state == MembershipState.PRESENT:
            guild_reconciliations_total.labels(operation="sync_presence", result="present").inc()
            return PresenceOutcome.STILL_LINKED
        if check.state == MembershipState.FAILED:
            guild_reconciliations_total.labels(operation="sync_presence", result="indeterminate").inc()
            logger.warning(
                "presence_sync_indeterminate",
                extra={"user_id": user_id, "external_id": external_identity_id, "status_code": check.status_code},
            )
            return PresenceOutcome.STILL_LINKED

        try:
            self.store.update(
                user_id,
                precondition={"external_identity_id": external_identity_id},
                fields=dict(_CLEARED_IDENTITY),
            )
        except UserNotFound:
            return PresenceOutcome.UNLINKED
        except PreconditionFailed:
            # Relinked or unlinked since the check; report what the record says now.
            record = self.store.get(user_id)
            if record is None or not record.is_linked:
                return PresenceOutcome.UNLINKED
            return PresenceOutcome.STILL_LINKED

        guild_reconciliations_total.labels(operation="sync_presence", result="unlinked").inc()
        logger.info("presence_sync_unlinked", extra={"user_id": user_id, "external_id": external_identity_id})
        return PresenceOutcome.UNLINKED
