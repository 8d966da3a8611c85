"""
Discord guild client wrapper using httpx sync client.
One HTTP call per operation, mapped to a tri-state result. No retries here:
a timeout, network error, 429 or 5xx is reported as FAILED and counted by the
"discord" circuit breaker.
"""
import logging
import time
from enum import Enum

import httpx
import pybreaker
from pydantic import BaseModel

from academy_gate.core.config import settings
from academy_gate.core.errors import GuildTransportError, classify_failure
from academy_gate.services.circuit_breaker import get_circuit_breaker
from academy_gate.utils.metrics import discord_request_duration_seconds, discord_requests_total

logger = logging.getLogger(__name__)

# Discord JSON error code for a 404 caused by a bad guild id (not a missing member).
UNKNOWN_GUILD_CODE = 10004


class GuildOutcome(str, Enum):
    SUCCESS = "success"
    ALREADY_IN_STATE = "already_in_state"  # already a member / already absent
    FAILED = "failed"


class MembershipState(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    FAILED = "failed"


class GuildResult(BaseModel):
    outcome: GuildOutcome
    status_code: int | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        """Desired state reached (created/removed or already so)."""
        return self.outcome != GuildOutcome.FAILED


class MembershipResult(BaseModel):
    state: MembershipState
    status_code: int | None = None

    model_config = {"frozen": True}


class GuildClient:
    """
    Sync Discord guild-member client (bot token auth).
    Safe to use from Celery workers and request handlers alike.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        guild_id: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._token = bot_token if bot_token is not None else settings.discord_bot_token
        self._guild_id = guild_id if guild_id is not None else settings.discord_guild_id
        self._base_url = (api_base or settings.discord_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.discord_request_timeout
        self._transport = transport
        self._breaker = breaker or get_circuit_breaker("discord")
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bot {self._token}"},
            )
        return self._client

    @property
    def configured(self) -> bool:
        """Bot token and guild id are both set."""
        return bool(self._token and self._guild_id)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _record_request(self, operation: str, outcome: str, duration: float) -> None:
        discord_requests_total.labels(operation=operation, outcome=outcome).inc()
        discord_request_duration_seconds.labels(operation=operation).observe(duration)

    def _send(self, method: str, url: str, json: dict | None = None) -> httpx.Response:
        """Raw call; transient failures raise so the breaker counts them."""
        try:
            resp = self.client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise GuildTransportError(None, f"{type(e).__name__}: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise GuildTransportError(resp.status_code, resp.text[:200])
        return resp

    def _call(
        self, operation: str, method: str, external_id: str, json: dict | None = None
    ) -> tuple[httpx.Response | None, int | None]:
        """Returns (response, None), or (None, failed status) when the call did not complete."""
        if not self.configured:
            logger.warning("discord_not_configured", extra={"operation": operation, "external_id": external_id})
            return None, None

        url = f"{self._base_url}/guilds/{self._guild_id}/members/{external_id}"
        start = time.time()
        try:
            resp = self._breaker.call(self._send, method, url, json)
        except GuildTransportError as e:
            self._record_request(operation, "error", time.time() - start)
            logger.warning(
                "discord_request_failed",
                extra={
                    "operation": operation,
                    "external_id": external_id,
                    "status_code": e.status_code,
                    "failure_type": classify_failure(e.status_code).value,
                    "error": str(e),
                },
            )
            return None, e.status_code
        except pybreaker.CircuitBreakerError:
            self._record_request(operation, "breaker_open", time.time() - start)
            logger.warning("discord_breaker_open", extra={"operation": operation, "external_id": external_id})
            return None, None
        self._record_request(operation, str(resp.status_code), time.time() - start)
        return resp, None

    def add_member(self, external_id: str, access_token: str) -> GuildResult:
        """PUT member with the user's OAuth2 token (guilds.join scope). 201 = added, 204 = already a member."""
        resp, failed_status = self._call("add_member", "PUT", external_id, json={"access_token": access_token})
        if resp is None:
            return GuildResult(outcome=GuildOutcome.FAILED, status_code=failed_status)
        if resp.status_code == 201:
            return GuildResult(outcome=GuildOutcome.SUCCESS, status_code=201)
        if resp.status_code == 204:
            return GuildResult(outcome=GuildOutcome.ALREADY_IN_STATE, status_code=204)
        logger.error(
            "guild_add_rejected",
            extra={"external_id": external_id, "status_code": resp.status_code, "error": resp.text[:200]},
        )
        return GuildResult(outcome=GuildOutcome.FAILED, status_code=resp.status_code)

    def remove_member(self, external_id: str) -> GuildResult:
        """DELETE member (kick). 204 = removed, 404 = not in guild."""
        resp, failed_status = self._call("remove_member", "DELETE", external_id)
        if resp is None:
            return GuildResult(outcome=GuildOutcome.FAILED, status_code=failed_status)
        if resp.status_code == 204:
            return GuildResult(outcome=GuildOutcome.SUCCESS, status_code=204)
        if resp.status_code == 404 and not _is_unknown_guild(resp):
            return GuildResult(outcome=GuildOutcome.ALREADY_IN_STATE, status_code=404)
        logger.error(
            "guild_remove_rejected",
            extra={"external_id": external_id, "status_code": resp.status_code, "error": resp.text[:200]},
        )
        return GuildResult(outcome=GuildOutcome.FAILED, status_code=resp.status_code)

    def get_membership(self, external_id: str) -> MembershipResult:
        """GET member. 2xx = present, 404 = confirmed absent, anything else = indeterminate."""
        resp, failed_status = self._call("get_membership", "GET", external_id)
        if resp is None:
            return MembershipResult(state=MembershipState.FAILED, status_code=failed_status)
        if resp.is_success:
            return MembershipResult(state=MembershipState.PRESENT, status_code=resp.status_code)
        if resp.status_code == 404 and not _is_unknown_guild(resp):
            return MembershipResult(state=MembershipState.ABSENT, status_code=404)
        return MembershipResult(state=MembershipState.FAILED, status_code=resp.status_code)


def _is_unknown_guild(resp: httpx.Response) -> bool:
    """A 404 about the guild itself must not be read as 'member absent'."""
    try:
        body = resp.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("code") == UNKNOWN_GUILD_CODE
