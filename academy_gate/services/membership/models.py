"""
Outcomes of the explicit membership actions (link/unlink/re-add) and of presence sync.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class LinkOutcome(BaseModel):
    """Link is persisted whenever this is returned; degraded = guild join did not complete."""

    user_id: str
    external_identity_id: str | None = None
    guild_joined: bool = False
    degraded: bool = Field(
        False,
        description="True = guild-side effect should be retried (DegradedExternalState)",
    )
    guild_status_code: int | None = None
    # Filled by the OAuth connect flow only
    username: str | None = None
    avatar_url: str | None = None

    model_config = {"frozen": True}


class UnlinkOutcome(BaseModel):
    """Identity pair is cleared whenever this is returned; degraded = guild removal failed."""

    user_id: str
    had_identity: bool
    guild_removed: bool = False
    degraded: bool = False
    guild_status_code: int | None = None

    model_config = {"frozen": True}


class PresenceOutcome(str, Enum):
    STILL_LINKED = "still_linked"
    UNLINKED = "unlinked"
