"""Pytest configuration and shared fixtures (in-memory store, fake guild, recorders)."""
import os
import threading
from datetime import datetime, timezone
from typing import Any, Iterator

import pytest

# Safe settings before any academy_gate import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("EMAIL_ENABLED", "false")

from academy_gate.access.models import AccountType, EntitlementRecord, SubscriptionStatus  # noqa: E402
from academy_gate.core.errors import IdentityAlreadyLinked, PreconditionFailed, UserNotFound  # noqa: E402
from academy_gate.services.discord.client import (  # noqa: E402
    GuildOutcome,
    GuildResult,
    MembershipResult,
    MembershipState,
)
from academy_gate.services.users.store import UserRecordStore  # noqa: E402


class InMemoryUserRecordStore(UserRecordStore):
    """Dict-backed store with the same compare-and-set contract as the SQL one."""

    def __init__(self, records: list[EntitlementRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, EntitlementRecord] = {r.id: r for r in (records or [])}
        self.writes: list[tuple[str, dict]] = []

    def add(self, record: EntitlementRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def get(self, user_id: str) -> EntitlementRecord | None:
        with self._lock:
            return self._records.get(user_id)

    def find_by_external_identity(self, external_identity_id: str) -> EntitlementRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.external_identity_id == external_identity_id:
                    return record
        return None

    def update(self, user_id: str, precondition: dict[str, Any], fields: dict[str, Any]) -> None:
        with self._lock:
            record = self._records.get(user_id)
            if record is None:
                raise UserNotFound(user_id)
            for field, expected in precondition.items():
                if getattr(record, field) != expected:
                    raise PreconditionFailed(user_id, precondition)
            new_id = fields.get("external_identity_id")
            if new_id is not None:
                for other in self._records.values():
                    if other.id != user_id and other.external_identity_id == new_id:
                        raise IdentityAlreadyLinked(new_id, other.id)
            self._records[user_id] = record.model_copy(update=fields)
            self.writes.append((user_id, dict(fields)))

    def iter_linked(self, batch_size: int = 500) -> Iterator[tuple[str, str]]:
        with self._lock:
            linked = [(r.id, r.external_identity_id) for r in self._records.values() if r.is_linked]
        yield from linked


class FakeGuildClient:
    """Scripted GuildClient: set add_result/remove_result/membership, inspect calls."""

    def __init__(self) -> None:
        self.add_result = GuildResult(outcome=GuildOutcome.SUCCESS, status_code=201)
        self.remove_result = GuildResult(outcome=GuildOutcome.SUCCESS, status_code=204)
        self.membership = MembershipResult(state=MembershipState.PRESENT, status_code=200)
        self.calls: list[tuple] = []

    def add_member(self, external_id: str, access_token: str) -> GuildResult:
        self.calls.append(("add", external_id, access_token))
        return self.add_result

    def remove_member(self, external_id: str) -> GuildResult:
        self.calls.append(("remove", external_id))
        return self.remove_result

    def get_membership(self, external_id: str) -> MembershipResult:
        self.calls.append(("get", external_id))
        return self.membership


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str | None]] = []

    def send_expiry_notice(self, email_or_id: str, display_name: str | None) -> None:
        self.sent.append((email_or_id, display_name))


class RecordingTrigger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, SubscriptionStatus]] = []

    def __call__(self, user_id: str, new_status: SubscriptionStatus) -> None:
        self.calls.append((user_id, new_status))


def make_record(**kwargs) -> EntitlementRecord:
    defaults = {
        "id": "user1",
        "account_type": AccountType.STANDARD,
        "subscription_status": SubscriptionStatus.ACTIVE,
        "email": "student@example.com",
        "display_name": "Student One",
    }
    defaults.update(kwargs)
    return EntitlementRecord(**defaults)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryUserRecordStore()


@pytest.fixture
def guild():
    return FakeGuildClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def trigger():
    return RecordingTrigger()
