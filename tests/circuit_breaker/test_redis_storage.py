"""Tests for RedisCircuitBreakerStorage driven by a real pybreaker.CircuitBreaker."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pybreaker
import pytest

from academy_gate.services import circuit_breaker
from academy_gate.services.circuit_breaker import RedisCircuitBreakerStorage


class DictRedis:
    """Just enough of redis.Redis (decode_responses=True) for the storage."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = str(value)

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def expire(self, key, seconds):
        return key in self.data

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def storage():
    with patch.object(circuit_breaker.redis.Redis, "from_url", return_value=DictRedis()):
        yield RedisCircuitBreakerStorage("discord-test")


def _boom():
    raise RuntimeError("discord down")


class TestRedisStorage:
    def test_success_counter_round_trip(self, storage):
        assert storage.success_counter == 0
        storage.increment_success_counter()
        storage.increment_success_counter()
        assert storage.success_counter == 2
        storage.reset_success_counter()
        assert storage.success_counter == 0

    def test_opened_at_stored_as_timestamp(self, storage):
        assert storage.opened_at is None
        opened = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        storage.opened_at = opened
        assert storage.opened_at == opened

    def test_successful_trial_call_closes_breaker(self, storage):
        cb = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=30, state_storage=storage)

        with pytest.raises((RuntimeError, pybreaker.CircuitBreakerError)):
            cb.call(_boom)
        assert storage.state == pybreaker.STATE_OPEN

        storage.opened_at = datetime.now(timezone.utc) - timedelta(seconds=60)
        assert cb.call(lambda: "ok") == "ok"

        assert cb.current_state == pybreaker.STATE_CLOSED
        assert storage.state == pybreaker.STATE_CLOSED

    def test_failed_trial_call_reopens_breaker(self, storage):
        cb = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=30, state_storage=storage)
        with pytest.raises((RuntimeError, pybreaker.CircuitBreakerError)):
            cb.call(_boom)

        storage.opened_at = datetime.now(timezone.utc) - timedelta(seconds=60)
        with pytest.raises((RuntimeError, pybreaker.CircuitBreakerError)):
            cb.call(_boom)

        assert storage.state == pybreaker.STATE_OPEN
