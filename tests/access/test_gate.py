"""Tests for AccessGate: lazy downgrade persistence, side effects, concurrency."""
import threading
from concurrent.futures import ThreadPoolExecutor

from conftest import InMemoryUserRecordStore, make_record, utc

from academy_gate.access.gate import AccessGate
from academy_gate.access.models import AccountType, DenyReason, SubscriptionStatus

NOW = utc(2024, 2, 1)


def _gate(store, notifier, trigger):
    return AccessGate(store=store, notifier=notifier, on_subscription_changed=trigger)


class TestEvaluateAccess:
    def test_unknown_user_not_found(self, store, notifier, trigger):
        decision = _gate(store, notifier, trigger).evaluate_access("ghost", NOW)
        assert decision.reason == DenyReason.NOT_FOUND
        assert store.writes == []

    def test_admin_allowed_without_writes(self, store, notifier, trigger):
        store.add(make_record(account_type=AccountType.ADMIN, subscription_status=SubscriptionStatus.CANCELED))
        assert _gate(store, notifier, trigger).evaluate_access("user1", NOW).allowed is True
        assert store.writes == []

    def test_canceled_denied_and_untouched(self, store, notifier, trigger):
        record = make_record(subscription_status=SubscriptionStatus.CANCELED, current_period_end=utc(2024, 1, 1))
        store.add(record)
        decision = _gate(store, notifier, trigger).evaluate_access("user1", NOW)
        assert decision.reason == DenyReason.STATUS_NOT_ALLOWED
        assert store.get("user1") == record
        assert notifier.sent == []
        assert trigger.calls == []

    def test_lifetime_allowed_regardless_of_period(self, store, notifier, trigger):
        store.add(make_record(subscription_status=SubscriptionStatus.LIFETIME_ACCESS, current_period_end=utc(2000, 1, 1)))
        assert _gate(store, notifier, trigger).evaluate_access("user1", NOW).allowed is True

    def test_expired_period_downgrades_and_keeps_period_end(self, store, notifier, trigger):
        store.add(make_record(current_period_end=utc(2024, 1, 1)))

        decision = _gate(store, notifier, trigger).evaluate_access("user1", NOW)

        assert decision.allowed is False
        assert decision.reason == DenyReason.PERIOD_EXPIRED_DOWNGRADED
        record = store.get("user1")
        assert record.subscription_status == SubscriptionStatus.PAST_DUE
        assert record.current_period_end == utc(2024, 1, 1)
        assert notifier.sent == [("student@example.com", "Student One")]
        assert trigger.calls == [("user1", SubscriptionStatus.PAST_DUE)]

    def test_second_evaluation_does_not_notify_again(self, store, notifier, trigger):
        store.add(make_record(current_period_end=utc(2024, 1, 1)))
        gate = _gate(store, notifier, trigger)

        first = gate.evaluate_access("user1", NOW)
        second = gate.evaluate_access("user1", NOW)

        assert first.reason == DenyReason.PERIOD_EXPIRED_DOWNGRADED
        assert second.reason == DenyReason.STATUS_NOT_ALLOWED
        assert len(store.writes) == 1
        assert len(notifier.sent) == 1
        assert len(trigger.calls) == 1

    def test_notice_falls_back_to_user_id(self, store, notifier, trigger):
        store.add(make_record(email=None, current_period_end=utc(2024, 1, 1)))
        _gate(store, notifier, trigger).evaluate_access("user1", NOW)
        assert notifier.sent[0][0] == "user1"

    def test_side_effect_failures_do_not_change_decision(self, store, trigger):
        class BrokenNotifier:
            def send_expiry_notice(self, email_or_id, display_name):
                raise RuntimeError("smtp down")

        def broken_trigger(user_id, status):
            raise RuntimeError("broker down")

        store.add(make_record(current_period_end=utc(2024, 1, 1)))
        decision = _gate(store, BrokenNotifier(), broken_trigger).evaluate_access("user1", NOW)

        assert decision.reason == DenyReason.PERIOD_EXPIRED_DOWNGRADED
        assert store.get("user1").subscription_status == SubscriptionStatus.PAST_DUE

    def test_renewal_racing_downgrade_wins(self, notifier, trigger):
        """Billing renewed the user between read and write: no downgrade, re-decide allows."""

        class RenewingStore(InMemoryUserRecordStore):
            renewed = False

            def update(self, user_id, precondition, fields):
                if not self.renewed:
                    self.renewed = True
                    self.add(make_record(current_period_end=utc(2024, 3, 1)))
                super().update(user_id, precondition, fields)

        store = RenewingStore([make_record(current_period_end=utc(2024, 1, 1))])
        decision = _gate(store, notifier, trigger).evaluate_access("user1", NOW)

        assert decision.allowed is True
        assert store.get("user1").subscription_status == SubscriptionStatus.ACTIVE
        assert notifier.sent == []


class TestConcurrentEvaluation:
    def test_single_downgrade_under_concurrent_requests(self, notifier, trigger):
        n = 8

        class BarrierStore(InMemoryUserRecordStore):
            """First read of every thread happens before anyone writes."""

            def __init__(self, records):
                super().__init__(records)
                self.barrier = threading.Barrier(n, timeout=10)
                self.reads = 0
                self.reads_lock = threading.Lock()

            def get(self, user_id):
                record = super().get(user_id)
                with self.reads_lock:
                    self.reads += 1
                    first_round = self.reads <= n
                if first_round:
                    self.barrier.wait()
                return record

        store = BarrierStore([make_record(current_period_end=utc(2024, 1, 1))])
        gate = _gate(store, notifier, trigger)

        with ThreadPoolExecutor(max_workers=n) as pool:
            decisions = list(pool.map(lambda _: gate.evaluate_access("user1", NOW), range(n)))

        assert all(not d.allowed for d in decisions)
        reasons = [d.reason for d in decisions]
        assert reasons.count(DenyReason.PERIOD_EXPIRED_DOWNGRADED) == 1
        assert reasons.count(DenyReason.STATUS_NOT_ALLOWED) == n - 1
        assert len(store.writes) == 1
        assert len(notifier.sent) == 1
        assert len(trigger.calls) == 1


class TestEvaluate:
    def test_pure_evaluate_flags_downgrade_without_writing(self, store, notifier, trigger):
        record = make_record(current_period_end=utc(2024, 1, 1))
        store.add(record)
        gate = AccessGate(store, notifier, trigger)

        decision = gate.evaluate(record, utc(2024, 2, 1))

        assert not decision.allowed
        assert decision.reason == DenyReason.PERIOD_EXPIRED_DOWNGRADED
        assert decision.downgrade
        assert store.writes == []
        assert notifier.sent == []
