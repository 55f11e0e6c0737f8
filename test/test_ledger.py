# test/test_ledger.py
import pytest

from lockout import ledger as lg
from lockout.policy import USER_POLICY, RateLimitPolicy

NOW = 1_700_000_000.0
KEY = "user:alice@example.com"


def test_prune_excludes_entry_exactly_at_window_edge():
    led = lg.AttemptLedger(KEY, (NOW - 300.0, NOW - 299.999, NOW - 10, NOW))
    pruned = lg.prune(led, 300, NOW)
    assert pruned.failures == (NOW - 299.999, NOW - 10, NOW)
    # idempotente
    assert lg.prune(pruned, 300, NOW) == pruned
    # pura: la entrada no cambia
    assert len(led.failures) == 4


def test_prune_keeps_duplicates():
    led = lg.AttemptLedger(KEY, (NOW, NOW, NOW))
    assert lg.prune(led, 300, NOW).failures == (NOW, NOW, NOW)


def test_four_failures_unlocked_fifth_locks():
    led = lg.empty_ledger(KEY)
    for i in range(4):
        led = lg.record_failure(led, USER_POLICY, NOW + i)
    assert led.locked_until is None
    assert not lg.is_locked(led, NOW + 4)

    led = lg.record_failure(led, USER_POLICY, NOW + 4)
    assert led.locked_until == NOW + 4 + 15 * 60
    assert lg.is_locked(led, NOW + 4)
    assert len(led.failures) == 5


def test_failures_outside_window_do_not_count():
    led = lg.AttemptLedger(KEY, (NOW - 400, NOW - 350, NOW - 301, NOW - 300))
    led = lg.record_failure(led, USER_POLICY, NOW)
    assert led.failures == (NOW,)
    assert led.locked_until is None


def test_failure_during_active_lock_is_ignored():
    led = lg.AttemptLedger(KEY, (NOW - 5,) * 5, locked_until=NOW + 100)
    assert lg.record_failure(led, USER_POLICY, NOW) is led


def test_failure_after_expired_lock_starts_fresh_count():
    led = lg.AttemptLedger(KEY, (NOW - 50,) * 5, locked_until=NOW - 1)
    led = lg.record_failure(led, USER_POLICY, NOW)
    assert led.failures == (NOW,)
    assert led.locked_until is None


def test_evaluate_active_lock_reports_remaining_and_keeps_failures():
    led = lg.AttemptLedger(KEY, (NOW - 1000,), locked_until=NOW + 25)
    ev = lg.evaluate(led, USER_POLICY, NOW)
    assert ev.locked is True
    assert ev.remaining == 25
    assert ev.ledger is led


def test_evaluate_expired_lock_resets_ledger():
    led = lg.AttemptLedger(KEY, (NOW - 20, NOW - 10), locked_until=NOW)
    ev = lg.evaluate(led, USER_POLICY, NOW)
    assert ev.locked is False
    assert ev.remaining == 0
    assert ev.ledger == lg.empty_ledger(KEY)


def test_evaluate_unlocked_prunes():
    led = lg.AttemptLedger(KEY, (NOW - 301, NOW - 1))
    ev = lg.evaluate(led, USER_POLICY, NOW)
    assert ev.locked is False
    assert ev.ledger.failures == (NOW - 1,)


def test_remaining_seconds_rounds_up():
    led = lg.AttemptLedger(KEY, locked_until=NOW + 24.2)
    assert lg.remaining(led, NOW) == pytest.approx(24.2)
    assert lg.remaining_seconds(led, NOW) == 25
    assert lg.remaining_seconds(led, NOW + 30) == 0


def test_is_idle():
    assert lg.is_idle(lg.empty_ledger(KEY), 300, NOW)
    assert lg.is_idle(lg.AttemptLedger(KEY, (NOW - 300,)), 300, NOW)
    assert not lg.is_idle(lg.AttemptLedger(KEY, (NOW - 1,)), 300, NOW)
    assert not lg.is_idle(lg.AttemptLedger(KEY, locked_until=NOW + 1), 300, NOW)
    assert lg.is_idle(lg.AttemptLedger(KEY, locked_until=NOW - 1), 300, NOW)


@pytest.mark.parametrize(
    "args",
    [(0, 300, 900), (5, 0, 900), (5, 300, -1)],
)
def test_policy_rejects_invalid_thresholds(args):
    with pytest.raises(ValueError):
        RateLimitPolicy(*args)
