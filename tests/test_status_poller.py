"""Tests for the payment status poller."""

import pytest

from services.payment_service.phonepe_client import PaymentStatusResult
from services.payment_service.status_poller import PaymentStatusPoller, PollerRegistry, PollState


class ScriptedStatus:
    """Returns queued states in order, repeating the last one."""

    def __init__(self, *states):
        self.states = list(states)
        self.calls = 0

    def __call__(self, merchant_transaction_id):
        self.calls += 1
        state = self.states[min(self.calls, len(self.states)) - 1]
        if isinstance(state, Exception):
            raise state
        return PaymentStatusResult(success=state == "COMPLETED", state=state, transaction_id="T1")


def _poller(check, **kwargs):
    outcomes = []
    options = {"initial_delay": 0, "interval": 0, "grace_period": 0, "max_attempts": 5}
    options.update(kwargs)
    poller = PaymentStatusPoller("VD_1_2", check, on_complete=lambda *args: outcomes.append(args), **options)
    return poller, outcomes


class TestPolling:
    def test_completes_after_pending_checks(self):
        check = ScriptedStatus("PENDING", "PENDING", "COMPLETED")
        poller, outcomes = _poller(check)

        assert poller.run() == PollState.COMPLETED
        assert poller.attempts == 3
        assert poller.done
        txn, state, result = outcomes[0]
        assert (txn, state) == ("VD_1_2", PollState.COMPLETED)
        assert result.transaction_id == "T1"

    def test_failed(self):
        poller, outcomes = _poller(ScriptedStatus("FAILED"))
        assert poller.run() == PollState.FAILED
        assert outcomes[0][1] == PollState.FAILED

    def test_times_out_after_max_attempts(self):
        check = ScriptedStatus("PENDING")
        poller, outcomes = _poller(check, max_attempts=4)
        assert poller.run() == PollState.TIMED_OUT
        assert check.calls == 4
        assert outcomes[0][1] == PollState.TIMED_OUT

    def test_errors_count_as_attempts(self):
        check = ScriptedStatus(RuntimeError("gateway down"), "COMPLETED")
        poller, _ = _poller(check)
        assert poller.run() == PollState.COMPLETED
        assert poller.attempts == 2

    def test_persistent_errors_time_out(self):
        poller, _ = _poller(ScriptedStatus(RuntimeError("gateway down")), max_attempts=3)
        assert poller.run() == PollState.TIMED_OUT
        assert poller.last_result is None

    def test_callback_errors_do_not_escape(self):
        def explode(*args):
            raise RuntimeError("db down")

        poller = PaymentStatusPoller("VD_1_2", ScriptedStatus("COMPLETED"), on_complete=explode, initial_delay=0)
        assert poller.run() == PollState.COMPLETED

    def test_runs_in_background_thread(self):
        poller, outcomes = _poller(ScriptedStatus("PENDING", "COMPLETED"))
        poller.start()
        poller.join(timeout=5)
        assert poller.state == PollState.COMPLETED
        assert len(outcomes) == 1


class TestCancelAndAbandon:
    def test_cancel_stops_without_checking(self):
        check = ScriptedStatus("COMPLETED")
        poller, outcomes = _poller(check, initial_delay=60)
        poller.cancel()
        assert poller.run() == PollState.CANCELLED
        assert check.calls == 0
        assert outcomes[0][1] == PollState.CANCELLED

    def test_cancel_interrupts_running_poller(self):
        poller, _ = _poller(ScriptedStatus("PENDING"), initial_delay=60, max_attempts=100)
        poller.start()
        poller.cancel()
        poller.join(timeout=5)
        assert poller.state == PollState.CANCELLED

    @pytest.mark.parametrize(
        "last_state, outcome",
        [("PENDING", PollState.ABANDONED), ("COMPLETED", PollState.COMPLETED), ("FAILED", PollState.FAILED)],
    )
    def test_abandon_does_one_grace_check(self, last_state, outcome):
        check = ScriptedStatus(last_state)
        poller, outcomes = _poller(check, initial_delay=60)
        poller.abandon()
        assert poller.run() == outcome
        assert check.calls == 1
        assert outcomes[0][1] == outcome

    def test_cancel_during_grace_period(self):
        check = ScriptedStatus("COMPLETED")
        poller, _ = _poller(check, initial_delay=60, grace_period=60)
        poller.abandon()
        poller.cancel()
        assert poller.run() == PollState.CANCELLED
        assert check.calls == 0


class TestPollerRegistry:
    def test_add_get_discard(self):
        registry = PollerRegistry()
        poller, _ = _poller(ScriptedStatus("PENDING"))
        registry.add(poller)
        assert registry.get("VD_1_2") is poller
        registry.discard("VD_1_2")
        assert registry.get("VD_1_2") is None
        registry.discard("VD_1_2")

    def test_cancel_all(self):
        registry = PollerRegistry()
        poller, _ = _poller(ScriptedStatus("PENDING"), initial_delay=60)
        registry.add(poller)
        registry.cancel_all()
        assert registry.get("VD_1_2") is None
        assert poller.run() == PollState.CANCELLED
