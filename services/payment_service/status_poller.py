"""
status_poller.py - PhonePe Payment Status Polling

PURPOSE:
    Follows one PhonePe payment until it reaches an outcome, replacing
    open-ended timer chains with a bounded, cancellable state machine.

STATES:
    WAITING ──initial delay──> POLLING ──> COMPLETED | FAILED
                                  │
                                  ├── attempts exhausted ──> TIMED_OUT
                                  ├── cancel() ────────────> CANCELLED
                                  └── abandon() ──grace──> one last check
                                                             ├─ COMPLETED / FAILED
                                                             └─ ABANDONED

TIMINGS (defaults):
    initial delay 5s, interval 3s, grace period 2s after abandon.
    Errors while checking count as attempts; polling carries on.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from services.payment_service.phonepe_client import PaymentStatusResult

logger = logging.getLogger(__name__)


class PollState(str, Enum):
    WAITING = "WAITING"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = frozenset(
    {PollState.COMPLETED, PollState.FAILED, PollState.ABANDONED, PollState.TIMED_OUT, PollState.CANCELLED}
)

CompletionCallback = Callable[[str, PollState, Optional[PaymentStatusResult]], None]


class PaymentStatusPoller:
    """Polls PhonePe for one merchant transaction."""

    def __init__(
        self,
        merchant_transaction_id: str,
        check_status: Callable[[str], PaymentStatusResult],
        on_complete: Optional[CompletionCallback] = None,
        initial_delay: float = 5,
        interval: float = 3,
        max_attempts: int = 100,
        grace_period: float = 2,
    ):
        self.merchant_transaction_id = merchant_transaction_id
        self.check_status = check_status
        self.on_complete = on_complete
        self.initial_delay = initial_delay
        self.interval = interval
        self.max_attempts = max_attempts
        self.grace_period = grace_period

        self.state = PollState.WAITING
        self.attempts = 0
        self.last_result: Optional[PaymentStatusResult] = None

        self._cancelled = threading.Event()
        self._abandoned = threading.Event()
        self._interrupt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run,
            name=f"payment-poller-{self.merchant_transaction_id}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel(self) -> None:
        """Stop polling without deciding the payment's outcome."""
        self._cancelled.set()
        self._interrupt.set()

    def abandon(self) -> None:
        """The customer closed the payment window: do one grace check, then give up."""
        self._abandoned.set()
        self._interrupt.set()

    def run(self) -> PollState:
        """Poll until a terminal state; returns it. Blocks the calling thread."""
        if not self._wait(self.initial_delay):
            while True:
                self.state = PollState.POLLING
                outcome = self._poll_once()
                if outcome is not None:
                    return self._finish(outcome)
                if self.attempts >= self.max_attempts:
                    return self._finish(PollState.TIMED_OUT)
                if self._wait(self.interval):
                    break

        if self._cancelled.is_set():
            return self._finish(PollState.CANCELLED)
        return self._grace_check()

    def _grace_check(self) -> PollState:
        if self._cancelled.wait(self.grace_period):
            return self._finish(PollState.CANCELLED)
        outcome = self._poll_once()
        return self._finish(outcome or PollState.ABANDONED)

    def _poll_once(self) -> Optional[PollState]:
        self.attempts += 1
        try:
            result = self.check_status(self.merchant_transaction_id)
        except Exception as e:
            logger.warning(
                f"Status check {self.attempts} for {self.merchant_transaction_id} failed: {e}"
            )
            return None

        self.last_result = result
        if result.state == "COMPLETED":
            return PollState.COMPLETED
        if result.state == "FAILED":
            return PollState.FAILED
        return None

    def _wait(self, seconds: float) -> bool:
        """Sleep; True when interrupted by cancel() or abandon()."""
        return self._interrupt.wait(seconds)

    def _finish(self, state: PollState) -> PollState:
        self.state = state
        logger.info(
            f"Payment {self.merchant_transaction_id} polling finished: {state.value} after {self.attempts} checks"
        )
        if self.on_complete is not None:
            try:
                self.on_complete(self.merchant_transaction_id, state, self.last_result)
            except Exception as e:
                logger.error(f"Error handling poll outcome for {self.merchant_transaction_id}: {e}")
        return state


class PollerRegistry:
    """Active pollers by merchant transaction id."""

    def __init__(self):
        self._pollers: Dict[str, PaymentStatusPoller] = {}
        self._lock = threading.Lock()

    def add(self, poller: PaymentStatusPoller) -> None:
        with self._lock:
            self._pollers[poller.merchant_transaction_id] = poller

    def get(self, merchant_transaction_id: str) -> Optional[PaymentStatusPoller]:
        with self._lock:
            return self._pollers.get(merchant_transaction_id)

    def discard(self, merchant_transaction_id: str) -> None:
        with self._lock:
            self._pollers.pop(merchant_transaction_id, None)

    def cancel_all(self) -> None:
        with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            poller.cancel()
