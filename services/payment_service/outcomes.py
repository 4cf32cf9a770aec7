import logging
from typing import Callable, Optional, Tuple, Union

from sqlalchemy.orm import Session

from services.payment_service.models import Payment
from services.payment_service.phonepe_client import PaymentStatusResult
from services.payment_service.repository import COMPLETED, PaymentRepository
from services.payment_service.status_poller import PollState
from shared.events import BaseEvent, PaymentFailedEvent, PaymentProcessedEvent
from shared.kafka_client import BaseKafkaProducer

logger = logging.getLogger(__name__)

FAILURE_REASONS = {
    PollState.FAILED: "Payment failed",
    PollState.ABANDONED: "Payment was not completed",
    PollState.TIMED_OUT: "Payment status check timed out",
}


class PaymentOutcomeRecorder:
    """Stores a payment's final outcome once and publishes the matching event.

    Pollers, status checks and PhonePe callbacks can all report the same
    payment; only the first terminal report changes the record.
    """

    def __init__(self, session_factory: Callable[[], Session], producer: Optional[BaseKafkaProducer]):
        self.session_factory = session_factory
        self.producer = producer

    def record(
        self,
        merchant_transaction_id: str,
        state: Union[PollState, str],
        result: Optional[PaymentStatusResult] = None,
    ) -> Optional[Payment]:
        """Settle the payment and publish its event.

        The event is published before the commit: when publishing fails the
        transaction is rolled back, the payment stays PENDING and the next
        status check or callback reports it again.
        """
        state = PollState(state)
        if state != PollState.COMPLETED and state not in FAILURE_REASONS:
            return None

        db = self.session_factory()
        try:
            repo = PaymentRepository(db)
            payment = repo.get_by_transaction(merchant_transaction_id)
            if payment is None:
                logger.error(f"No payment for transaction {merchant_transaction_id}")
                return None

            if state == PollState.COMPLETED:
                settled = repo.mark_completed(payment, result.transaction_id if result else None)
            else:
                settled = repo.mark_failed(payment, FAILURE_REASONS[state], abandoned=state == PollState.ABANDONED)

            if not settled:
                logger.info(f"Payment {payment.payment_id} already {payment.status}", extra={"order_id": payment.order_id})
                return payment

            topic, event = self._outcome_event(payment)
            if self.producer is None:
                logger.warning(f"Kafka producer not initialized, dropping {topic} event", extra={"order_id": payment.order_id})
            else:
                self.producer.publish(topic, event)

            db.commit()
            db.refresh(payment)
            return payment
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _outcome_event(payment: Payment) -> Tuple[str, BaseEvent]:
        if payment.status == COMPLETED:
            return "payment.processed", PaymentProcessedEvent(
                correlation_id=payment.order_id,
                payment_id=payment.payment_id,
                order_id=payment.order_id,
                user_id=payment.user_id,
                amount=payment.amount,
                currency=payment.currency,
                method=payment.method,
                transaction_id=payment.transaction_id,
            )
        return "payment.failed", PaymentFailedEvent(
            correlation_id=payment.order_id,
            payment_id=payment.payment_id,
            order_id=payment.order_id,
            user_id=payment.user_id,
            reason=payment.reason,
        )
