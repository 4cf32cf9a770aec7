import logging
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from services.payment_service.models import Payment

logger = logging.getLogger(__name__)

PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"


class PaymentRepository:
    """Repository for payment operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def create_payment(
        self,
        order_id: str,
        user_id: str,
        amount: float,
        merchant_transaction_id: str,
        currency: str = "INR",
        method: str = "PhonePe",
    ) -> Payment:
        """Create a pending payment record."""
        payment_id = f"PAY-{uuid4().hex[:12].upper()}"
        payment = Payment(
            payment_id=payment_id,
            order_id=order_id,
            user_id=user_id,
            amount=amount,
            currency=currency,
            method=method,
            merchant_transaction_id=merchant_transaction_id,
            status=PENDING,
        )
        self.db.add(payment)
        self.db.flush()
        logger.info(f"Created payment {payment_id} for order {order_id}", extra={"order_id": order_id})
        return payment

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        """Get payment by ID."""
        return self.db.query(Payment).filter(Payment.payment_id == payment_id).first()

    def get_by_transaction(self, merchant_transaction_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.merchant_transaction_id == merchant_transaction_id).first()

    def get_payments_by_order(self, order_id: str) -> List[Payment]:
        """Get payments for an order, oldest first."""
        return self.db.query(Payment).filter(Payment.order_id == order_id).order_by(Payment.created_at).all()

    def mark_completed(self, payment: Payment, transaction_id: Optional[str] = None) -> bool:
        """Settle a pending payment as completed. False when it was already settled."""
        settled = self._settle(
            payment,
            status=COMPLETED,
            transaction_id=transaction_id or payment.transaction_id,
            reason=None,
        )
        if settled:
            logger.info(f"Payment {payment.payment_id} completed", extra={"order_id": payment.order_id})
        return settled

    def mark_failed(self, payment: Payment, reason: str, abandoned: bool = False) -> bool:
        """Settle a pending payment as failed. False when it was already settled."""
        settled = self._settle(payment, status=FAILED, reason=reason, abandoned=abandoned)
        if settled:
            logger.info(f"Payment {payment.payment_id} failed: {reason}", extra={"order_id": payment.order_id})
        return settled

    def _settle(self, payment: Payment, **values) -> bool:
        # Row stays locked until commit; a second reporter then matches nothing
        updated = (
            self.db.query(Payment)
            .filter(Payment.id == payment.id, Payment.status == PENDING)
            .update({**values, "updated_at": func.now()}, synchronize_session=False)
        )
        self.db.refresh(payment)
        return updated == 1
