from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Float, String, Uuid, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Payment(Base):
    """Payment model. One row per PhonePe payment attempt."""

    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    payment_id = Column(String(255), unique=True, nullable=False, index=True)
    order_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    method = Column(String(50), default="PhonePe", nullable=False)
    merchant_transaction_id = Column(String(255), unique=True, nullable=False, index=True)
    transaction_id = Column(String(255), nullable=True)  # PhonePe's own id
    status = Column(String(50), default="PENDING", nullable=False)  # PENDING, COMPLETED, FAILED
    reason = Column(String(255), nullable=True)
    abandoned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
