"""
payment_service/main.py - Payment Processing Microservice (PhonePe)

PURPOSE:
    Collects online payments for orders through the PhonePe payment gateway
    and reports each payment's outcome to the Order Service over Kafka.

PAYMENT FLOW:
    1. Storefront calls POST /payments/phonepe after the order is placed
    2. PhonePe pay page URL is returned; a pending payment is recorded
    3. A background poller checks PhonePe (5s initial delay, every 3s)
    4. PhonePe may also call POST /payments/phonepe/callback
    5. The first terminal outcome is stored and published:
       payment.processed or payment.failed
    6. If the customer closes the pay page, POST .../abandon triggers a
       single grace-period check before the payment is given up

API ENDPOINTS:
    GET  /health                                   - Health check
    POST /payments/phonepe                         - Start PhonePe payment
    GET  /payments/phonepe/status/{txn_id}         - Check payment status
    POST /payments/phonepe/callback                - PhonePe server callback
    POST /payments/phonepe/{txn_id}/abandon        - Customer closed the pay page
    GET  /payments/{payment_id}                    - Get payment details
    GET  /payments/order/{order_id}                - Get payments for order

KAFKA EVENTS:
    PUBLISHED:
        - payment.processed: Payment completed
        - payment.failed: Payment failed, abandoned or timed out

DATABASE:
    - PostgreSQL table: payments

USAGE:
    Runs on port 8003 (PAYMENT_SERVICE_PORT)
    Access: http://localhost:8003/payments/...
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from pydantic_settings import BaseSettings
from sqlalchemy.orm import Session

from services.payment_service.models import Base
from services.payment_service.outcomes import PaymentOutcomeRecorder
from services.payment_service.phonepe_client import PaymentStatusResult, PhonePeClient
from services.payment_service.repository import PENDING, PaymentRepository
from services.payment_service.schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    HealthResponse,
    PaymentSchema,
    PaymentStatusResponse,
    PhonePeCallbackRequest,
)
from services.payment_service.status_poller import PaymentStatusPoller, PollerRegistry, PollState
from shared.database import build_database_url, make_session_factory, session_dependency
from shared.exceptions import PaymentGatewayError
from shared.kafka_client import BaseKafkaProducer
from shared.logging_config import setup_logging
from shared.topic_initializer import create_topics

setup_logging("payment-service")
logger = logging.getLogger(__name__)

PHONEPE_SUCCESS_CODES = {"PAYMENT_SUCCESS"}
PHONEPE_FAILURE_CODES = {"PAYMENT_ERROR", "PAYMENT_DECLINED", "TIMED_OUT"}


class Settings(BaseSettings):
    """Application settings."""

    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_replication_factor: int = 1
    database_url: Optional[str] = None
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    postgres_db: str = "viraldeals"
    phonepe_merchant_id: str = "PGTESTPAYUAT"
    phonepe_salt_key: str = ""
    phonepe_salt_index: str = "1"
    phonepe_base_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    phonepe_redirect_url: str = "http://localhost:3000/payment/success"
    phonepe_callback_url: str = "http://localhost:8003/payments/phonepe/callback"
    phonepe_timeout_seconds: float = 10.0
    poll_initial_delay_seconds: float = 5
    poll_interval_seconds: float = 3
    poll_max_attempts: int = 100
    poll_grace_period_seconds: float = 2
    payment_service_port: int = 8003


settings = Settings()

DATABASE_URL = settings.database_url or build_database_url(
    settings.postgres_user,
    settings.postgres_password,
    settings.postgres_host,
    settings.postgres_port,
    settings.postgres_db,
)

engine, SessionLocal = make_session_factory(DATABASE_URL)
get_db = session_dependency(SessionLocal)

# Global instances
producer: Optional[BaseKafkaProducer] = None
pollers = PollerRegistry()


def init_db():
    """Initialize database tables."""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    global producer

    logger.info("Starting Payment Service...")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    try:
        create_topics(settings.kafka_bootstrap_servers, replication_factor=settings.kafka_replication_factor)
        logger.info("Kafka topics initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka topics: {e}")
        raise

    try:
        producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="payment-producer")
        logger.info("Kafka producer initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Kafka producer: {e}")
        raise

    yield

    logger.info("Shutting down Payment Service...")
    pollers.cancel_all()
    if producer:
        producer.flush()


app = FastAPI(title="Payment Service", version="1.0.0", lifespan=lifespan)


# Dependencies ---------------------------------------------------------------

def get_phonepe_client() -> PhonePeClient:
    return PhonePeClient(
        merchant_id=settings.phonepe_merchant_id,
        salt_key=settings.phonepe_salt_key,
        salt_index=settings.phonepe_salt_index,
        base_url=settings.phonepe_base_url,
        redirect_url=settings.phonepe_redirect_url,
        callback_url=settings.phonepe_callback_url,
        timeout=settings.phonepe_timeout_seconds,
    )


def get_recorder() -> PaymentOutcomeRecorder:
    return PaymentOutcomeRecorder(SessionLocal, producer)


def get_poller_starter(
    client: PhonePeClient = Depends(get_phonepe_client),
    recorder: PaymentOutcomeRecorder = Depends(get_recorder),
) -> Callable[[str], PaymentStatusPoller]:
    """Callable that starts a background status poller for a merchant transaction."""

    def on_complete(txn_id: str, state: PollState, result: Optional[PaymentStatusResult]) -> None:
        pollers.discard(txn_id)
        recorder.record(txn_id, state, result)

    def start(txn_id: str) -> PaymentStatusPoller:
        poller = PaymentStatusPoller(
            txn_id,
            client.check_status,
            on_complete=on_complete,
            initial_delay=settings.poll_initial_delay_seconds,
            interval=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
            grace_period=settings.poll_grace_period_seconds,
        )
        pollers.add(poller)
        poller.start()
        return poller

    return start


# Helpers --------------------------------------------------------------------

def _get_payment_by_txn_or_404(repo: PaymentRepository, txn_id: str):
    payment = repo.get_by_transaction(txn_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Payment {txn_id} not found")
    return payment


def _stop_poller(txn_id: str) -> None:
    poller = pollers.get(txn_id)
    if poller is not None:
        poller.cancel()
        pollers.discard(txn_id)


def _record_or_503(recorder: PaymentOutcomeRecorder, txn_id: str, state: str, result: PaymentStatusResult):
    """Record an outcome; a failed publish leaves the payment pending for the caller to retry."""
    try:
        return recorder.record(txn_id, state, result)
    except Exception as e:
        logger.error(f"Error recording {state} for {txn_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment outcome could not be recorded, please retry",
        )


def _callback_state(payload: dict) -> Optional[str]:
    data = payload.get("data") or {}
    if data.get("state") in ("COMPLETED", "FAILED"):
        return data["state"]
    code = payload.get("code")
    if code in PHONEPE_SUCCESS_CODES:
        return "COMPLETED"
    if code in PHONEPE_FAILURE_CODES:
        return "FAILED"
    return None


# Endpoints ------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", service="payment-service", version="1.0.0")


@app.post("/payments/phonepe", response_model=CreatePaymentResponse, status_code=status.HTTP_201_CREATED)
def create_phonepe_payment(
    request: CreatePaymentRequest,
    db: Session = Depends(get_db),
    client: PhonePeClient = Depends(get_phonepe_client),
    start_poller: Callable[[str], PaymentStatusPoller] = Depends(get_poller_starter),
):
    """Start a PhonePe payment and begin polling its status."""
    try:
        initiation = client.create_payment(request.order_id, request.amount, request.user_phone)
    except PaymentGatewayError as e:
        logger.error(f"Error creating PhonePe payment: {e}", extra={"order_id": request.order_id})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    repo = PaymentRepository(db)
    payment = repo.create_payment(
        order_id=request.order_id,
        user_id=request.user_id,
        amount=request.amount,
        merchant_transaction_id=initiation.merchant_transaction_id,
    )
    db.commit()

    start_poller(initiation.merchant_transaction_id)

    return CreatePaymentResponse(
        payment_id=payment.payment_id,
        order_id=payment.order_id,
        payment_url=initiation.payment_url,
        merchant_transaction_id=initiation.merchant_transaction_id,
    )


@app.get("/payments/phonepe/status/{txn_id}", response_model=PaymentStatusResponse)
def get_phonepe_status(
    txn_id: str,
    db: Session = Depends(get_db),
    client: PhonePeClient = Depends(get_phonepe_client),
    recorder: PaymentOutcomeRecorder = Depends(get_recorder),
):
    """Ask PhonePe for the payment's state; a final state is recorded immediately."""
    repo = PaymentRepository(db)
    payment = _get_payment_by_txn_or_404(repo, txn_id)

    try:
        result = client.check_status(txn_id)
    except PaymentGatewayError as e:
        logger.error(f"Error checking PhonePe status: {e}", extra={"order_id": payment.order_id})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    if result.state in ("COMPLETED", "FAILED"):
        _stop_poller(txn_id)
        _record_or_503(recorder, txn_id, result.state, result)
        db.refresh(payment)

    return PaymentStatusResponse(
        merchant_transaction_id=txn_id,
        state=result.state,
        payment_status=payment.status,
        transaction_id=result.transaction_id,
        message=result.message,
    )


@app.post("/payments/phonepe/callback")
def phonepe_callback(
    request: PhonePeCallbackRequest,
    x_verify: Optional[str] = Header(default=None),
    client: PhonePeClient = Depends(get_phonepe_client),
    recorder: PaymentOutcomeRecorder = Depends(get_recorder),
):
    """PhonePe server-to-server callback."""
    if not x_verify or not client.verify_callback(x_verify, request.response):
        logger.warning("Rejected PhonePe callback with invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid callback signature")

    try:
        payload = client.decode_callback(request.response)
    except PaymentGatewayError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    txn_id = (payload.get("data") or {}).get("merchantTransactionId")
    if not txn_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Callback has no merchantTransactionId")

    state = _callback_state(payload)
    if state is None:
        logger.info(f"PhonePe callback for {txn_id} without final state ({payload.get('code')})")
        return {"success": True, "merchant_transaction_id": txn_id, "state": None}

    _stop_poller(txn_id)
    result = PaymentStatusResult(
        success=bool(payload.get("success")),
        state=state,
        transaction_id=payload["data"].get("transactionId"),
        response_code=payload["data"].get("responseCode"),
        message=payload.get("message"),
    )
    payment = _record_or_503(recorder, txn_id, state, result)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Payment {txn_id} not found")

    return {"success": True, "merchant_transaction_id": txn_id, "state": state}


@app.post("/payments/phonepe/{txn_id}/abandon", response_model=PaymentStatusResponse)
def abandon_phonepe_payment(
    txn_id: str,
    db: Session = Depends(get_db),
    start_poller: Callable[[str], PaymentStatusPoller] = Depends(get_poller_starter),
):
    """The customer closed the pay page: check once more after a grace period, then give up."""
    repo = PaymentRepository(db)
    payment = _get_payment_by_txn_or_404(repo, txn_id)

    if payment.status == PENDING:
        poller = pollers.get(txn_id) or start_poller(txn_id)
        poller.abandon()

    return PaymentStatusResponse(merchant_transaction_id=txn_id, payment_status=payment.status)


@app.get("/payments/order/{order_id}", response_model=List[PaymentSchema])
def get_order_payments(order_id: str, db: Session = Depends(get_db)):
    """Get payments for an order."""
    payments = PaymentRepository(db).get_payments_by_order(order_id)
    return [PaymentSchema.model_validate(payment) for payment in payments]


@app.get("/payments/{payment_id}", response_model=PaymentSchema)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    """Get payment details."""
    payment = PaymentRepository(db).get_payment(payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Payment {payment_id} not found")
    return PaymentSchema.model_validate(payment)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.payment_service_port)
