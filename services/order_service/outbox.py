import json
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from services.order_service.repository import OrderRepository
from shared.kafka_client import BaseKafkaProducer

logger = logging.getLogger(__name__)


class OutboxPublisher:
    """Background thread to publish outbox events.

    Each event is published to the topic named by its event type and marked
    published only after the producer returned. Events that fail stay in
    the outbox and are retried on the next poll.
    """

    def __init__(self, session_factory: Callable[[], Session], producer: BaseKafkaProducer, poll_interval: float = 2):
        """Initialize publisher."""
        self.session_factory = session_factory
        self.producer = producer
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        """Start publisher thread."""
        self._thread = threading.Thread(target=self._publish_loop, name="outbox-publisher", daemon=True)
        self._thread.start()
        logger.info("Outbox publisher started")
        return self._thread

    def publish_pending(self) -> int:
        """Publish every unpublished event once. Returns how many were published."""
        published = 0
        db = self.session_factory()
        try:
            repo = OrderRepository(db)
            for event in repo.get_unpublished_events():
                try:
                    self.producer.publish(event.event_type, json.loads(event.event_data))
                except Exception as e:
                    logger.error(f"Error publishing outbox event: {e}", extra={"order_id": event.order_id})
                    continue
                repo.mark_event_published(event.id)
                db.commit()
                published += 1
                logger.info(
                    f"Published outbox event {event.event_type} for order {event.order_id}",
                    extra={"order_id": event.order_id},
                )
        finally:
            db.close()
        return published

    def _publish_loop(self) -> None:
        """Poll and publish outbox events."""
        while not self._stop.is_set():
            try:
                self.publish_pending()
            except Exception as e:
                logger.error(f"Error in outbox publisher: {e}")
            self._stop.wait(self.poll_interval)

    def stop(self, timeout: Optional[float] = 5) -> None:
        """Stop publisher thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Outbox publisher stopped")
