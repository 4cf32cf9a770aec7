"""
kafka_client.py - Kafka Producer and Consumer Client Wrappers

PURPOSE:
    Provides reusable Kafka producer and consumer classes with built-in
    error handling, serialization, and delivery guarantees.

CLASSES:
    1. BaseKafkaProducer: Publishes events to Kafka topics
       - JSON serialization of pydantic events or plain dicts
       - Keyed by correlation id; acks=all, 3 retries, snappy compression
       - publish() raises when the broker did not acknowledge delivery

    2. BaseKafkaConsumer: Consumes events from Kafka topics
       - Deserializes into the event class registered in EVENT_TYPE_MAP
       - Skips already-processed event ids
       - Retries the handler with exponential backoff (1s, 2s, 4s)
       - Sends events that still fail to the "dlq.events" topic
       - Stops cleanly when stop() is called

USAGE:
    producer = BaseKafkaProducer("localhost:9092", client_id="cart-producer")
    producer.publish("cart.item_added", event)

    consumer = BaseKafkaConsumer("localhost:9092", "order-service-group", ["payment.processed"])
    consumer.consume(handler_fn)   # blocks until consumer.stop()
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from confluent_kafka import Consumer, KafkaException, Producer
from confluent_kafka.error import KafkaError

from shared.events import EVENT_TYPE_MAP, BaseEvent, DLQEvent

logger = logging.getLogger(__name__)

DLQ_TOPIC = "dlq.events"


class BaseKafkaProducer:
    """
    Kafka producer for ViralDeals events.

    Messages are keyed by correlation id, so every event of one cart session
    or order lands on the same partition and keeps its order. publish()
    waits for the broker's acknowledgement and raises when delivery failed,
    which lets the order outbox keep undelivered events for the next poll.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str = "producer",
        producer: Optional[Producer] = None,
        flush_timeout: float = 10.0,
    ):
        self.config = {
            "bootstrap.servers": bootstrap_servers,
            "client.id": client_id,
            "acks": "all",
            "retries": 3,
            "compression.type": "snappy",
        }
        self.producer = producer if producer is not None else Producer(self.config)
        self.flush_timeout = flush_timeout

    @staticmethod
    def _serialize(event: Union[BaseEvent, Dict[str, Any]]) -> Tuple[str, Dict[str, str]]:
        if isinstance(event, dict):
            context = {field: str(event.get(field, "unknown")) for field in ("event_type", "event_id", "correlation_id")}
            return json.dumps(event, default=str), context
        context = {"event_type": event.event_type, "event_id": event.event_id, "correlation_id": event.correlation_id}
        return event.model_dump_json(), context

    def publish(self, topic: str, event: Union[BaseEvent, Dict[str, Any]], key: Optional[str] = None) -> None:
        """Publish `event` to `topic` and wait for delivery."""
        message, context = self._serialize(event)
        key = key or context["correlation_id"]
        failures: List[KafkaError] = []

        def on_delivery(err: Optional[KafkaError], msg) -> None:
            if err is not None:
                failures.append(err)
                logger.error(f"Message delivery to {topic} failed: {err}", extra=context)
            else:
                logger.debug(f"Message delivered to {msg.topic()} [{msg.partition()}] @ {msg.offset()}")

        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8"),
                value=message.encode("utf-8"),
                on_delivery=on_delivery,
            )
            pending = self.producer.flush(self.flush_timeout)
        except Exception as e:
            logger.error(f"Error publishing event to {topic}: {e}", extra=context)
            raise

        if failures:
            raise KafkaException(failures[0])
        if pending:
            raise KafkaException(KafkaError(KafkaError._MSG_TIMED_OUT, f"{pending} message(s) still queued for {topic}"))
        logger.info(f"Published event to {topic}", extra=context)

    def flush(self) -> None:
        self.producer.flush(self.flush_timeout)

    def close(self) -> None:
        self.flush()


class BaseKafkaConsumer:
    """Base Kafka consumer with retry logic and DLQ handling."""

    MAX_RETRIES = 3
    RETRY_DELAYS = (1, 2, 4)

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        topics: List[str],
        consumer: Optional[Consumer] = None,
        dlq_producer: Optional[BaseKafkaProducer] = None,
        retry_delays: Sequence[float] = RETRY_DELAYS,
    ):
        """Initialize Kafka consumer."""
        self.config = {
            "bootstrap.servers": bootstrap_servers,
            "group.id": group_id,
            "auto.offset.reset": "earliest",
            "enable.auto.commit": True,
            "session.timeout.ms": 30000,
        }
        self.consumer = consumer if consumer is not None else Consumer(self.config)
        self.topics = topics
        self.consumer.subscribe(topics)
        self.processed_events: Set[str] = set()
        self.producer = dlq_producer or BaseKafkaProducer(bootstrap_servers, client_id=f"{group_id}-dlq-producer")
        self.retry_delays = list(retry_delays)
        self._stop = threading.Event()

    def consume(self, handler_fn: Callable[[BaseEvent], None], timeout: float = 1.0) -> None:
        """Consume messages from subscribed topics until stop() is called."""
        while not self._stop.is_set():
            msg = self.consumer.poll(timeout)

            if msg is None:
                continue

            if msg.error():
                logger.error(f"Consumer error: {msg.error()}")
                continue

            self.handle_message(msg, handler_fn)

    def handle_message(self, msg, handler_fn: Callable[[BaseEvent], None]) -> None:
        """Deserialize one message and run the handler with retries, falling back to the DLQ."""
        try:
            event_data = json.loads(msg.value().decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Failed to deserialize message: {e}")
            return

        event_type = event_data.get("event_type")
        event_id = event_data.get("event_id")

        if event_id in self.processed_events:
            logger.info(
                f"Event {event_id} already processed, skipping",
                extra={"event_type": event_type, "correlation_id": event_data.get("correlation_id")},
            )
            return

        try:
            event_class = EVENT_TYPE_MAP.get(event_type, BaseEvent)
            event = event_class.model_validate(event_data)
        except Exception as e:
            logger.error(f"Invalid event payload on {msg.topic()}: {e}")
            self._send_to_dlq(msg.topic(), event_data, str(e), retry_count=0)
            return

        context = {"event_id": event_id, "event_type": event_type, "correlation_id": event.correlation_id}

        for attempt in range(self.MAX_RETRIES):
            try:
                handler_fn(event)
                self.processed_events.add(event_id)
                logger.info("Event processed successfully", extra=context)
                return
            except Exception as e:
                if attempt < self.MAX_RETRIES - 1:
                    wait_time = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                    logger.warning(
                        f"Error processing event (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {wait_time}s...",
                        extra=context,
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(
                        f"Event failed after {self.MAX_RETRIES} retries: {e}. Sending to DLQ.",
                        extra=context,
                    )
                    self._send_to_dlq(msg.topic(), event_data, str(e), retry_count=self.MAX_RETRIES)
                    self.processed_events.add(event_id)

    def _send_to_dlq(self, topic: str, payload: Dict[str, Any], reason: str, retry_count: int) -> None:
        dlq_event = DLQEvent(
            correlation_id=payload.get("correlation_id") or "unknown",
            original_topic=topic,
            original_event_type=payload.get("event_type") or "unknown",
            error_reason=reason,
            retry_count=retry_count,
            payload=payload,
        )
        self.producer.publish(DLQ_TOPIC, dlq_event)

    def stop(self) -> None:
        """Ask consume() to return after the current poll."""
        self._stop.set()

    def close(self) -> None:
        """Close the consumer."""
        self.stop()
        self.consumer.close()
