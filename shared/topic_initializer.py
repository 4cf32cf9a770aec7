"""
topic_initializer.py - Kafka Topic Auto-Creation Utility

PURPOSE:
    Makes sure every ViralDeals topic (shared.events.ALL_TOPICS) exists
    before a service starts producing or consuming.

BEHAVIOUR:
    - Topics the cluster already lists are skipped
    - The rest are created with the configured partitions and replication
    - TOPIC_ALREADY_EXISTS from a concurrent creator counts as success
    - Brokers that are still starting up are retried (10 attempts, 3s apart)

USAGE:
    create_topics("localhost:9092", num_partitions=3, replication_factor=1)
"""

import logging
import time
from typing import List, Optional

from confluent_kafka import KafkaError, KafkaException
from confluent_kafka.admin import AdminClient, NewTopic

from shared.events import ALL_TOPICS

logger = logging.getLogger(__name__)


def _already_exists(error: Exception) -> bool:
    if isinstance(error, KafkaException) and error.args:
        kafka_error = error.args[0]
        if isinstance(kafka_error, KafkaError):
            return kafka_error.code() == KafkaError.TOPIC_ALREADY_EXISTS
    return "already exists" in str(error)


def create_topics(
    bootstrap_servers: str,
    num_partitions: int = 3,
    replication_factor: int = 1,
    topics: Optional[List[str]] = None,
    max_retries: int = 10,
    retry_delay: float = 3,
    admin_client: Optional[AdminClient] = None,
) -> List[str]:
    """
    Create the missing topics. Returns the names that were created.

    Raises the last broker error once `max_retries` attempts failed.
    """
    admin_client = admin_client or AdminClient({"bootstrap.servers": bootstrap_servers})
    wanted = list(topics or ALL_TOPICS)

    for attempt in range(max_retries):
        try:
            existing = set(admin_client.list_topics(timeout=10).topics)
            missing = [topic for topic in wanted if topic not in existing]
            if not missing:
                logger.info(f"All {len(wanted)} topics already exist")
                return []

            logger.info(f"Creating {len(missing)} topics (attempt {attempt + 1}/{max_retries})")
            futures = admin_client.create_topics(
                [NewTopic(topic, num_partitions=num_partitions, replication_factor=replication_factor) for topic in missing]
            )

            created = []
            for topic, future in futures.items():
                try:
                    future.result(timeout=10)
                    created.append(topic)
                    logger.info(f"Topic '{topic}' created")
                except Exception as e:
                    if not _already_exists(e):
                        raise
                    logger.info(f"Topic '{topic}' already exists")
            return created

        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(f"Failed to create topics (attempt {attempt + 1}): {e}. Retrying in {retry_delay}s...")
                time.sleep(retry_delay)
            else:
                logger.error(f"Failed to create topics after {max_retries} attempts: {e}")
                raise
    return []
