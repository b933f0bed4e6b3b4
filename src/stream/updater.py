import asyncio
import json
import redis
from decimal import Decimal
from kafka import KafkaConsumer
import time
from typing import Callable, Optional

from prometheus_client import start_http_server

from src.logging import setup_logging
from src.observability import metrics, setup_tracing, shutdown_tracing
from src.config import (
    KAFKA_BOOTSTRAP_SERVERS,
    KAFKA_TOPIC_ACTIVITY,
    KAFKA_GROUP_ID,
    REDIS_HOST,
    REDIS_PORT,
    REDIS_SCORE_DEBOUNCE_PREFIX,
    SCORE_REFRESH_DEBOUNCE_SECONDS,
)
from src.engine.maintainer import ScoreMaintainer
from src.engine.models import ActivityType
from src.store.database import create_db_engine, create_session_factory
from src.store.sql import SqlCatalogStore

logger = setup_logging("updater.log")

METRICS_PORT = 8001  # separate from the api metrics


def get_redis_client():
    return redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)


def parse_activity_event(event) -> Optional[tuple[str, ActivityType]]:
    """
    extract (product_id, activity_type) from an activity event,
    None for events that cannot move a popularity score
    """
    if not isinstance(event, dict):
        return None

    product_id = event.get("product_id")
    if not product_id:
        return None

    try:
        activity_type = ActivityType(event.get("activity_type"))
    except ValueError:
        return None

    return str(product_id), activity_type


def debounce_key(product_id: str) -> str:
    return f"{REDIS_SCORE_DEBOUNCE_PREFIX}{product_id}"


def should_refresh(r, product_id: str) -> bool:
    """
    claim the debounce window for a product. only the first event inside the
    window refreshes the score, the rest are absorbed.
    """
    return bool(
        r.set(debounce_key(product_id), "1", nx=True, ex=SCORE_REFRESH_DEBOUNCE_SECONDS)
    )


def release_refresh(r, product_id: str) -> None:
    """give the window back so the next event for the product retries"""
    try:
        r.delete(debounce_key(product_id))
    except Exception as e:
        # the window still expires on its own
        logger.warning(f"Failed to release debounce window for {product_id}: {e}")


def process_event(
    event, r, refresh: Callable[[str], Optional[Decimal]]
) -> Optional[Decimal]:
    """
    handle one activity event, returning the new score when a refresh ran
    """
    parsed = parse_activity_event(event)
    if parsed is None:
        logger.debug(f"Skipping event without a known product/activity: {event}")
        return None
    product_id, activity_type = parsed

    if not should_refresh(r, product_id):
        logger.debug(f"Skipping debounced refresh for product {product_id}")
        metrics.debounce_hits.inc()
        return None

    process_start = time.time()
    try:
        score = refresh(product_id)
    except Exception:
        release_refresh(r, product_id)
        raise
    process_duration = time.time() - process_start

    metrics.events_processed.labels(activity_type=activity_type.value).inc()
    metrics.event_processing_duration.labels(
        activity_type=activity_type.value
    ).observe(process_duration)

    if score is None:
        logger.warning(f"Product {product_id} not found. Skipping score refresh.")
    else:
        logger.info(
            f"Processed {activity_type.value} for product {product_id}, score -> {score}"
        )
    return score


def main():
    logger.info("Starting popularity score refresher...")

    start_http_server(METRICS_PORT)
    logger.info(f"Metrics server started on port {METRICS_PORT}")
    setup_tracing(service_name="score-refresher")

    r = get_redis_client()

    # one loop for the process lifetime, the db pool is bound to it
    loop = asyncio.new_event_loop()
    db_engine = create_db_engine()
    maintainer = ScoreMaintainer(SqlCatalogStore(create_session_factory(db_engine)))

    def refresh(product_id: str) -> Optional[Decimal]:
        return loop.run_until_complete(maintainer.update_one(product_id))

    consumer = KafkaConsumer(
        KAFKA_TOPIC_ACTIVITY,
        bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
        value_deserializer=lambda m: json.loads(m.decode("utf-8")),
        group_id=KAFKA_GROUP_ID,
        auto_offset_reset="latest",
    )

    logger.info(
        f"Listening on topic '{KAFKA_TOPIC_ACTIVITY}' "
        f"with a {SCORE_REFRESH_DEBOUNCE_SECONDS}s debounce..."
    )

    try:
        for message in consumer:
            try:
                process_event(message.value, r, refresh)
            except Exception as e:
                # the debounce window was released, the next event retries
                logger.error(f"Failed to process event {message.value}: {e}")
    except KeyboardInterrupt:
        logger.info("Stopping score refresher...")
    finally:
        consumer.close()
        r.close()
        loop.run_until_complete(db_engine.dispose())
        loop.close()
        shutdown_tracing()


if __name__ == "__main__":
    main()
