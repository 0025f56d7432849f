"""
Raw queue consumer.

Upstream publishers put plain JSON messages such as ``{"upload_id": 42}`` on
the ``price_lists.cut`` queue, bound to ``amq.direct``. This consumer reads
them with auto-ack and runs the ingestion in-process, one message at a time.
"""

import json
import logging
from typing import Any, Callable, Optional

from kombu import Connection, Exchange, Queue
from kombu.mixins import ConsumerMixin

from api.config import settings
from services.errors import FatalIngestionError, MalformedWorkItemError
from tasks.ingestion_tasks import publish_progress, run_ingestion, should_halt

logger = logging.getLogger(__name__)


def build_ingest_queue() -> Queue:
    # amq.* exchanges are broker-owned and can only be declared passively
    exchange = Exchange(settings.INGEST_EXCHANGE, type='direct', durable=True,
                        passive=settings.INGEST_EXCHANGE.startswith('amq.'))
    return Queue(settings.INGEST_QUEUE_NAME, exchange,
                 routing_key=settings.INGEST_ROUTING_KEY, durable=True)


def parse_work_item(body: Any) -> int:
    """
    Extract the upload id from a queue message body.

    Raises:
        MalformedWorkItemError: Body is not JSON or has no integer ``upload_id``
    """
    data = body
    if isinstance(body, (bytes, bytearray)):
        body = body.decode('utf-8', errors='replace')
    if isinstance(body, str):
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedWorkItemError(f"Unknown JSON format: {body[:200]!r}") from e

    upload_id = data.get('upload_id') if isinstance(data, dict) else None
    if isinstance(upload_id, bool) or not isinstance(upload_id, (int, str)):
        raise MalformedWorkItemError(f"Message has no upload_id: {data!r}")
    try:
        return int(upload_id)
    except ValueError as e:
        raise MalformedWorkItemError(f"Invalid upload_id: {upload_id!r}") from e


class UploadQueueConsumer(ConsumerMixin):
    """
    Consume upload ids and ingest them.

    Args:
        connection: kombu connection to the broker
        queue: Queue to consume, see ``build_ingest_queue``
        handler: Called with each upload id, defaults to ``run_ingestion``
        fatal_policy: ``halt`` or ``continue``, defaults to FATAL_ERROR_POLICY
    """

    def __init__(self, connection: Connection, queue: Queue,
                 handler: Optional[Callable[[int], Any]] = None,
                 fatal_policy: Optional[str] = None):
        self.connection = connection
        self.queue = queue
        self.handler = handler or self._ingest
        self.fatal_policy = fatal_policy or settings.FATAL_ERROR_POLICY
        self.processed = 0

    def get_consumers(self, Consumer, channel):
        return [Consumer(
            queues=[self.queue],
            callbacks=[self.on_message],
            accept=['json'],
            no_ack=True,
            prefetch_count=1
        )]

    @staticmethod
    def _ingest(upload_id: int):
        return run_ingestion(upload_id, progress_callback=lambda *args: publish_progress(upload_id, *args))

    def on_message(self, body, message):
        logger.info(f"Received a message: {body!r}")
        try:
            upload_id = parse_work_item(body)
            result = self.handler(upload_id)
        except FatalIngestionError as e:
            if should_halt(e, self.fatal_policy):
                self.should_stop = True
                raise
            return
        self.processed += 1
        logger.info(f"Upload {upload_id} ingested: {result}")


def run_consumer(amqp_url: Optional[str] = None):
    """Block consuming the ingest queue until stopped."""
    with Connection(amqp_url or settings.AMQP_URL) as connection:
        logger.info(f"[*] Waiting for messages on {settings.INGEST_QUEUE_NAME}. To exit press CTRL+C")
        UploadQueueConsumer(connection, build_ingest_queue()).run()
