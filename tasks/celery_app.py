"""
Celery application configuration.

This module sets up Celery for background ingestion with RabbitMQ as the
message broker and Redis as the result backend.
"""

from celery import Celery
from kombu import Exchange, Queue

from api.config import settings

# Create Celery application
celery_app = Celery(
    'pricelist_ingest',
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['tasks.ingestion_tasks']
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=settings.TASK_TIME_LIMIT,
    task_soft_time_limit=settings.TASK_SOFT_TIME_LIMIT,
    worker_prefetch_multiplier=1,  # One upload at a time per worker process

    # Results
    result_expires=3600,
    result_extended=True,

    # Task routing
    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',

    worker_max_tasks_per_child=100,

    # At-most-once: a crashed ingestion is not redelivered
    task_acks_late=False,

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)

# Define task queues
celery_app.conf.task_queues = (
    Queue('default', Exchange('default'), routing_key='default'),
    Queue('ingestion', Exchange('ingestion'), routing_key='ingestion.#'),
)

# Task routes
celery_app.conf.task_routes = {
    'tasks.ingestion_tasks.ingest_price_list': {'queue': 'ingestion', 'routing_key': 'ingestion.price_list'},
}


if __name__ == '__main__':
    celery_app.start()
