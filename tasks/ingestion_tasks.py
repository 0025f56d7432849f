"""
Ingestion background tasks.

This module defines the Celery task that ingests one price-list upload, with
progress published to Redis, and the fatal-error policy shared with the raw
queue consumer.
"""

import json
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Optional

import redis
from celery import Task
from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from api.config import settings
from backend.models.schema import PriceListUpload, UploadStatus
from services.errors import FatalIngestionError
from services.ingestion_service import IngestionOrchestrator, load_upload
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Create Redis client
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# Create database engine and session factory
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=settings.DB_POOL_PRE_PING)
SessionLocal = sessionmaker(autoflush=False, bind=engine)


def get_db_session() -> Session:
    """Get database session."""
    return SessionLocal()


def progress_key(upload_id: int) -> str:
    return f'upload_progress:{upload_id}'


def publish_progress(upload_id: int, stage: str, percent: float, message: str):
    """
    Store the latest progress of an upload in Redis.

    Progress is informational: a Redis failure is logged and ignored.
    """
    progress_data = {
        'stage': stage,
        'percent': float(percent),
        'message': message,
        'timestamp': datetime.utcnow().isoformat()
    }
    try:
        redis_client.setex(progress_key(upload_id), settings.PROGRESS_CACHE_EXPIRY,
                           json.dumps(progress_data))
    except redis.RedisError as e:
        logger.error(f"Error updating progress for upload {upload_id}: {e}")


def run_ingestion(
    upload_id: int,
    progress_callback: Optional[Callable[[str, float, str], None]] = None,
    session_factory: Callable[[], Session] = get_db_session
) -> Dict[str, Any]:
    """
    Ingest one upload in its own session.

    Returns:
        IngestionSummary as a dictionary

    Raises:
        FatalIngestionError: The run could not complete
    """
    with session_factory() as session:
        upload = load_upload(session, upload_id)
        orchestrator = IngestionOrchestrator(
            session,
            upload,
            progress_callback=progress_callback,
            upload_root=settings.UPLOAD_ROOT,
            allowed_extensions=settings.ALLOWED_EXTENSIONS,
            nomenclature_batch_size=settings.NOMENCLATURE_BATCH_SIZE,
            price_batch_size=settings.PRICE_BATCH_SIZE,
            relax_integrity=settings.RELAX_INTEGRITY_CHECKS
        )
        return orchestrator.run().to_dict()


def mark_upload_failed(upload_id: int, session_factory: Callable[[], Session] = get_db_session):
    """Set an upload to FAILED outside of a run (e.g. after a deadline)."""
    try:
        with session_factory() as session:
            upload = session.get(PriceListUpload, upload_id)
            if upload is not None:
                upload.status = int(UploadStatus.FAILED)
                session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Could not mark upload {upload_id} as failed: {e}")


def should_halt(error: FatalIngestionError, policy: Optional[str] = None) -> bool:
    """
    Decide whether a fatal error stops the worker.

    ``halt`` stops consuming so no further batch can be half-written behind
    the failure; ``continue`` abandons this upload and takes the next one.
    """
    policy = policy or settings.FATAL_ERROR_POLICY
    if policy == 'halt':
        logger.critical(f"Fatal {error.error_kind} error, halting worker: {error.message}")
        return True
    logger.error(f"Fatal {error.error_kind} error, upload abandoned: {error.message}")
    return False


class IngestionTask(Task):
    """
    Base task class with progress tracking.

    Progress goes to Redis for the status API; the durable status lives on
    the upload row and is maintained by the orchestrator.
    """

    def on_progress(self, upload_id: int, stage: str, percent: float, message: str):
        publish_progress(upload_id, stage, percent, message)
        logger.debug(f"Progress updated: {upload_id} - {stage} ({percent}%)")

    def halt_worker(self):
        """Ask the worker running this task to shut down."""
        hostname = self.request.hostname
        if hostname:
            self.app.control.shutdown(destination=[hostname])


@celery_app.task(base=IngestionTask, bind=True, name='tasks.ingestion_tasks.ingest_price_list')
def ingest_price_list(self, upload_id: int) -> Dict[str, Any]:
    """
    Background task to ingest a price-list upload.

    Args:
        upload_id: Id of the ``price_list_uploads`` row

    Returns:
        Ingestion summary dictionary:
        {
            'upload_id': int,
            'state': 'done',
            'rows_total': int,
            'rows_loaded': int,
            'rows_error': int,
            'catalog_created': int
        }
    """
    logger.info(f"Starting ingestion task {self.request.id} for upload {upload_id}")

    try:
        result = run_ingestion(upload_id, progress_callback=partial(self.on_progress, upload_id))
    except SoftTimeLimitExceeded:
        logger.error(f"Ingestion of upload {upload_id} exceeded its time limit")
        mark_upload_failed(upload_id)
        self.on_progress(upload_id, 'failed', 0, 'Ingestion exceeded its time limit')
        raise
    except FatalIngestionError as e:
        self.on_progress(upload_id, 'failed', 0, f"Ingestion failed: {e.message}")
        if should_halt(e):
            self.halt_worker()
        raise

    logger.info(f"Ingestion task {self.request.id} completed: {result}")
    return result
