#!/usr/bin/env python3
"""
Price List Ingestion CLI

Usage:
    # Ingest an upload in-process (no broker needed)
    python scripts/ingest_cli.py ingest --upload-id 42

    # Hand an upload to the Celery workers
    python scripts/ingest_cli.py enqueue --upload-id 42

    # Consume raw {"upload_id": N} messages from the price_lists.cut queue
    python scripts/ingest_cli.py consume
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging

import click
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from api.config import settings
from services.errors import FatalIngestionError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger('ingest_cli')


@click.group()
def cli():
    """Price list ingestion CLI"""


@cli.command()
@click.option('--upload-id', '-u', required=True, type=int, help='Upload id to ingest')
def ingest(upload_id):
    """Ingest an upload in this process."""
    from tasks.ingestion_tasks import publish_progress, run_ingestion

    def show_progress(stage, percent, message):
        publish_progress(upload_id, stage, percent, message)
        bar = '#' * int(percent / 5)
        click.echo(f"\r[{bar:<20}] {percent:.1f}% - {stage}: {message}", nl=False)

    click.echo(f"Ingesting upload #{upload_id}")
    try:
        result = run_ingestion(upload_id, progress_callback=show_progress)
    except FatalIngestionError as e:
        click.echo()
        click.echo(f"✗ Ingestion failed ({e.error_kind}): {e.message}", err=True)
        sys.exit(1)

    click.echo()
    click.echo("✓ Ingestion complete")
    click.echo(f"  Rows scanned: {result['rows_total']}")
    click.echo(f"  Rows loaded: {result['rows_loaded']}")
    click.echo(f"  Rows rejected: {result['rows_error']}")
    click.echo(f"  Nomenclatures created: {result['catalog_created']}")


@cli.command()
@click.option('--upload-id', '-u', required=True, type=int, help='Upload id to enqueue')
def enqueue(upload_id):
    """Dispatch the ingestion task to Celery."""
    from tasks.ingestion_tasks import ingest_price_list

    task = ingest_price_list.apply_async(args=[upload_id])
    click.echo(f"✓ Enqueued upload #{upload_id}. Task ID: {task.id}")


@cli.command()
@click.option('--amqp-url', envvar='AMQP_URL', help='Broker URL (defaults to AMQP_URL setting)')
def consume(amqp_url):
    """Consume raw upload messages until stopped."""
    from tasks.consumer import run_consumer

    try:
        run_consumer(amqp_url)
    except FatalIngestionError as e:
        logger.critical(f"Consumer halted ({e.error_kind}): {e.message}")
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nStopped")


if __name__ == '__main__':
    cli()
