"""
Service layer for price-list ingestion.

This package contains framework-agnostic business logic that can be used
by the Celery worker, the raw queue consumer, the CLI or the API.
"""

__version__ = "1.0.0"
