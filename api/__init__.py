"""
FastAPI application for the price-list ingestion system.

This package contains the REST API reporting upload status and row errors,
and enqueueing uploads for background ingestion.
"""

__version__ = "1.0.0"
