"""Middleware registration."""

from fastapi import FastAPI

from sips.config import Settings
from sips.middleware.error_handler import setup_error_handlers
from sips.middleware.logging import setup_logging
from sips.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, JSON error handlers and request id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
