"""Middleware registration."""

from fastapi import FastAPI

from naffles.config import Settings
from naffles.middleware.error_handler import setup_error_handlers
from naffles.middleware.logging import setup_logging
from naffles.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and request-id propagation."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
