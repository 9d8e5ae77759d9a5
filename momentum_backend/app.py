"""
FastAPI application entry point for the Momentum backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from momentum_backend.config import get_settings
from momentum_backend.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    logging.getLogger("momentum_backend").setLevel(settings.log_level.upper())
    app = FastAPI(title="Momentum Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
