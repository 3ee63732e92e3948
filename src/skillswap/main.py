"""FastAPI application entrypoint for SkillSwap."""

import logging

from fastapi import FastAPI

from . import __version__
from .api.v1.router import api_router
from .core.config import get_settings
from .jobs import register_scheduler


def create_app() -> FastAPI:
    """Instantiate and configure the FastAPI application."""
    logging.basicConfig(level=get_settings().log_level.upper())
    app = FastAPI(title="SkillSwap Credits API", version=__version__)
    app.include_router(api_router, prefix="/api/v1")
    register_scheduler(app)
    return app


app = create_app()
