"""
FastAPI application entry point for the card store service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from cardstore.config import Settings, get_settings
from cardstore.db import Store, open_store
from cardstore.lifecycle import ShutdownHooks
from cardstore.routes import router

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None, store: Optional[Store] = None
) -> FastAPI:
    """
    Build the app. With ``store`` given the caller owns it; otherwise the
    lifespan opens the store from ``settings`` and closes it on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hooks = None
        if store is None:
            configure_logging(settings)
            current = await open_store(settings)
            if settings.db_install_signal_handlers:
                hooks = ShutdownHooks(current).install()
        else:
            current = store
        app.state.store = current
        try:
            yield
        finally:
            app.state.store = None
            if hooks is not None:
                hooks.uninstall()
            if store is None:
                current.close()

    app = FastAPI(title="Card Store", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
