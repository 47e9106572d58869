# main.py
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI

from core.settings import get_settings
from providers.factory import Providers, init_providers

# Routers
from health.router import router as health_router
from media.router import register_error_handlers, router as media_router

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# ---------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------

def create_app(providers: Optional[Providers] = None) -> FastAPI:
    """
    Build the app. Providers are constructed in the lifespan hook (or taken
    as given, for tests) and live on app.state.providers.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        p = init_providers(app, providers)
        logger.info("Providers ready (storage=%s)", p.settings.storage.provider)
        try:
            yield
        finally:
            p.close()
            logger.info("Providers closed")

    app = FastAPI(title="Media Storage Backend", lifespan=lifespan)
    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(media_router)

    @app.get("/")
    async def root():
        return {"status": "ok", "message": "media backend running"}

    return app


setup_logging(get_settings().log_level)
app = create_app()


# ---------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
