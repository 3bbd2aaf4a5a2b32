"""FastAPI entry point: ``uvicorn collector.main:app``."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from collector.market import CollectorService, Settings, create_collector_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app. The collector starts with the app and stops with it."""
    service = CollectorService(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="Market Data Collector", lifespan=lifespan)
    app.state.collector = service
    app.include_router(create_collector_router(service))
    return app


app = create_app()


def main() -> None:
    uvicorn.run(
        "collector.main:app",
        host=os.environ.get("COLLECTOR_HOST", "0.0.0.0"),
        port=int(os.environ.get("COLLECTOR_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
