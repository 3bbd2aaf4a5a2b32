"""Operations endpoints for the running collector."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from .models import AssetClass
from .service import CollectorService

logger = logging.getLogger(__name__)


def create_collector_router(service: CollectorService) -> APIRouter:
    """Create the collector router bound to a service instance.

    The factory lets the app inject its CollectorService without globals.
    """
    router = APIRouter(prefix="/api/collector", tags=["collector"])

    @router.get("/status")
    async def get_status() -> dict:
        """Jobs with last/next run, stream state and buffer sizes."""
        return service.status()

    @router.get("/buffer/{asset_class}")
    async def get_buffer(asset_class: AssetClass) -> dict:
        """Observations currently waiting to be flushed, keyed by instrument code."""
        snapshot = service.buffer_snapshot(asset_class)
        return {code: observation.to_dict() for code, observation in snapshot.items()}

    @router.post("/korean/restart")
    async def restart_korean() -> dict:
        started = await service.restart_korean()
        logger.info("Korean stream restart requested (started=%s)", started)
        return {"started": started}

    @router.post("/jobs/{name}/run")
    async def run_job(name: str) -> dict:
        """Run a scheduled job immediately."""
        try:
            job = await service.run_job(name)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown job: {name}")
        return job.describe()

    return router
