"""Control API routes."""

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import Application


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class SweepResponse(BaseModel):
    checked: int
    timed_out: int
    timed_out_ids: list[str]


def create_control_router(app: Application) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Reset system data between test runs."""
        try:
            await app.reset()
            return {"status": "ok"}
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/timeouts", response_model=SweepResponse)
    async def process_timeouts() -> dict:
        """Run one timeout sweep now."""
        result = await app.run_sweep()
        return {
            "checked": result.checked,
            "timed_out": result.timed_out,
            "timed_out_ids": result.timed_out_ids,
        }

    return router
