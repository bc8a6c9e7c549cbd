"""Liveness and readiness probes for the discovery service."""
import asyncio
from typing import Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

router = APIRouter(prefix="/health", tags=["health"])

CheckStatus = Literal["ok", "failed"]


class LivenessResponse(BaseModel):
    status: Literal["alive"]


class ComponentCheck(BaseModel):
    """Outcome of probing one runtime component.

    Attributes:
        component: Probed component ("index_store" or "sync_workers").
        status: Whether the component is usable.
        detail: Failure description, absent when healthy.
    """

    component: str
    status: CheckStatus
    detail: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness verdict plus the per-component results behind it.

    Attributes:
        status: 'ready' only when every component check passed.
        backlog: Events waiting to be projected into the index.
        checks: Component results.
    """

    status: Literal["ready", "not_ready"]
    backlog: int
    checks: list[ComponentCheck]


async def _probe_store(request: Request) -> ComponentCheck:
    store = request.app.state.index_store
    if await asyncio.to_thread(store.ping):
        return ComponentCheck(component="index_store", status="ok")
    return ComponentCheck(component="index_store", status="failed", detail="Query failed")


def _probe_workers(tasks: list[asyncio.Task[None]]) -> ComponentCheck:
    # A finished worker means its partition is no longer being projected.
    stopped = [t.get_name() for t in tasks if t.done()]
    if not tasks:
        return ComponentCheck(component="sync_workers", status="failed", detail="No workers")
    if stopped:
        return ComponentCheck(
            component="sync_workers",
            status="failed",
            detail=f"Stopped: {', '.join(stopped)}",
        )
    return ComponentCheck(component="sync_workers", status="ok")


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Report that the process is up."""
    return LivenessResponse(status="alive")


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> JSONResponse:
    """Report whether searches can be served and events are being applied.

    Returns:
        200 with the component checks when everything is usable, 503
        otherwise.
    """
    checks = [
        await _probe_store(request),
        _probe_workers(request.app.state.sync_tasks),
    ]
    ready = all(c.status == "ok" for c in checks)
    body = ReadinessResponse(
        status="ready" if ready else "not_ready",
        backlog=request.app.state.event_bus.backlog,
        checks=checks,
    )
    return JSONResponse(
        content=body.model_dump(),
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
