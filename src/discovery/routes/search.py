"""Provider discovery search endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status

from discovery.errors import InfrastructureError, SearchValidationError
from discovery.search.schemas import SearchResult

if TYPE_CHECKING:
    from discovery.config import Settings
    from discovery.search.facade import SearchFacade

logger = structlog.get_logger()

router = APIRouter(tags=["search"])

RETRY_AFTER_SECONDS = "1"


@router.get(
    "/search/providers",
    response_model=SearchResult,
    summary="Find active providers near a point",
    description=(
        "Returns active providers within radius_km of the origin, ranked by "
        "subscription tier, then rating, then distance. Results reflect "
        "lifecycle events after a short synchronization delay."
    ),
)
async def search_providers(
    request: Request,
    latitude: float = Query(..., description="Origin latitude in degrees"),
    longitude: float = Query(..., description="Origin longitude in degrees"),
    radius_km: float = Query(..., description="Inclusive search radius in km"),
    service_ids: list[UUID] | None = Query(
        default=None, description="Match providers offering any of these services"
    ),
    min_rating: float | None = Query(default=None, description="Minimum average rating"),
    tiers: list[str] | None = Query(
        default=None, description="Allowed tiers (FREE, STANDARD, GOLD, PLATINUM)"
    ),
    offset: int = Query(default=0, description="Results to skip"),
    limit: int | None = Query(default=None, description="Results per page"),
) -> SearchResult:
    """Search the discovery index.

    Args:
        request: FastAPI request (provides access to app state).
        latitude: Origin latitude.
        longitude: Origin longitude.
        radius_km: Search radius; zero or less returns an empty result.
        service_ids: Optional service filter.
        min_rating: Optional rating floor (0-5).
        tiers: Optional tier filter.
        offset: Pagination offset.
        limit: Page size, defaults to the configured page size.

    Returns:
        Ranked page of providers with distances and total count.

    Raises:
        HTTPException: 422 on invalid input, 503 on storage failure.
    """
    facade: SearchFacade = request.app.state.search_facade
    settings: Settings = request.app.state.settings

    try:
        return await facade.search(
            latitude=latitude,
            longitude=longitude,
            radius_km=radius_km,
            service_ids=service_ids,
            min_rating=min_rating,
            tiers=tiers,
            skip=offset,
            take=limit if limit is not None else settings.default_page_size,
        )
    except SearchValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": e.field, "message": str(e)},
        ) from e
    except InfrastructureError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": "Search is temporarily unavailable", "retryable": True},
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        ) from e
