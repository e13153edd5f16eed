"""
Back2U — Matching API

Endpoints for running the matching pipeline on an item, listing the
matches involving an item, and confirming or dismissing a match.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from back2u.database import get_db
from back2u.schemas.match import (
    ErrorResponse,
    FindMatchesRequest,
    FindMatchesResponse,
    MatchResponse,
    MatchStatusUpdate,
)
from back2u.services.errors import Back2UError
from back2u.services.matching_service import MatchingService
from back2u.services.notification_service import build_dispatcher
from back2u.services.scoring_service import build_scorer

logger = structlog.get_logger("back2u.api.matching")

router = APIRouter()

# ── Service singleton ─────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None


def get_matching_service(request: Request) -> MatchingService:
    """Build the matching service once, sharing the application's HTTP
    client when the lifespan has created one."""
    global _matching_service
    if _matching_service is None:
        http_client = getattr(request.app.state, "http_client", None)
        _matching_service = MatchingService(
            scorer=build_scorer(http_client=http_client),
            dispatcher=build_dispatcher(http_client=http_client),
        )
    return _matching_service


# ──────────────────────────────────────────────────────────────────────────────
# POST /find-matches — Run the matching pipeline for one item
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/find-matches",
    response_model=FindMatchesResponse,
    responses={
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Find potential matches for an item",
)
async def find_matches(
    payload: FindMatchesRequest,
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> FindMatchesResponse:
    """Score the opposite-category active items against the given item,
    record every new pair scoring at least 0.5 and notify both owners.

    The response lists every scored candidate, not only the newly
    recorded ones.
    """
    log = logger.bind(item_id=str(payload.item_id))
    log.info("find_matches_request")

    try:
        matches = await service.find_matches(payload.item_id, db)
    except Back2UError:
        raise
    except Exception as exc:
        log.exception("find_matches_unexpected_error")
        raise Back2UError(str(exc) or "Unknown error") from exc

    return FindMatchesResponse(matches=matches)


# ──────────────────────────────────────────────────────────────────────────────
# GET /matches — List matches, optionally for one item
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/matches",
    response_model=list[MatchResponse],
    summary="List non-dismissed matches",
)
async def list_matches(
    item_id: Optional[uuid.UUID] = Query(None, description="Restrict to matches involving this item"),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> list[MatchResponse]:
    """Return non-dismissed matches ordered by score, best first."""
    logger.info("list_matches", item_id=str(item_id) if item_id else None)
    matches = await service.list_matches(db, item_id=item_id)
    return [MatchResponse.model_validate(m) for m in matches]


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /matches/{match_id} — Confirm or dismiss a match
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/matches/{match_id}",
    response_model=MatchResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Confirm or dismiss a match",
)
async def update_match_status(
    match_id: uuid.UUID,
    payload: MatchStatusUpdate,
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> MatchResponse:
    match = await service.update_status(match_id, payload.status, db)
    return MatchResponse.model_validate(match)
