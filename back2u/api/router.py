"""
Back2U — Main API Router

Aggregates all sub-routers under a single prefix so that ``back2u.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from back2u.api import matching, notifications

router = APIRouter()

router.include_router(matching.router, tags=["Matching"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
