"""API router aggregating all route modules."""

from fastapi import APIRouter

from vibewatch.api.groups import router as groups_router
from vibewatch.api.sessions import router as sessions_router
from vibewatch.api.votes import router as votes_router

router = APIRouter()

# Include all sub-routers
router.include_router(groups_router, tags=["Groups"])
router.include_router(sessions_router, tags=["Sessions"])
router.include_router(votes_router, tags=["Votes"])
