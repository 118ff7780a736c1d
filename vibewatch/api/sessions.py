"""Decision session endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends

from vibewatch.api.dependencies import (
    Identity,
    get_engine,
    get_identity,
    resolve_participant,
    session_participant,
)
from vibewatch.engine import DecisionEngine
from vibewatch.lib.models import (
    CreateSessionRequest,
    CreateSessionResponse,
    Participant,
    SessionStatusResponse,
    VoteResult,
)

router = APIRouter()


@router.post("/sessions", response_model=CreateSessionResponse)
async def create_session(
    request: CreateSessionRequest,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> CreateSessionResponse:
    """Start a session and open round 1."""
    participant = await resolve_participant(engine, request.group_id, identity)
    session, first_round = await engine.create_session(
        request.group_id, participant, request.vibe_text, request.movie_ids
    )
    return CreateSessionResponse(session=session, round=first_round)


@router.get("/sessions/{session_id}/status", response_model=SessionStatusResponse)
async def get_status(
    session_id: UUID,
    participant: Participant = Depends(session_participant),
    engine: DecisionEngine = Depends(get_engine),
) -> SessionStatusResponse:
    """Snapshot of the session for polling clients."""
    return await engine.get_status(session_id, participant)


@router.post("/sessions/{session_id}/advance", response_model=VoteResult)
async def advance(
    session_id: UUID,
    participant: Participant = Depends(session_participant),
    engine: DecisionEngine = Depends(get_engine),
) -> VoteResult:
    """Retry progression of a completed round after a failure."""
    return await engine.resume_progression(session_id, participant)
