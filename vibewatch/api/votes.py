"""Vote submission endpoint."""

import logging

from fastapi import APIRouter, Depends

from vibewatch.api.dependencies import (
    Identity,
    get_engine,
    get_identity,
    resolve_participant,
)
from vibewatch.engine import DecisionEngine
from vibewatch.lib.models import RoundOutcome, SubmitVoteRequest, VoteResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/votes", response_model=VoteResult)
async def submit_vote(
    request: SubmitVoteRequest,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> VoteResult:
    """
    Record a yes/no vote on one movie of a round.

    A vote that lands but whose round progression fails still answers 200
    with ``outcome="progression_failed"`` and ``retryable=true``.
    """
    voting_round = await engine.store.get_round(request.round_id)
    session = await engine.store.get_session(voting_round.session_id)
    participant = await resolve_participant(engine, session.group_id, identity)

    result = await engine.submit_vote(
        request.round_id,
        participant,
        request.movie_id,
        request.vote,
        request.reason,
    )
    if result.outcome == RoundOutcome.PROGRESSION_FAILED:
        logger.warning(f"Vote recorded but progression failed: {result.error}")
    return result
