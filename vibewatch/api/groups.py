"""Group membership endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response

from vibewatch.api.dependencies import (
    Identity,
    get_engine,
    get_identity,
    group_participant,
)
from vibewatch.config import get_settings
from vibewatch.engine import DecisionEngine
from vibewatch.lib.models import (
    CreateGroupRequest,
    DecisionSession,
    GroupResponse,
    JoinGroupRequest,
    Participant,
    RemoveParticipantResponse,
)

router = APIRouter()


@router.post("/groups", response_model=GroupResponse)
async def create_group(
    request: CreateGroupRequest,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> GroupResponse:
    """Create a group; the caller becomes its first member."""
    group, participant = await engine.registry.create_group(
        identity.account_id, request.display_name
    )
    return GroupResponse(group=group, participant=participant)


@router.post("/groups/join/{invite_code}", response_model=GroupResponse)
async def join_group(
    invite_code: str,
    request: JoinGroupRequest,
    response: Response,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> GroupResponse:
    """
    Join a group by invite code.

    Signed-in callers join as members. Anonymous callers join as guests and
    get a signed guest cookie.
    """
    group, participant, token = await engine.registry.join_group(
        invite_code, identity.account_id, request.display_name
    )

    if token:
        settings = get_settings()
        response.set_cookie(
            settings.guest_cookie_name,
            token,
            max_age=settings.guest_token_ttl_days * 24 * 60 * 60,
            httponly=True,
            samesite="lax",
            secure=not settings.debug,
        )

    return GroupResponse(group=group, participant=participant, guest_token=token)


@router.get("/groups/{group_id}/participants", response_model=list[Participant])
async def list_participants(
    group_id: UUID,
    participant: Participant = Depends(group_participant),
    engine: DecisionEngine = Depends(get_engine),
) -> list[Participant]:
    """Active participants in join order."""
    return await engine.registry.list_participants(group_id)


@router.delete(
    "/groups/{group_id}/participants/{participant_id}",
    response_model=RemoveParticipantResponse,
)
async def remove_participant(
    group_id: UUID,
    participant_id: UUID,
    participant: Participant = Depends(group_participant),
    engine: DecisionEngine = Depends(get_engine),
) -> RemoveParticipantResponse:
    """Remove a guest (group creator only)."""
    removed, progression = await engine.remove_participant(
        group_id, participant_id, participant
    )
    return RemoveParticipantResponse(participant=removed, progression=progression)


@router.get("/groups/{group_id}/sessions", response_model=list[DecisionSession])
async def list_sessions(
    group_id: UUID,
    participant: Participant = Depends(group_participant),
    engine: DecisionEngine = Depends(get_engine),
) -> list[DecisionSession]:
    """Session history for the group, oldest first."""
    return await engine.list_sessions(group_id, participant)
