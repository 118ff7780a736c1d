"""Identity and engine wiring for the API routers."""

import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request

from vibewatch.config import get_settings
from vibewatch.engine import DecisionEngine, LLMRecommender, ParticipantRegistry
from vibewatch.lib.catalog import get_catalog
from vibewatch.lib.llm import get_llm_client
from vibewatch.lib.models import Participant
from vibewatch.lib.persistence import get_store

logger = logging.getLogger(__name__)


@dataclass
class Identity:
    """Ambient credentials carried by a request."""

    account_id: str | None = None
    guest_token: str | None = None


def get_identity(request: Request) -> Identity:
    """Read the account header and the guest cookie (or guest header)."""
    settings = get_settings()
    account_id = request.headers.get(settings.account_header) or None
    guest_token = (
        request.cookies.get(settings.guest_cookie_name)
        or request.headers.get(settings.guest_header)
        or None
    )
    return Identity(account_id=account_id, guest_token=guest_token)


# =============================================================================
# Engine
# =============================================================================


_engine: DecisionEngine | None = None


async def get_engine() -> DecisionEngine:
    """Get the default decision engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        store = await get_store()
        catalog = get_catalog()
        recommender = LLMRecommender(await get_llm_client(), catalog, settings)
        _engine = DecisionEngine(
            store=store,
            registry=ParticipantRegistry(store, settings),
            catalog=catalog,
            recommender=recommender,
            settings=settings,
        )
    return _engine


def close_engine() -> None:
    global _engine
    _engine = None


# =============================================================================
# Participant Resolution
# =============================================================================


async def resolve_participant(
    engine: DecisionEngine, group_id: UUID, identity: Identity
) -> Participant:
    await engine.store.get_group(group_id)
    return await engine.registry.resolve(
        group_id, account_id=identity.account_id, guest_token=identity.guest_token
    )


async def group_participant(
    group_id: UUID,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> Participant:
    """The caller's participant in the group named by the path."""
    return await resolve_participant(engine, group_id, identity)


async def session_participant(
    session_id: UUID,
    identity: Identity = Depends(get_identity),
    engine: DecisionEngine = Depends(get_engine),
) -> Participant:
    """The caller's participant in the group owning the session in the path."""
    session = await engine.store.get_session(session_id)
    return await resolve_participant(engine, session.group_id, identity)
