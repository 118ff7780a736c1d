"""Shared fixtures: in-memory store, fake catalog and a scripted recommender."""

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from vibewatch.config import Settings
from vibewatch.engine import DecisionEngine, ParticipantRegistry
from vibewatch.lib.models import FinalResolution, MovieDetails, Recommendation
from vibewatch.lib.persistence import DecisionStore


class FakeCatalog:
    """Knows every positive movie id except the ones marked unknown."""

    def __init__(self, unknown: set[int] | None = None, popular: list[int] | None = None):
        self.unknown = unknown or set()
        self.popular = popular or list(range(1, 21))

    async def resolve(self, movie_id: int) -> MovieDetails | None:
        if movie_id <= 0 or movie_id in self.unknown:
            return None
        return MovieDetails(movie_id=movie_id, title=f"Movie {movie_id}")

    async def popular_ids(self, limit: int) -> list[int]:
        return self.popular[:limit]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        data_dir=None,
        guest_session_secret="test-secret",
        recommender_attempts=2,
        progression_lease_seconds=5.0,
        progression_poll_interval=0.01,
    )


@pytest.fixture
def store(settings) -> DecisionStore:
    return DecisionStore(settings)


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(unknown={666})


@pytest.fixture
def recommender() -> MagicMock:
    fresh_ids = itertools.count(1000)

    async def next_round(vibe_text, history, exclude_ids, watchlist_ids):
        return [next(fresh_ids) for _ in range(5)]

    rec = MagicMock()
    rec.next_round_candidates = AsyncMock(side_effect=next_round)
    rec.solo_pick = AsyncMock(
        return_value=Recommendation(movie_id=777, title="Solo Pick", reason="Fits the vibe")
    )
    rec.final_resolution = AsyncMock(
        return_value=FinalResolution(
            top_pick=Recommendation(movie_id=901, title="Top Pick"),
            alternates=[
                Recommendation(movie_id=902, title="Alt One"),
                Recommendation(movie_id=903, title="Alt Two"),
            ],
            explanation="Fewest objections overall",
        )
    )
    return rec


@pytest.fixture
def registry(store, settings) -> ParticipantRegistry:
    return ParticipantRegistry(store, settings)


@pytest.fixture
def engine(store, registry, catalog, recommender, settings) -> DecisionEngine:
    return DecisionEngine(
        store=store,
        registry=registry,
        catalog=catalog,
        recommender=recommender,
        settings=settings,
    )


@pytest.fixture
def make_group(registry):
    """Build a group with a host member, extra members and guests."""

    async def _make(members: int = 2, guests: int = 0):
        group, host = await registry.create_group("acct-0", "Host")
        participants = [host]
        for i in range(1, members):
            _, member, _ = await registry.join_group(
                group.invite_code, f"acct-{i}", f"Member {i}"
            )
            participants.append(member)
        for i in range(guests):
            _, guest, _ = await registry.join_group(group.invite_code, None, f"Guest {i}")
            participants.append(guest)
        return group, participants

    return _make


@pytest.fixture
def cast_ballot(engine):
    """Vote on every movie of a round: yes on ``yes``, no on the rest."""

    async def _cast(voting_round, participant, yes=()):
        result = None
        for movie_id in voting_round.movie_ids:
            value = "yes" if movie_id in yes else "no"
            result = await engine.submit_vote(
                voting_round.round_id, participant, movie_id, value
            )
        return result

    return _cast
