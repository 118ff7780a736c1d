"""Round advancement and session termination.

Every transition goes through the store's conditional writes, so a caller
that lost a race gets None back instead of a duplicate round or a second
completion.
"""

import logging

from vibewatch.config import Settings, get_settings
from vibewatch.engine.recommender import Recommender
from vibewatch.lib.exceptions import RecommenderPayloadError, RoundCeilingError
from vibewatch.lib.models import (
    DecisionSession,
    Recommendation,
    ResolutionMethod,
    RoundHistory,
    VoteRecord,
    VotingRound,
)
from vibewatch.lib.persistence import DecisionStore

logger = logging.getLogger(__name__)


class RoundAdvancementController:
    """Opens the next round or terminates the session."""

    def __init__(
        self,
        store: DecisionStore,
        recommender: Recommender,
        settings: Settings | None = None,
    ):
        self.store = store
        self.recommender = recommender
        self.settings = settings or get_settings()

    async def build_history(self, session: DecisionSession) -> list[RoundHistory]:
        """All rounds of a session with every recorded vote, removed voters included."""
        history = []
        for voting_round in await self.store.list_rounds(session.session_id):
            votes = await self.store.list_votes(voting_round.round_id)
            history.append(
                RoundHistory(
                    round_number=voting_round.round_number,
                    movie_ids=voting_round.movie_ids,
                    votes=[
                        VoteRecord(movie_id=v.movie_id, value=v.value, reason=v.reason)
                        for v in sorted(votes, key=lambda v: v.created_at)
                    ],
                )
            )
        return history

    async def _finish(
        self,
        session: DecisionSession,
        movie_id: int,
        method: ResolutionMethod,
        alternates: list[Recommendation] | None = None,
        explanation: str = "",
    ) -> DecisionSession | None:
        completed = await self.store.complete_session(
            session.session_id,
            session.current_round,
            movie_id,
            method,
            alternates=alternates,
            explanation=explanation,
        )
        if completed is None:
            logger.warning(f"Session {session.session_id} moved on before completion")
            return None

        await self.store.add_to_watchlist(session.group_id, movie_id)
        return completed

    # =========================================================================
    # Termination
    # =========================================================================

    async def complete_with_consensus(
        self, session: DecisionSession, movie_id: int
    ) -> DecisionSession | None:
        return await self._finish(session, movie_id, ResolutionMethod.CONSENSUS)

    async def resolve_solo(self, session: DecisionSession) -> DecisionSession | None:
        """Complete a solo session with a fresh recommender pick."""
        history = await self.build_history(session)
        shown = await self.store.shown_movie_ids(session.session_id)
        watchlist = await self.store.watchlist_ids(session.group_id)

        pick = await self.recommender.solo_pick(session.vibe_text, history, shown, watchlist)
        if pick.movie_id in shown:
            raise RecommenderPayloadError(f"Solo pick was already shown: {pick.movie_id}")

        return await self._finish(
            session, pick.movie_id, ResolutionMethod.AI, explanation=pick.reason
        )

    async def force_resolution(self, session: DecisionSession) -> DecisionSession | None:
        """
        Complete the session with the recommender's top pick.

        Raises:
            RoundCeilingError: If the session has not reached the last round
        """
        max_rounds = self.settings.max_rounds
        if session.current_round != max_rounds:
            raise RoundCeilingError(
                "Forced resolution only happens on the last round",
                round_number=session.current_round,
                max_rounds=max_rounds,
            )

        history = await self.build_history(session)
        watchlist = await self.store.watchlist_ids(session.group_id)
        resolution = await self.recommender.final_resolution(
            session.vibe_text, history, watchlist
        )

        return await self._finish(
            session,
            resolution.top_pick.movie_id,
            ResolutionMethod.AI,
            alternates=resolution.alternates[: self.settings.alternates_count],
            explanation=resolution.explanation,
        )

    # =========================================================================
    # Advancement
    # =========================================================================

    async def advance(self, session: DecisionSession) -> VotingRound | None:
        """
        Open the next round with fresh candidates.

        Raises:
            RoundCeilingError: If the session is already on the last round
            RecommenderPayloadError: If the candidates are not exactly the
                expected number of distinct, unshown ids
        """
        max_rounds = self.settings.max_rounds
        if session.current_round >= max_rounds:
            raise RoundCeilingError(
                f"Round {session.current_round} is the last round",
                round_number=session.current_round,
                max_rounds=max_rounds,
            )

        history = await self.build_history(session)
        shown = await self.store.shown_movie_ids(session.session_id)
        watchlist = await self.store.watchlist_ids(session.group_id)

        candidates = await self.recommender.next_round_candidates(
            session.vibe_text, history, shown, watchlist
        )

        count = self.settings.candidates_per_round
        if (
            len(candidates) != count
            or len(set(candidates)) != count
            or any(m in shown for m in candidates)
        ):
            raise RecommenderPayloadError(
                f"Round candidates must be {count} distinct unshown movies: {candidates}"
            )

        return await self.store.advance_round(
            session.session_id, session.current_round, candidates
        )
