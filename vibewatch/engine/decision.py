"""Decision engine.

Ties vote ingestion, round completion, consensus and advancement together
behind the three operations the API exposes: create a session, submit a
vote, and read a session's status.

Progression of a completed round (consensus write, solo pick, next round or
forced resolution) runs behind a store-held lease. The request that claims it
does the work; concurrent requests poll until the round moves on and report
the same result.
"""

import asyncio
import logging
import random
from typing import Any
from uuid import UUID

from vibewatch.config import Settings, get_settings
from vibewatch.engine.advancement import RoundAdvancementController
from vibewatch.engine.completion import RoundCompletionEvaluator
from vibewatch.engine.consensus import is_solo, resolve_consensus
from vibewatch.engine.participants import ParticipantRegistry
from vibewatch.engine.recommender import Recommender
from vibewatch.engine.votes import VoteIngestion
from vibewatch.lib.catalog import MovieCatalog
from vibewatch.lib.exceptions import (
    ActiveSessionExistsError,
    ExternalServiceError,
    InvalidArgumentError,
    RoundStillOpenError,
    UnauthorizedError,
)
from vibewatch.lib.models import (
    DecisionSession,
    Participant,
    ResolutionMethod,
    RoundOutcome,
    RoundProgress,
    SessionStatusResponse,
    VoteResult,
    VoteValue,
    VotingRound,
    utc_now,
)
from vibewatch.lib.persistence import DecisionStore

logger = logging.getLogger(__name__)

MAX_VIBE_LENGTH = 500


class DecisionEngine:
    """Runs decision sessions from first ballot to final movie."""

    def __init__(
        self,
        store: DecisionStore,
        registry: ParticipantRegistry,
        catalog: MovieCatalog,
        recommender: Recommender,
        settings: Settings | None = None,
    ):
        self.store = store
        self.registry = registry
        self.catalog = catalog
        self.settings = settings or get_settings()

        self.votes = VoteIngestion(store)
        self.completion = RoundCompletionEvaluator(store)
        self.advancement = RoundAdvancementController(store, recommender, self.settings)

    # =========================================================================
    # Session Creation
    # =========================================================================

    async def create_session(
        self,
        group_id: UUID,
        participant: Participant,
        vibe_text: str,
        movie_ids: list[int] | None = None,
    ) -> tuple[DecisionSession, VotingRound]:
        """
        Start a session with its first round.

        Raises:
            UnauthorizedError: If the participant is not in the group
            InvalidArgumentError: For blank vibe text or unusable candidates
            ActiveSessionExistsError: If the group already has an active session
        """
        self._check_member(participant, group_id)

        vibe = vibe_text.strip()
        if not vibe:
            raise InvalidArgumentError("Describe the vibe you're after", field="vibe_text")
        if len(vibe) > MAX_VIBE_LENGTH:
            raise InvalidArgumentError(
                f"Vibe must be at most {MAX_VIBE_LENGTH} characters", field="vibe_text"
            )

        await self.store.get_group(group_id)
        existing = await self.store.get_active_session(group_id)
        if existing is not None:
            raise ActiveSessionExistsError(str(group_id), str(existing.session_id))

        candidates = await self._first_round_candidates(group_id, movie_ids)
        session = DecisionSession(group_id=group_id, vibe_text=vibe)
        first_round = VotingRound(
            session_id=session.session_id, round_number=1, movie_ids=candidates
        )
        return await self.store.create_session(session, first_round)

    async def _first_round_candidates(
        self, group_id: UUID, movie_ids: list[int] | None
    ) -> list[int]:
        count = self.settings.candidates_per_round

        if movie_ids is not None:
            candidates = list(movie_ids)
            if len(candidates) != count or len(set(candidates)) != count:
                raise InvalidArgumentError(
                    f"Pick exactly {count} different movies",
                    field="movie_ids",
                    value=candidates,
                )
        else:
            watchlist = await self.store.watchlist_ids(group_id)
            candidates = random.sample(watchlist, min(count, len(watchlist)))
            if len(candidates) < count:
                for movie_id in await self.catalog.popular_ids(count * 4):
                    if movie_id not in candidates:
                        candidates.append(movie_id)
                    if len(candidates) == count:
                        break
            if len(candidates) < count:
                raise InvalidArgumentError(
                    f"Could not find {count} movies to start with", field="movie_ids"
                )

        details = await asyncio.gather(*(self.catalog.resolve(m) for m in candidates))
        unknown = [m for m, d in zip(candidates, details) if d is None]
        if unknown:
            raise InvalidArgumentError(
                "Unknown movies in selection", field="movie_ids", value=unknown
            )
        return candidates

    # =========================================================================
    # Voting
    # =========================================================================

    async def submit_vote(
        self,
        round_id: UUID,
        participant: Participant,
        movie_id: int,
        value: str | VoteValue,
        reason: str | None = None,
    ) -> VoteResult:
        """Record a vote, then progress the round if that vote completed it."""
        session, voting_round, _ = await self.votes.record(
            round_id, participant, movie_id, value, reason
        )
        return await self._progress(session, voting_round)

    async def resume_progression(
        self, session_id: UUID, participant: Participant
    ) -> VoteResult:
        """
        Retry progression of the current round after a failure.

        Raises:
            RoundStillOpenError: If the current round is not fully voted
        """
        session = await self.store.get_session(session_id)
        self._check_member(participant, session.group_id)
        voting_round = await self.store.get_round_by_number(
            session_id, session.current_round
        )

        if not session.is_active:
            return await self._settled_result(session, voting_round)

        progress = await self.completion.evaluate(voting_round, session.group_id)
        if not progress.complete:
            raise RoundStillOpenError(voting_round.round_number)
        return await self._progress(session, voting_round, progress)

    async def reevaluate_active_round(self, group_id: UUID) -> VoteResult | None:
        """Progress the group's current round if it has become complete."""
        session = await self.store.get_active_session(group_id)
        if session is None:
            return None
        voting_round = await self.store.get_round_by_number(
            session.session_id, session.current_round
        )
        return await self._progress(session, voting_round)

    async def remove_participant(
        self, group_id: UUID, participant_id: UUID, actor: Participant
    ) -> tuple[Participant, VoteResult | None]:
        """Remove a guest and re-check the round they may have been blocking."""
        removed = await self.registry.remove_participant(group_id, participant_id, actor)
        return removed, await self.reevaluate_active_round(group_id)

    # =========================================================================
    # Progression
    # =========================================================================

    def _result(
        self, session: DecisionSession, voting_round: VotingRound, **kwargs: Any
    ) -> VoteResult:
        return VoteResult(
            session_id=session.session_id,
            round_id=voting_round.round_id,
            round_number=voting_round.round_number,
            **kwargs,
        )

    async def _progress(
        self,
        session: DecisionSession,
        voting_round: VotingRound,
        progress: RoundProgress | None = None,
    ) -> VoteResult:
        if progress is None:
            progress = await self.completion.evaluate(voting_round, session.group_id)
        if not progress.complete:
            return self._result(session, voting_round, outcome=RoundOutcome.OPEN)

        # Another request may already have progressed this round
        session = await self.store.get_session(session.session_id)
        if not session.is_active or session.current_round != voting_round.round_number:
            return await self._settled_result(session, voting_round)

        lease_id = await self.store.claim_progression(
            session.session_id,
            voting_round.round_number,
            self.settings.progression_lease_seconds,
        )
        if lease_id is None:
            return await self._await_progression(session, voting_round)

        try:
            return await self._run_progression(session, voting_round, progress)
        except ExternalServiceError as e:
            logger.error(
                f"Progression of session {session.session_id} round "
                f"{voting_round.round_number} failed: {e.message}"
            )
            return self._result(
                session,
                voting_round,
                round_complete=True,
                outcome=RoundOutcome.PROGRESSION_FAILED,
                retryable=True,
                error=e.message,
            )
        finally:
            await self.store.release_progression(session.session_id, lease_id)

    async def _run_progression(
        self,
        session: DecisionSession,
        voting_round: VotingRound,
        progress: RoundProgress,
    ) -> VoteResult:
        active_ids = [p.participant_id for p in progress.participants]

        if is_solo(len(active_ids)):
            completed = await self.advancement.resolve_solo(session)
        else:
            votes = await self.store.list_votes(voting_round.round_id)
            outcome = resolve_consensus(voting_round, votes, active_ids)
            if outcome.reached:
                completed = await self.advancement.complete_with_consensus(
                    session, outcome.winner
                )
            elif voting_round.round_number < self.settings.max_rounds:
                await self.advancement.advance(session)
                completed = None
            else:
                completed = await self.advancement.force_resolution(session)

        latest = completed or await self.store.get_session(session.session_id)
        return await self._settled_result(latest, voting_round)

    async def _await_progression(
        self, session: DecisionSession, voting_round: VotingRound
    ) -> VoteResult:
        """Wait for the lease holder to progress the round."""
        round_number = voting_round.round_number
        logger.info(
            f"Round {round_number} of session {session.session_id} is being "
            f"progressed elsewhere, waiting"
        )

        while True:
            await asyncio.sleep(self.settings.progression_poll_interval)
            session = await self.store.get_session(session.session_id)

            if not session.is_active or session.current_round != round_number:
                return await self._settled_result(session, voting_round)

            if session.lease_round != round_number:
                # Holder released the lease without progressing
                return self._result(
                    session,
                    voting_round,
                    round_complete=True,
                    outcome=RoundOutcome.PROGRESSION_FAILED,
                    retryable=True,
                    error="Round progression did not complete",
                )

            if session.lease_expires_at is not None and session.lease_expires_at <= utc_now():
                logger.warning(
                    f"Progression lease for session {session.session_id} round "
                    f"{round_number} expired, taking over"
                )
                return await self._progress(session, voting_round)

    async def _settled_result(
        self, session: DecisionSession, voting_round: VotingRound
    ) -> VoteResult:
        """Describe what has already happened to a round."""
        if session.current_round > voting_round.round_number:
            next_round = await self.store.get_round_by_number(
                session.session_id, voting_round.round_number + 1
            )
            return self._result(
                session,
                voting_round,
                round_complete=True,
                outcome=RoundOutcome.ADVANCED,
                next_round=next_round,
            )

        if not session.is_active:
            consensus = session.resolution_method == ResolutionMethod.CONSENSUS
            return self._result(
                session,
                voting_round,
                round_complete=True,
                outcome=RoundOutcome.CONSENSUS if consensus else RoundOutcome.AI_RESOLVED,
                consensus=consensus,
                final_movie_id=session.final_movie_id,
                resolution_method=session.resolution_method,
                alternates=session.alternates,
            )

        return self._result(
            session, voting_round, round_complete=True, outcome=RoundOutcome.PENDING
        )

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(
        self, session_id: UUID, participant: Participant
    ) -> SessionStatusResponse:
        """Snapshot of a session's current round from one participant's view."""
        session = await self.store.get_session(session_id)
        self._check_member(participant, session.group_id)

        voting_round = await self.store.get_round_by_number(
            session_id, session.current_round
        )
        my_votes = [
            v
            for v in await self.store.list_votes(voting_round.round_id)
            if v.participant_id == participant.participant_id
        ]
        progress = await self.completion.evaluate(voting_round, session.group_id)

        return SessionStatusResponse(
            session=session,
            current_round=voting_round,
            my_votes=my_votes,
            has_voted_on_all={v.movie_id for v in my_votes} >= set(voting_round.movie_ids),
            participants=progress.participants,
            round_complete=progress.complete,
            waiting_for=progress.waiting_for,
        )

    async def list_sessions(
        self, group_id: UUID, participant: Participant
    ) -> list[DecisionSession]:
        self._check_member(participant, group_id)
        return await self.store.list_sessions(group_id)

    @staticmethod
    def _check_member(participant: Participant, group_id: UUID) -> None:
        if participant.group_id != group_id or not participant.is_active:
            raise UnauthorizedError(details={"group_id": str(group_id)})
