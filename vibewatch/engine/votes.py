"""Vote ingestion: validate and record one ballot on one movie."""

import logging
from uuid import UUID

from vibewatch.lib.exceptions import (
    InvalidArgumentError,
    SessionNotActiveError,
    UnauthorizedError,
)
from vibewatch.lib.models import (
    DecisionSession,
    Participant,
    Vote,
    VoteValue,
    VotingRound,
)
from vibewatch.lib.persistence import DecisionStore

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


def parse_vote_value(value: str | VoteValue) -> VoteValue:
    """Accept exactly 'yes' or 'no'."""
    if isinstance(value, VoteValue):
        return value
    try:
        return VoteValue(value)
    except ValueError:
        raise InvalidArgumentError(
            "Vote must be 'yes' or 'no'", field="vote", value=value
        )


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    reason = reason.strip()
    if not reason:
        return None
    if len(reason) > MAX_REASON_LENGTH:
        raise InvalidArgumentError(
            f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason"
        )
    return reason


class VoteIngestion:
    """Records ballots after checking them against the round they target."""

    def __init__(self, store: DecisionStore):
        self.store = store

    async def record(
        self,
        round_id: UUID,
        participant: Participant,
        movie_id: int,
        value: str | VoteValue,
        reason: str | None = None,
    ) -> tuple[DecisionSession, VotingRound, Vote]:
        """
        Validate and upsert a vote.

        Raises:
            RoundNotFoundError: If the round does not exist
            SessionNotActiveError: If the round's session is completed
            UnauthorizedError: If the participant is not in the session's group
            InvalidArgumentError: For a stale round, a movie outside the
                round, or a vote other than yes/no
        """
        voting_round = await self.store.get_round(round_id)
        session = await self.store.get_session(voting_round.session_id)

        if not session.is_active:
            raise SessionNotActiveError(
                str(session.session_id), actual_status=session.status.value
            )
        if participant.group_id != session.group_id or not participant.is_active:
            raise UnauthorizedError()
        if voting_round.round_number != session.current_round:
            raise InvalidArgumentError(
                f"Round {voting_round.round_number} is no longer current",
                field="round_id",
                value=str(round_id),
            )
        if movie_id not in voting_round.movie_ids:
            raise InvalidArgumentError(
                "Movie is not part of this round", field="movie_id", value=movie_id
            )

        vote_value = parse_vote_value(value)
        vote = await self.store.upsert_vote(
            round_id,
            participant.participant_id,
            movie_id,
            vote_value,
            _clean_reason(reason),
        )

        logger.debug(
            f"Vote {vote_value.value} on {movie_id} by {participant.participant_id} "
            f"in round {voting_round.round_number}"
        )
        return session, voting_round, vote
