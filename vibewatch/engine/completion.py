"""Round completion evaluation."""

import logging
from uuid import UUID

from vibewatch.lib.models import ParticipantProgress, RoundProgress, VotingRound
from vibewatch.lib.persistence import DecisionStore

logger = logging.getLogger(__name__)


class RoundCompletionEvaluator:
    """
    Decides whether every active participant has voted on every candidate.

    Always reads the live participant set and votes from the store, so a
    participant removed mid-round stops counting immediately.
    """

    def __init__(self, store: DecisionStore):
        self.store = store

    async def evaluate(self, voting_round: VotingRound, group_id: UUID) -> RoundProgress:
        participants = await self.store.list_participants(group_id)
        votes = await self.store.list_votes(voting_round.round_id)

        candidates = set(voting_round.movie_ids)
        voted: dict[UUID, set[int]] = {}
        for vote in votes:
            if vote.movie_id in candidates:
                voted.setdefault(vote.participant_id, set()).add(vote.movie_id)

        progress = RoundProgress(
            round_id=voting_round.round_id,
            participants=[
                ParticipantProgress(
                    participant_id=p.participant_id,
                    display_name=p.display_name,
                    votes_cast=len(voted.get(p.participant_id, set())),
                    complete=voted.get(p.participant_id, set()) >= candidates,
                )
                for p in participants
            ],
        )

        if progress.complete:
            logger.info(
                f"Round {voting_round.round_number} of session "
                f"{voting_round.session_id} is complete"
            )
        return progress
