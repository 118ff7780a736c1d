"""Consensus rule for completed rounds.

A movie reaches consensus when every active participant voted yes on it.
Among qualifying movies the highest yes count wins, ties going to the
earliest movie in the round's candidate order.
"""

from collections.abc import Iterable
from uuid import UUID

from vibewatch.lib.models import ConsensusOutcome, Vote, VoteValue, VotingRound


def is_solo(participant_count: int) -> bool:
    """Solo rounds are resolved by the recommender, never by unanimity."""
    return participant_count == 1


def resolve_consensus(
    voting_round: VotingRound,
    votes: Iterable[Vote],
    active_participant_ids: Iterable[UUID],
) -> ConsensusOutcome:
    active = set(active_participant_ids)
    yes_counts = {movie_id: 0 for movie_id in voting_round.movie_ids}
    no_counts = {movie_id: 0 for movie_id in voting_round.movie_ids}

    for vote in votes:
        if vote.participant_id not in active or vote.movie_id not in yes_counts:
            continue
        if vote.value == VoteValue.YES:
            yes_counts[vote.movie_id] += 1
        else:
            no_counts[vote.movie_id] += 1

    n = len(active)
    winner = None
    if n > 1:
        best = 0
        for movie_id in voting_round.movie_ids:
            yes = yes_counts[movie_id]
            if no_counts[movie_id] == 0 and yes == n and yes > best:
                winner, best = movie_id, yes

    return ConsensusOutcome(
        winner=winner,
        yes_counts=yes_counts,
        no_counts=no_counts,
        participant_count=n,
    )
