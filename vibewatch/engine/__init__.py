"""Engine package - rounds, votes, consensus and progression."""

from vibewatch.engine.advancement import RoundAdvancementController
from vibewatch.engine.completion import RoundCompletionEvaluator
from vibewatch.engine.consensus import is_solo, resolve_consensus
from vibewatch.engine.decision import DecisionEngine
from vibewatch.engine.participants import ParticipantRegistry, generate_invite_code
from vibewatch.engine.recommender import LLMRecommender, Recommender
from vibewatch.engine.votes import VoteIngestion, parse_vote_value

__all__ = [
    # Progression
    "DecisionEngine",
    "RoundAdvancementController",
    "RoundCompletionEvaluator",
    # Consensus
    "is_solo",
    "resolve_consensus",
    # Participants
    "ParticipantRegistry",
    "generate_invite_code",
    # Recommender
    "LLMRecommender",
    "Recommender",
    # Votes
    "VoteIngestion",
    "parse_vote_value",
]
