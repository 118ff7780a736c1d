"""Pydantic models for VibeWatch."""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class ParticipantType(str, Enum):
    """How a participant is identified."""

    MEMBER = "member"  # Durable external account
    GUEST = "guest"  # Signed guest token, no account


class ParticipantStatus(str, Enum):
    """Participant lifecycle status."""

    ACTIVE = "active"
    REMOVED = "removed"


class SessionStatus(str, Enum):
    """Decision session lifecycle status."""

    ACTIVE = "active"
    COMPLETED = "completed"


class ResolutionMethod(str, Enum):
    """How a completed session picked its movie."""

    CONSENSUS = "consensus"
    AI = "ai"


class VoteValue(str, Enum):
    """A ballot decision on one movie."""

    YES = "yes"
    NO = "no"


class RoundOutcome(str, Enum):
    """What happened to the round after a vote landed."""

    OPEN = "open"  # Still waiting for ballots
    CONSENSUS = "consensus"  # Unanimous pick, session completed
    ADVANCED = "advanced"  # Next round opened
    AI_RESOLVED = "ai_resolved"  # Recommender picked, session completed
    PENDING = "pending"  # Another request is progressing the round
    PROGRESSION_FAILED = "progression_failed"  # Votes kept, retry progression


# =============================================================================
# Entities
# =============================================================================


class Group(BaseModel):
    """A set of participants sharing one decision process."""

    group_id: UUID = Field(default_factory=uuid4)
    invite_code: str = Field(description="Unique join code")
    created_by: str = Field(description="Account id of the creator")
    created_at: datetime = Field(default_factory=utc_now)


class Participant(BaseModel):
    """A voting identity within a group."""

    participant_id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    type: ParticipantType
    account_id: str | None = Field(default=None, description="Set for members only")
    display_name: str = Field(default="")
    status: ParticipantStatus = Field(default=ParticipantStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE


class Recommendation(BaseModel):
    """A single movie suggested by the recommender."""

    movie_id: int
    title: str = Field(default="")
    reason: str = Field(default="")


class DecisionSession(BaseModel):
    """One attempt to pick a movie for a group."""

    session_id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    vibe_text: str
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    current_round: int = Field(default=1, description="1-indexed, monotonic")
    final_movie_id: int | None = Field(default=None)
    resolution_method: ResolutionMethod | None = Field(default=None)
    alternates: list[Recommendation] = Field(
        default_factory=list, description="Informational, AI resolution only"
    )
    explanation: str = Field(default="")

    # Progression lease for the current round
    lease_id: UUID | None = Field(default=None)
    lease_round: int | None = Field(default=None)
    lease_expires_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = utc_now()


class VotingRound(BaseModel):
    """One ballot of candidate movies. Immutable once created."""

    round_id: UUID = Field(default_factory=uuid4)
    session_id: UUID
    round_number: int
    movie_ids: list[int] = Field(description="Ordered candidate set")
    created_at: datetime = Field(default_factory=utc_now)


class Vote(BaseModel):
    """One participant's decision on one movie within one round."""

    vote_id: UUID = Field(default_factory=uuid4)
    round_id: UUID
    participant_id: UUID
    movie_id: int
    value: VoteValue
    reason: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class WatchlistEntry(BaseModel):
    """A movie saved for a group."""

    group_id: UUID
    movie_id: int
    added_at: datetime = Field(default_factory=utc_now)


class MovieDetails(BaseModel):
    """Catalog metadata for one movie."""

    movie_id: int
    title: str = Field(default="")
    overview: str = Field(default="")
    year: int | None = Field(default=None)
    runtime: int | None = Field(default=None)
    rating: float | None = Field(default=None)
    poster_path: str | None = Field(default=None)
    original_language: str = Field(default="")


# =============================================================================
# Recommender Inputs
# =============================================================================


class VoteRecord(BaseModel):
    """A vote as shown to the recommender."""

    movie_id: int
    value: VoteValue
    reason: str | None = None


class RoundHistory(BaseModel):
    """A past round with its ballots."""

    round_number: int
    movie_ids: list[int]
    votes: list[VoteRecord] = Field(default_factory=list)


class FinalResolution(BaseModel):
    """Forced pick once the round ceiling is reached."""

    top_pick: Recommendation
    alternates: list[Recommendation] = Field(default_factory=list)
    explanation: str = Field(default="")


# =============================================================================
# Engine Results
# =============================================================================


class ConsensusOutcome(BaseModel):
    """Result of applying the consensus rule to a completed round."""

    winner: int | None = Field(default=None)
    yes_counts: dict[int, int] = Field(default_factory=dict)
    no_counts: dict[int, int] = Field(default_factory=dict)
    participant_count: int = Field(default=0)

    @property
    def reached(self) -> bool:
        return self.winner is not None


class ParticipantProgress(BaseModel):
    """How far one participant is through the current ballot."""

    participant_id: UUID
    display_name: str
    votes_cast: int
    complete: bool


class RoundProgress(BaseModel):
    """Completion snapshot for a round."""

    round_id: UUID
    participants: list[ParticipantProgress] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        # A round with nobody left to vote never completes
        return bool(self.participants) and all(p.complete for p in self.participants)

    @property
    def waiting_for(self) -> int:
        return sum(1 for p in self.participants if not p.complete)


class VoteResult(BaseModel):
    """Outcome of a vote submission or a progression retry."""

    vote_recorded: bool = Field(default=True)
    session_id: UUID
    round_id: UUID
    round_number: int
    round_complete: bool = Field(default=False)
    outcome: RoundOutcome = Field(default=RoundOutcome.OPEN)
    consensus: bool = Field(default=False)
    final_movie_id: int | None = Field(default=None)
    resolution_method: ResolutionMethod | None = Field(default=None)
    next_round: VotingRound | None = Field(default=None)
    alternates: list[Recommendation] = Field(default_factory=list)
    retryable: bool = Field(default=False)
    error: str | None = Field(default=None)


# =============================================================================
# API Request/Response Models
# =============================================================================


class CreateGroupRequest(BaseModel):
    """Request to create a new group."""

    display_name: str = Field(default="", description="Creator's display name")


class JoinGroupRequest(BaseModel):
    """Request to join a group by invite code."""

    display_name: str = Field(default="", description="Required for guests")


class GroupResponse(BaseModel):
    """A group and the caller's participant in it."""

    group: Group
    participant: Participant
    guest_token: str | None = Field(default=None)


class CreateSessionRequest(BaseModel):
    """Request to start a decision session."""

    group_id: UUID
    vibe_text: str
    movie_ids: list[int] | None = Field(
        default=None, description="First-round candidates picked from the catalog"
    )


class CreateSessionResponse(BaseModel):
    """Response after creating a session."""

    session: DecisionSession
    round: VotingRound


class SubmitVoteRequest(BaseModel):
    """Request to record a ballot on one movie."""

    round_id: UUID
    movie_id: int
    vote: str = Field(description="'yes' or 'no'")
    reason: str | None = Field(default=None)


class SessionStatusResponse(BaseModel):
    """Pull-based snapshot of a session for one participant."""

    session: DecisionSession
    current_round: VotingRound
    my_votes: list[Vote] = Field(default_factory=list)
    has_voted_on_all: bool = Field(default=False)
    participants: list[ParticipantProgress] = Field(default_factory=list)
    round_complete: bool = Field(default=False)
    waiting_for: int = Field(default=0)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"


class RemoveParticipantResponse(BaseModel):
    """A removed guest and what re-checking the open round did."""

    participant: Participant
    progression: VoteResult | None = Field(default=None)
