"""Custom exceptions for VibeWatch."""

from typing import Any


class VibeWatchError(Exception):
    """Base exception for all VibeWatch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Identity Errors
# =============================================================================


class UnauthorizedError(VibeWatchError):
    """Raised when the caller cannot be resolved to a participant."""

    def __init__(self, message: str = "Not a participant in this group", **kwargs: Any):
        super().__init__(message, **kwargs)


class ForbiddenError(VibeWatchError):
    """Raised when a participant may not perform an operation."""

    pass


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(VibeWatchError):
    """Base exception for missing entities."""

    def __init__(self, entity: str, entity_id: str, **kwargs: Any):
        super().__init__(f"{entity} not found: {entity_id}", **kwargs)
        self.entity = entity
        self.entity_id = entity_id


class GroupNotFoundError(NotFoundError):
    """Raised when a group (or invite code) does not exist."""

    def __init__(self, group_id: str, **kwargs: Any):
        super().__init__("Group", group_id, **kwargs)


class SessionNotFoundError(NotFoundError):
    """Raised when a decision session does not exist."""

    def __init__(self, session_id: str, **kwargs: Any):
        super().__init__("Session", session_id, **kwargs)
        self.session_id = session_id


class RoundNotFoundError(NotFoundError):
    """Raised when a voting round does not exist."""

    def __init__(self, round_id: str, **kwargs: Any):
        super().__init__("Round", round_id, **kwargs)


class ParticipantNotFoundError(NotFoundError):
    """Raised when a participant does not exist in the group."""

    def __init__(self, participant_id: str, **kwargs: Any):
        super().__init__("Participant", participant_id, **kwargs)


# =============================================================================
# State Errors
# =============================================================================


class InvalidStateError(VibeWatchError):
    """Raised when an entity is in the wrong state for an operation."""

    pass


class SessionNotActiveError(InvalidStateError):
    """Raised when voting or progression targets a completed session."""

    def __init__(
        self,
        session_id: str,
        actual_status: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(f"Session is not active: {session_id}", **kwargs)
        self.session_id = session_id
        self.actual_status = actual_status


class RoundCeilingError(InvalidStateError):
    """Raised when advancing past, or resolving before, the round ceiling."""

    def __init__(self, message: str, round_number: int, max_rounds: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.round_number = round_number
        self.max_rounds = max_rounds


class RoundStillOpenError(InvalidStateError):
    """Raised when progression is requested for an incomplete round."""

    def __init__(self, round_number: int, **kwargs: Any):
        super().__init__(f"Round {round_number} is still open", **kwargs)
        self.round_number = round_number


# =============================================================================
# Validation Errors
# =============================================================================


class InvalidArgumentError(VibeWatchError):
    """Raised when request arguments fail validation."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value


# =============================================================================
# Conflict Errors
# =============================================================================


class ConflictError(VibeWatchError):
    """Raised when a write collides with existing state."""

    pass


class ActiveSessionExistsError(ConflictError):
    """Raised when a group already has an active session."""

    def __init__(self, group_id: str, session_id: str, **kwargs: Any):
        super().__init__("An active session already exists", **kwargs)
        self.group_id = group_id
        self.session_id = session_id


class DuplicateMemberError(ConflictError):
    """Raised when an account already has an active participant in a group."""

    def __init__(self, group_id: str, account_id: str, **kwargs: Any):
        super().__init__(f"Account already participates in group {group_id}", **kwargs)
        self.group_id = group_id
        self.account_id = account_id


# =============================================================================
# External Service Errors
# =============================================================================


class ExternalServiceError(VibeWatchError):
    """Base exception for retryable failures in external collaborators."""

    retryable = True


class CatalogError(ExternalServiceError):
    """Raised when the movie catalog cannot be reached or answers badly."""

    def __init__(self, message: str, status_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RecommenderError(ExternalServiceError):
    """Raised when the AI recommender fails."""

    pass


class RecommenderPayloadError(RecommenderError):
    """Raised when the recommender answers with an unusable payload."""

    def __init__(
        self,
        message: str,
        raw_response: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.raw_response = raw_response


class LLMError(RecommenderError):
    """Base exception for LLM transport errors."""

    pass


class LLMRateLimitError(LLMError):
    """Raised when hitting API rate limits."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """Raised when API authentication fails."""

    pass


class LLMConnectionError(LLMError):
    """Raised when unable to connect to LLM API."""

    pass


class LLMResponseParseError(LLMError):
    """Raised when unable to parse LLM response."""

    def __init__(
        self,
        message: str = "Failed to parse LLM response",
        raw_response: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.raw_response = raw_response


# =============================================================================
# Persistence Errors
# =============================================================================


class StorePersistenceError(VibeWatchError):
    """Raised when unable to persist store state."""

    pass
