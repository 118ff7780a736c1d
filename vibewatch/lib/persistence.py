"""File-backed decision store for VibeWatch.

Holds groups, participants, sessions, rounds, votes and watch-lists in memory
and flushes a JSON snapshot to disk after every mutation. All mutations run
under a single lock, so the conditional writes below are atomic with respect
to each other.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import aiofiles
from pydantic import BaseModel, Field

from vibewatch.config import Settings, get_settings
from vibewatch.lib.exceptions import (
    ActiveSessionExistsError,
    ConflictError,
    DuplicateMemberError,
    GroupNotFoundError,
    InvalidArgumentError,
    ParticipantNotFoundError,
    RoundNotFoundError,
    SessionNotFoundError,
    StorePersistenceError,
)
from vibewatch.lib.models import (
    DecisionSession,
    Group,
    Participant,
    ParticipantStatus,
    ParticipantType,
    Recommendation,
    ResolutionMethod,
    SessionStatus,
    Vote,
    VoteValue,
    VotingRound,
    WatchlistEntry,
    utc_now,
)

logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "vibewatch.json"

VoteKey = tuple[UUID, UUID, int]


def _drop_lease(session: DecisionSession) -> None:
    session.lease_id = None
    session.lease_round = None
    session.lease_expires_at = None


class StoreSnapshot(BaseModel):
    """On-disk layout of the store."""

    groups: list[Group] = Field(default_factory=list)
    participants: list[Participant] = Field(default_factory=list)
    sessions: list[DecisionSession] = Field(default_factory=list)
    rounds: list[VotingRound] = Field(default_factory=list)
    votes: list[Vote] = Field(default_factory=list)
    watchlist: list[WatchlistEntry] = Field(default_factory=list)


class DecisionStore:
    """
    Source of truth for sessions, rounds and votes.

    Features:
    - Copy-out reads, so callers can only change state through store methods
    - Conditional writes keyed on (session.status, session.current_round)
    - Time-bound progression lease per (session, round)
    - JSON snapshot on disk when a data directory is configured
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._lock = asyncio.Lock()
        self._initialized = False

        self._groups: dict[UUID, Group] = {}
        self._participants: dict[UUID, Participant] = {}
        self._sessions: dict[UUID, DecisionSession] = {}
        self._rounds: dict[UUID, VotingRound] = {}
        self._votes: dict[VoteKey, Vote] = {}
        self._watchlist: dict[UUID, list[WatchlistEntry]] = {}

    @property
    def path(self) -> Path | None:
        if self.settings.data_dir is None:
            return None
        return self.settings.data_dir / SNAPSHOT_FILENAME

    async def initialize(self) -> None:
        """Initialize the store, loading any snapshot from disk."""
        if self._initialized:
            return

        self.settings.ensure_data_dir()
        snapshot = await self._read_from_disk()
        if snapshot is not None:
            self._load(snapshot)
        self._initialized = True
        logger.info(f"Decision store initialized at {self.path or 'memory'}")

    async def shutdown(self) -> None:
        """Flush state to disk."""
        async with self._lock:
            await self._write_to_disk()
        logger.info("Decision store shut down")

    # =========================================================================
    # Snapshot I/O
    # =========================================================================

    def _load(self, snapshot: StoreSnapshot) -> None:
        self._groups = {g.group_id: g for g in snapshot.groups}
        self._participants = {p.participant_id: p for p in snapshot.participants}
        self._sessions = {s.session_id: s for s in snapshot.sessions}
        self._rounds = {r.round_id: r for r in snapshot.rounds}
        self._votes = {
            (v.round_id, v.participant_id, v.movie_id): v for v in snapshot.votes
        }
        self._watchlist = {}
        for entry in snapshot.watchlist:
            self._watchlist.setdefault(entry.group_id, []).append(entry)

    def _snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            groups=list(self._groups.values()),
            participants=list(self._participants.values()),
            sessions=list(self._sessions.values()),
            rounds=list(self._rounds.values()),
            votes=list(self._votes.values()),
            watchlist=[e for entries in self._watchlist.values() for e in entries],
        )

    async def _read_from_disk(self) -> StoreSnapshot | None:
        """Read snapshot from disk."""
        path = self.path
        if path is None or not path.exists():
            return None

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            return StoreSnapshot.model_validate_json(content)
        except Exception as e:
            logger.error(f"Failed to read snapshot {path}: {e}")
            raise StorePersistenceError(f"Failed to load store: {e}")

    async def _write_to_disk(self) -> None:
        """Write snapshot to disk. Caller holds the lock."""
        path = self.path
        if path is None:
            return

        try:
            content = self._snapshot().model_dump_json(indent=2)
            tmp_path = path.with_suffix(".tmp")
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
            tmp_path.replace(path)
            logger.debug(f"Snapshot written to {path}")
        except Exception as e:
            logger.error(f"Failed to write snapshot {path}: {e}")
            raise StorePersistenceError(f"Failed to persist store: {e}")

    # =========================================================================
    # Groups & Participants
    # =========================================================================

    async def create_group(
        self, group: Group, creator: Participant
    ) -> tuple[Group, Participant]:
        """Create a group together with its first participant."""
        async with self._lock:
            if any(g.invite_code == group.invite_code for g in self._groups.values()):
                raise ConflictError(f"Invite code already in use: {group.invite_code}")

            self._groups[group.group_id] = group
            self._participants[creator.participant_id] = creator
            await self._write_to_disk()

        logger.info(f"Created group {group.group_id}")
        return group.model_copy(), creator.model_copy()

    async def get_group(self, group_id: UUID) -> Group:
        group = self._groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(str(group_id))
        return group.model_copy()

    async def get_group_by_invite_code(self, invite_code: str) -> Group:
        for group in self._groups.values():
            if group.invite_code == invite_code:
                return group.model_copy()
        raise GroupNotFoundError(invite_code)

    async def add_participant(self, participant: Participant) -> Participant:
        """Add a participant, keeping one active member per account."""
        async with self._lock:
            if participant.group_id not in self._groups:
                raise GroupNotFoundError(str(participant.group_id))

            if participant.type == ParticipantType.MEMBER:
                if participant.account_id is None:
                    raise InvalidArgumentError(
                        "Members need an account id", field="account_id"
                    )
                if self._find_active_member(participant.group_id, participant.account_id):
                    raise DuplicateMemberError(
                        str(participant.group_id), participant.account_id
                    )

            self._participants[participant.participant_id] = participant
            await self._write_to_disk()

        return participant.model_copy()

    def _find_active_member(self, group_id: UUID, account_id: str) -> Participant | None:
        for p in self._participants.values():
            if (
                p.group_id == group_id
                and p.type == ParticipantType.MEMBER
                and p.account_id == account_id
                and p.is_active
            ):
                return p
        return None

    async def find_active_member(
        self, group_id: UUID, account_id: str
    ) -> Participant | None:
        participant = self._find_active_member(group_id, account_id)
        return participant.model_copy() if participant else None

    async def find_active_guest(
        self, group_id: UUID, participant_id: UUID
    ) -> Participant | None:
        p = self._participants.get(participant_id)
        if (
            p is None
            or p.group_id != group_id
            or p.type != ParticipantType.GUEST
            or not p.is_active
        ):
            return None
        return p.model_copy()

    async def get_participant(self, participant_id: UUID) -> Participant:
        participant = self._participants.get(participant_id)
        if participant is None:
            raise ParticipantNotFoundError(str(participant_id))
        return participant.model_copy()

    async def list_participants(
        self, group_id: UUID, active_only: bool = True
    ) -> list[Participant]:
        """List a group's participants in join order."""
        participants = [
            p.model_copy()
            for p in self._participants.values()
            if p.group_id == group_id and (p.is_active or not active_only)
        ]
        return sorted(participants, key=lambda p: p.created_at)

    async def set_participant_status(
        self, participant_id: UUID, status: ParticipantStatus
    ) -> Participant:
        async with self._lock:
            participant = self._participants.get(participant_id)
            if participant is None:
                raise ParticipantNotFoundError(str(participant_id))
            participant.status = status
            await self._write_to_disk()
            return participant.model_copy()

    # =========================================================================
    # Sessions & Rounds
    # =========================================================================

    def _active_session(self, group_id: UUID) -> DecisionSession | None:
        for s in self._sessions.values():
            if s.group_id == group_id and s.is_active:
                return s
        return None

    async def create_session(
        self, session: DecisionSession, first_round: VotingRound
    ) -> tuple[DecisionSession, VotingRound]:
        """
        Create a session and its first round.

        Raises:
            ActiveSessionExistsError: If the group already has an active session
        """
        async with self._lock:
            if session.group_id not in self._groups:
                raise GroupNotFoundError(str(session.group_id))

            existing = self._active_session(session.group_id)
            if existing is not None:
                raise ActiveSessionExistsError(
                    str(session.group_id), str(existing.session_id)
                )

            self._sessions[session.session_id] = session
            self._rounds[first_round.round_id] = first_round
            await self._write_to_disk()

        logger.info(f"Created session {session.session_id} for group {session.group_id}")
        return session.model_copy(deep=True), first_round.model_copy(deep=True)

    async def get_session(self, session_id: UUID) -> DecisionSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        return session.model_copy(deep=True)

    async def get_active_session(self, group_id: UUID) -> DecisionSession | None:
        session = self._active_session(group_id)
        return session.model_copy(deep=True) if session else None

    async def list_sessions(self, group_id: UUID) -> list[DecisionSession]:
        sessions = [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.group_id == group_id
        ]
        return sorted(sessions, key=lambda s: s.created_at)

    async def get_round(self, round_id: UUID) -> VotingRound:
        voting_round = self._rounds.get(round_id)
        if voting_round is None:
            raise RoundNotFoundError(str(round_id))
        return voting_round.model_copy(deep=True)

    async def get_round_by_number(
        self, session_id: UUID, round_number: int
    ) -> VotingRound:
        for r in self._rounds.values():
            if r.session_id == session_id and r.round_number == round_number:
                return r.model_copy(deep=True)
        raise RoundNotFoundError(f"{session_id}#{round_number}")

    def _session_rounds(self, session_id: UUID) -> list[VotingRound]:
        rounds = [r for r in self._rounds.values() if r.session_id == session_id]
        return sorted(rounds, key=lambda r: r.round_number)

    async def list_rounds(self, session_id: UUID) -> list[VotingRound]:
        """List a session's rounds in round order."""
        return [r.model_copy(deep=True) for r in self._session_rounds(session_id)]

    async def shown_movie_ids(self, session_id: UUID) -> list[int]:
        """Every movie id shown in any round of the session, in order."""
        return [m for r in self._session_rounds(session_id) for m in r.movie_ids]

    # =========================================================================
    # Votes
    # =========================================================================

    async def upsert_vote(
        self,
        round_id: UUID,
        participant_id: UUID,
        movie_id: int,
        value: VoteValue,
        reason: str | None = None,
    ) -> Vote:
        """Create the vote for (round, participant, movie) or overwrite it."""
        key = (round_id, participant_id, movie_id)
        async with self._lock:
            if round_id not in self._rounds:
                raise RoundNotFoundError(str(round_id))

            vote = self._votes.get(key)
            if vote is None:
                vote = Vote(
                    round_id=round_id,
                    participant_id=participant_id,
                    movie_id=movie_id,
                    value=value,
                    reason=reason,
                )
                self._votes[key] = vote
            else:
                vote.value = value
                vote.reason = reason
                vote.updated_at = utc_now()
            await self._write_to_disk()
            return vote.model_copy()

    async def list_votes(self, round_id: UUID) -> list[Vote]:
        return [v.model_copy() for v in self._votes.values() if v.round_id == round_id]

    # =========================================================================
    # Conditional Writes
    # =========================================================================

    def _at_round(self, session_id: UUID, expected_round: int) -> DecisionSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(str(session_id))
        if not session.is_active or session.current_round != expected_round:
            return None
        return session

    async def claim_progression(
        self, session_id: UUID, round_number: int, lease_seconds: float
    ) -> UUID | None:
        """
        Claim the right to progress a round.

        Granted only while the session is active at that round and no other
        unexpired lease is held for it.

        Returns:
            The lease id to release with, or None if the claim was refused
        """
        async with self._lock:
            session = self._at_round(session_id, round_number)
            if session is None:
                return None

            now = utc_now()
            if (
                session.lease_round == round_number
                and session.lease_expires_at is not None
                and session.lease_expires_at > now
            ):
                return None

            lease_id = uuid4()
            session.lease_id = lease_id
            session.lease_round = round_number
            session.lease_expires_at = now + timedelta(seconds=lease_seconds)
            session.touch()
            await self._write_to_disk()

        logger.info(f"Progression lease claimed for session {session_id} round {round_number}")
        return lease_id

    async def release_progression(self, session_id: UUID, lease_id: UUID) -> None:
        """Drop a lease, unless it has since been taken over by another holder."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.lease_id != lease_id:
                return
            _drop_lease(session)
            await self._write_to_disk()

    async def advance_round(
        self, session_id: UUID, expected_round: int, movie_ids: list[int]
    ) -> VotingRound | None:
        """
        Open round ``expected_round + 1``.

        Returns None when the session is no longer active at ``expected_round``.

        Raises:
            InvalidArgumentError: If a candidate was already shown this session
        """
        async with self._lock:
            session = self._at_round(session_id, expected_round)
            if session is None:
                return None

            shown = {m for r in self._session_rounds(session_id) for m in r.movie_ids}
            repeated = [m for m in movie_ids if m in shown]
            if repeated:
                raise InvalidArgumentError(
                    "Candidates were already shown in this session",
                    field="movie_ids",
                    value=repeated,
                )

            next_round = VotingRound(
                session_id=session_id,
                round_number=expected_round + 1,
                movie_ids=list(movie_ids),
            )
            self._rounds[next_round.round_id] = next_round
            session.current_round = expected_round + 1
            _drop_lease(session)
            session.touch()
            await self._write_to_disk()

        logger.info(f"Session {session_id} advanced to round {expected_round + 1}")
        return next_round.model_copy(deep=True)

    async def complete_session(
        self,
        session_id: UUID,
        expected_round: int,
        final_movie_id: int,
        method: ResolutionMethod,
        alternates: list[Recommendation] | None = None,
        explanation: str = "",
    ) -> DecisionSession | None:
        """
        Complete the session.

        Returns None when the session is no longer active at ``expected_round``.
        """
        async with self._lock:
            session = self._at_round(session_id, expected_round)
            if session is None:
                return None

            session.status = SessionStatus.COMPLETED
            session.final_movie_id = final_movie_id
            session.resolution_method = method
            session.alternates = list(alternates or [])
            session.explanation = explanation
            _drop_lease(session)
            session.completed_at = utc_now()
            session.touch()
            await self._write_to_disk()

        logger.info(
            f"Session {session_id} completed by {method.value} with movie {final_movie_id}"
        )
        return session.model_copy(deep=True)

    # =========================================================================
    # Watch-list
    # =========================================================================

    async def watchlist_ids(self, group_id: UUID) -> list[int]:
        return [e.movie_id for e in self._watchlist.get(group_id, [])]

    async def add_to_watchlist(self, group_id: UUID, movie_id: int) -> bool:
        """Append a movie unless already present. Returns True if added."""
        async with self._lock:
            entries = self._watchlist.setdefault(group_id, [])
            if any(e.movie_id == movie_id for e in entries):
                return False
            entries.append(WatchlistEntry(group_id=group_id, movie_id=movie_id))
            await self._write_to_disk()
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        return {
            "groups": len(self._groups),
            "sessions": len(self._sessions),
            "active_sessions": sum(1 for s in self._sessions.values() if s.is_active),
            "rounds": len(self._rounds),
            "votes": len(self._votes),
            "path": str(self.path) if self.path else None,
        }


# =============================================================================
# Module-level store instance
# =============================================================================


_default_store: DecisionStore | None = None


async def get_store() -> DecisionStore:
    """Get the default store instance."""
    global _default_store
    if _default_store is None:
        _default_store = DecisionStore()
        await _default_store.initialize()
    return _default_store


async def close_store() -> None:
    """Close the default store."""
    global _default_store
    if _default_store:
        await _default_store.shutdown()
        _default_store = None
