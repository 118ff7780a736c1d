"""Participant registry.

Resolves callers to the participant that represents them in a group and owns
the group membership lifecycle: creating groups, joining by invite code,
issuing guest tokens and removing guests.
"""

import logging
import secrets
import string
from uuid import UUID

from vibewatch.config import Settings, get_settings
from vibewatch.lib.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    ParticipantNotFoundError,
    UnauthorizedError,
)
from vibewatch.lib.models import (
    Group,
    Participant,
    ParticipantStatus,
    ParticipantType,
)
from vibewatch.lib.persistence import DecisionStore
from vibewatch.lib.tokens import create_guest_token, verify_guest_token

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 8
INVITE_CODE_ALPHABET = string.ascii_letters + string.digits
MAX_DISPLAY_NAME = 50


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


class ParticipantRegistry:
    """Maps ambient identities onto group participants."""

    def __init__(self, store: DecisionStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(
        self,
        group_id: UUID,
        account_id: str | None = None,
        guest_token: str | None = None,
    ) -> Participant:
        """
        Return the active participant representing the caller in a group.

        Members are matched by account id first; otherwise a valid guest token
        must name an active guest of this group.

        Raises:
            UnauthorizedError: If the caller is not a participant
        """
        if account_id:
            member = await self.store.find_active_member(group_id, account_id)
            if member is not None:
                return member

        participant_id = verify_guest_token(
            guest_token,
            self.settings.guest_session_secret,
            self.settings.guest_token_ttl_ms,
        )
        if participant_id is not None:
            guest = await self.store.find_active_guest(group_id, participant_id)
            if guest is not None:
                return guest

        raise UnauthorizedError(details={"group_id": str(group_id)})

    def issue_guest_token(self, participant: Participant) -> str:
        return create_guest_token(
            participant.participant_id, self.settings.guest_session_secret
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_group(
        self, account_id: str | None, display_name: str = ""
    ) -> tuple[Group, Participant]:
        """Create a group; the creator becomes its first member."""
        if not account_id:
            raise UnauthorizedError("Sign in to create a group")

        name = display_name.strip()[:MAX_DISPLAY_NAME] or account_id
        for _ in range(5):
            group = Group(invite_code=generate_invite_code(), created_by=account_id)
            creator = Participant(
                group_id=group.group_id,
                type=ParticipantType.MEMBER,
                account_id=account_id,
                display_name=name,
            )
            try:
                return await self.store.create_group(group, creator)
            except ConflictError:
                logger.warning("Invite code collision, regenerating")

        raise ConflictError("Could not allocate a unique invite code")

    async def join_group(
        self,
        invite_code: str,
        account_id: str | None,
        display_name: str = "",
    ) -> tuple[Group, Participant, str | None]:
        """
        Join a group by invite code.

        Returns:
            Tuple of (group, participant, guest_token); the token is set for
            guests only.
        """
        group = await self.store.get_group_by_invite_code(invite_code)
        name = display_name.strip()[:MAX_DISPLAY_NAME]

        if account_id:
            existing = await self.store.find_active_member(group.group_id, account_id)
            if existing is not None:
                return group, existing, None

            member = await self.store.add_participant(
                Participant(
                    group_id=group.group_id,
                    type=ParticipantType.MEMBER,
                    account_id=account_id,
                    display_name=name or account_id,
                )
            )
            logger.info(f"Member joined group {group.group_id}")
            return group, member, None

        if not name:
            raise InvalidArgumentError(
                "Guests must provide a display name", field="display_name"
            )

        guest = await self.store.add_participant(
            Participant(
                group_id=group.group_id,
                type=ParticipantType.GUEST,
                display_name=name,
            )
        )
        logger.info(f"Guest {guest.participant_id} joined group {group.group_id}")
        return group, guest, self.issue_guest_token(guest)

    async def remove_participant(
        self, group_id: UUID, participant_id: UUID, actor: Participant
    ) -> Participant:
        """
        Remove a guest from a group.

        Raises:
            ForbiddenError: If the actor is not the group creator
            InvalidArgumentError: If the target is not a guest
        """
        group = await self.store.get_group(group_id)
        if actor.type != ParticipantType.MEMBER or actor.account_id != group.created_by:
            raise ForbiddenError("Only the group creator can remove participants")

        target = await self.store.get_participant(participant_id)
        if target.group_id != group_id:
            raise ParticipantNotFoundError(str(participant_id))
        if target.type != ParticipantType.GUEST:
            raise InvalidArgumentError(
                "Only guests can be removed", field="participant_id"
            )
        if not target.is_active:
            return target

        removed = await self.store.set_participant_status(
            participant_id, ParticipantStatus.REMOVED
        )
        logger.info(f"Removed guest {participant_id} from group {group_id}")
        return removed

    async def list_participants(self, group_id: UUID) -> list[Participant]:
        await self.store.get_group(group_id)
        return await self.store.list_participants(group_id)
