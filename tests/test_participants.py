"""Participant registry: resolution order and membership lifecycle."""

import pytest

from vibewatch.engine.participants import INVITE_CODE_ALPHABET, INVITE_CODE_LENGTH
from vibewatch.lib.exceptions import (
    ForbiddenError,
    GroupNotFoundError,
    InvalidArgumentError,
    UnauthorizedError,
)
from vibewatch.lib.models import ParticipantStatus, ParticipantType
from vibewatch.lib.tokens import create_guest_token


@pytest.mark.asyncio
async def test_create_group_makes_creator_a_member(registry):
    group, host = await registry.create_group("acct-0", "Host")

    assert len(group.invite_code) == INVITE_CODE_LENGTH
    assert set(group.invite_code) <= set(INVITE_CODE_ALPHABET)
    assert group.created_by == "acct-0"
    assert host.type == ParticipantType.MEMBER
    assert host.is_active


@pytest.mark.asyncio
async def test_create_group_requires_account(registry):
    with pytest.raises(UnauthorizedError):
        await registry.create_group(None, "Nobody")


@pytest.mark.asyncio
async def test_member_join_is_idempotent(registry):
    group, _ = await registry.create_group("acct-0", "Host")

    _, first, token = await registry.join_group(group.invite_code, "acct-1", "Ana")
    _, second, _ = await registry.join_group(group.invite_code, "acct-1", "Ana again")

    assert token is None
    assert first.participant_id == second.participant_id
    assert len(await registry.list_participants(group.group_id)) == 2


@pytest.mark.asyncio
async def test_guest_join_needs_display_name(registry):
    group, _ = await registry.create_group("acct-0", "Host")

    with pytest.raises(InvalidArgumentError):
        await registry.join_group(group.invite_code, None, "   ")


@pytest.mark.asyncio
async def test_unknown_invite_code(registry):
    with pytest.raises(GroupNotFoundError):
        await registry.join_group("NOPE0000", "acct-1", "Ana")


@pytest.mark.asyncio
async def test_resolve_member_by_account(registry, make_group):
    group, (host, member) = await make_group(members=2)

    resolved = await registry.resolve(group.group_id, account_id="acct-1")
    assert resolved.participant_id == member.participant_id


@pytest.mark.asyncio
async def test_resolve_guest_by_token(registry):
    group, _ = await registry.create_group("acct-0", "Host")
    _, guest, token = await registry.join_group(group.invite_code, None, "Guest")

    resolved = await registry.resolve(group.group_id, guest_token=token)
    assert resolved.participant_id == guest.participant_id


@pytest.mark.asyncio
async def test_member_match_wins_over_guest_token(registry):
    group, host = await registry.create_group("acct-0", "Host")
    _, _, token = await registry.join_group(group.invite_code, None, "Guest")

    resolved = await registry.resolve(group.group_id, account_id="acct-0", guest_token=token)
    assert resolved.participant_id == host.participant_id


@pytest.mark.asyncio
async def test_non_member_account_falls_back_to_guest_token(registry):
    group, _ = await registry.create_group("acct-0", "Host")
    _, guest, token = await registry.join_group(group.invite_code, None, "Guest")

    resolved = await registry.resolve(group.group_id, account_id="acct-9", guest_token=token)
    assert resolved.participant_id == guest.participant_id


@pytest.mark.asyncio
async def test_no_credentials_is_unauthorized(registry):
    group, _ = await registry.create_group("acct-0", "Host")

    with pytest.raises(UnauthorizedError):
        await registry.resolve(group.group_id)


@pytest.mark.asyncio
async def test_guest_token_for_another_group_is_unauthorized(registry):
    group_a, _ = await registry.create_group("acct-0", "Host A")
    group_b, _ = await registry.create_group("acct-1", "Host B")
    _, _, token = await registry.join_group(group_a.invite_code, None, "Guest")

    with pytest.raises(UnauthorizedError):
        await registry.resolve(group_b.group_id, guest_token=token)


@pytest.mark.asyncio
async def test_expired_guest_token_is_unauthorized(registry, settings):
    group, _ = await registry.create_group("acct-0", "Host")
    _, guest, _ = await registry.join_group(group.invite_code, None, "Guest")
    stale = create_guest_token(
        guest.participant_id, settings.guest_session_secret, issued_at_ms=0
    )

    with pytest.raises(UnauthorizedError):
        await registry.resolve(group.group_id, guest_token=stale)


@pytest.mark.asyncio
async def test_host_removes_guest(registry):
    group, host = await registry.create_group("acct-0", "Host")
    _, guest, token = await registry.join_group(group.invite_code, None, "Guest")

    removed = await registry.remove_participant(group.group_id, guest.participant_id, host)

    assert removed.status == ParticipantStatus.REMOVED
    remaining = await registry.list_participants(group.group_id)
    assert [p.participant_id for p in remaining] == [host.participant_id]
    with pytest.raises(UnauthorizedError):
        await registry.resolve(group.group_id, guest_token=token)


@pytest.mark.asyncio
async def test_only_host_can_remove(registry, make_group):
    group, (host, member, guest) = await make_group(members=2, guests=1)

    with pytest.raises(ForbiddenError):
        await registry.remove_participant(group.group_id, guest.participant_id, member)


@pytest.mark.asyncio
async def test_members_cannot_be_removed(registry, make_group):
    group, (host, member) = await make_group(members=2)

    with pytest.raises(InvalidArgumentError):
        await registry.remove_participant(group.group_id, member.participant_id, host)
