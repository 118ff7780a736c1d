"""Decision store: conditional writes, leases and snapshot reload."""

import pytest

from vibewatch.config import Settings
from vibewatch.lib.exceptions import (
    ActiveSessionExistsError,
    DuplicateMemberError,
    InvalidArgumentError,
    SessionNotFoundError,
)
from vibewatch.lib.models import (
    DecisionSession,
    Group,
    Participant,
    ParticipantType,
    ResolutionMethod,
    SessionStatus,
    VoteValue,
    VotingRound,
)
from vibewatch.lib.persistence import DecisionStore

FIRST = [10, 20, 30, 40, 50]


async def _group(store: DecisionStore) -> tuple[Group, Participant]:
    group = Group(invite_code="ABCD1234", created_by="acct-0")
    host = Participant(
        group_id=group.group_id,
        type=ParticipantType.MEMBER,
        account_id="acct-0",
        display_name="Host",
    )
    return await store.create_group(group, host)


async def _session(store: DecisionStore, group: Group) -> tuple[DecisionSession, VotingRound]:
    session = DecisionSession(group_id=group.group_id, vibe_text="cozy")
    first = VotingRound(session_id=session.session_id, round_number=1, movie_ids=FIRST)
    return await store.create_session(session, first)


@pytest.mark.asyncio
async def test_second_active_session_conflicts(store):
    group, _ = await _group(store)
    await _session(store, group)

    with pytest.raises(ActiveSessionExistsError):
        await _session(store, group)


@pytest.mark.asyncio
async def test_new_session_allowed_after_completion(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)
    await store.complete_session(session.session_id, 1, 30, ResolutionMethod.CONSENSUS)

    again, first = await _session(store, group)
    assert again.is_active
    assert first.round_number == 1


@pytest.mark.asyncio
async def test_duplicate_active_member_rejected(store):
    group, _ = await _group(store)

    with pytest.raises(DuplicateMemberError):
        await store.add_participant(
            Participant(
                group_id=group.group_id,
                type=ParticipantType.MEMBER,
                account_id="acct-0",
            )
        )


@pytest.mark.asyncio
async def test_upsert_vote_overwrites(store):
    group, host = await _group(store)
    _, first = await _session(store, group)

    await store.upsert_vote(first.round_id, host.participant_id, 10, VoteValue.YES)
    await store.upsert_vote(
        first.round_id, host.participant_id, 10, VoteValue.NO, "seen it"
    )

    votes = await store.list_votes(first.round_id)
    assert len(votes) == 1
    assert votes[0].value == VoteValue.NO
    assert votes[0].reason == "seen it"


@pytest.mark.asyncio
async def test_progression_lease_is_exclusive(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    lease_id = await store.claim_progression(session.session_id, 1, 30)
    assert lease_id is not None
    assert await store.claim_progression(session.session_id, 1, 30) is None

    await store.release_progression(session.session_id, lease_id)
    assert await store.claim_progression(session.session_id, 1, 30) is not None


@pytest.mark.asyncio
async def test_expired_lease_can_be_taken_over(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    assert await store.claim_progression(session.session_id, 1, -1) is not None
    assert await store.claim_progression(session.session_id, 1, 30) is not None


@pytest.mark.asyncio
async def test_stale_holder_cannot_release_a_taken_over_lease(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    expired = await store.claim_progression(session.session_id, 1, -1)
    current = await store.claim_progression(session.session_id, 1, 30)

    await store.release_progression(session.session_id, expired)
    assert await store.claim_progression(session.session_id, 1, 30) is None

    await store.release_progression(session.session_id, current)
    assert await store.claim_progression(session.session_id, 1, 30) is not None


@pytest.mark.asyncio
async def test_lease_requires_current_round(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    assert await store.claim_progression(session.session_id, 2, 30) is None


@pytest.mark.asyncio
async def test_advance_round_is_compare_and_swap(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    second = await store.advance_round(session.session_id, 1, [1, 2, 3, 4, 5])
    lost = await store.advance_round(session.session_id, 1, [6, 7, 8, 9, 11])

    assert second is not None and second.round_number == 2
    assert lost is None
    rounds = await store.list_rounds(session.session_id)
    assert [r.round_number for r in rounds] == [1, 2]
    assert (await store.get_session(session.session_id)).current_round == 2


@pytest.mark.asyncio
async def test_advance_round_rejects_reshown_movies(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    with pytest.raises(InvalidArgumentError):
        await store.advance_round(session.session_id, 1, [1, 2, 3, 4, 30])

    assert len(await store.list_rounds(session.session_id)) == 1


@pytest.mark.asyncio
async def test_complete_session_is_compare_and_swap(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    done = await store.complete_session(
        session.session_id, 1, 30, ResolutionMethod.CONSENSUS
    )
    assert done is not None
    assert done.status == SessionStatus.COMPLETED
    assert done.final_movie_id == 30

    assert await store.complete_session(session.session_id, 1, 40, ResolutionMethod.AI) is None
    assert await store.advance_round(session.session_id, 1, [1, 2, 3, 4, 5]) is None
    assert (await store.get_session(session.session_id)).final_movie_id == 30


@pytest.mark.asyncio
async def test_watchlist_is_append_if_absent(store):
    group, _ = await _group(store)

    assert await store.add_to_watchlist(group.group_id, 30) is True
    assert await store.add_to_watchlist(group.group_id, 30) is False
    assert await store.add_to_watchlist(group.group_id, 40) is True
    assert await store.watchlist_ids(group.group_id) == [30, 40]


@pytest.mark.asyncio
async def test_reads_return_copies(store):
    group, _ = await _group(store)
    session, _ = await _session(store, group)

    fetched = await store.get_session(session.session_id)
    fetched.current_round = 4

    assert (await store.get_session(session.session_id)).current_round == 1


@pytest.mark.asyncio
async def test_unknown_session_raises(store):
    group, _ = await _group(store)

    with pytest.raises(SessionNotFoundError):
        await store.get_session(group.group_id)


@pytest.mark.asyncio
async def test_snapshot_reload(tmp_path):
    settings = Settings(_env_file=None, data_dir=tmp_path)
    store = DecisionStore(settings)
    await store.initialize()

    group, host = await _group(store)
    session, first = await _session(store, group)
    await store.upsert_vote(first.round_id, host.participant_id, 10, VoteValue.YES)
    await store.add_to_watchlist(group.group_id, 10)
    await store.shutdown()

    assert (tmp_path / "vibewatch.json").exists()

    reloaded = DecisionStore(settings)
    await reloaded.initialize()

    assert (await reloaded.get_group(group.group_id)).invite_code == "ABCD1234"
    assert (await reloaded.get_active_session(group.group_id)).session_id == session.session_id
    assert (await reloaded.get_round(first.round_id)).movie_ids == FIRST
    assert len(await reloaded.list_votes(first.round_id)) == 1
    assert await reloaded.watchlist_ids(group.group_id) == [10]
    assert reloaded.get_stats()["sessions"] == 1
