"""HTTP surface: identity, status codes and the vote flow end to end."""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from vibewatch.api.dependencies import get_engine
from vibewatch.lib.exceptions import RecommenderError
from vibewatch.main import app

FIRST = [10, 20, 30, 40, 50]
HOST = {"X-Account-Id": "acct-host"}
FRIEND = {"X-Account-Id": "acct-friend"}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _group(client) -> dict:
    r = client.post("/api/groups", json={"display_name": "Host"}, headers=HOST)
    assert r.status_code == 200, r.text
    group = r.json()["group"]
    r = client.post(
        f"/api/groups/join/{group['invite_code']}",
        json={"display_name": "Friend"},
        headers=FRIEND,
    )
    assert r.status_code == 200, r.text
    return group


def _session(client, group: dict) -> dict:
    r = client.post(
        "/api/sessions",
        json={"group_id": group["group_id"], "vibe_text": "funny and short", "movie_ids": FIRST},
        headers=HOST,
    )
    assert r.status_code == 200, r.text
    return r.json()


def _ballot(client, round_id: str, headers: dict, yes=()) -> dict:
    body = None
    for movie_id in FIRST:
        r = client.post(
            "/api/votes",
            json={
                "round_id": round_id,
                "movie_id": movie_id,
                "vote": "yes" if movie_id in yes else "no",
            },
            headers=headers,
        )
        assert r.status_code == 200, r.text
        body = r.json()
    return body


def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_creating_a_group_needs_an_account(client):
    r = client.post("/api/groups", json={"display_name": "Nobody"})

    assert r.status_code == 401


def test_guest_join(client):
    group = _group(client)

    r = client.post(f"/api/groups/join/{group['invite_code']}", json={"display_name": "Sam"})
    assert r.status_code == 200
    body = r.json()
    assert body["participant"]["type"] == "guest"
    assert body["guest_token"]
    assert "vw_guest_participant" in r.headers["set-cookie"]

    r = client.get(
        f"/api/groups/{group['group_id']}/participants",
        headers={"X-Guest-Token": body["guest_token"]},
    )
    assert r.status_code == 200
    assert [p["display_name"] for p in r.json()] == ["Host", "Friend", "Sam"]


def test_guest_join_needs_a_name(client):
    group = _group(client)

    r = client.post(f"/api/groups/join/{group['invite_code']}", json={})

    assert r.status_code == 422
    assert r.json()["field"] == "display_name"


def test_unknown_invite_code(client):
    r = client.post("/api/groups/join/nope1234", json={"display_name": "Sam"}, headers=FRIEND)

    assert r.status_code == 404


def test_consensus_flow(client, recommender):
    group = _group(client)
    started = _session(client, group)
    round_id = started["round"]["round_id"]

    first = _ballot(client, round_id, HOST, yes={30})
    assert first["outcome"] == "open"

    last = _ballot(client, round_id, FRIEND, yes={30})
    assert last["outcome"] == "consensus"
    assert last["final_movie_id"] == 30
    assert last["resolution_method"] == "consensus"
    recommender.next_round_candidates.assert_not_called()

    r = client.get(f"/api/sessions/{started['session']['session_id']}/status", headers=FRIEND)
    assert r.status_code == 200
    status = r.json()
    assert status["session"]["status"] == "completed"
    assert status["has_voted_on_all"] is True

    r = client.get(f"/api/groups/{group['group_id']}/sessions", headers=HOST)
    assert [s["final_movie_id"] for s in r.json()] == [30]


def test_no_consensus_opens_next_round(client):
    group = _group(client)
    started = _session(client, group)
    round_id = started["round"]["round_id"]

    _ballot(client, round_id, HOST, yes={10})
    result = _ballot(client, round_id, FRIEND, yes={20})

    assert result["outcome"] == "advanced"
    assert result["next_round"]["round_number"] == 2
    assert not set(result["next_round"]["movie_ids"]) & set(FIRST)

    r = client.post(
        "/api/votes",
        json={"round_id": round_id, "movie_id": 10, "vote": "yes"},
        headers=HOST,
    )
    assert r.status_code == 422
    assert r.json()["field"] == "round_id"


def test_invalid_vote_value(client):
    group = _group(client)
    started = _session(client, group)

    r = client.post(
        "/api/votes",
        json={"round_id": started["round"]["round_id"], "movie_id": 10, "vote": "maybe"},
        headers=HOST,
    )

    assert r.status_code == 422
    assert r.json()["field"] == "vote"


def test_unknown_round(client):
    r = client.post(
        "/api/votes",
        json={"round_id": str(uuid4()), "movie_id": 10, "vote": "yes"},
        headers=HOST,
    )

    assert r.status_code == 404


def test_one_active_session_per_group(client):
    group = _group(client)
    _session(client, group)

    r = client.post(
        "/api/sessions",
        json={"group_id": group["group_id"], "vibe_text": "again"},
        headers=FRIEND,
    )

    assert r.status_code == 409


def test_outsider_cannot_read_status(client):
    group = _group(client)
    started = _session(client, group)

    r = client.get(
        f"/api/sessions/{started['session']['session_id']}/status",
        headers={"X-Account-Id": "acct-stranger"},
    )

    assert r.status_code == 401


def test_advance_with_open_round(client):
    group = _group(client)
    started = _session(client, group)

    r = client.post(f"/api/sessions/{started['session']['session_id']}/advance", headers=HOST)

    assert r.status_code == 409


def test_recommender_failure_keeps_votes_and_can_be_retried(client, recommender):
    recommender.next_round_candidates.side_effect = RecommenderError("model unavailable")
    group = _group(client)
    started = _session(client, group)
    session_id = started["session"]["session_id"]

    _ballot(client, started["round"]["round_id"], HOST)
    failed = _ballot(client, started["round"]["round_id"], FRIEND)

    assert failed["outcome"] == "progression_failed"
    assert failed["vote_recorded"] is True
    assert failed["retryable"] is True

    recommender.next_round_candidates.side_effect = None
    recommender.next_round_candidates.return_value = [101, 102, 103, 104, 105]

    r = client.post(f"/api/sessions/{session_id}/advance", headers=FRIEND)
    assert r.status_code == 200
    retried = r.json()
    assert retried["outcome"] == "advanced"
    assert retried["next_round"]["movie_ids"] == [101, 102, 103, 104, 105]


def test_removing_a_blocking_guest_unblocks_the_round(client):
    group = _group(client)
    r = client.post(f"/api/groups/join/{group['invite_code']}", json={"display_name": "Sam"})
    guest = r.json()
    started = _session(client, group)

    _ballot(client, started["round"]["round_id"], HOST, yes={40})
    _ballot(client, started["round"]["round_id"], FRIEND, yes={40})

    guest_id = guest["participant"]["participant_id"]
    r = client.delete(f"/api/groups/{group['group_id']}/participants/{guest_id}", headers=FRIEND)
    assert r.status_code == 403

    r = client.delete(f"/api/groups/{group['group_id']}/participants/{guest_id}", headers=HOST)
    assert r.status_code == 200
    body = r.json()
    assert body["participant"]["status"] == "removed"
    assert body["progression"]["outcome"] == "consensus"
    assert body["progression"]["final_movie_id"] == 40

    r = client.get(
        f"/api/groups/{group['group_id']}/participants",
        headers={"X-Guest-Token": guest["guest_token"]},
    )
    assert r.status_code == 401
