from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from calcutta.config import SESSION_TTL_HOURS
from calcutta.models import Team, User, utcnow

from .conftest import bearer


def start(client, headers) -> dict:
    response = client.post("/auction", json={"action": "start"}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["state"]


def test_signup_login_me_logout(client):
    response = client.post("/auth/signup", json={"username": "dana", "password": "hunter22"})
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "user"

    response = client.post("/auth/login", json={"username": "dana", "password": "hunter22"})
    assert response.status_code == 200
    headers = bearer(response.json()["token"])
    assert client.get("/auth/me", headers=headers).json()["username"] == "dana"

    assert client.post("/auth/logout", headers=headers).status_code == 204
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_session_lapses_after_its_ttl(client, alice_headers, monkeypatch):
    issued = utcnow()
    assert issued.tzinfo is None
    assert client.get("/auth/me", headers=alice_headers).status_code == 200

    later = issued + timedelta(hours=SESSION_TTL_HOURS, minutes=1)
    monkeypatch.setattr("calcutta.auth.utcnow", lambda: later)
    assert client.get("/auth/me", headers=alice_headers).status_code == 401


@pytest.mark.parametrize(
    "username, password, status",
    [("ab", "hunter22", 400), ("dana", "short", 400)],
)
def test_signup_validation(client, username, password, status):
    response = client.post("/auth/signup", json={"username": username, "password": password})
    assert response.status_code == status


def test_duplicate_signup_and_bad_login(client, alice_headers):
    response = client.post("/auth/signup", json={"username": "alice", "password": "hunter22"})
    assert response.status_code == 409
    response = client.post("/auth/login", json={"username": "alice", "password": "wrong-one"})
    assert response.status_code == 401


def test_auction_read_is_public_and_idle(client):
    body = client.get("/auction").json()
    assert body["isActive"] is False
    assert body["currentTeamId"] is None
    assert body["currentBid"] == 0
    assert body["bids"] == []
    assert body["lastBidTime"] is None
    assert body["expiresAt"] is None


def test_actions_require_a_session(client, teams):
    response = client.post("/auction", json={"action": "start"})
    assert response.status_code == 401


@pytest.mark.parametrize("action", ["start", "next", "stop", "resume"])
def test_lot_control_is_admin_only(client, teams, alice_headers, action):
    response = client.post("/auction", json={"action": action}, headers=alice_headers)
    assert response.status_code == 403


def test_bid_defaults_to_the_caller(client, teams, admin_headers, alice_headers, server_clock):
    start(client, admin_headers)

    response = client.post("/auction", json={"action": "bid", "amount": 10}, headers=alice_headers)

    assert response.status_code == 200
    state = response.json()["state"]
    assert state["currentBidder"] == "alice"
    assert state["bids"][0]["timestamp"] == state["lastBidTime"]
    assert state["expiresAt"] == state["lastBidTime"] + 15_000


def test_bidding_for_someone_else_is_forbidden(client, teams, admin_headers, alice_headers):
    start(client, admin_headers)
    response = client.post(
        "/auction",
        json={"action": "bid", "bidder": "bob", "amount": 10},
        headers=alice_headers,
    )
    assert response.status_code == 403

    response = client.post(
        "/auction",
        json={"action": "bid", "bidder": "bob", "amount": 10},
        headers=admin_headers,
    )
    assert response.json()["state"]["currentBidder"] == "bob"


def test_low_bid_reports_the_current_bid(client, teams, admin_headers, alice_headers, bob_headers):
    start(client, admin_headers)
    client.post("/auction", json={"action": "bid", "amount": 10}, headers=alice_headers)

    response = client.post("/auction", json={"action": "bid", "amount": 5}, headers=bob_headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Bid must exceed current bid of $10.00"}
    assert client.get("/auction").json()["currentBidder"] == "alice"


def test_unknown_action_is_a_bad_request(client, alice_headers):
    response = client.post("/auction", json={"action": "shout"}, headers=alice_headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid action: shout"}


def test_start_with_no_teams_fails(client, admin_headers):
    response = client.post("/auction", json={"action": "start"}, headers=admin_headers)
    assert response.status_code == 400
    assert "error" in response.json()


def test_admin_sold_reports_remaining_lots(client, db, teams, admin_headers, bob_headers):
    lot_id = start(client, admin_headers)["currentTeamId"]
    client.post("/auction", json={"action": "bid", "amount": 15}, headers=bob_headers)

    response = client.post(
        "/auction", json={"action": "sold", "teamId": lot_id}, headers=admin_headers
    )

    body = response.json()
    assert body["success"] is True
    assert body["remainingLots"] == 3
    assert (body["soldTeamId"], body["soldTo"], body["soldFor"]) == (lot_id, "bob", 15)
    assert body["state"]["currentTeamId"] not in (None, lot_id)

    response = client.post(
        "/auction", json={"action": "sold", "teamId": lot_id}, headers=admin_headers
    )
    assert response.status_code == 409

    db.expire_all()
    assert db.get(Team, lot_id).cost == 15


def test_bidder_sold_before_the_deadline_changes_nothing(
    client, db, teams, admin_headers, alice_headers, server_clock
):
    lot_id = start(client, admin_headers)["currentTeamId"]
    bid = client.post("/auction", json={"action": "bid", "amount": 1}, headers=alice_headers)
    version = bid.json()["state"]["version"]

    response = client.post(
        "/auction", json={"action": "sold", "teamId": lot_id}, headers=alice_headers
    )

    assert response.status_code == 403
    state = client.get("/auction").json()
    assert state["version"] == version
    assert state["currentTeamId"] == lot_id
    db.expire_all()
    assert db.get(Team, lot_id).owner_id is None


def test_expire_ignores_a_lot_the_caller_has_not_seen(
    client, db, teams, admin_headers, alice_headers, server_clock
):
    lot_id = start(client, admin_headers)["currentTeamId"]
    client.post("/auction", json={"action": "bid", "amount": 12}, headers=alice_headers)
    server_clock.advance(15)
    other = next(team.id for team in teams if team.id != lot_id)

    assert client.post("/auction/expire", params={"teamId": other}).json()["expired"] is False
    body = client.post("/auction/expire", params={"teamId": lot_id}).json()
    assert body["expired"] is True
    assert body["soldTo"] == "alice"


def test_expire_endpoint_settles_only_after_the_deadline(
    client, db, teams, admin_headers, alice_headers, server_clock
):
    lot_id = start(client, admin_headers)["currentTeamId"]
    client.post("/auction", json={"action": "bid", "amount": 12}, headers=alice_headers)

    server_clock.advance(14)
    assert client.post("/auction/expire").json()["expired"] is False

    server_clock.advance(1)
    body = client.post("/auction/expire").json()
    assert body["expired"] is True
    assert body["remainingLots"] == 3

    db.expire_all()
    assert db.get(Team, lot_id).owner.name == "alice"


def test_restart_requires_admin_and_wipes_the_pool(
    client, db, teams, admin_headers, alice_headers
):
    start(client, admin_headers)
    client.post("/auction", json={"action": "bid", "amount": 8}, headers=alice_headers)
    client.post("/auction", json={"action": "sold"}, headers=admin_headers)

    assert client.post("/auction/restart", headers=alice_headers).status_code == 403
    response = client.post("/auction/restart", headers=admin_headers)

    assert response.json() == {"success": True, "message": "Auction restarted successfully"}
    assert client.get("/owners").json() == []
    assert all(team["ownerId"] is None for team in client.get("/teams").json())
    assert client.get("/auction").json()["isActive"] is False


def test_stop_and_resume_over_http(client, teams, admin_headers, alice_headers, server_clock):
    lot_id = start(client, admin_headers)["currentTeamId"]
    client.post("/auction", json={"action": "bid", "amount": 10}, headers=alice_headers)

    paused = client.post("/auction", json={"action": "stop"}, headers=admin_headers).json()
    assert paused["state"]["isActive"] is False
    assert paused["state"]["expiresAt"] is None

    server_clock.advance(100)
    resumed = client.post("/auction", json={"action": "resume"}, headers=admin_headers).json()
    assert resumed["state"]["currentTeamId"] == lot_id
    assert resumed["state"]["expiresAt"] == resumed["state"]["lastBidTime"] + 15_000


def test_team_and_owner_management(client, admin_headers, alice_headers):
    payload = {"name": "Duke", "region": "East", "seed": 1}
    assert client.post("/teams", json=payload, headers=alice_headers).status_code == 403
    team = client.post("/teams", json=payload, headers=admin_headers).json()
    assert team["ownerId"] is None

    owner = client.post("/owners", json={"name": "Carol"}, headers=admin_headers).json()
    duplicate = client.post("/owners", json={"name": "Carol"}, headers=admin_headers)
    assert duplicate.status_code == 409

    response = client.patch(
        f"/teams/{team['id']}",
        json={"ownerId": owner["id"], "cost": 40, "round64": True},
        headers=admin_headers,
    )
    assert response.json()["owner"]["name"] == "Carol"

    paid = client.patch(
        f"/owners/{owner['id']}", json={"paid": True}, headers=admin_headers
    ).json()
    assert paid["paid"] is True
    assert [item["name"] for item in paid["teams"]] == ["Duke"]

    assert client.get("/teams/999").status_code == 404
    assert client.get("/owners/999").status_code == 404


def test_invalid_seed_is_rejected(client, admin_headers):
    response = client.post(
        "/teams", json={"name": "Duke", "region": "East", "seed": 17}, headers=admin_headers
    )
    assert response.status_code == 422


def test_stats_and_leaderboard(client, admin_headers):
    carol = client.post("/owners", json={"name": "Carol"}, headers=admin_headers).json()
    dave = client.post("/owners", json={"name": "Dave"}, headers=admin_headers).json()
    for name, owner, cost, won in (("Duke", carol, 60, True), ("Iona", dave, 40, False)):
        team = client.post(
            "/teams", json={"name": name, "region": "East", "seed": 1}, headers=admin_headers
        ).json()
        client.patch(
            f"/teams/{team['id']}",
            json={"ownerId": owner["id"], "cost": cost, "round64": won},
            headers=admin_headers,
        )

    stats = client.get("/stats").json()
    assert stats["totalPot"] == 100
    assert stats["payoutPerWin"]["round64"] == pytest.approx(0.5)
    assert stats["percentages"]["sweet16"] == "24%"

    board = client.get("/leaderboard").json()
    assert [entry["owner"]["name"] for entry in board] == ["Carol", "Dave"]
    assert board[0]["totalPayout"] == pytest.approx(0.5)
    assert board[1]["roi"] == pytest.approx(-100)


def test_admin_user_management(client, db, admin_headers, alice_headers):
    alice_id = db.scalar(select(User.id).where(User.username == "alice"))
    assert client.get("/admin/users", headers=alice_headers).status_code == 403

    users = client.get("/admin/users", headers=admin_headers).json()
    assert [user["username"] for user in users] == ["admin", "alice"]

    promoted = client.patch(
        f"/admin/users/{alice_id}", json={"role": "admin"}, headers=admin_headers
    ).json()
    assert promoted["role"] == "admin"

    assert client.delete(f"/admin/users/{alice_id}", headers=admin_headers).status_code == 204
    assert client.get("/auth/me", headers=alice_headers).status_code == 401


def test_admin_cannot_delete_themselves(client, db, admin_headers):
    admin_id = db.scalar(select(User.id).where(User.username == "admin"))
    response = client.delete(f"/admin/users/{admin_id}", headers=admin_headers)
    assert response.status_code == 400
