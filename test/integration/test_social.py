"""Integration tests for auth, profiles, exercises, favorites and friendships."""

import pytest

from conftest import PASSWORD, register


# ==================== Auth ====================


@pytest.mark.integration
def test_signup_returns_session(client):
    session = register(client, "New@Example.com")
    assert session["token_type"] == "bearer"
    assert session["user"]["email"] == "new@example.com"
    assert session["user"]["display_name"] == "new"
    assert session["user"]["username"]
    assert session["user"]["is_admin"] is False


@pytest.mark.integration
def test_signup_duplicate_email(client, user_session):
    response = client.post("/api/auth/signup",
                           json={"email": "lifter@example.com", "password": PASSWORD})
    assert response.status_code == 409


@pytest.mark.integration
def test_signup_taken_username(client, user_session):
    response = client.post("/api/auth/signup",
                           json={"email": "x@example.com", "password": PASSWORD, "username": "lifter"})
    assert response.status_code == 409
    assert response.json()["detail"] == "Username already taken"


@pytest.mark.integration
def test_signin_and_me(client, user_session):
    response = client.post("/api/auth/signin", json={"email": "lifter@example.com", "password": PASSWORD})
    assert response.status_code == 200
    token = response.json()["access_token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["id"] == user_session["user"]["id"]


@pytest.mark.integration
def test_signin_bad_password(client, user_session):
    response = client.post("/api/auth/signin", json={"email": "lifter@example.com", "password": "nope!!"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid login credentials"


@pytest.mark.integration
def test_garbage_token(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401


# ==================== Profiles ====================


@pytest.mark.integration
def test_profile_update(client, user_headers):
    response = client.patch("/api/profile", json={"height": 180, "gender": "female"}, headers=user_headers)
    assert response.status_code == 200
    profile = response.json()
    assert profile["height"] == 180
    assert profile["display_name"] == "Lifter"


@pytest.mark.integration
def test_profile_username_conflict(client, user_headers, other_session):
    response = client.patch("/api/profile", json={"username": "spotter"}, headers=user_headers)
    assert response.status_code == 409


@pytest.mark.integration
def test_profile_cannot_grant_admin(client, user_headers):
    client.patch("/api/profile", json={"is_admin": True}, headers=user_headers)
    assert client.get("/api/profile", headers=user_headers).json()["is_admin"] is False


@pytest.mark.integration
def test_body_weight_sets_current_weight(client, user_headers):
    client.post("/api/body-weight", json={"weight": 80, "date": "2024-01-01"}, headers=user_headers)
    client.post("/api/body-weight", json={"weight": 78.5, "date": "2024-02-01"}, headers=user_headers)

    history = client.get("/api/body-weight", headers=user_headers).json()
    assert [entry["weight"] for entry in history] == [78.5, 80]
    assert client.get("/api/profile", headers=user_headers).json()["current_weight"] == 78.5


# ==================== Exercises and favorites ====================


@pytest.mark.integration
def test_custom_exercises_are_private(client, user_headers, other_headers):
    created = client.post("/api/exercises", json={"name": " Farmer Walk ", "type": "weighted"},
                          headers=user_headers).json()
    assert created["name"] == "Farmer Walk"
    assert created["is_preset"] is False

    mine = client.get("/api/exercises", headers=user_headers).json()
    theirs = client.get("/api/exercises", headers=other_headers).json()
    assert created["id"] in {e["id"] for e in mine}
    assert created["id"] not in {e["id"] for e in theirs}
    assert mine[0]["is_preset"] is True


@pytest.mark.integration
def test_exercise_type_validated(client, user_headers):
    response = client.post("/api/exercises", json={"name": "Yoga", "type": "zen"}, headers=user_headers)
    assert response.status_code == 422


@pytest.mark.integration
def test_delete_exercise_rules(client, user_headers, other_headers, presets):
    assert client.delete(f"/api/exercises/{presets['Plank']}", headers=user_headers).status_code == 403

    created = client.post("/api/exercises", json={"name": "Sled"}, headers=user_headers).json()
    assert client.delete(f"/api/exercises/{created['id']}", headers=other_headers).status_code == 403
    assert client.delete(f"/api/exercises/{created['id']}", headers=user_headers).status_code == 200
    assert client.delete(f"/api/exercises/{created['id']}", headers=user_headers).status_code == 404


@pytest.mark.integration
def test_last_and_recent_sets(client, user_headers, presets, today, yesterday):
    deadlift = presets["Deadlift"]
    assert client.get(f"/api/exercises/{deadlift}/last-set", headers=user_headers).json() is None

    for day, weight in ((yesterday, 100), (today, 110)):
        workout = client.post("/api/workouts", json={"date": day}, headers=user_headers).json()
        client.post(f"/api/workouts/{workout['id']}/sets",
                    json={"exercise_id": deadlift, "reps": 5, "weight": weight}, headers=user_headers)

    last = client.get(f"/api/exercises/{deadlift}/last-set", headers=user_headers).json()
    assert last["weight"] == 110
    assert last["reps"] == 5

    recent = client.get(f"/api/exercises/{deadlift}/recent-sets", params={"limit": 5},
                        headers=user_headers).json()
    assert [s["weight"] for s in recent] == [110, 100]


@pytest.mark.integration
def test_favorites(client, user_headers, presets):
    plank = presets["Plank"]
    assert client.post(f"/api/favorites/{plank}", headers=user_headers).status_code == 200
    assert client.post(f"/api/favorites/{plank}", headers=user_headers).status_code == 409
    assert client.post("/api/favorites/missing", headers=user_headers).status_code == 404
    assert client.get("/api/favorites", headers=user_headers).json() == {"exercise_ids": [plank]}

    client.delete(f"/api/favorites/{plank}", headers=user_headers)
    assert client.get("/api/favorites", headers=user_headers).json() == {"exercise_ids": []}


# ==================== Friends ====================


@pytest.fixture
def friend_request(client, user_headers, other_session):
    response = client.post("/api/friends/requests",
                           json={"addressee_id": other_session["user"]["id"]}, headers=user_headers)
    assert response.status_code == 200
    return response.json()


@pytest.mark.integration
def test_friend_request_rules(client, user_session, user_headers, friend_request, other_session, other_headers):
    assert friend_request["status"] == "pending"

    own_id = user_session["user"]["id"]
    response = client.post("/api/friends/requests", json={"addressee_id": own_id}, headers=user_headers)
    assert response.status_code == 400

    # either direction counts as the same friendship
    response = client.post("/api/friends/requests", json={"addressee_id": own_id}, headers=other_headers)
    assert response.status_code == 409

    response = client.post("/api/friends/requests", json={"addressee_id": "ghost"}, headers=user_headers)
    assert response.status_code == 404


@pytest.mark.integration
def test_pending_and_sent(client, user_headers, other_headers, friend_request):
    [pending] = client.get("/api/friends/requests/pending", headers=other_headers).json()
    assert pending["requester"]["username"] == "lifter"
    [sent] = client.get("/api/friends/requests/sent", headers=user_headers).json()
    assert sent["addressee"]["username"] == "spotter"
    assert client.get("/api/friends/requests/count", headers=other_headers).json() == {"count": 1}
    assert client.get("/api/friends/requests/count", headers=user_headers).json() == {"count": 0}


@pytest.mark.integration
def test_only_addressee_responds(client, user_headers, other_headers, friend_request):
    url = f"/api/friends/requests/{friend_request['id']}/accept"
    assert client.post(url, headers=user_headers).status_code == 403

    accepted = client.post(url, headers=other_headers).json()
    assert accepted["status"] == "accepted"

    [friendship] = client.get("/api/friends", headers=user_headers).json()
    assert friendship["friend"]["username"] == "spotter"
    [friendship] = client.get("/api/friends", headers=other_headers).json()
    assert friendship["friend"]["username"] == "lifter"


@pytest.mark.integration
def test_reject_and_remove(client, user_headers, other_session, other_headers, friend_request):
    rejected = client.post(f"/api/friends/requests/{friend_request['id']}/reject", headers=other_headers).json()
    assert rejected["status"] == "rejected"

    status = client.get(f"/api/friends/status/{other_session['user']['id']}", headers=user_headers).json()
    assert status["status"] == "rejected"

    assert client.delete(f"/api/friends/{friend_request['id']}", headers=user_headers).json() == {"success": True}
    assert client.get(f"/api/friends/status/{other_session['user']['id']}", headers=user_headers).json() is None
    assert client.delete(f"/api/friends/{friend_request['id']}", headers=user_headers).status_code == 404


@pytest.mark.integration
def test_user_search(client, user_headers, other_session, admin_session):
    assert client.get("/api/users/search", params={"q": "s"}, headers=user_headers).json() == []
    found = client.get("/api/users/search", params={"q": "@spot"}, headers=user_headers).json()
    assert [u["username"] for u in found] == ["spotter"]
    # the caller is never in their own results
    assert client.get("/api/users/search", params={"q": "lift"}, headers=user_headers).json() == []
