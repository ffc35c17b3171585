from datetime import datetime, timedelta, timezone

import auth
import main


def test_register_returns_tokens_and_sanitized_user(client):
    res = client.post("/auth/register", json={
        "email": "Alice@Example.com", "password": "secret123",
        "first_name": "Alice", "last_name": "Smith", "phone": "555-0100",
    })
    assert res.status_code == 201
    data = res.json()
    assert data["access_token"] and data["refresh_token"]
    assert data["token_type"] == "bearer"
    user = data["user"]
    assert "password_hash" not in user
    assert "password" not in user
    assert user["email"] == "alice@example.com"
    assert user["display_name"] == "Alice Smith"
    assert user["role"] == "user"
    assert user["rating"] == 5.0
    assert user["total_sales"] == 0
    assert user["location"] == "Not specified"


def test_register_duplicate_email_is_case_insensitive(client, register):
    register("bob@example.com")
    res = client.post("/auth/register", json={
        "email": "BOB@example.com", "password": "other123", "first_name": "B", "last_name": "O",
    })
    assert res.status_code == 400
    assert res.json()["detail"] == "Email already registered"


def test_register_rejects_missing_fields(client):
    res = client.post("/auth/register", json={"email": "x@example.com", "password": "secret123"})
    assert res.status_code == 400


def test_login_success(client, register):
    register("carol@example.com", password="hunter22")
    res = client.post("/auth/login", json={"email": "Carol@Example.com", "password": "hunter22"})
    assert res.status_code == 200
    data = res.json()
    assert data["user"]["email"] == "carol@example.com"
    assert "password_hash" not in data["user"]
    assert data["access_token"]


def test_login_failures_do_not_reveal_which_field(client, register):
    register("dave@example.com", password="rightpass")
    wrong_password = client.post("/auth/login", json={"email": "dave@example.com", "password": "wrongpass"})
    unknown_email = client.post("/auth/login", json={"email": "nobody@example.com", "password": "rightpass"})
    assert wrong_password.status_code == 401
    assert unknown_email.status_code == 401
    assert wrong_password.json()["detail"] == unknown_email.json()["detail"] == "Invalid credentials"


def test_protected_route_requires_token(client):
    assert client.get("/users/profile").status_code == 401
    res = client.get("/users/profile", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_expired_token_rejected(client, register):
    _, user = register("erin@example.com")
    token = auth.create_access_token({"sub": user["_id"]}, expires_delta=timedelta(minutes=-1))
    res = client.get("/users/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_token_for_deleted_user_rejected(client, register, repos):
    headers, user = register("gone@example.com")
    repos.users.delete(user["_id"])
    assert client.get("/users/profile", headers=headers).status_code == 401


def test_refresh_issues_new_tokens(client):
    res = client.post("/auth/register", json={
        "email": "frank@example.com", "password": "secret123", "first_name": "F", "last_name": "K",
    })
    refresh_token = res.json()["refresh_token"]
    res = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert res.status_code == 200
    access = res.json()["access_token"]
    profile = client.get("/users/profile", headers={"Authorization": f"Bearer {access}"})
    assert profile.status_code == 200
    assert profile.json()["email"] == "frank@example.com"


def test_refresh_and_access_tokens_are_not_interchangeable(client):
    res = client.post("/auth/register", json={
        "email": "gina@example.com", "password": "secret123", "first_name": "G", "last_name": "H",
    })
    tokens = res.json()
    assert client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]}).status_code == 401
    res = client.get("/users/profile", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert res.status_code == 401


def test_profile_update_only_touches_caller(client, register):
    headers, user = register("hank@example.com")
    other_headers, _ = register("ivy@example.com")
    res = client.put("/users/profile", json={"bio": "Selling vintage gear", "phone": "555-0199"}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["bio"] == "Selling vintage gear"
    assert body["phone"] == "555-0199"
    assert body["email"] == "hank@example.com"
    assert "password_hash" not in body
    other = client.get("/users/profile", headers=other_headers).json()
    assert other.get("bio") is None


def test_profile_bio_length_limit(client, register):
    headers, _ = register("jane@example.com")
    res = client.put("/users/profile", json={"bio": "x" * 501}, headers=headers)
    assert res.status_code == 400


def test_user_listing_and_delete_are_admin_only(client, register, make_admin):
    headers, user = register("kim@example.com")
    victim_headers, victim = register("lee@example.com")
    assert client.get("/users", headers=headers).status_code == 403
    assert client.delete(f"/users/{victim['_id']}", headers=headers).status_code == 403

    make_admin(user)
    res = client.get("/users", headers=headers)
    assert res.status_code == 200
    assert {u["email"] for u in res.json()} == {"kim@example.com", "lee@example.com"}
    assert all("password_hash" not in u for u in res.json())
    assert client.delete(f"/users/{victim['_id']}", headers=headers).status_code == 200
    assert client.delete(f"/users/{victim['_id']}", headers=headers).status_code == 404


def test_profile_exposes_member_since(client, register):
    headers, user = register("mia@example.com")
    assert user["member_since"] == str(datetime.now(timezone.utc).year)
    assert client.get("/users/profile", headers=headers).json()["member_since"] == user["member_since"]


def test_concurrent_duplicate_registration_rejected(client, repos, monkeypatch):
    # the existence check passes for both, the store must still refuse the second
    monkeypatch.setattr(repos.users, "find_one", lambda filter_dict: None)
    body = {"email": "noah@example.com", "password": "secret123", "first_name": "N", "last_name": "O"}
    assert client.post("/auth/register", json=body).status_code == 201
    res = client.post("/auth/register", json=body)
    assert res.status_code == 400
    assert res.json()["detail"] == "Email already registered"


def test_login_attempts_are_rate_limited(client):
    body = {"email": "nobody@example.com", "password": "guess"}
    for _ in range(main.RATE_LIMIT_MAX):
        assert client.post("/auth/login", json=body).status_code == 401
    res = client.post("/auth/login", json=body)
    assert res.status_code == 429
    assert res.json()["detail"] == "Too many requests from this IP, please try again later"
