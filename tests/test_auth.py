import jwt
import pytest

from security import JWT_ALGORITHM, check_password, create_access_token, hash_password


def register(client, email="ana@example.com", password="s3cret", name="Ana"):
    return client.post("/api/register", json={"email": email, "password": password, "name": name})


def test_register_stores_only_hash(client, db):
    resp = register(client)
    assert resp.status_code == 201
    assert resp.json() == {"success": True, "message": "User registered"}

    user = db["user"].find_one({"email": "ana@example.com"})
    assert user["password"] != "s3cret"
    assert check_password("s3cret", user["password"])
    assert user["isad"] is False
    assert "s3cret" not in [str(v) for v in user.values()]


def test_register_duplicate_email(client, db):
    register(client)
    resp = register(client, password="other")
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["message"] == "Email already exists"
    assert db["user"].count_documents({"email": "ana@example.com"}) == 1


def test_register_missing_fields(client):
    resp = client.post("/api/register", json={"email": "x@example.com"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert "password" in body["message"]


def test_register_empty_password_rejected(client):
    resp = client.post("/api/register", json={"email": "x@example.com", "password": ""})
    assert resp.status_code == 400


def test_login_issues_token(client, settings):
    register(client)
    resp = client.post("/api/login", json={"email": "ana@example.com", "password": "s3cret"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True

    claims = jwt.decode(body["token"], settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    assert claims["email"] == "ana@example.com"
    assert claims["name"] == "Ana"
    assert claims["isad"] is False
    assert claims["userId"]
    assert claims["exp"] > claims["iat"]


def test_login_wrong_password(client):
    register(client)
    resp = client.post("/api/login", json={"email": "ana@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "Invalid credentials"}
    assert "token" not in resp.json()


def test_login_unknown_email(client):
    resp = client.post("/api/login", json={"email": "ghost@example.com", "password": "x"})
    assert resp.status_code == 401


def test_users_listing_hides_passwords(client):
    register(client)
    register(client, email="ben@example.com", name="Ben")
    resp = client.get("/api/users")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert {u["email"] for u in data} == {"ana@example.com", "ben@example.com"}
    assert all("password" not in u for u in data)
    assert all(isinstance(u["_id"], str) for u in data)


def test_token_signed_with_other_secret_is_rejected(settings):
    token = create_access_token({"_id": "abc", "email": "a@b.c"}, settings)
    with pytest.raises(jwt.InvalidTokenError):
        jwt.decode(token, "wrong-secret", algorithms=["HS256"])


def test_check_password_with_garbage_hash():
    assert check_password("pw", "not-a-bcrypt-hash") is False
    assert check_password("pw", hash_password("pw")) is True


def test_concurrent_registration_hits_unique_index(client, db, monkeypatch):
    from database import ensure_indexes

    ensure_indexes(db)
    assert register(client).status_code == 201

    # the existence check misses, as when two registrations interleave
    monkeypatch.setattr(db["user"].__class__, "find_one", lambda self, *args, **kwargs: None)
    resp = register(client, password="other")
    monkeypatch.undo()

    assert resp.status_code == 400
    assert resp.json()["message"] == "Email already exists"
    assert db["user"].count_documents({"email": "ana@example.com"}) == 1
