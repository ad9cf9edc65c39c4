from db import User, ModuleQuestion, Subscription
from auth import SESSION_COOKIE_NAME, get_password_hash, verify_password
from entitlements import MODULES


def test_signup_initializes_allowances_and_free_plan(signup, client, db):
    resp = signup()
    assert resp.json() == {"success": True}
    assert SESSION_COOKIE_NAME in resp.cookies

    user = db.query(User).filter(User.email == "asha@example.com").one()
    rows = db.query(ModuleQuestion).filter(ModuleQuestion.user_id == user.id).all()
    assert sorted(r.module for r in rows) == sorted(MODULES)
    assert all(r.questions_remaining == 3 and r.is_premium is False for r in rows)

    sub = db.query(Subscription).filter(Subscription.user_id == user.id).one()
    assert sub.plan == "free"
    assert sub.is_active is True


def test_signup_stores_hash_not_password(signup, db):
    signup(password="plain-text-pw")
    user = db.query(User).one()
    assert user.hashed_password and user.hashed_password != "plain-text-pw"


def test_signup_duplicate_email_conflicts(signup, client):
    signup()
    resp = client.post(
        "/api/auth/signup",
        json={"name": "Other", "email": "ASHA@example.com", "password": "x"},
    )
    assert resp.status_code == 409
    assert resp.json() == {"error": "User with this email already exists"}


def test_signup_requires_all_fields(client):
    resp = client.post("/api/auth/signup", json={"email": "a@b.co", "password": "pw"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Name, email, and password are required"


def test_signin_and_session_resolves_user(signup, client):
    signup()
    client.cookies.clear()
    assert client.get("/api/user/profile").status_code == 401

    resp = client.post("/api/auth/signin", json={"email": "asha@example.com", "password": "s3cret-pass"})
    assert resp.status_code == 200
    assert client.get("/api/user/profile").json()["user"]["email"] == "asha@example.com"


def test_signin_wrong_password(signup, client):
    signup()
    resp = client.post("/api/auth/signin", json={"email": "asha@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}


def test_signin_missing_fields(client):
    resp = client.post("/api/auth/signin", json={"email": "asha@example.com"})
    assert resp.status_code == 400


def test_bearer_session_header(signup, client, fake_redis):
    resp = signup()
    sid = resp.cookies[SESSION_COOKIE_NAME]
    client.cookies.clear()
    r = client.get("/api/user/profile", headers={"Authorization": f"Bearer {sid}"})
    assert r.status_code == 200


def test_signout_drops_session(signup, client, fake_redis):
    resp = signup()
    sid = resp.cookies[SESSION_COOKIE_NAME]
    assert fake_redis.get(f"session:{sid}") is not None

    assert client.post("/api/auth/signout").json() == {"success": True}
    assert fake_redis.get(f"session:{sid}") is None
    client.cookies.set(SESSION_COOKIE_NAME, sid)
    assert client.get("/api/user/profile").status_code == 401


def test_signup_rejects_malformed_email(client, db):
    resp = client.post(
        "/api/auth/signup",
        json={"name": "Asha", "email": "not-an-email", "password": "s3cret-pass"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("email:")
    assert db.query(User).count() == 0


def test_signin_rejects_malformed_email(client):
    resp = client.post("/api/auth/signin", json={"email": "asha@", "password": "pw"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("email:")


def test_password_truncates_on_utf8_bytes():
    pw = "é" * 50   # 100 bytes
    hashed = get_password_hash(pw)
    assert verify_password(pw, hashed)
    # same first 72 bytes (36 chars), different tail
    assert verify_password("é" * 36 + "x" * 10, hashed)
    assert not verify_password("é" * 35, hashed)
