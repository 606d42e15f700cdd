from vtuhub.extensions import db


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["db"] == "ok"


def test_register_then_login(client):
    resp = client.post("/api/auth/register", json={"email": "Ada@Example.com", "password": "secret123", "name": "Ada"})
    assert resp.status_code == 201
    assert resp.get_json()["user"]["tier"] == "subscriber"

    dup = client.post("/api/auth/register", json={"email": "ada@example.com", "password": "secret123"})
    assert dup.status_code == 409

    bad = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
    assert bad.status_code == 401

    ok = client.post("/api/auth/login", json={"email": "ada@example.com", "password": "secret123"})
    assert ok.status_code == 200
    token = ok.get_json()["token"]
    wallet = client.get("/api/wallet", headers={"Authorization": f"Bearer {token}"})
    assert wallet.get_json()["wallet"]["balance"] == "0.00"


def test_garbage_token_is_unauthorized(client):
    resp = client.get("/api/wallet", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_blocked_user_is_unauthorized(client, make_user, auth_header):
    u = make_user()
    headers = auth_header(u)
    u.is_blocked = True
    db.session.commit()
    assert client.get("/api/wallet", headers=headers).status_code == 401


def test_only_admin_sets_tier(client, make_user, auth_header):
    admin = make_user(role="admin")
    u = make_user()

    assert client.post(f"/api/auth/users/{u.id}/tier", json={"tier": "agent"}, headers=auth_header(u)).status_code == 403
    assert client.post(f"/api/auth/users/{u.id}/tier", json={"tier": "gold"}, headers=auth_header(admin)).status_code == 400

    resp = client.post(f"/api/auth/users/{u.id}/tier", json={"tier": "agent"}, headers=auth_header(admin))
    assert resp.status_code == 200
    assert resp.get_json()["user"]["tier"] == "agent"
