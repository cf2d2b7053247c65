from __future__ import annotations

import time

from redis.exceptions import ConnectionError as RedisConnectionError

from cadence.core.security import create_access_token, decode_access_token, hash_password, verify_password
from cadence.db.session import open_session
from cadence.models import ROLE_ADMIN, User


def _register(client, email: str, password: str = "password123") -> dict[str, str]:
    response = client.post("/v1/auth/register", json={"email": email, "name": email.split("@")[0], "password": password})
    assert response.status_code == 201
    body = response.json()["data"]
    return {"id": body["user"]["id"], "token": body["tokens"]["access_token"]}


def _promote_to_admin(user_id: str) -> None:
    with open_session() as db:
        user = db.get(User, user_id)
        assert user is not None
        user.role = ROLE_ADMIN
        db.commit()


def _wait_for_counts(client, token: str, queue_name: str, state: str, expected: int) -> dict[str, int]:
    deadline = time.monotonic() + 5.0
    counts: dict[str, int] = {}
    while time.monotonic() < deadline:
        response = client.get(f"/v1/jobs/{queue_name}", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        counts = response.json()["data"]["counts"]
        if counts[state] >= expected:
            return counts
        time.sleep(0.02)
    return counts


def test_password_hashing_round_trip():
    plain_password = "password123"
    hashed_password = hash_password(plain_password)

    assert hashed_password != plain_password
    assert verify_password(plain_password, hashed_password)
    assert not verify_password("wrong-password", hashed_password)


def test_access_token_carries_subject_and_role():
    token = create_access_token(subject="user-1", role="USER")
    claims = decode_access_token(token)

    assert claims["sub"] == "user-1"
    assert claims["role"] == "USER"
    assert claims["type"] == "access"


def test_register_and_login(client):
    registered = _register(client, "alice@example.com")

    duplicate = client.post(
        "/v1/auth/register",
        json={"email": "ALICE@example.com", "name": "alice", "password": "password123"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "email_taken"

    login = client.post("/v1/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert login.status_code == 200
    assert login.json()["data"]["user"]["id"] == registered["id"]
    assert login.json()["data"]["tokens"]["token_type"] == "bearer"

    bad_login = client.post("/v1/auth/login", json={"email": "alice@example.com", "password": "wrong-password"})
    assert bad_login.status_code == 401
    assert bad_login.json()["error"]["code"] == "invalid_credentials"


def test_register_rejects_invalid_payload(client):
    response = client.post("/v1/auth/register", json={"email": "not-an-email", "password": "short"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "validation_error"
    fields = {detail["field"] for detail in response.json()["error"]["details"]}
    assert fields == {"email", "password"}


def test_registration_enqueues_user_created_job(client):
    admin = _register(client, "admin@example.com")
    _promote_to_admin(admin["id"])

    counts = _wait_for_counts(client, admin["token"], "user-events", "waiting", 1)
    assert counts["waiting"] == 1

    job = client.get("/v1/jobs/user-events/1", headers={"Authorization": f"Bearer {admin['token']}"})
    assert job.status_code == 200
    data = job.json()["data"]
    assert data["name"] == "user.created"
    assert data["state"] == "waiting"
    assert data["data"]["userId"] == admin["id"]
    assert data["data"]["email"] == "admin@example.com"
    assert data["attempts"] == 3


def test_jobs_endpoints_require_admin(client):
    user = _register(client, "bob@example.com")

    forbidden = client.get("/v1/jobs/email", headers={"Authorization": f"Bearer {user['token']}"})
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "forbidden"

    anonymous = client.get("/v1/jobs/email")
    assert anonymous.status_code == 401


def test_jobs_endpoints_report_unknown_queue_and_job(client):
    admin = _register(client, "root@example.com")
    _promote_to_admin(admin["id"])
    headers = {"Authorization": f"Bearer {admin['token']}"}

    unknown_queue = client.get("/v1/jobs/not-a-queue", headers=headers)
    assert unknown_queue.status_code == 404
    assert unknown_queue.json()["error"]["code"] == "queue_not_found"

    unknown_job = client.get("/v1/jobs/email/999", headers=headers)
    assert unknown_job.status_code == 404
    assert unknown_job.json()["error"]["code"] == "job_not_found"


def test_jobs_endpoint_reports_unreachable_queue(client, monkeypatch):
    admin = _register(client, "root@example.com")
    _promote_to_admin(admin["id"])

    async def refuse():
        raise RedisConnectionError("Connection refused")

    monkeypatch.setattr(client.app.state.job_queues.get("email"), "get_counts", refuse)
    response = client.get("/v1/jobs/email", headers={"Authorization": f"Bearer {admin['token']}"})

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "queue_unavailable"


def test_auth_rate_limit(client):
    statuses = []
    for _ in range(13):
        response = client.post("/v1/auth/login", json={"email": "nobody@example.com", "password": "password123"})
        statuses.append(response.status_code)

    assert statuses[:12] == [401] * 12
    assert statuses[12] == 429
