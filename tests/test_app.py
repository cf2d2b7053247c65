from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError


def test_health_reports_queue_and_connections(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["data"] == {"ok": True, "queues": "up", "connections": 0}


def test_health_reports_unreachable_redis(client, monkeypatch):
    async def refuse():
        raise RedisConnectionError("Connection refused")

    monkeypatch.setattr(client.app.state.job_queues._client, "ping", refuse)
    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["data"]["queues"] == "down"


def test_server_uses_transport_pings_for_liveness(monkeypatch):
    import uvicorn

    import cadence.main as main_module

    calls = {}
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))
    main_module.run()

    heartbeat = main_module.settings.ws_heartbeat_sec
    assert calls["app"] == "cadence.main:app"
    assert (calls["ws_ping_interval"], calls["ws_ping_timeout"]) == (heartbeat, heartbeat)
