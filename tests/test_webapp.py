import logging

import pytest

from config import database
from monitoring.log_buffer import LogBufferHandler
from webapp.app import create_app

from tests.conftest import URL


@pytest.fixture
def log_buffer():
    return LogBufferHandler(capacity=20)


@pytest.fixture
def client(monitor, log_buffer):
    app = create_app(monitor, log_buffer=log_buffer)
    app.config["TESTING"] = True
    return app.test_client()


def create(client, **payload):
    body = {"url": URL, "search_text": "Tickets"}
    body.update(payload)
    return client.post("/api/monitors", json=body)


def test_create_and_list_monitors(client, platform):
    response = create(client, interval_seconds=30, label="Main hall")

    assert response.status_code == 201
    monitor = response.get_json()["monitor"]
    assert monitor["match_spec"] == [{"term": "Tickets", "joiner": None}]
    assert monitor["display_label"] == "Main hall"
    assert platform.target_exists(monitor["target_handle"])
    assert isinstance(monitor["next_refresh_at"], str)

    listed = client.get("/api/monitors").get_json()["monitors"]
    assert [m["id"] for m in listed] == [monitor["id"]]


def test_create_with_terms(client):
    terms = [{"term": "A", "joiner": None}, {"term": "B", "joiner": "AND"}]
    response = create(client, terms=terms, search_text=None)
    assert response.get_json()["monitor"]["match_spec"] == terms


def test_invalid_requests(client):
    assert create(client, url="nope").status_code == 400
    assert create(client, search_text="").status_code == 400
    assert client.get("/api/monitors/missing").status_code == 404
    assert client.delete("/api/monitors/missing").status_code == 404


def test_stop_and_dismiss(client):
    monitor_id = create(client).get_json()["monitor"]["id"]

    assert client.post(f"/api/monitors/{monitor_id}/dismiss").status_code == 400
    assert client.delete(f"/api/monitors/{monitor_id}").get_json() == {"status": "stopped"}
    assert database.get_watch(monitor_id) is None


def test_dismiss_found_monitor(client, monitor, platform):
    created = create(client).get_json()["monitor"]
    platform.load(created["target_handle"], "<body>Tickets available</body>")
    monitor.dispatcher.drain()

    assert client.post(f"/api/monitors/{created['id']}/dismiss").get_json() == {"status": "dismissed"}
    history = client.get("/api/history").get_json()["history"]
    assert [h["watch_id"] for h in history] == [created["id"]]
    assert client.delete("/api/history/3").status_code == 404
    assert client.delete("/api/history/0").status_code == 200
    assert client.get("/api/history").get_json()["history"] == []


def test_target_status_and_ephemeral(client):
    created = create(client).get_json()["monitor"]

    status = client.get(f"/api/targets/{created['target_handle']}/status").get_json()
    assert status["is_monitored"] is True

    response = client.post(f"/api/monitors/{created['id']}/ephemeral").get_json()
    assert response["status"] == "enabled"
    assert response["monitor"]["session_kind"] == "ephemeral"


def test_stop_all(client):
    create(client)
    create(client, url="https://example.org/other")

    assert client.post("/api/monitors/stop-all").get_json() == {"status": "all stopped", "removed": 2}
    assert client.get("/api/monitors").get_json()["monitors"] == []


def test_saved_configs(client):
    create(client)

    saved = client.post("/api/configs", json={"name": "Weekend"})
    assert saved.status_code == 201
    config_id = saved.get_json()["config"]["id"]
    assert [c["name"] for c in client.get("/api/configs").get_json()["configs"]] == ["Weekend"]

    client.post("/api/monitors/stop-all")
    restored = client.post(f"/api/configs/{config_id}/restore").get_json()
    assert len(restored["monitors"]) == 1

    assert client.delete(f"/api/configs/{config_id}").get_json() == {"status": "deleted"}
    assert client.delete(f"/api/configs/{config_id}").status_code == 404


def test_logs(client, log_buffer):
    logger = logging.getLogger("monitoring.webapp_test")
    logger.setLevel(logging.INFO)
    logger.addHandler(log_buffer)
    try:
        logger.info("refresh scheduled")
        logging.getLogger("other.webapp_test").addHandler(log_buffer)
        logging.getLogger("other.webapp_test").warning("unrelated")
    finally:
        logger.removeHandler(log_buffer)
        logging.getLogger("other.webapp_test").removeHandler(log_buffer)

    messages = [e["message"] for e in client.get("/api/logs?filter=monitoring").get_json()["logs"]]
    assert messages == ["refresh scheduled"]
    assert len(client.get("/api/logs").get_json()["logs"]) == 2

    client.delete("/api/logs")
    assert client.get("/api/logs").get_json()["logs"] == []


def test_health_check(client):
    body = client.get("/admin/monitoring/status").get_json()
    assert body["status"] == "ok"
    assert body["watches"] == 0
    assert body["watchdog_running"] is False
