"""
tests/test_api.py — REST endpoints against an unbound Meld client.
Run with: pytest tests/ -v
"""

import pytest
from fastapi.testclient import TestClient

from meld_relay.api import create_app
from meld_relay.config import Settings
from meld_relay.core import MeldClient
from meld_relay.surface import ControlHost, ControlSurfaceProjector


async def refuse(url):
    raise ConnectionRefusedError(f"connect to {url} refused")


@pytest.fixture
def meld(monkeypatch, tmp_path):
    monkeypatch.setattr("meld_relay.config.settings._settings", Settings(config_file=tmp_path / "config.yaml"))
    client = MeldClient(control_host=ControlHost(), connector=refuse, reconnect_interval=60.0)
    ControlSurfaceProjector(client.control_host, client).attach()
    client.registry.refresh([{"id": "1", "name": "Cam (Live)"}, {"id": "2", "name": "Slides"}])
    monkeypatch.setattr("meld_relay.core.connection_manager._meld_client", client)
    return client


@pytest.fixture
def api(meld):
    with TestClient(create_app()) as test_client:
        yield test_client


def test_status_reports_unbound(api):
    r = api.get("/status")
    assert r.status_code == 200
    body = r.json()
    assert body["phase"] == "idle"
    assert body["connected"] is False
    assert body["recording"] == {"active": False, "timecode": "00:00:00"}


def test_healthz_is_503_when_not_bound(api):
    assert api.get("/healthz").status_code == 503
    assert api.get("/health").json()["meld_connected"] is False


def test_lists_scenes_actions_and_presets(api):
    scenes = api.get("/scenes").json()
    assert scenes["scenes"] == [{"id": "1", "name": "Cam"}, {"id": "2", "name": "Slides"}]

    action_ids = {a["action_id"] for a in api.get("/actions").json()}
    assert {"show_scene_1", "show_scene_2", "toggle_record"} <= action_ids

    presets = api.get("/presets").json()
    assert len(presets) == 8
    assert presets[0]["steps"][0]["down"] == [{"actionId": "show_scene_1", "options": {}}]


def test_variables(api):
    body = api.get("/variables").json()
    assert body["values"] == {"recording_timecode": "00:00:00", "streaming_timecode": "00:00:00"}
    assert len(body["definitions"]) == 2


def test_feedback_evaluation(api, meld):
    meld.current_scene_id = "2"
    assert api.get("/feedbacks/scene_active", params={"scene": "2"}).json()["value"] is True
    assert api.get("/feedbacks/scene_active", params={"scene": "1"}).json()["value"] is False
    assert api.get("/feedbacks/missing").status_code == 404


def test_press_action(api, meld):
    r = api.post("/actions/start_stream")
    assert r.status_code == 200
    assert meld.streaming.active

    api.post("/actions/stop_stream")
    assert not meld.streaming.active
    assert api.post("/actions/does_not_exist").status_code == 404


def test_refresh_scenes_requires_connection(api):
    assert api.post("/scenes/refresh").status_code == 503


def test_update_config_reconnects(api, meld):
    r = api.put("/config", json={"host": "10.0.0.9", "port": 14001})
    assert r.status_code == 200
    assert r.json()["status"] == "reconnecting"
    assert (meld.host, meld.port) == ("10.0.0.9", 14001)
    assert api.get("/config").json() == {"host": "10.0.0.9", "port": 14001}


def test_update_config_rejects_bad_port(api):
    assert api.put("/config", json={"port": 70000}).status_code == 422


def test_ws_sends_snapshot_and_answers_commands(api):
    with api.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["event"] == "connected"
        assert hello["data"]["variables"]["recording_timecode"] == "00:00:00"

        ws.send_json({"cmd": "get_status"})
        reply = ws.receive_json()
        while "phase" not in reply:
            reply = ws.receive_json()
        assert reply["connected"] is False

        ws.send_json({"cmd": "bogus"})
        reply = ws.receive_json()
        while "error" not in reply:
            reply = ws.receive_json()
        assert reply["error"] == "Unknown command: bogus"
