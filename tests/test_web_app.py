import numpy as np
import pytest
from fastapi.testclient import TestClient

from face_gate.config import GateSettings
from face_gate.exceptions import NoDeviceError, PersistError
from face_gate.runtime import build_runtime
from face_gate.web_app import create_web_app


@pytest.fixture
def runtime(tmp_path, memory_engine, camera, extractor, decoder, timers, executor):
    settings = GateSettings(project_root=tmp_path)
    return build_runtime(
        settings,
        camera=camera,
        extractor=extractor,
        decoder=decoder,
        timer_factory=timers,
        executor=executor,
        db_engine=memory_engine,
    )


@pytest.fixture
def client(runtime):
    with TestClient(create_web_app(runtime)) as test_client:
        yield test_client


def test_health_endpoint(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["identities"] == 0


def test_register_then_list_returns_descriptors_unchanged(client):
    first = client.post("/api/register", json={"descriptor": [0.5, -0.25, 0.125], "identity": "alice"})
    second = client.post("/api/register", json={"descriptor": [0.1, 0.2, 0.3]})

    assert first.status_code == 200
    assert first.json()["face"] == {"id": 1, "identity": "alice", "descriptor": [0.5, -0.25, 0.125]}
    assert second.json()["face"]["identity"] == "user_2"

    listed = client.get("/api/register").json()
    assert [face["descriptor"] for face in listed] == [[0.5, -0.25, 0.125], [0.1, 0.2, 0.3]]
    assert [face["identity"] for face in listed] == ["alice", "user_2"]


def test_register_updates_live_gallery(client, runtime):
    client.post("/api/register", json={"descriptor": [1.0, 0.0, 0.0], "identity": 7})

    assert runtime.matcher.find_best_match([1.0, 0.0, 0.0]).identity == 7
    assert client.get("/api/register").json()[0]["identity"] == 7


@pytest.mark.parametrize(
    "payload",
    [
        {"descriptor": []},
        {"descriptor": [1.0, 2.0, 3.0], "identity": "  "},
    ],
)
def test_register_rejects_bad_requests(client, payload):
    response = client.post("/api/register", json=payload)

    assert response.status_code == 400


def test_register_rejects_dimension_mismatch(client):
    client.post("/api/register", json={"descriptor": [1.0, 0.0, 0.0], "identity": "alice"})

    response = client.post("/api/register", json={"descriptor": [1.0, 0.0], "identity": "bob"})

    assert response.status_code == 400
    assert len(client.get("/api/register").json()) == 1


def test_session_lifecycle_and_results(client, camera, timers, executor):
    client.post("/api/register", json={"descriptor": [1.0, 0.0, 0.0], "identity": "alice"})

    started = client.post("/api/session/start", json={"mode": "face"})
    assert started.status_code == 200
    assert started.json()["running"] is True
    assert started.json()["status"] == "ready"

    timers.tick()
    executor.run_all()

    results = client.get("/api/results").json()["results"]
    assert len(results) == 1
    assert results[0]["kind"] == "face"
    assert results[0]["label"] == "alice"
    assert results[0]["confidence"] == 100

    switched = client.post("/api/session/mode", json={"mode": "qr"}).json()
    assert switched["transition"] == "apply"
    assert switched["mode"] == "qr"

    stopped = client.post("/api/session/stop").json()
    assert stopped["running"] is False
    assert all(stream.stopped for stream in camera.streams)


def test_session_start_without_camera_is_conflict(client, camera):
    camera.error = NoDeviceError("No camera device found for index 0.")

    response = client.post("/api/session/start", json={"mode": "qr"})

    assert response.status_code == 409
    state = client.get("/api/session").json()
    assert state["status"] == "error"
    assert state["error"] == "No camera device found for index 0."


def test_storage_failure_at_startup_marks_session_error(runtime, monkeypatch):
    def broken():
        raise PersistError("database is locked")

    monkeypatch.setattr(runtime.repository, "list_faces", broken)

    with TestClient(create_web_app(runtime)) as client:
        state = client.get("/api/session").json()
        listing = client.get("/api/register")

    assert state["status"] == "error"
    assert "database is locked" in state["error"]
    assert listing.status_code == 500
    assert listing.json() == {"detail": "Internal server error"}


def test_mixed_dimension_rows_at_startup_mark_session_error(runtime):
    runtime.repository.create_schema()
    runtime.repository.save_enrollment("a", np.array([1.0, 0.0]))
    runtime.repository.save_enrollment("b", np.array([1.0, 0.0, 0.0]))

    with TestClient(create_web_app(runtime)) as client:
        state = client.get("/api/session").json()

    assert state["status"] == "error"
    assert "gallery expects 2" in state["error"]
    assert runtime.scheduler.state.active_stream is None
