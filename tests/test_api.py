import inspect

import pytest
from fastapi.testclient import TestClient

from conftest import token
from panelhunt import main


@pytest.fixture
def client(monkeypatch, frame):
    tokens = [token("123", 10, 10, 50, 20), token("lobby"), token("123", 400, 300)]
    board, engine, scanner = main.build_runtime(main.CONFIG, lambda: frame, lambda img: tokens)
    monkeypatch.setattr(main, "BOARD", board)
    monkeypatch.setattr(main, "ENGINE", engine)
    monkeypatch.setattr(main, "SCANNER", scanner)
    return TestClient(main.app)


def test_question_then_answer_round(client):
    r = client.post("/scan/tick")
    assert r.status_code == 200
    assert r.json()["active"] == ["123"]

    q = client.get("/render/question").json()["entries"]
    assert [e["code"] for e in q] == ["123"]
    assert q[0]["image"].startswith("data:image/jpeg;base64,")

    assert client.post("/mode/answer").json() == {"mode": "answer"}
    client.post("/scan/tick")
    client.post("/scan/tick")

    state = client.get("/state").json()
    assert state["cached"] == ["123"] and state["revealed"] == ["123"]
    a = client.get("/render/answer").json()["entries"]
    assert [e["code"] for e in a] == ["123"]


def test_answer_first_then_question_reveals(client):
    client.post("/mode/answer")
    client.post("/scan/tick")
    assert client.get("/render/answer").json()["entries"] == []

    client.post("/mode/question")
    client.post("/scan/tick")
    assert [e["code"] for e in client.get("/render/answer").json()["entries"]] == ["123"]


def test_recognizer_outage_is_an_empty_tick(client, monkeypatch):
    def offline(img):
        raise RuntimeError("Vision request failed")

    board, engine, scanner = main.build_runtime(main.CONFIG, lambda: None, offline)
    monkeypatch.setattr(main, "ENGINE", engine)
    monkeypatch.setattr(main, "SCANNER", scanner)

    r = client.post("/scan/tick")
    assert r.status_code == 200
    assert r.json()["applied"] is True and r.json()["active"] == []


def test_reset_requires_confirmation_for_hard(client):
    client.post("/mode/answer")
    client.post("/scan/tick")

    assert client.post("/reset").json()["cached"] == ["123"]
    assert client.post("/reset", params={"hard": True}).status_code == 400

    r = client.post("/reset", params={"hard": True, "confirm": True})
    assert r.status_code == 200
    assert r.json()["cached"] == []


def test_bad_mode_and_area(client):
    assert client.post("/mode/sideways").status_code == 400
    assert client.get("/render/sidebar").status_code == 404


def test_health(client):
    body = client.get("/health").json()
    assert body["mode"] == "question"
    assert body["holding"] is False
    assert set(body) >= {"camera", "recognizer", "version"}


def test_render_snapshot_lists_both_areas(client):
    client.post("/scan/tick")
    body = client.get("/render").json()
    assert set(body) == {"question", "answer"}
    assert [e["code"] for e in body["question"]] == ["123"]
    assert body["answer"] == []


@pytest.mark.parametrize("handler", ["health", "state", "render_all", "render_area", "set_mode", "reset"])
def test_state_handlers_run_on_the_event_loop(handler):
    # sync handlers would run in the threadpool while ticks mutate the engine on the loop
    assert inspect.iscoroutinefunction(getattr(main, handler))


def test_camera_stream_without_camera(client, monkeypatch):
    monkeypatch.setattr(main, "CAMERA", main.Camera())
    assert client.get("/camera/stream").status_code == 500
