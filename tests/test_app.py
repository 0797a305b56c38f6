import os

import pytest

pytest.importorskip("flask")

import app as app_module


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(app_module, "BASE_DIR", str(tmp_path))
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        yield c


def test_puzzles_lists_builtins(client):
    resp = client.get("/puzzles")
    assert resp.status_code == 200
    names = {p["name"] for p in resp.get_json()}
    assert {"bedlam", "soma", "domino-2x2x2", "domino-1x1x2"} <= names


def test_solve_builtin_returns_solutions(client, tmp_path):
    resp = client.post("/solve", json={"builtin": "domino-2x2x2", "mode": "all", "workers": 1})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "complete"
    assert data["count"] == 2
    assert data["raw_count"] == 9
    assert len(data["solutions"]) == 2
    assert os.path.exists(os.path.join(str(tmp_path), app_module.CFG.SOLUTIONS_OUT))

    latest = client.get("/result/latest").get_json()
    assert latest["ok"] is True
    assert latest["puzzle"] == "domino-2x2x2"
    assert len(latest["layers"]) == 2


def test_solve_raw_flag_disables_canonicalisation(client):
    resp = client.post("/solve", json={"builtin": "domino-2x2x2", "mode": "all", "workers": 1, "raw": True})
    assert resp.get_json()["count"] == 9


def test_solve_custom_unsolvable_payload(client):
    payload = {
        "name": "tee",
        "cells": [[0, 0, 0], [1, 0, 0], [2, 0, 0], [1, 1, 0]],
        "pieces": [{"name": "d", "cells": "000-100", "count": 2}],
        "workers": 1,
    }
    resp = client.post("/solve", json=payload)
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "unsolvable"
    assert data["ok"] is False


def test_bad_payload_is_400(client):
    resp = client.post("/solve", json={"dims": 2})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["ok"] is False
    assert "Bad puzzle" in body["reason"]


def test_bad_options_are_400(client):
    resp = client.post("/solve", json={"builtin": "domino-1x1x2", "mode": "sometimes"})
    assert resp.status_code == 400
    resp = client.post("/solve", json={"builtin": "domino-1x1x2", "workers": "many"})
    assert resp.status_code == 400


def test_configuration_error_is_400(client):
    payload = {"dims": [2, 2, 2], "pieces": [{"cells": "000-001", "count": 3}], "workers": 1}
    resp = client.post("/solve", json=payload)
    assert resp.status_code == 400
    assert "Configuration error" in resp.get_json()["reason"]


def test_progress_is_not_cached(client):
    client.post("/solve", json={"builtin": "domino-1x1x2", "workers": 1})
    resp = client.get("/progress")
    assert resp.status_code == 200
    assert resp.headers["Cache-Control"] == "no-store, max-age=0"
    snap = resp.get_json()
    assert snap["done"] is True
    assert snap["puzzle"] == "domino-1x1x2"
