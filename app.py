# app.py — JSON solve endpoint; progress no-cache
from __future__ import annotations
import os
import time
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, request, send_from_directory, jsonify

from solver.orchestrator import ENGINES, solve as run_solver
from puzzles import BUILTIN_PUZZLES, builtin_puzzle, parse_puzzle_payload
from config import CFG
from io_files import solutions_payload, write_outputs
from render import piece_table, render_layers
from models import MODES, fmt_elapsed

from progress import (
    reset as progress_reset,
    as_json as progress_json,
    start_timer as progress_start,
    set_status, set_done, set_message,
)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Rendered layer views are capped so a full enumeration stays a small response.
MAX_RENDERED = 20


def _resolve_output_paths(configured: str, fallback: str) -> Tuple[str, str, str]:
    name = (configured or "").strip() or fallback
    if os.path.isabs(name):
        full_path = name
    else:
        full_path = os.path.abspath(os.path.join(BASE_DIR, name))
    directory = os.path.dirname(full_path) or BASE_DIR
    filename = os.path.basename(full_path) or fallback
    return full_path, directory, filename


_SOLUTIONS_FULL_PATH, SOLUTIONS_DIR, SOLUTIONS_FILENAME = _resolve_output_paths(
    CFG.SOLUTIONS_OUT, "solutions.txt"
)
_JSON_FULL_PATH, JSON_DIR, JSON_FILENAME = _resolve_output_paths(
    CFG.SOLUTIONS_JSON, "solutions.json"
)

LAST_RESULT: Dict[str, Any] = {
    "ok": False,
    "status": "idle",
    "reason": "",
    "puzzle": "",
    "count": 0,
    "elapsed_str": "0.00s",
    "solutions": [],
    "layers": [],
    "pieces": [],
    "solutions_filename": SOLUTIONS_FILENAME,
    "json_filename": JSON_FILENAME,
}

app = Flask(__name__)


@app.after_request
def _no_cache_progress(resp):
    if request.path == "/progress":
        resp.headers["Cache-Control"] = "no-store, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


def _merge_like_mapping() -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        merged.update(payload)

    # form / query fields only fill the scalar options (builtin, mode, ...)
    for source in (request.form, request.args):
        for k, v in source.to_dict(flat=True).items():
            merged.setdefault(k, v)
    return merged


def _opt_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{field}' must be an integer") from None


def _opt_float(value: Any, field: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{field}' must be a number") from None


def _opt_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "no", "off")
    return bool(value)


def _solve_options(like: Dict[str, Any]) -> Dict[str, Any]:
    mode = like.get("mode") or None
    if mode is not None and mode not in MODES:
        raise ValueError(f"'mode' must be one of {', '.join(MODES)}")
    engine = like.get("engine") or None
    if engine is not None and engine not in ENGINES:
        raise ValueError(f"'engine' must be one of {', '.join(ENGINES)}")
    raw = _opt_bool(like.get("raw"))
    canonicalize = _opt_bool(like.get("canonicalize"))
    if raw is not None and canonicalize is None:
        canonicalize = not raw
    return {
        "mode": mode,
        "engine": engine,
        "workers": _opt_int(like.get("workers"), "workers"),
        "canonicalize": canonicalize,
        "max_seconds": _opt_float(like.get("max_seconds"), "max_seconds"),
    }


def _bad_request(reason: str, like: Dict[str, Any]):
    seen_keys = ", ".join(list(like.keys())[:8]) or "—"
    reason = f"{reason} (saw keys: {seen_keys})"
    set_status("Error")
    set_done(False, message=reason)
    LAST_RESULT.update({
        "ok": False,
        "status": "bad_request",
        "reason": reason,
        "puzzle": str(like.get("name") or like.get("builtin") or ""),
        "count": 0,
        "elapsed_str": fmt_elapsed(0.0),
        "solutions": [],
        "layers": [],
        "pieces": [],
    })
    return jsonify({"ok": False, "reason": reason}), 400


@app.route("/puzzles")
def puzzles():
    out: List[Dict[str, Any]] = []
    for name in sorted(BUILTIN_PUZZLES):
        puzzle = builtin_puzzle(name)
        x, y, z = puzzle.target.dims()
        out.append({
            "name": name,
            "dims": [x, y, z],
            "cells": len(puzzle.target),
            "pieces": piece_table(puzzle),
        })
    return jsonify(out)


@app.route("/solve", methods=["POST"])
def solve():
    progress_reset()
    progress_start()
    set_status("Solving")

    like = _merge_like_mapping()
    puzzle, err = parse_puzzle_payload(like)
    if err or puzzle is None:
        return _bad_request(f"Bad puzzle: {err or 'nothing parsed from request'}", like)
    try:
        opts = _solve_options(like)
    except ValueError as e:
        return _bad_request(f"Bad options: {e}", like)

    t0 = time.time()
    result = run_solver(puzzle, **opts)
    if result.is_config_error:
        set_message(result.error)
        return _bad_request(f"Configuration error: {result.error}", like)

    solutions_name = SOLUTIONS_FILENAME
    json_name = JSON_FILENAME
    try:
        text_path, json_path = write_outputs(puzzle, result, BASE_DIR)
    except OSError as e:
        set_message(f"could not write solution files: {e}")
    else:
        solutions_name = os.path.basename(text_path) or SOLUTIONS_FILENAME
        json_name = os.path.basename(json_path) or JSON_FILENAME

    payload = solutions_payload(puzzle, result)
    LAST_RESULT.update({
        "ok": result.ok,
        "status": result.status,
        "reason": result.reason or "",
        "puzzle": puzzle.name,
        "count": result.count,
        "elapsed_str": fmt_elapsed(time.time() - t0),
        "solutions": payload["solutions"],
        "layers": [render_layers(puzzle, s) for s in result.solutions[:MAX_RENDERED]],
        "pieces": piece_table(puzzle),
        "solutions_filename": solutions_name,
        "json_filename": json_name,
    })
    payload["elapsed_str"] = LAST_RESULT["elapsed_str"]
    payload["result_url"] = "/result/latest"
    return jsonify(payload)


@app.route("/result/latest")
def result_latest():
    return jsonify(LAST_RESULT)


@app.route("/download/solutions")
def download_solutions():
    return send_from_directory(SOLUTIONS_DIR, SOLUTIONS_FILENAME, as_attachment=True)


@app.route("/download/json")
def download_json():
    return send_from_directory(JSON_DIR, JSON_FILENAME, as_attachment=True)


@app.route("/progress")
def progress():
    return jsonify(progress_json())


if __name__ == "__main__":
    app.run(debug=False)
