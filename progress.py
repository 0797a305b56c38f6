from __future__ import annotations

import json
import logging
import os
import time
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from models import fmt_elapsed

# ------------------------------
# Thread-safe global progress state
# ------------------------------

PROGRESS_LOCK = threading.Lock()


def _state_file_path() -> Path:
    configured = os.environ.get("PROGRESS_STATE_FILE")
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "logs" / "progress_state.json"


STATE_FILE = _state_file_path()
STATE_FILE_TMP = STATE_FILE.with_name(STATE_FILE.name + ".tmp")
_LAST_STATE_MTIME: float = 0.0


def _init_logger() -> logging.Logger:
    logger = logging.getLogger("solver.run_log")
    if logger.handlers:
        return logger

    log_path = Path(__file__).resolve().parent / "logs" / "solver_runs.log"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    except OSError:
        # A read-only checkout still solves; it just keeps no run log.
        logger.handlers.clear()
    return logger


RUN_LOGGER = _init_logger()


def _log_enabled() -> bool:
    return bool(RUN_LOGGER.handlers)


def _fmt_seconds(seconds: Optional[float]) -> Optional[str]:
    if seconds is None:
        return None
    try:
        return f"{float(seconds):.2f}s"
    except (TypeError, ValueError):
        return None


def _emit_log(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    if not _log_enabled():
        return
    extras = [
        f"{key}={value}"
        for key, value in fields.items()
        if value is not None and value != ""
    ]
    if extras:
        RUN_LOGGER.log(level, "%s | %s", event, " ".join(extras))
    else:
        RUN_LOGGER.log(level, "%s", event)


def log_run_detail(event: str, **fields: Any) -> None:
    """Free-form run log line (``event | key=value ...``)."""
    _emit_log(event, **fields)


def log_run_warning(event: str, **fields: Any) -> None:
    _emit_log(event, level=logging.WARNING, **fields)


LOG_STATE: Dict[str, Any] = {
    "run_start": None,
    "phase": "",
    "phase_start": None,
}


def _persist_locked() -> None:
    global _LAST_STATE_MTIME
    try:
        STATE_FILE.parent.mkdir(parents=True, exist_ok=True)
        with STATE_FILE_TMP.open("w", encoding="utf-8") as fh:
            json.dump(PROGRESS, fh, ensure_ascii=False, separators=(",", ":"))
        STATE_FILE_TMP.replace(STATE_FILE)
        try:
            _LAST_STATE_MTIME = STATE_FILE.stat().st_mtime
        except OSError:
            _LAST_STATE_MTIME = time.time()
    except OSError:
        # Persistence must never break solver progress updates.
        pass


def _load_persisted_locked(force: bool = False) -> None:
    global _LAST_STATE_MTIME
    try:
        stat = STATE_FILE.stat()
    except OSError:
        return
    if not force and stat.st_mtime <= _LAST_STATE_MTIME:
        return
    try:
        with STATE_FILE.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError):
        return
    if not isinstance(data, dict):
        return
    for key in PROGRESS.keys():
        if key in data:
            PROGRESS[key] = data[key]
    _LAST_STATE_MTIME = stat.st_mtime


def _log_phase_transition_locked(new_phase: str) -> None:
    prev_phase = LOG_STATE.get("phase") or ""
    if new_phase == prev_phase:
        return
    now = _now()
    if prev_phase and LOG_STATE.get("phase_start"):
        duration = max(0.0, now - float(LOG_STATE["phase_start"]))
        _emit_log(
            "Phase finished",
            phase=prev_phase,
            duration=_fmt_seconds(duration),
        )
    LOG_STATE["phase"] = new_phase
    LOG_STATE["phase_start"] = now
    if new_phase:
        _emit_log("Phase started", phase=new_phase)

# Single source of truth for /progress
PROGRESS: Dict[str, Any] = {
    "status": "Idle",          # Idle | Solving | Solved | Complete | Unsolvable | Cancelled | Incomplete | Error
    "phase": "",               # validate | orientations | placements | search | done
    "puzzle": "",              # puzzle name
    "mode": "",                # first | all
    "engine": "",              # backtrack | cp-sat
    "workers": 0,              # workers actually started
    "subtrees_total": 0,       # anchor subtrees scheduled
    "subtrees_done": 0,        # anchor subtrees finished
    "percent": 0.0,            # 0..100 float, subtrees_done / subtrees_total
    "solutions": 0,            # distinct solutions collected so far
    "nodes": 0,                # search nodes summed over finished subtrees
    "elapsed_start": None,     # t0 (float) when solving started
    "elapsed": 0.0,            # seconds snapshot
    "message": "",             # optional note
    "done": False,             # run completed
    "ok": None,                # success flag if known
    "degraded": False,         # some subtree was lost to a worker failure
    "run_id": 0,               # monotonically increasing identifier
}

# ------------------------------
# Helpers
# ------------------------------

def _now() -> float:
    return time.time()

def reset() -> None:
    with PROGRESS_LOCK:
        try:
            current_run_id = int(PROGRESS.get("run_id", 0))
        except (TypeError, ValueError):
            current_run_id = 0
        PROGRESS.update({
            "status": "Idle",
            "phase": "",
            "puzzle": "",
            "mode": "",
            "engine": "",
            "workers": 0,
            "subtrees_total": 0,
            "subtrees_done": 0,
            "percent": 0.0,
            "solutions": 0,
            "nodes": 0,
            "elapsed_start": None,
            "elapsed": 0.0,
            "message": "",
            "done": False,
            "ok": None,
            "degraded": False,
            "run_id": current_run_id + 1,
        })
        LOG_STATE.update({
            "phase": "",
            "phase_start": None,
            "run_start": None,
        })
        _emit_log("Progress reset")
        _persist_locked()

def start_timer() -> None:
    with PROGRESS_LOCK:
        now = _now()
        PROGRESS["elapsed_start"] = now
        PROGRESS["elapsed"] = 0.0
        LOG_STATE["run_start"] = now
        _emit_log("Run timer started")
        _persist_locked()

def _touch_elapsed_locked() -> None:
    t0 = PROGRESS.get("elapsed_start")
    if t0 is not None:
        PROGRESS["elapsed"] = _now() - float(t0)

def _as_int(n: Any) -> int:
    try:
        return max(0, int(n))
    except (TypeError, ValueError):
        return 0

# ------------------------------
# Setters (tolerant)
# ------------------------------

def set_status(v: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["status"] = str(v)
        _persist_locked()

def set_phase(v: Any) -> None:
    with PROGRESS_LOCK:
        phase_str = "" if v is None else str(v)
        PROGRESS["phase"] = phase_str
        _log_phase_transition_locked(phase_str)
        _touch_elapsed_locked()
        _persist_locked()

def set_run_info(puzzle: Any = None, *, mode: Any = None, engine: Any = None, workers: Any = None) -> None:
    with PROGRESS_LOCK:
        if puzzle is not None:
            PROGRESS["puzzle"] = str(puzzle)
        if mode is not None:
            PROGRESS["mode"] = str(mode)
        if engine is not None:
            PROGRESS["engine"] = str(engine)
        if workers is not None:
            PROGRESS["workers"] = _as_int(workers)
        _emit_log(
            "Run configured",
            puzzle=PROGRESS["puzzle"],
            mode=PROGRESS["mode"],
            engine=PROGRESS["engine"],
            workers=PROGRESS["workers"] or None,
        )
        _persist_locked()

def set_subtrees(done: Any, total: Any = None) -> None:
    with PROGRESS_LOCK:
        if total is not None:
            PROGRESS["subtrees_total"] = _as_int(total)
        PROGRESS["subtrees_done"] = _as_int(done)
        total_n = PROGRESS["subtrees_total"]
        if total_n:
            pct = 100.0 * PROGRESS["subtrees_done"] / total_n
            PROGRESS["percent"] = max(0.0, min(100.0, pct))
        _touch_elapsed_locked()
        _persist_locked()

def set_solutions(n: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["solutions"] = _as_int(n)
        _persist_locked()

def set_nodes(n: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["nodes"] = _as_int(n)
        _persist_locked()

def set_degraded(flag: Any = True) -> None:
    with PROGRESS_LOCK:
        PROGRESS["degraded"] = bool(flag)
        _persist_locked()

def set_message(msg: Any) -> None:
    with PROGRESS_LOCK:
        PROGRESS["message"] = "" if msg is None else str(msg)
        _persist_locked()

def set_done(ok: Any = None, *, status: Any = None, message: Any = None) -> None:
    """Mark the run complete.

    ``status`` names the final state shown to the UI (``Solved``,
    ``Unsolvable``...). When only ``ok`` is given the status falls back to
    ``Solved``/``Error``.
    """

    ok_flag: Optional[bool] = None if ok is None else bool(ok)
    if status is not None:
        final_status: Optional[str] = str(status)
    elif ok_flag is not None:
        final_status = "Solved" if ok_flag else "Error"
    else:
        final_status = None

    with PROGRESS_LOCK:
        _touch_elapsed_locked()
        now = _now()
        if final_status is not None:
            PROGRESS["status"] = final_status
        elif PROGRESS.get("status") in ("", "Idle", "Solving", None):
            PROGRESS["status"] = "Solved"
            if ok_flag is None:
                ok_flag = True
        PROGRESS["percent"] = 100.0
        if message is not None:
            PROGRESS["message"] = str(message)
        PROGRESS["done"] = True
        if ok_flag is not None:
            PROGRESS["ok"] = ok_flag
        _log_phase_transition_locked("")
        run_start = LOG_STATE.get("run_start")
        if isinstance(run_start, (int, float)):
            total = max(0.0, now - float(run_start))
        else:
            total = None
        LOG_STATE.update({"run_start": None, "phase_start": None})
        _emit_log(
            "Run finished",
            status=PROGRESS.get("status"),
            ok=PROGRESS.get("ok"),
            duration=_fmt_seconds(total),
            solutions=PROGRESS.get("solutions"),
            nodes=PROGRESS.get("nodes"),
            degraded=PROGRESS.get("degraded") or None,
            message=PROGRESS.get("message"),
        )
        _persist_locked()

# ------------------------------
# Snapshots for the UI
# ------------------------------

def snapshot() -> Dict[str, Any]:
    with PROGRESS_LOCK:
        _load_persisted_locked()
        _touch_elapsed_locked()
        snap = dict(PROGRESS)
        snap.pop("elapsed_start", None)
        snap["elapsed_str"] = fmt_elapsed(PROGRESS["elapsed"])
        return snap

def as_json() -> Dict[str, Any]:
    return snapshot()


with PROGRESS_LOCK:
    _load_persisted_locked(force=True)
