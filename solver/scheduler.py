# solver/scheduler.py — spread anchor subtrees over a bounded worker pool
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set

import multiprocessing as mp

from config import CFG, resolved_workers
from models import MODE_ALL, MODE_FIRST, WorkerFailure
from solver.collector import SolutionCollector
from solver.placements import PlacementUniverse
from solver.search import CANCELLED, STOPPED, SearchEngine, SearchOutcome, SearchState

log = logging.getLogger(__name__)

_POLL_SECONDS = 0.05


class _AnyFlag:
    """``is_set`` view over several events (internal stop + caller cancel)."""

    def __init__(self, *flags):
        self.flags = [f for f in flags if f is not None]

    def is_set(self) -> bool:
        return any(f.is_set() for f in self.flags)


def anchor_rows(universe: PlacementUniverse) -> List[int]:
    """Placements covering the anchor cell; each one roots a disjoint subtree."""
    if not len(universe):
        return []
    bit = universe.anchor_cell()
    return list(universe.cell_rows[bit])


def run_subtree(
    universe: PlacementUniverse,
    row: int,
    engine: SearchEngine,
    on_solution: Optional[Callable] = None,
) -> SearchOutcome:
    state = SearchState.initial(universe)
    if not state.can_commit(row):
        return SearchOutcome(status="exhausted")
    state.commit(row)
    return engine.run(state, on_solution)


def _subtree_worker(worker_id, universe, mode, task_q, result_q, stop, deadline, node_limit, poll_interval):
    # Top-level so it pickles under the spawn start method.
    engine = SearchEngine(
        universe,
        mode=mode,
        cancel=stop,
        deadline=deadline,
        node_limit=node_limit,
        poll_interval=poll_interval,
    )
    while True:
        item = task_q.get()
        if item is None:
            break
        task, row = item
        if stop.is_set():
            result_q.put(("skipped", worker_id, task))
            continue
        result_q.put(("start", worker_id, task))

        def _emit(rows, _task=task):
            result_q.put(("solution", worker_id, _task, tuple(rows)))

        try:
            outcome = run_subtree(universe, row, engine, _emit)
        except Exception as e:
            result_q.put(("error", worker_id, task, f"{type(e).__name__}: {e}"))
            continue
        if outcome.status == STOPPED:
            stop.set()
        result_q.put(("done", worker_id, task, outcome.status, outcome.nodes, outcome.reason))
    result_q.put(("exit", worker_id))


def _terminate_process(proc, grace: float = 0.2) -> None:
    """Best-effort helper that tears down ``proc`` within ``grace`` seconds."""

    try:
        proc.join(timeout=grace)
    except Exception:
        pass
    if not proc.is_alive():
        return
    try:
        proc.terminate()
    except Exception:
        pass
    try:
        proc.join(timeout=grace)
    except Exception:
        pass
    if not proc.is_alive():
        return
    try:
        proc.kill()
    except Exception:
        pass
    try:
        proc.join(timeout=grace)
    except Exception:
        pass


@dataclass
class ScheduleReport:
    subtrees: int = 0
    completed: int = 0
    skipped: int = 0
    nodes: int = 0
    workers: int = 1
    found_first: bool = False
    cancelled: bool = False
    reason: Optional[str] = None
    restarts: int = 0
    failures: List[WorkerFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


class ParallelScheduler:
    """Runs the search engine over the anchor subtrees.

    Tasks go through a FIFO queue so quick dead ends and long subtrees
    balance themselves across workers. Only the read-only universe is
    handed to workers; each builds its own ``SearchState`` per task. A
    single shared event stops every worker once first-solution mode has
    its answer, the caller cancels, or the deadline passes.
    """

    def __init__(
        self,
        universe: PlacementUniverse,
        collector: SolutionCollector,
        *,
        mode: str = MODE_ALL,
        workers: Optional[int] = None,
        cancel=None,
        deadline: Optional[float] = None,
        node_limit: Optional[int] = None,
        poll_interval: Optional[int] = None,
        start_method: Optional[str] = None,
        max_restarts: Optional[int] = None,
        on_progress: Optional[Callable[[ScheduleReport], None]] = None,
    ):
        self.universe = universe
        self.collector = collector
        self.mode = mode
        self.workers = resolved_workers(workers)
        self.cancel = cancel
        self.deadline = deadline
        self.node_limit = node_limit
        self.poll_interval = poll_interval
        self.start_method = start_method or getattr(CFG, "START_METHOD", "spawn")
        self.max_restarts = int(max_restarts if max_restarts is not None else getattr(CFG, "MAX_WORKER_RESTARTS", 2))
        self.on_progress = on_progress
        self.report = ScheduleReport()

    # ---- shared helpers ----

    def _anchor_of(self, row: int):
        return self.universe.placements[row].as_tuple()

    def _accept_solution(self, rows: Sequence[int], stop) -> None:
        if self.mode == MODE_FIRST:
            if self.report.found_first:
                return
            self.report.found_first = True
            self.collector.add(rows)
            stop.set()
            return
        self.collector.add(rows)

    def _interrupt_reason(self) -> Optional[str]:
        if self.cancel is not None and self.cancel.is_set():
            return "cancel requested"
        if self.deadline is not None and time.time() >= self.deadline:
            return "time limit reached"
        return None

    def _mark_cancelled(self, reason: Optional[str]) -> None:
        if self.report.found_first:
            return
        self.report.cancelled = True
        if reason and not self.report.reason:
            self.report.reason = reason

    def _notify(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.report)
        except Exception:
            log.debug("progress callback failed", exc_info=True)

    def _record_outcome(self, outcome_status: str, nodes: int, reason: Optional[str]) -> None:
        self.report.completed += 1
        self.report.nodes += int(nodes or 0)
        if outcome_status == CANCELLED:
            self._mark_cancelled(reason)

    def _record_failure(self, task: int, row: int, reason: str, worker: Optional[int]) -> None:
        failure = WorkerFailure(task=task, anchor=self._anchor_of(row), reason=reason, worker=worker)
        self.report.failures.append(failure)
        log.warning("subtree %s lost (worker %s): %s", task, worker, reason)

    # ---- entry point ----

    def run(self) -> ScheduleReport:
        rows = anchor_rows(self.universe)
        self.report.subtrees = len(rows)
        if not rows:
            return self.report
        n_workers = min(self.workers, len(rows))
        self.report.workers = n_workers
        if n_workers <= 1:
            self._run_inline(rows)
        else:
            self._run_pool(rows, n_workers)
        return self.report

    # ---- single-process ----

    def _run_inline(self, rows: Sequence[int]) -> None:
        stop = threading.Event()
        engine = SearchEngine(
            self.universe,
            mode=self.mode,
            cancel=_AnyFlag(stop, self.cancel),
            deadline=self.deadline,
            node_limit=self.node_limit,
            poll_interval=self.poll_interval,
        )

        def _emit(found):
            self._accept_solution(found, stop)

        try:
            for task, row in enumerate(rows):
                if stop.is_set():
                    self.report.skipped += 1
                    continue
                reason = self._interrupt_reason()
                if reason:
                    self._mark_cancelled(reason)
                    self.report.skipped += 1
                    continue
                try:
                    outcome = run_subtree(self.universe, row, engine, _emit)
                except Exception as e:
                    self._record_failure(task, row, f"{type(e).__name__}: {e}", None)
                    continue
                self._record_outcome(outcome.status, outcome.nodes, outcome.reason)
                self._notify()
        except KeyboardInterrupt:
            stop.set()
            self._mark_cancelled("interrupted")

    # ---- worker pool ----

    def _run_pool(self, rows: Sequence[int], n_workers: int) -> None:
        ctx = mp.get_context(self.start_method)
        task_q = ctx.Queue()
        # SimpleQueue writes straight to the pipe, so a worker's messages
        # are readable even if it dies right after sending them.
        result_q = ctx.SimpleQueue()
        stop = ctx.Event()

        for task, row in enumerate(rows):
            task_q.put((task, row))
        for _ in range(n_workers):
            task_q.put(None)

        procs: Dict[int, object] = {}
        active: Set[int] = set()
        inflight: Dict[int, int] = {}
        pending: Set[int] = set(range(len(rows)))
        next_id = 0

        def _spawn() -> None:
            nonlocal next_id
            wid = next_id
            next_id += 1
            proc = ctx.Process(
                target=_subtree_worker,
                args=(
                    wid,
                    self.universe,
                    self.mode,
                    task_q,
                    result_q,
                    stop,
                    self.deadline,
                    self.node_limit,
                    self.poll_interval,
                ),
            )
            proc.daemon = True
            proc.start()
            procs[wid] = proc
            active.add(wid)

        def _handle(msg) -> None:
            kind, wid = msg[0], msg[1]
            if kind == "start":
                inflight[wid] = msg[2]
            elif kind == "solution":
                self._accept_solution(msg[3], stop)
            elif kind == "done":
                task, status, nodes, why = msg[2], msg[3], msg[4], msg[5]
                inflight.pop(wid, None)
                pending.discard(task)
                self._record_outcome(status, nodes, why)
                self._notify()
            elif kind == "skipped":
                pending.discard(msg[2])
                self.report.skipped += 1
            elif kind == "error":
                task = msg[2]
                inflight.pop(wid, None)
                pending.discard(task)
                self._record_failure(task, rows[task], msg[3], wid)
            elif kind == "exit":
                active.discard(wid)
                inflight.pop(wid, None)

        def _drain() -> None:
            while not result_q.empty():
                _handle(result_q.get())

        try:
            for _ in range(n_workers):
                _spawn()

            while active:
                reason = self._interrupt_reason()
                if reason and not stop.is_set():
                    self._mark_cancelled(reason)
                    stop.set()

                if result_q.empty():
                    self._reap_dead_workers(procs, active, inflight, pending, rows, stop, _spawn, _drain)
                    time.sleep(_POLL_SECONDS)
                    continue
                _handle(result_q.get())
        except KeyboardInterrupt:
            stop.set()
            self._mark_cancelled("interrupted")
        finally:
            for proc in procs.values():
                _terminate_process(proc)
            try:
                task_q.close()
                task_q.cancel_join_thread()
                result_q.close()
            except Exception:
                pass

        if pending:
            if stop.is_set():
                # drained by cancellation before any worker picked them up
                self.report.skipped += len(pending)
                self._mark_cancelled(self.report.reason or "cancel requested")
            else:
                for task in sorted(pending):
                    self._record_failure(task, rows[task], "no worker left to run subtree", None)

    def _reap_dead_workers(self, procs, active, inflight, pending, rows, stop, spawn, drain) -> None:
        dead = [wid for wid in sorted(active) if not procs[wid].is_alive()]
        if not dead:
            return
        # everything a dead worker sent is already in the pipe
        drain()
        for wid in dead:
            if wid not in active:
                continue
            proc = procs[wid]
            active.discard(wid)
            proc.join(timeout=_POLL_SECONDS)
            task = inflight.pop(wid, None)
            if task is not None and task in pending:
                pending.discard(task)
                self._record_failure(task, rows[task], f"worker exited with code {proc.exitcode}", wid)
            if pending and not stop.is_set() and self.report.restarts < self.max_restarts:
                self.report.restarts += 1
                log.warning("restarting worker %s (restart %s/%s)", wid, self.report.restarts, self.max_restarts)
                spawn()


__all__ = [
    "ParallelScheduler",
    "ScheduleReport",
    "anchor_rows",
    "run_subtree",
]
