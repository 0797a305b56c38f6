# solver/cp_sat.py — the placement universe as a CP-SAT exact-cover model
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

from ortools.sat.python import cp_model as _cp

from config import CFG
from models import MODE_ALL, MODE_FIRST
from solver.placements import PlacementUniverse


@dataclass
class CpSatOutcome:
    status: str                     # exhausted | stopped | cancelled
    solutions: int = 0
    reason: Optional[str] = None
    wall_time: float = 0.0
    meta: Dict[str, object] = field(default_factory=dict)


class _CoverCollector(_cp.CpSolverSolutionCallback):
    def __init__(self, choose, on_solution, cancel, deadline):
        super().__init__()
        self._choose = choose
        self._on_solution = on_solution
        self._cancel = cancel
        self._deadline = deadline
        self.count = 0
        self.interrupted: Optional[str] = None

    def on_solution_callback(self):
        rows = [r for r, var in enumerate(self._choose) if self.Value(var)]
        self.count += 1
        if self._on_solution is not None:
            self._on_solution(tuple(rows))
        if self._cancel is not None and self._cancel.is_set():
            self.interrupted = "cancel requested"
            self.StopSearch()
        elif self._deadline is not None and time.time() >= self._deadline:
            self.interrupted = "time limit reached"
            self.StopSearch()


def build_model(universe: PlacementUniverse):
    """One boolean per placement; each cell covered once; each piece used ``count`` times."""
    m = _cp.CpModel()
    choose = [m.NewBoolVar(f"p_{r}") for r in range(len(universe))]
    for rows in universe.cell_rows:
        m.AddExactlyOne([choose[r] for r in rows])
    for slot, count in enumerate(universe.counts):
        rows = [r for r, s in enumerate(universe.piece_of) if s == slot]
        m.Add(sum(choose[r] for r in rows) == int(count))
    return m, choose


def solve_cp_sat(
    universe: PlacementUniverse,
    *,
    mode: str = MODE_FIRST,
    on_solution: Optional[Callable[[Sequence[int]], None]] = None,
    cancel=None,
    max_seconds: Optional[float] = None,
    workers: Optional[int] = None,
) -> CpSatOutcome:
    t0 = time.time()
    seconds = float(max_seconds if max_seconds is not None else getattr(CFG, "CP_SAT_MAX_SECONDS", 60.0))
    deadline = t0 + seconds if seconds > 0 else None

    if cancel is not None and cancel.is_set():
        return CpSatOutcome(status="cancelled", reason="cancel requested")
    if not len(universe) or any(not rows for rows in universe.cell_rows):
        return CpSatOutcome(status="exhausted", meta={"cp_status": "SKIPPED"})

    m, choose = build_model(universe)
    solver = _cp.CpSolver()
    if seconds > 0:
        solver.parameters.max_time_in_seconds = seconds
    solver.parameters.log_search_progress = False

    if mode == MODE_ALL:
        # enumeration requires a single search worker
        solver.parameters.enumerate_all_solutions = True
        solver.parameters.num_workers = 1
        cb = _CoverCollector(choose, on_solution, cancel, deadline)
        res = solver.Solve(m, cb)
        meta = {"cp_status": solver.StatusName(res), "branches": solver.NumBranches()}
        wall = time.time() - t0
        if cb.interrupted:
            return CpSatOutcome("cancelled", cb.count, cb.interrupted, wall, meta)
        if res in (_cp.OPTIMAL, _cp.INFEASIBLE):
            return CpSatOutcome("exhausted", cb.count, None, wall, meta)
        if res == _cp.MODEL_INVALID:
            raise ValueError("CP-SAT rejected the exact-cover model")
        return CpSatOutcome("cancelled", cb.count, "time limit reached", wall, meta)

    solver.parameters.num_workers = max(1, int(workers if workers is not None else getattr(CFG, "CP_SAT_WORKERS", 1)))
    res = solver.Solve(m)
    meta = {"cp_status": solver.StatusName(res), "branches": solver.NumBranches()}
    wall = time.time() - t0
    if res in (_cp.OPTIMAL, _cp.FEASIBLE):
        rows = tuple(r for r, var in enumerate(choose) if solver.Value(var))
        if on_solution is not None:
            on_solution(rows)
        return CpSatOutcome("stopped", 1, None, wall, meta)
    if res == _cp.INFEASIBLE:
        return CpSatOutcome("exhausted", 0, None, wall, meta)
    if res == _cp.MODEL_INVALID:
        raise ValueError("CP-SAT rejected the exact-cover model")
    return CpSatOutcome("cancelled", 0, "time limit reached", wall, meta)


__all__ = ["CpSatOutcome", "build_model", "solve_cp_sat"]
