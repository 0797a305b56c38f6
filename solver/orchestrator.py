# Orchestrator: validate, build tables, schedule the search, report a SolverResult
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from config import CFG
from models import (
    CONTAINER_SYMMETRIES,
    MODE_ALL,
    MODE_FIRST,
    MODES,
    PIECE_SYMMETRIES,
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_CONFIG_ERROR,
    STATUS_INCOMPLETE,
    STATUS_SOLVED,
    STATUS_UNSOLVABLE,
    ConfigurationError,
    Puzzle,
    SolverResult,
)
from progress import (
    log_run_detail, log_run_warning, set_degraded, set_done, set_message,
    set_nodes, set_phase, set_run_info, set_solutions, set_status,
    set_subtrees, start_timer,
)
from solver.collector import SolutionCollector, check_exact_cover
from solver.orientations import distinct_shapes
from solver.placements import PlacementUniverse, build_universe, fits_bounding_box
from solver.scheduler import ParallelScheduler, ScheduleReport

log = logging.getLogger(__name__)

ENGINE_BACKTRACK = "backtrack"
ENGINE_CP_SAT = "cp-sat"
ENGINES = (ENGINE_BACKTRACK, ENGINE_CP_SAT)

_STATUS_LABELS = {
    STATUS_SOLVED: "Solved",
    STATUS_COMPLETE: "Complete",
    STATUS_UNSOLVABLE: "Unsolvable",
    STATUS_CANCELLED: "Cancelled",
    STATUS_INCOMPLETE: "Incomplete",
    STATUS_CONFIG_ERROR: "Error",
}


# ---------- validation ----------

def validate_puzzle(puzzle: Puzzle) -> None:
    """Raise ``ConfigurationError`` when no search should be attempted."""
    if not len(puzzle.target):
        raise ConfigurationError("Target volume is empty")
    if not puzzle.pieces:
        raise ConfigurationError("Puzzle has no pieces")
    if puzzle.container_symmetry not in CONTAINER_SYMMETRIES:
        raise ConfigurationError(f"Unknown container symmetry: {puzzle.container_symmetry!r}")

    seen_ids = set()
    for piece in puzzle.pieces:
        if piece.id in seen_ids:
            raise ConfigurationError(f"Duplicate piece id {piece.id}")
        seen_ids.add(piece.id)
        if not len(piece.shape):
            raise ConfigurationError(f"Piece {piece.name!r} has no cells")
        if piece.count < 1:
            raise ConfigurationError(f"Piece {piece.name!r} has multiplicity {piece.count}")
        if piece.symmetry not in PIECE_SYMMETRIES:
            raise ConfigurationError(f"Piece {piece.name!r} has unknown symmetry {piece.symmetry!r}")
        if not piece.shape.is_connected():
            raise ConfigurationError(f"Piece {piece.name!r} is not face-connected")

    target_cells = len(puzzle.target)
    piece_cells = puzzle.total_piece_cells
    if piece_cells != target_cells:
        raise ConfigurationError(
            f"Piece cells ({piece_cells}) do not match target cells ({target_cells})"
        )

    tdims = puzzle.target.dims()
    for piece in puzzle.pieces:
        shapes = distinct_shapes(piece.shape.normalized(), piece.symmetry)
        if not any(fits_bounding_box(tdims, s.dims()) for s in shapes):
            raise ConfigurationError(
                f"Piece {piece.name!r} does not fit the {tdims[0]}x{tdims[1]}x{tdims[2]} bounding box "
                "in any orientation"
            )


def _unplaceable_pieces(puzzle: Puzzle, universe: PlacementUniverse) -> List[str]:
    placed = {universe.piece_ids[s] for s in universe.piece_of}
    return [p.name for p in puzzle.pieces if p.id not in placed]


# ---------- result mapping ----------

def _status_from(mode: str, found: int, report: ScheduleReport) -> str:
    if mode == MODE_FIRST and report.found_first:
        return STATUS_SOLVED
    if report.cancelled:
        return STATUS_CANCELLED
    if report.degraded:
        return STATUS_INCOMPLETE
    if found:
        return STATUS_SOLVED if mode == MODE_FIRST else STATUS_COMPLETE
    return STATUS_UNSOLVABLE


def _finish(result: SolverResult, t0: float) -> SolverResult:
    result.elapsed_sec = time.time() - t0
    set_solutions(result.count)
    set_nodes(result.nodes)
    if result.degraded:
        set_degraded(True)
    set_phase("done")
    set_done(
        result.ok,
        status=_STATUS_LABELS.get(result.status, result.status),
        message=result.error or result.reason or "",
    )
    log_run_detail(
        "Result",
        status=result.status,
        solutions=result.count,
        raw=result.raw_count,
        nodes=result.nodes,
        subtrees=result.subtrees,
        degraded=result.degraded or None,
        elapsed=f"{result.elapsed_sec:.2f}s",
    )
    return result


def _run_cp_sat(universe, collector, mode, cancel, deadline, workers) -> ScheduleReport:
    # imported lazily so the backtracking engine runs without OR-Tools installed
    from solver.cp_sat import solve_cp_sat

    report = ScheduleReport(subtrees=1, workers=1)
    found_first = False

    def _emit(rows):
        nonlocal found_first
        if mode == MODE_FIRST and found_first:
            return
        found_first = True
        collector.add(rows)

    seconds = None
    if deadline is not None:
        seconds = max(0.001, deadline - time.time())
    outcome = solve_cp_sat(
        universe,
        mode=mode,
        on_solution=_emit,
        cancel=cancel,
        max_seconds=seconds,
        workers=workers,
    )
    report.completed = 1
    report.nodes = int(outcome.meta.get("branches", 0) or 0)
    report.found_first = mode == MODE_FIRST and found_first
    if outcome.status == "cancelled":
        report.cancelled = True
        report.reason = outcome.reason
    return report


# ---------- entry point ----------

def solve(
    puzzle: Puzzle,
    mode: Optional[str] = None,
    workers: Optional[int] = None,
    canonicalize: Optional[bool] = None,
    *,
    engine: Optional[str] = None,
    cancel=None,
    max_seconds: Optional[float] = None,
    node_limit: Optional[int] = None,
    start_method: Optional[str] = None,
    verify: bool = False,
    on_progress: Optional[Callable[[ScheduleReport], None]] = None,
) -> SolverResult:
    """
    Solve ``puzzle`` synchronously.

    ``mode`` is ``first`` (stop at the first cover) or ``all`` (exhaust the
    tree). Configuration problems come back as ``status="config_error"``
    results rather than exceptions. ``cancel`` is any object with an
    ``is_set()`` method, typically a ``threading.Event``.
    """
    t0 = time.time()
    mode = mode or getattr(CFG, "MODE", MODE_ALL)
    engine = engine or getattr(CFG, "ENGINE", ENGINE_BACKTRACK)
    if canonicalize is None:
        canonicalize = bool(getattr(CFG, "CANONICALIZE", True))
    if max_seconds is None:
        max_seconds = float(getattr(CFG, "MAX_SECONDS", 0.0))
    deadline = t0 + max_seconds if max_seconds and max_seconds > 0 else None

    start_timer()
    set_status("Solving")
    set_message("")
    set_run_info(puzzle.name, mode=mode, engine=engine, workers=workers or 0)
    set_phase("validate")

    try:
        if mode not in MODES:
            raise ConfigurationError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
        if engine not in ENGINES:
            raise ConfigurationError(f"Unknown engine {engine!r}; expected one of {', '.join(ENGINES)}")
        validate_puzzle(puzzle)
    except ConfigurationError as e:
        log_run_warning("Configuration error", puzzle=puzzle.name, reason=str(e))
        return _finish(SolverResult(status=STATUS_CONFIG_ERROR, mode=mode, error=str(e), engine=engine), t0)

    set_phase("placements")
    universe = build_universe(puzzle)
    log_run_detail(
        "Universe built",
        cells=universe.cell_count,
        placements=len(universe),
        fixed_width=universe.index.fixed_width,
        orientations=sum(len(o) for o in universe.orientations.values()),
    )

    collector = SolutionCollector(
        universe,
        canonicalize=canonicalize and mode == MODE_ALL,
        container_symmetry=puzzle.container_symmetry,
    )
    result = SolverResult(status=STATUS_UNSOLVABLE, mode=mode, canonical=collector.canonicalize, engine=engine)

    missing = _unplaceable_pieces(puzzle, universe)
    if missing:
        result.reason = f"No placement inside the target for: {', '.join(missing)}"
        return _finish(result, t0)

    set_phase("search")
    if engine == ENGINE_CP_SAT:
        report = _run_cp_sat(universe, collector, mode, cancel, deadline, workers)
    else:
        def _progress(rep: ScheduleReport) -> None:
            set_subtrees(rep.completed + rep.skipped, rep.subtrees)
            set_solutions(collector.count)
            if on_progress is not None:
                on_progress(rep)

        scheduler = ParallelScheduler(
            universe,
            collector,
            mode=mode,
            workers=workers,
            cancel=cancel,
            deadline=deadline,
            node_limit=node_limit,
            start_method=start_method,
            on_progress=_progress,
        )
        set_subtrees(0, 0)
        report = scheduler.run()
        set_subtrees(report.completed + report.skipped, report.subtrees)
        set_run_info(workers=report.workers)

    solutions = collector.solutions()
    result.solutions = solutions
    result.raw_count = collector.raw_count
    result.nodes = report.nodes
    result.subtrees = report.subtrees
    result.failures = list(report.failures)
    result.degraded = report.degraded
    result.status = _status_from(mode, len(solutions), report)
    if result.status == STATUS_CANCELLED:
        result.reason = report.reason or "cancel requested"
    elif result.status == STATUS_INCOMPLETE:
        result.reason = f"{len(report.failures)} subtree(s) lost to worker failures"
    elif result.status == STATUS_UNSOLVABLE:
        result.reason = "Search exhausted without a cover"
    result.meta = {"workers": report.workers, "restarts": report.restarts, "skipped": report.skipped}
    if result.degraded:
        log.warning("%d subtree(s) lost; result coverage is degraded", len(result.failures))

    if verify:
        problems = []
        for i, sol in enumerate(solutions, start=1):
            problems.extend(f"solution {i}: {p}" for p in check_exact_cover(puzzle, sol))
        result.meta["verify_errors"] = problems
        if problems:
            log_run_warning("Verification failed", puzzle=puzzle.name, problems=len(problems))

    return _finish(result, t0)


__all__ = ["ENGINES", "solve", "validate_puzzle"]
