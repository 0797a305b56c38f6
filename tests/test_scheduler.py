import multiprocessing as mp
import os
import threading

import pytest

import solver.scheduler as scheduler_mod
from models import MODE_ALL, MODE_FIRST
from solver.collector import SolutionCollector, check_exact_cover
from solver.placements import build_universe
from solver.scheduler import ParallelScheduler, anchor_rows

from conftest import DOMINO, make_puzzle


def _raw_collector(universe):
    return SolutionCollector(universe, canonicalize=False)


def test_anchor_rows_cover_the_anchor_cell(domino_cube):
    u = build_universe(domino_cube)
    rows = anchor_rows(u)
    assert len(rows) == 3
    bit = u.anchor_cell()
    assert all(u.masks[r] >> bit & 1 for r in rows)


def test_inline_run_matches_full_search(domino_cube):
    u = build_universe(domino_cube)
    collector = _raw_collector(u)
    seen = []
    report = ParallelScheduler(u, collector, mode=MODE_ALL, workers=1, on_progress=seen.append).run()
    assert collector.count == 9
    assert report.subtrees == 3
    assert report.completed == 3
    assert report.workers == 1
    assert not report.cancelled
    assert not report.degraded
    assert len(seen) == 3


def test_pool_run_matches_inline_run(domino_cube):
    u = build_universe(domino_cube)
    collector = _raw_collector(u)
    report = ParallelScheduler(u, collector, mode=MODE_ALL, workers=2).run()
    assert collector.count == 9
    assert report.workers == 2
    assert report.completed == 3
    assert report.failures == []
    assert not report.cancelled


def test_pool_first_mode_returns_exactly_one_valid_solution(domino_cube):
    u = build_universe(domino_cube)
    collector = _raw_collector(u)
    report = ParallelScheduler(u, collector, mode=MODE_FIRST, workers=2).run()
    assert report.found_first
    assert collector.count == 1
    assert check_exact_cover(domino_cube, collector.solutions()[0]) == []


def test_inline_first_mode_skips_remaining_subtrees(domino_cube):
    u = build_universe(domino_cube)
    collector = _raw_collector(u)
    report = ParallelScheduler(u, collector, mode=MODE_FIRST, workers=1).run()
    assert report.found_first
    assert collector.count == 1
    assert report.skipped == report.subtrees - report.completed
    assert not report.cancelled


def test_cancel_flag_marks_report_cancelled(domino_cube):
    u = build_universe(domino_cube)
    flag = threading.Event()
    flag.set()
    collector = _raw_collector(u)
    report = ParallelScheduler(u, collector, mode=MODE_ALL, workers=1, cancel=flag).run()
    assert report.cancelled
    assert report.reason == "cancel requested"
    assert report.skipped == 3
    assert collector.count == 0


def test_failed_subtree_is_reported_and_others_continue(domino_cube, monkeypatch):
    u = build_universe(domino_cube)
    rows = anchor_rows(u)
    real = scheduler_mod.run_subtree

    def _flaky(universe, row, engine, on_solution=None):
        if row == rows[1]:
            raise RuntimeError("boom")
        return real(universe, row, engine, on_solution)

    monkeypatch.setattr(scheduler_mod, "run_subtree", _flaky)
    collector = _raw_collector(u)
    report = ParallelScheduler(u, collector, mode=MODE_ALL, workers=1).run()

    assert report.degraded
    assert len(report.failures) == 1
    failure = report.failures[0]
    assert failure.task == 1
    assert "boom" in failure.reason
    assert failure.anchor == u.placements[rows[1]].as_tuple()
    # each corner domino direction roots a third of the nine covers
    assert collector.count == 6


def test_empty_universe_schedules_nothing():
    u = build_universe(make_puzzle(DOMINO, [[(0, 0, 0), (1, 0, 0), (2, 0, 0)]]))
    assert len(u) == 0
    report = ParallelScheduler(u, _raw_collector(u), workers=1).run()
    assert report.subtrees == 0


needs_fork = pytest.mark.skipif(
    "fork" not in mp.get_all_start_methods(), reason="fork start method unavailable"
)


def _crash_on(rows_to_kill, real):
    def _run(universe, row, engine, on_solution=None):
        if row in rows_to_kill:
            os._exit(3)
        return real(universe, row, engine, on_solution)
    return _run


@needs_fork
def test_killed_pool_worker_is_attributed_to_its_task(domino_cube, monkeypatch):
    u = build_universe(domino_cube)
    rows = anchor_rows(u)
    monkeypatch.setattr(scheduler_mod, "run_subtree", _crash_on({rows[0]}, scheduler_mod.run_subtree))
    collector = _raw_collector(u)
    report = ParallelScheduler(
        u, collector, mode=MODE_ALL, workers=2, start_method="fork", max_restarts=0
    ).run()

    assert report.degraded
    assert len(report.failures) == 1
    failure = report.failures[0]
    assert failure.task == 0
    assert failure.worker in (0, 1)
    assert failure.reason == "worker exited with code 3"
    assert failure.anchor == u.placements[rows[0]].as_tuple()
    assert report.completed == 2
    assert collector.count == 6


@needs_fork
def test_worker_restarts_are_bounded(domino_cube, monkeypatch):
    u = build_universe(domino_cube)
    rows = anchor_rows(u)
    monkeypatch.setattr(scheduler_mod, "run_subtree", _crash_on(set(rows), scheduler_mod.run_subtree))
    collector = _raw_collector(u)
    report = ParallelScheduler(
        u, collector, mode=MODE_ALL, workers=2, start_method="fork", max_restarts=1
    ).run()

    assert report.restarts == 1
    assert sorted(f.task for f in report.failures) == [0, 1, 2]
    assert all(f.reason == "worker exited with code 3" for f in report.failures)
    assert sorted(f.worker for f in report.failures) == [0, 1, 2]
    assert report.completed == 0
    assert collector.count == 0
