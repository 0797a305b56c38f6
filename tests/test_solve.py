import threading

import pytest

import solver.orchestrator as orchestrator_mod
import solver.scheduler as scheduler_mod

from config import CFG
from models import (
    NO_SYMMETRY,
    ROTATION,
    STATUS_CANCELLED,
    STATUS_COMPLETE,
    STATUS_CONFIG_ERROR,
    STATUS_INCOMPLETE,
    STATUS_SOLVED,
    STATUS_UNSOLVABLE,
    ConfigurationError,
    Piece,
    Puzzle,
)
from puzzles import builtin_puzzle
from solver.collector import check_exact_cover
from solver.orchestrator import solve, validate_puzzle
from solver.placements import build_universe
from solver.voxels import VoxelSet, box

from conftest import DOMINO, V_TROMINO, make_puzzle


def test_single_domino_column_solves_once():
    result = solve(make_puzzle(box(1, 1, 2), [DOMINO]), mode="all", workers=1)
    assert result.status == STATUS_COMPLETE
    assert result.count == 1
    assert result.solution.as_tuples() == [(0, 0, (0, 0, 0))]


def test_domino_cube_raw_and_canonical_counts(domino_cube):
    raw = solve(domino_cube, mode="all", workers=1, canonicalize=False)
    assert raw.status == STATUS_COMPLETE
    assert raw.count == 9
    assert not raw.canonical

    canon = solve(domino_cube, mode="all", workers=1, canonicalize=True)
    assert canon.count == 2
    assert canon.raw_count == 9
    assert canon.canonical


def test_domino_cube_without_container_symmetry(domino_cube_plain):
    result = solve(domino_cube_plain, mode="all", workers=1, canonicalize=True)
    assert result.count == 9


def test_enumeration_is_idempotent(domino_cube):
    first = solve(domino_cube, mode="all", workers=1)
    second = solve(domino_cube, mode="all", workers=2)
    assert {s.key() for s in first.solutions} == {s.key() for s in second.solutions}


def test_untileable_target_is_unsolvable_not_an_error(t_shape_puzzle):
    result = solve(t_shape_puzzle, mode="all", workers=1)
    assert result.status == STATUS_UNSOLVABLE
    assert result.count == 0
    assert result.error is None
    assert not result.ok


def test_piece_without_any_placement_short_circuits():
    target = VoxelSet([(0, 0, 0), (1, 0, 0), (2, 0, 0), (0, 1, 0), (0, 2, 0)])
    square = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (1, 1, 0)]
    result = solve(make_puzzle(target, [square, [(0, 0, 0)]]), workers=1)
    assert result.status == STATUS_UNSOLVABLE
    assert "p0" in result.reason
    assert result.subtrees == 0


def test_first_mode_returns_a_valid_soma_cover():
    puzzle = builtin_puzzle("soma")
    result = solve(puzzle, mode="first", workers=1, verify=True)
    assert result.status == STATUS_SOLVED
    assert result.count == 1
    assert check_exact_cover(puzzle, result.solution) == []
    assert sorted(p.piece_id for p in result.solution.placements) == list(range(7))
    assert result.meta["verify_errors"] == []


def test_first_mode_with_worker_pool(domino_cube):
    result = solve(domino_cube, mode="first", workers=2)
    assert result.status == STATUS_SOLVED
    assert result.count == 1
    assert check_exact_cover(domino_cube, result.solution) == []


def test_cancelled_run_is_distinct_from_unsolvable(domino_cube):
    flag = threading.Event()
    flag.set()
    result = solve(domino_cube, mode="all", workers=1, cancel=flag)
    assert result.status == STATUS_CANCELLED
    assert result.reason == "cancel requested"


def test_node_limit_reports_cancelled():
    result = solve(builtin_puzzle("soma"), mode="all", workers=1, node_limit=1)
    assert result.status == STATUS_CANCELLED
    assert result.reason == "node limit reached"


def test_defaults_come_from_config(domino_cube, monkeypatch):
    monkeypatch.setattr(CFG, "MODE", "all")
    monkeypatch.setattr(CFG, "CANONICALIZE", False)
    monkeypatch.setattr(CFG, "WORKERS", 1)
    result = solve(domino_cube)
    assert result.mode == "all"
    assert result.count == 9


def test_summary_is_plain_data(domino_cube):
    summary = solve(domino_cube, mode="all", workers=1).summary()
    assert summary["status"] == STATUS_COMPLETE
    assert summary["count"] == 2
    assert summary["degraded"] is False
    assert summary["failures"] == []


# ---------- configuration errors ----------

@pytest.mark.parametrize(
    "puzzle, fragment",
    [
        (make_puzzle(box(2, 2, 2), [DOMINO], [3]), "do not match"),
        (make_puzzle(box(1, 1, 3), [V_TROMINO]), "bounding box"),
        (make_puzzle(box(1, 1, 2), [[(0, 0, 0), (0, 0, 2)]]), "face-connected"),
        (make_puzzle(box(1, 1, 2), [DOMINO], [0]), "multiplicity"),
        (make_puzzle(box(1, 1, 2), [DOMINO], symmetry="spin"), "unknown symmetry"),
        (make_puzzle(box(1, 1, 2), [DOMINO], container="spin"), "container symmetry"),
        (make_puzzle(box(1, 1, 2), [[]]), "no cells"),
        (Puzzle(name="empty", target=VoxelSet(), pieces=(Piece(0, "d", DOMINO),)), "empty"),
    ],
)
def test_malformed_puzzles_become_config_error_results(puzzle, fragment):
    with pytest.raises(ConfigurationError):
        validate_puzzle(puzzle)
    result = solve(puzzle, workers=1)
    assert result.status == STATUS_CONFIG_ERROR
    assert result.is_config_error
    assert fragment in result.error
    assert result.subtrees == 0


def test_unknown_mode_and_engine_are_config_errors(domino_cube):
    assert solve(domino_cube, mode="most", workers=1).status == STATUS_CONFIG_ERROR
    assert solve(domino_cube, engine="dlx", workers=1).status == STATUS_CONFIG_ERROR


def test_piece_symmetry_tags_are_honoured():
    # a 1x2x2 slab: rotation-only still tiles it with two dominoes
    puzzle = make_puzzle(box(1, 2, 2), [DOMINO], [2], container=NO_SYMMETRY, symmetry=ROTATION)
    assert solve(puzzle, mode="all", workers=1).count == 2


# ---------- lost subtrees and verification ----------

def _always_fails(universe, row, engine, on_solution=None):
    raise RuntimeError("worker blew up")


def test_lost_subtrees_are_never_reported_unsolvable(monkeypatch):
    monkeypatch.setattr(scheduler_mod, "run_subtree", _always_fails)
    result = solve(builtin_puzzle("soma"), mode="all", workers=1)
    assert result.status == STATUS_INCOMPLETE
    assert result.degraded
    assert result.count == 0
    assert len(result.failures) == result.subtrees
    assert result.reason == f"{result.subtrees} subtree(s) lost to worker failures"
    assert not result.ok


def test_partial_loss_with_solutions_is_incomplete(domino_cube, monkeypatch):
    real = scheduler_mod.run_subtree
    first_row = scheduler_mod.anchor_rows(build_universe(domino_cube))[0]

    def _flaky(universe, row, engine, on_solution=None):
        if row == first_row:
            raise RuntimeError("boom")
        return real(universe, row, engine, on_solution)

    monkeypatch.setattr(scheduler_mod, "run_subtree", _flaky)
    result = solve(domino_cube, mode="all", workers=1, canonicalize=False)
    assert result.status == STATUS_INCOMPLETE
    assert result.count == 6
    assert result.reason == "1 subtree(s) lost to worker failures"


def test_verify_records_problems_instead_of_raising(domino_cube, monkeypatch):
    clean = solve(domino_cube, mode="all", workers=1, canonicalize=True, verify=True)
    assert clean.meta["verify_errors"] == []

    monkeypatch.setattr(orchestrator_mod, "check_exact_cover", lambda puzzle, sol: ["cell (0, 0, 0) covered twice"])
    result = solve(domino_cube, mode="all", workers=1, canonicalize=True, verify=True)
    assert result.status == STATUS_COMPLETE
    assert result.meta["verify_errors"] == [
        "solution 1: cell (0, 0, 0) covered twice",
        "solution 2: cell (0, 0, 0) covered twice",
    ]


@pytest.mark.slow
def test_soma_enumeration_counts():
    result = solve(builtin_puzzle("soma"), mode="all", workers=1, canonicalize=True)
    assert result.status == STATUS_COMPLETE
    assert result.raw_count == 11520
    assert result.count == 480
