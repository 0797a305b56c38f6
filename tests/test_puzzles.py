import json

import pytest

from config import CFG
from models import NO_SYMMETRY, ROTATION, ROTATION_REFLECTION
from puzzles import (
    BUILTIN_PUZZLES,
    PuzzleFormatError,
    builtin_puzzle,
    load_puzzle,
    parse_cells,
    parse_dims,
    parse_puzzle_payload,
    parse_puzzle_text,
    puzzle_to_payload,
)
from solver.orchestrator import validate_puzzle
from solver.voxels import box


def test_parse_dims_variants():
    assert parse_dims("4") == (4, 4, 4)
    assert parse_dims("2x2x3") == (2, 2, 3)
    assert parse_dims([1, 2, 3]) == (1, 2, 3)
    assert parse_dims(3) == (3, 3, 3)
    for bad in ("", "2x2", "0", "axbxc", [1, 2]):
        with pytest.raises(PuzzleFormatError):
            parse_dims(bad)


def test_parse_cells_digit_triples():
    assert parse_cells("000-100-012") == [(0, 0, 0), (1, 0, 0), (0, 1, 2)]
    with pytest.raises(PuzzleFormatError):
        parse_cells("00-100")
    with pytest.raises(PuzzleFormatError):
        parse_cells("")


def test_text_format_with_counts_and_colors():
    puzzle = parse_puzzle_text("tiny,1x1x4\n# comment\n\nbar,blue,000-001,2\n")
    assert puzzle.name == "tiny"
    assert puzzle.target == box(1, 1, 4)
    [piece] = puzzle.pieces
    assert piece.count == 2
    assert piece.color == "blue"
    assert piece.char_id == "0"
    assert piece.symmetry == ROTATION
    assert puzzle.container_symmetry == ROTATION


def test_mirror_header_enables_reflections():
    puzzle = parse_puzzle_text("m,2,mirror\nd,red,000-001,4\n")
    assert puzzle.pieces[0].symmetry == ROTATION_REFLECTION
    assert puzzle.container_symmetry == ROTATION_REFLECTION


def test_reflection_default_follows_config(monkeypatch):
    monkeypatch.setattr(CFG, "ALLOW_REFLECTIONS", True)
    assert parse_puzzle_text("m,2\nd,red,000-001,4\n").container_symmetry == ROTATION_REFLECTION
    assert parse_puzzle_text("m,2\nd,red,000-001,4\n", allow_reflections=False).container_symmetry == ROTATION


@pytest.mark.parametrize(
    "text",
    [
        "",
        "only-name\n",
        "x,2,sideways\nd,red,000-001,4\n",
        "x,2\nd,green,000-001,4\n",
        "x,2\nd,red\n",
        "x,2\nd,red,000-001,many\n",
    ],
)
def test_text_format_errors(text):
    with pytest.raises(PuzzleFormatError):
        parse_puzzle_text(text)


def test_too_many_pieces_rejected():
    lines = ["big,9"] + [f"p{i},red,000" for i in range(37)]
    with pytest.raises(PuzzleFormatError):
        parse_puzzle_text("\n".join(lines))


def test_builtins_are_well_formed():
    for name in BUILTIN_PUZZLES:
        validate_puzzle(builtin_puzzle(name))
    bedlam = builtin_puzzle("bedlam")
    assert len(bedlam.target) == 64
    assert len(bedlam.pieces) == 13
    assert [p.char_id for p in bedlam.pieces][-3:] == ["A", "B", "C"]
    soma = builtin_puzzle("SOMA")
    assert soma.total_piece_cells == 27


def test_unknown_builtin():
    with pytest.raises(PuzzleFormatError):
        builtin_puzzle("rubik")


def test_payload_with_dims_and_pieces():
    puzzle, err = parse_puzzle_payload({
        "name": "slab",
        "dims": "1x2x2",
        "container_symmetry": NO_SYMMETRY,
        "pieces": [{"name": "d", "cells": [[0, 0, 0], [0, 0, 1]], "count": 2, "color": "white"}],
    })
    assert err is None
    assert puzzle.target == box(1, 2, 2)
    assert puzzle.container_symmetry == NO_SYMMETRY
    assert puzzle.pieces[0].count == 2


def test_payload_builtin_and_round_trip():
    puzzle, err = parse_puzzle_payload({"builtin": "domino-2x2x2"})
    assert err is None
    again, err = parse_puzzle_payload(json.loads(json.dumps(puzzle_to_payload(puzzle))))
    assert err is None
    assert again.target == puzzle.target
    assert [p.shape for p in again.pieces] == [p.shape for p in puzzle.pieces]


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"dims": 2},
        {"dims": 2, "pieces": []},
        {"dims": 2, "pieces": [{"cells": [[0, 0]]}]},
        {"dims": 2, "pieces": [{"cells": "000-001", "symmetry": "odd"}]},
        {"dims": 2, "pieces": [{"cells": "000-001"}], "container_symmetry": "odd"},
        {"builtin": "nope"},
    ],
)
def test_payload_errors_are_returned_not_raised(payload):
    puzzle, err = parse_puzzle_payload(payload)
    assert puzzle is None
    assert err


def test_load_puzzle_from_files(tmp_path):
    text_file = tmp_path / "col.txt"
    text_file.write_text("col,1x1x2\nd,red,000-001\n", encoding="utf-8")
    assert load_puzzle(str(text_file)).name == "col"

    json_file = tmp_path / "col.json"
    json_file.write_text(json.dumps({"name": "jcol", "dims": [1, 1, 2], "pieces": [{"cells": "000-001"}]}))
    puzzle = load_puzzle(json_file, allow_reflections=True)
    assert puzzle.name == "jcol"
    assert puzzle.container_symmetry == ROTATION_REFLECTION

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json")
    with pytest.raises(PuzzleFormatError):
        load_puzzle(bad_json)

    with pytest.raises(PuzzleFormatError):
        load_puzzle(tmp_path / "missing.txt")

    assert load_puzzle("soma").name == "soma"
