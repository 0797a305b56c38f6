# puzzles.py — puzzle file / payload parsing and the built-in puzzle set
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from config import CFG
from models import (
    CONTAINER_SYMMETRIES,
    PIECE_SYMMETRIES,
    ROTATION,
    ROTATION_REFLECTION,
    Piece,
    Puzzle,
)
from solver.voxels import Cell, VoxelSet, box

COLORS = ("red", "yellow", "blue", "white")
MAX_PIECES = 36  # char ids 0-9 then A-Z

_DIMS_RE = re.compile(r"^\s*(\d+)\s*(?:[xX×]\s*(\d+)\s*[xX×]\s*(\d+))?\s*$")


class PuzzleFormatError(ValueError):
    """A puzzle file or payload could not be parsed."""


def _to_int(x: Any) -> Optional[int]:
    try:
        return int(x)
    except (TypeError, ValueError):
        return None


def parse_dims(text: Any) -> Cell:
    """``"4"`` -> (4, 4, 4); ``"2x2x3"`` -> (2, 2, 3); lists and ints pass through."""
    if isinstance(text, int):
        dims: Sequence[Any] = (text, text, text)
    elif isinstance(text, (list, tuple)):
        dims = text
    else:
        m = _DIMS_RE.match(str(text or ""))
        if not m:
            raise PuzzleFormatError(f"Bad dimensions: {text!r}")
        n = m.group(1)
        dims = (n, n, n) if m.group(2) is None else (n, m.group(2), m.group(3))
    vals = [_to_int(d) for d in dims]
    if len(vals) != 3 or any(v is None or v <= 0 for v in vals):
        raise PuzzleFormatError(f"Bad dimensions: {text!r}")
    return (vals[0], vals[1], vals[2])  # type: ignore[return-value]


def parse_cells(text: str) -> List[Cell]:
    """``"000-100-010"`` -> [(0,0,0), (1,0,0), (0,1,0)]; one digit per axis."""
    cells: List[Cell] = []
    for token in str(text).split("-"):
        digits = [int(ch) for ch in token if ch.isdigit()]
        if not token.strip():
            continue
        if len(digits) != 3:
            raise PuzzleFormatError(f"Bad cell {token!r}: expected three digits")
        cells.append((digits[0], digits[1], digits[2]))
    if not cells:
        raise PuzzleFormatError(f"No cells in {text!r}")
    return cells


def _check_color(color: Optional[str]) -> Optional[str]:
    if color is None or color == "":
        return None
    c = str(color).strip().lower()
    if c not in COLORS:
        raise PuzzleFormatError(f"Invalid color {color!r}; expected one of {', '.join(COLORS)}")
    return c


def _reflections_default(allow_reflections: Optional[bool]) -> bool:
    if allow_reflections is None:
        return bool(getattr(CFG, "ALLOW_REFLECTIONS", False))
    return bool(allow_reflections)


# ---------- text format ----------

def parse_puzzle_text(text: str, *, allow_reflections: Optional[bool] = None) -> Puzzle:
    """
    Parse the line format::

        bedlam,4
        name,color,xyz-xyz-...[,count]

    The header is ``name,dims[,mirror]``. Blank lines and ``#`` comments are
    skipped; piece ids follow the order of the piece lines.
    """
    lines = [ln.strip() for ln in str(text).splitlines()]
    lines = [ln for ln in lines if ln and not ln.startswith("#")]
    if not lines:
        raise PuzzleFormatError("Puzzle text is empty")

    header = [h.strip() for h in lines[0].split(",")]
    if len(header) < 2 or not header[0]:
        raise PuzzleFormatError(f"Bad header line: {lines[0]!r}")
    name = header[0]
    dims = parse_dims(header[1])
    flags = {h.lower() for h in header[2:] if h}
    unknown = flags - {"mirror"}
    if unknown:
        raise PuzzleFormatError(f"Unknown header flag(s): {', '.join(sorted(unknown))}")
    mirror = "mirror" in flags or _reflections_default(allow_reflections)
    symmetry = ROTATION_REFLECTION if mirror else ROTATION

    piece_lines = lines[1:]
    if len(piece_lines) > MAX_PIECES:
        raise PuzzleFormatError(f"Too many pieces ({len(piece_lines)}); at most {MAX_PIECES} are supported")

    pieces: List[Piece] = []
    for piece_id, line in enumerate(piece_lines):
        fields = [f.strip() for f in line.split(",")]
        if len(fields) < 3:
            raise PuzzleFormatError(f"Line {piece_id + 2}: expected name,color,cells[,count]")
        count = 1
        if len(fields) > 3 and fields[3]:
            count = _to_int(fields[3])
            if count is None:
                raise PuzzleFormatError(f"Line {piece_id + 2}: bad count {fields[3]!r}")
        pieces.append(Piece(
            id=piece_id,
            name=fields[0],
            shape=VoxelSet(parse_cells(fields[2])),
            count=count,
            symmetry=symmetry,
            color=_check_color(fields[1]),
        ))

    return Puzzle(name=name, target=box(*dims), pieces=tuple(pieces), container_symmetry=symmetry)


# ---------- JSON / dict payloads ----------

def _payload_cells(value: Any) -> List[Cell]:
    if isinstance(value, str):
        return parse_cells(value)
    cells: List[Cell] = []
    for c in value or []:
        if not isinstance(c, (list, tuple)) or len(c) != 3:
            raise PuzzleFormatError(f"Bad cell {c!r}: expected [x, y, z]")
        xyz = [_to_int(v) for v in c]
        if any(v is None for v in xyz):
            raise PuzzleFormatError(f"Bad cell {c!r}: coordinates must be integers")
        cells.append((xyz[0], xyz[1], xyz[2]))  # type: ignore[arg-type]
    return cells


def puzzle_from_payload(data: Dict[str, Any]) -> Puzzle:
    if not isinstance(data, dict):
        raise PuzzleFormatError("Puzzle payload must be an object")
    if data.get("builtin"):
        return builtin_puzzle(str(data["builtin"]), allow_reflections=data.get("allow_reflections"))

    name = str(data.get("name") or "custom")
    reflect = _reflections_default(data.get("allow_reflections"))
    default_symmetry = ROTATION_REFLECTION if reflect else ROTATION

    if data.get("cells") is not None:
        target = VoxelSet(_payload_cells(data["cells"]))
    elif data.get("dims") is not None:
        target = box(*parse_dims(data["dims"]))
    else:
        raise PuzzleFormatError("Puzzle needs 'dims' or 'cells'")

    container = str(data.get("container_symmetry") or default_symmetry)
    if container not in CONTAINER_SYMMETRIES:
        raise PuzzleFormatError(f"Unknown container_symmetry {container!r}")

    raw_pieces = data.get("pieces")
    if not isinstance(raw_pieces, list) or not raw_pieces:
        raise PuzzleFormatError("Puzzle needs a non-empty 'pieces' list")
    if len(raw_pieces) > MAX_PIECES:
        raise PuzzleFormatError(f"Too many pieces ({len(raw_pieces)}); at most {MAX_PIECES} are supported")

    pieces: List[Piece] = []
    for piece_id, raw in enumerate(raw_pieces):
        if not isinstance(raw, dict):
            raise PuzzleFormatError(f"Piece {piece_id}: expected an object")
        count = _to_int(raw.get("count", 1))
        if count is None:
            raise PuzzleFormatError(f"Piece {piece_id}: bad count {raw.get('count')!r}")
        symmetry = str(raw.get("symmetry") or default_symmetry)
        if symmetry not in PIECE_SYMMETRIES:
            raise PuzzleFormatError(f"Piece {piece_id}: unknown symmetry {symmetry!r}")
        pieces.append(Piece(
            id=piece_id,
            name=str(raw.get("name") or f"piece{piece_id}"),
            shape=VoxelSet(_payload_cells(raw.get("cells"))),
            count=count,
            symmetry=symmetry,
            color=_check_color(raw.get("color")),
        ))
    return Puzzle(name=name, target=target, pieces=tuple(pieces), container_symmetry=container)


def parse_puzzle_payload(data: Any) -> Tuple[Optional[Puzzle], Optional[str]]:
    """Return ``(puzzle, None)`` or ``(None, error_message)``; never raises on bad input."""
    if not data:
        return None, "nothing parsed from request"
    try:
        return puzzle_from_payload(data), None
    except PuzzleFormatError as e:
        return None, str(e)


def puzzle_to_payload(puzzle: Puzzle) -> Dict[str, Any]:
    return {
        "name": puzzle.name,
        "cells": [list(c) for c in puzzle.target.key],
        "container_symmetry": puzzle.container_symmetry,
        "pieces": [
            {
                "name": p.name,
                "cells": [list(c) for c in p.shape.key],
                "count": p.count,
                "color": p.color,
                "symmetry": p.symmetry,
            }
            for p in puzzle.pieces
        ],
    }


# ---------- built-ins ----------

# The piece set below follows the commercial Bedlam Cube's makeup (twelve
# pentacubes and one tetracube in a 4x4x4 box); the exact shapes have not
# been checked against a physical set.
BEDLAM_TEXT = """\
bedlam,4
F,red,100-200-010-110-120
P,yellow,000-100-010-110-020
T,blue,000-100-200-110-120
W,white,000-010-110-120-220
X,red,100-010-110-210-120
Z,yellow,000-100-110-120-220
Cap,blue,000-100-010-001-101
Hook,white,000-100-200-010-011
Stair,red,000-100-110-111-211
Twist,yellow,000-100-010-011-021
Fin,blue,000-100-110-210-101
Chair,white,000-100-110-011-111
Screw,red,000-100-110-111
"""

SOMA_TEXT = """\
soma,3
V,red,000-100-010
L,yellow,000-100-200-010
T,blue,000-100-200-110
Z,white,000-100-110-210
A,red,000-100-010-101
B,yellow,000-100-010-011
P,blue,000-100-010-001
"""

DOMINO_2X2X2_TEXT = """\
domino-2x2x2,2x2x2
domino,red,000-001,4
"""

DOMINO_1X1X2_TEXT = """\
domino-1x1x2,1x1x2
domino,red,000-001
"""

BUILTIN_PUZZLES: Dict[str, str] = {
    "bedlam": BEDLAM_TEXT,
    "soma": SOMA_TEXT,
    "domino-2x2x2": DOMINO_2X2X2_TEXT,
    "domino-1x1x2": DOMINO_1X1X2_TEXT,
}


def builtin_puzzle(name: str, *, allow_reflections: Optional[bool] = None) -> Puzzle:
    text = BUILTIN_PUZZLES.get(str(name).strip().lower())
    if text is None:
        raise PuzzleFormatError(
            f"Unknown built-in puzzle {name!r}; choose from {', '.join(sorted(BUILTIN_PUZZLES))}"
        )
    return parse_puzzle_text(text, allow_reflections=allow_reflections)


def load_puzzle(source: Union[str, Path], *, allow_reflections: Optional[bool] = None) -> Puzzle:
    """Load a built-in by name, a ``.json`` payload file, or a text puzzle file."""
    key = str(source).strip()
    if key.lower() in BUILTIN_PUZZLES:
        return builtin_puzzle(key, allow_reflections=allow_reflections)
    path = Path(key)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise PuzzleFormatError(
            f"No puzzle file {key!r} and no built-in of that name "
            f"({', '.join(sorted(BUILTIN_PUZZLES))})"
        ) from None
    except OSError as e:
        raise PuzzleFormatError(f"Cannot read {key!r}: {e}") from e
    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise PuzzleFormatError(f"{key}: invalid JSON ({e})") from e
        if allow_reflections is not None and isinstance(data, dict):
            data = dict(data, allow_reflections=allow_reflections)
        return puzzle_from_payload(data)
    return parse_puzzle_text(text, allow_reflections=allow_reflections)


__all__ = [
    "BUILTIN_PUZZLES",
    "COLORS",
    "PuzzleFormatError",
    "builtin_puzzle",
    "load_puzzle",
    "parse_cells",
    "parse_dims",
    "parse_puzzle_payload",
    "parse_puzzle_text",
    "puzzle_from_payload",
    "puzzle_to_payload",
]
