from typing import Dict, List, Optional

from models import Puzzle, Solution
from solver.orientations import generate_orientations

_ANSI = {
    "red": "\033[31m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "white": "\033[37m",
}
_RESET = "\033[0m"


def _color(text: str, color: Optional[str], enabled: bool) -> str:
    code = _ANSI.get(color or "")
    if not enabled or code is None:
        return text
    return f"{code}{text}{_RESET}"


def render_layers(puzzle: Puzzle, solution: Solution, color: bool = False) -> str:
    """Solution as z-layers side by side; each cell shows its piece's char id.

    Rows run from high y to low y so the picture reads like a plan view.
    Cells outside the target are blank, uncovered target cells are dots.
    """
    owner = solution.cell_owner()
    pieces = {p.id: p for p in puzzle.pieces}
    (x0, y0, z0), (x1, y1, z1) = puzzle.target.bounds()
    width = x1 - x0 + 1

    header = "  ".join(f"z={z}".ljust(width) for z in range(z0, z1 + 1))
    lines = [header.rstrip()]
    for y in range(y1, y0 - 1, -1):
        layers = []
        for z in range(z0, z1 + 1):
            row = []
            for x in range(x0, x1 + 1):
                cell = (x, y, z)
                if cell not in puzzle.target:
                    row.append(" ")
                elif cell not in owner:
                    row.append(".")
                else:
                    piece = pieces[owner[cell]]
                    row.append(_color(piece.char_id, piece.color, color))
            layers.append("".join(row))
        lines.append("  ".join(layers).rstrip())
    return "\n".join(lines)


def piece_table(puzzle: Puzzle, color: bool = False) -> List[str]:
    """One line per piece: char id, size, name and orientation count."""
    out: List[str] = []
    for piece in puzzle.pieces:
        n = len(generate_orientations(piece))
        name = _color(piece.name, piece.color, color)
        count = f" x{piece.count}" if piece.count != 1 else ""
        out.append(f"{piece.char_id} {piece.size} {name} {n}{count}")
    return out


def solution_rows(solution: Solution) -> List[Dict[str, object]]:
    return [
        {"piece": p.piece_id, "orientation": p.orientation, "translation": list(p.translation)}
        for p in solution.placements
    ]
