"""Helpers for writing solver outputs to disk."""

from __future__ import annotations

import json
import os
from typing import List

from config import CFG
from models import Puzzle, SolverResult
from render import render_layers, solution_rows


def _resolve_output_path(base_dir: str, configured_name: str, fallback: str) -> str:
    """Return the absolute path where an output artifact should be written."""

    name = (configured_name or "").strip() or fallback
    if os.path.isabs(name):
        return name
    return os.path.join(base_dir, name)


def write_solutions_text(puzzle: Puzzle, result: SolverResult, base_dir: str) -> str:
    """Write every solution as plain z-layer text to the configured file."""

    path = _resolve_output_path(base_dir, CFG.SOLUTIONS_OUT, "solutions.txt")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(f"# {puzzle.name}: {result.status}, {result.count} solution(s)\n")
        if not result.solutions:
            f.write("No solution\n")
        for i, sol in enumerate(result.solutions, 1):
            f.write(f"\nSolution {i}\n")
            f.write(render_layers(puzzle, sol, color=False))
            f.write("\n")
    return path


def solutions_payload(puzzle: Puzzle, result: SolverResult) -> dict:
    payload = dict(result.summary())
    payload["puzzle"] = puzzle.name
    payload["pieces"] = [
        {"id": p.id, "char": p.char_id, "name": p.name, "size": p.size, "count": p.count, "color": p.color}
        for p in puzzle.pieces
    ]
    payload["solutions"] = [solution_rows(sol) for sol in result.solutions]
    return payload


def write_solutions_json(puzzle: Puzzle, result: SolverResult, base_dir: str) -> str:
    """Write ``(piece, orientation, translation)`` rows for every solution as JSON."""

    path = _resolve_output_path(base_dir, CFG.SOLUTIONS_JSON, "solutions.json")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(solutions_payload(puzzle, result), f, indent=2)
    return path


def write_outputs(puzzle: Puzzle, result: SolverResult, base_dir: str) -> List[str]:
    return [
        write_solutions_text(puzzle, result, base_dir),
        write_solutions_json(puzzle, result, base_dir),
    ]


__all__ = ["solutions_payload", "write_outputs", "write_solutions_json", "write_solutions_text"]
