# cli.py — command-line front end: load a puzzle, solve, print or write solutions
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from config import CFG
from io_files import write_outputs
from models import MODES, fmt_elapsed
from puzzles import BUILTIN_PUZZLES, PuzzleFormatError, load_puzzle
from render import piece_table, render_layers
from solver.orchestrator import ENGINES, solve

EXIT_OK = 0
EXIT_NO_SOLUTION = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bedlam-solve",
        description="Exact-cover solver for polycube packing puzzles such as the Bedlam Cube.",
    )
    p.add_argument(
        "puzzle",
        help=f"puzzle file (.txt or .json) or built-in name ({', '.join(sorted(BUILTIN_PUZZLES))})",
    )
    p.add_argument("--mode", choices=MODES, default=None, help="stop at the first solution or enumerate all")
    p.add_argument("--workers", type=int, default=None, help="worker processes (0 = one per CPU)")
    p.add_argument("--raw", action="store_true", help="report raw solutions, no symmetry reduction")
    p.add_argument("--engine", choices=ENGINES, default=None)
    p.add_argument("--max-seconds", type=float, default=None, help="give up after this many seconds")
    p.add_argument("--mirror", action="store_true", help="allow mirrored placements")
    p.add_argument("-v", "--verbose", action="store_true", help="print the piece table")
    p.add_argument("--show", type=int, default=1, metavar="N", help="render the first N solutions (default 1)")
    p.add_argument("--out", metavar="DIR", default=None, help="write solution text/JSON files into DIR")
    p.add_argument("--no-color", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    color = bool(getattr(CFG, "COLOR_OUTPUT", True)) and not args.no_color and sys.stdout.isatty()

    try:
        puzzle = load_puzzle(args.puzzle, allow_reflections=True if args.mirror else None)
    except PuzzleFormatError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    x, y, z = puzzle.target.dims()
    print(f"{puzzle.name} {x}x{y}x{z}")
    if args.verbose:
        for line in piece_table(puzzle, color=color):
            print(line)

    result = solve(
        puzzle,
        mode=args.mode,
        workers=args.workers,
        canonicalize=False if args.raw else None,
        engine=args.engine,
        max_seconds=args.max_seconds,
    )
    if result.is_config_error:
        print(f"error: {result.error}", file=sys.stderr)
        return EXIT_CONFIG

    for i, sol in enumerate(result.solutions[: max(0, args.show)], 1):
        print(f"\nSolution {i}")
        print(render_layers(puzzle, sol, color=color))

    summary = f"\n{result.status}: {result.count} solution(s)"
    if result.canonical and result.raw_count != result.count:
        summary += f" ({result.raw_count} before symmetry reduction)"
    summary += f" in {fmt_elapsed(result.elapsed_sec)}"
    if result.reason and not result.ok:
        summary += f" ({result.reason})"
    print(summary)
    if result.degraded:
        print(f"warning: {len(result.failures)} subtree(s) lost to worker failures", file=sys.stderr)

    if args.out:
        for path in write_outputs(puzzle, result, os.path.abspath(args.out)):
            print(f"wrote {path}")

    return EXIT_OK if result.solutions else EXIT_NO_SOLUTION


if __name__ == "__main__":
    sys.exit(main())
