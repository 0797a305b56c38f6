# solver/search.py — exact-cover backtracking over a placement universe
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from config import CFG
from models import MODE_ALL, MODE_FIRST, MODES
from solver.placements import PlacementUniverse

# Engine phases
ROOT = "ROOT"
BRANCHING = "BRANCHING"
PLACED = "PLACED"
BACKTRACK = "BACKTRACK"
DEAD_END = "DEAD_END"
SOLVED = "SOLVED"

# Outcomes of one run
EXHAUSTED = "exhausted"   # subtree fully explored
STOPPED = "stopped"       # first-solution mode found its solution
CANCELLED = "cancelled"   # flag, deadline or node limit


class SearchState:
    """Mutable state of one search branch; never shared across branches."""

    __slots__ = ("universe", "empty", "remaining", "partial")

    def __init__(self, universe: PlacementUniverse, empty: int, remaining: List[int], partial: List[int]):
        self.universe = universe
        self.empty = empty
        self.remaining = remaining
        self.partial = partial

    @classmethod
    def initial(cls, universe: PlacementUniverse) -> "SearchState":
        return cls(universe, universe.index.full_mask, list(universe.counts), [])

    def copy(self) -> "SearchState":
        return SearchState(self.universe, self.empty, list(self.remaining), list(self.partial))

    def can_commit(self, row: int) -> bool:
        mask = self.universe.masks[row]
        return (mask & self.empty) == mask and self.remaining[self.universe.piece_of[row]] > 0

    def commit(self, row: int) -> None:
        self.empty ^= self.universe.masks[row]
        self.remaining[self.universe.piece_of[row]] -= 1
        self.partial.append(row)

    def undo(self) -> int:
        row = self.partial.pop()
        self.empty |= self.universe.masks[row]
        self.remaining[self.universe.piece_of[row]] += 1
        return row

    @property
    def depth(self) -> int:
        return len(self.partial)

    @property
    def solved(self) -> bool:
        return self.empty == 0 and not any(self.remaining)


@dataclass
class SearchOutcome:
    status: str
    nodes: int = 0
    solutions: int = 0
    dead_ends: int = 0
    reason: Optional[str] = None
    phases: List[str] = field(default_factory=list)


class SearchEngine:
    """Depth-first exact cover with minimum-remaining-candidates branching.

    The loop is an explicit stack of candidate frames so depth is bounded by
    memory rather than the interpreter's recursion limit. Each frame holds
    the candidates for one branching cell; the candidate currently committed
    from frame ``k`` is ``state.partial[root_depth + k]``.
    """

    def __init__(
        self,
        universe: PlacementUniverse,
        *,
        mode: str = MODE_ALL,
        cancel=None,
        deadline: Optional[float] = None,
        node_limit: Optional[int] = None,
        poll_interval: Optional[int] = None,
        trace: bool = False,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown search mode: {mode!r}")
        self.universe = universe
        self.mode = mode
        self.cancel = cancel
        self.deadline = deadline
        limit = node_limit if node_limit is not None else int(getattr(CFG, "NODE_LIMIT", 0))
        self.node_limit = limit if limit and limit > 0 else None
        interval = poll_interval if poll_interval is not None else int(getattr(CFG, "CANCEL_POLL_INTERVAL", 64))
        self.poll_interval = max(1, int(interval))
        self.trace = trace

    # ---- branching ----

    def select_candidates(self, state: SearchState) -> List[int]:
        """Rows covering the empty cell with the fewest legal candidates.

        An empty list means some empty cell cannot be covered at all.
        """
        universe = self.universe
        masks = universe.masks
        piece_of = universe.piece_of
        cell_rows = universe.cell_rows
        empty = state.empty
        remaining = state.remaining

        best: Optional[List[int]] = None
        best_count = 0
        bits = empty
        while bits:
            low = bits & -bits
            bits ^= low
            rows: List[int] = []
            for r in cell_rows[low.bit_length() - 1]:
                m = masks[r]
                if (m & empty) == m and remaining[piece_of[r]]:
                    rows.append(r)
                    if best is not None and len(rows) >= best_count:
                        break
            n = len(rows)
            if n == 0:
                return []
            if best is None or n < best_count:
                best = rows
                best_count = n
                if n == 1:
                    break
        return best or []

    def _interrupted(self, nodes: int) -> Optional[str]:
        if self.cancel is not None and self.cancel.is_set():
            return "cancel requested"
        if self.deadline is not None and time.time() >= self.deadline:
            return "time limit reached"
        if self.node_limit is not None and nodes >= self.node_limit:
            return "node limit reached"
        return None

    # ---- main loop ----

    def run(self, state: SearchState, on_solution: Optional[Callable[[Sequence[int]], None]] = None) -> SearchOutcome:
        outcome = SearchOutcome(status=EXHAUSTED)
        stack: List[List[int]] = []
        cursor: List[int] = []
        phase = ROOT
        nodes = 0

        reason = self._interrupted(0)
        if reason:
            outcome.status = CANCELLED
            outcome.reason = reason
            return outcome

        while True:
            if self.trace:
                outcome.phases.append(phase)

            if phase == ROOT:
                phase = SOLVED if state.solved else BRANCHING

            elif phase == BRANCHING:
                candidates = self.select_candidates(state)
                if not candidates:
                    phase = DEAD_END
                    continue
                stack.append(candidates)
                cursor.append(0)
                state.commit(candidates[0])
                nodes += 1
                phase = PLACED

            elif phase == PLACED:
                if nodes % self.poll_interval == 0:
                    reason = self._interrupted(nodes)
                    if reason:
                        outcome.status = CANCELLED
                        outcome.reason = reason
                        break
                phase = SOLVED if state.solved else BRANCHING

            elif phase == SOLVED:
                outcome.solutions += 1
                if on_solution is not None:
                    on_solution(tuple(state.partial))
                if self.mode == MODE_FIRST:
                    outcome.status = STOPPED
                    break
                phase = BACKTRACK

            elif phase == DEAD_END:
                outcome.dead_ends += 1
                phase = BACKTRACK

            elif phase == BACKTRACK:
                advanced = False
                while stack:
                    state.undo()
                    cursor[-1] += 1
                    frame = stack[-1]
                    if cursor[-1] < len(frame):
                        state.commit(frame[cursor[-1]])
                        nodes += 1
                        advanced = True
                        break
                    stack.pop()
                    cursor.pop()
                if not advanced:
                    outcome.status = EXHAUSTED
                    break
                phase = PLACED

        outcome.nodes = nodes
        return outcome


def search_all(universe: PlacementUniverse, *, mode: str = MODE_ALL, **kwargs) -> List[tuple]:
    """Run the engine from the empty root and return every emitted row tuple."""
    found: List[tuple] = []
    engine = SearchEngine(universe, mode=mode, **kwargs)
    engine.run(SearchState.initial(universe), on_solution=found.append)
    return found


__all__ = [
    "ROOT",
    "BRANCHING",
    "PLACED",
    "BACKTRACK",
    "DEAD_END",
    "SOLVED",
    "EXHAUSTED",
    "STOPPED",
    "CANCELLED",
    "SearchState",
    "SearchOutcome",
    "SearchEngine",
    "search_all",
]
