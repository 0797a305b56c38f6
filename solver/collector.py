# solver/collector.py — thread-safe solution sink with symmetry canonicalisation
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence, Tuple

from models import NO_SYMMETRY, Puzzle, Solution
from solver.orientations import symmetry_group
from solver.placements import PlacementUniverse
from solver.voxels import Cell, apply_matrix

FormKey = Tuple[Tuple[int, Tuple[Cell, ...]], ...]


def container_permutations(universe: PlacementUniverse, tag: str) -> List[Tuple[int, ...]]:
    """Bit permutations induced by the group elements that map the target onto itself.

    ``perm[bit]`` is the bit the cell moves to. The identity is always first.
    """
    index = universe.index
    target = index.target
    perms: List[Tuple[int, ...]] = []
    seen = set()
    for m in symmetry_group(tag):
        moved = [apply_matrix(m, c) for c in index.cells]
        mx = min(c[0] for c in moved)
        my = min(c[1] for c in moved)
        mz = min(c[2] for c in moved)
        (ox, oy, oz), _ = target.bounds()
        shift = (ox - mx, oy - my, oz - mz)
        perm: List[int] = []
        ok = True
        for c in moved:
            bit = index.bit_of.get((c[0] + shift[0], c[1] + shift[1], c[2] + shift[2]))
            if bit is None:
                ok = False
                break
            perm.append(bit)
        if not ok:
            continue
        key = tuple(perm)
        if key in seen:
            continue
        seen.add(key)
        perms.append(key)
    return perms


def _permute_mask(mask: int, perm: Sequence[int]) -> int:
    out = 0
    while mask:
        low = mask & -mask
        out |= 1 << perm[low.bit_length() - 1]
        mask ^= low
    return out


class SolutionCollector:
    """Append-only sink shared by the scheduler's result readers.

    With ``canonicalize`` on, every incoming cover is mapped through the
    container's symmetry group and only the lexicographically smallest image
    is kept, so symmetric duplicates are reported once. Images that are not
    legal placements (for example the mirror image of a chiral piece whose
    own tag forbids reflection) are skipped.
    """

    def __init__(
        self,
        universe: PlacementUniverse,
        *,
        canonicalize: bool = True,
        container_symmetry: str = NO_SYMMETRY,
        limit: Optional[int] = None,
    ):
        self.universe = universe
        self.canonicalize = bool(canonicalize) and container_symmetry != NO_SYMMETRY
        self.container_symmetry = container_symmetry
        self.limit = limit
        self._lock = threading.Lock()
        self._solutions: List[Solution] = []
        self._keys: Dict[FormKey, int] = {}
        self._raw = 0
        self._perms = container_permutations(universe, container_symmetry) if self.canonicalize else []

    # ---- canonical forms ----

    def _form(self, rows: Sequence[int]) -> FormKey:
        u = self.universe
        return tuple(sorted((u.piece_ids[u.piece_of[r]], u.placements[r].footprint.key) for r in rows))

    def canonical_rows(self, rows: Sequence[int]) -> Tuple[int, ...]:
        if not self._perms:
            return tuple(rows)
        u = self.universe
        best_rows: Tuple[int, ...] = tuple(rows)
        best_form = self._form(rows)
        for perm in self._perms[1:]:
            image: List[int] = []
            for r in rows:
                piece_id = u.piece_ids[u.piece_of[r]]
                found = u.find_row(piece_id, _permute_mask(u.masks[r], perm))
                if found is None:
                    break
                image.append(found)
            else:
                form = self._form(image)
                if form < best_form:
                    best_form = form
                    best_rows = tuple(image)
        return tuple(sorted(best_rows, key=lambda r: (u.piece_ids[u.piece_of[r]], u.placements[r].footprint.key)))

    def to_solution(self, rows: Sequence[int]) -> Solution:
        return Solution(placements=tuple(self.universe.placements[r] for r in rows))

    # ---- sink ----

    def add(self, rows: Sequence[int]) -> bool:
        """Record one cover; return True when it is new."""
        rows = self.canonical_rows(rows) if self.canonicalize else tuple(rows)
        key = self._form(rows)
        with self._lock:
            self._raw += 1
            if key in self._keys:
                return False
            if self.limit is not None and len(self._solutions) >= self.limit:
                return False
            self._keys[key] = len(self._solutions)
            self._solutions.append(self.to_solution(rows))
            return True

    @property
    def raw_count(self) -> int:
        with self._lock:
            return self._raw

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._solutions)

    def solutions(self) -> List[Solution]:
        with self._lock:
            return list(self._solutions)

    def canonical_keys(self) -> List[FormKey]:
        with self._lock:
            return list(self._keys)


def check_exact_cover(puzzle: Puzzle, solution: Solution) -> List[str]:
    """Independent validation of a reported cover; returns a list of problems."""
    problems: List[str] = []
    seen: Dict[Cell, int] = {}
    used: Dict[int, int] = {}
    target = puzzle.target.cells
    for p in solution.placements:
        used[p.piece_id] = used.get(p.piece_id, 0) + 1
        for c in p.footprint:
            if c not in target:
                problems.append(f"piece {p.piece_id} covers {c} outside the target")
            if c in seen:
                problems.append(f"cell {c} covered by pieces {seen[c]} and {p.piece_id}")
            seen[c] = p.piece_id
    missing = [c for c in puzzle.target if c not in seen]
    if missing:
        problems.append(f"{len(missing)} target cells uncovered, first {missing[0]}")
    for piece in puzzle.pieces:
        n = used.pop(piece.id, 0)
        if n != piece.count:
            problems.append(f"piece {piece.id} used {n} times, expected {piece.count}")
    for pid in used:
        problems.append(f"unknown piece id {pid}")
    return problems


__all__ = ["SolutionCollector", "container_permutations", "check_exact_cover"]
