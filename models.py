# models.py — puzzle, placement and result records shared by every layer
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from solver.voxels import Cell, VoxelSet

# Symmetry tags
ROTATION = "rotation"
ROTATION_REFLECTION = "rotation+reflection"
NO_SYMMETRY = "none"

PIECE_SYMMETRIES = (ROTATION, ROTATION_REFLECTION)
CONTAINER_SYMMETRIES = (NO_SYMMETRY, ROTATION, ROTATION_REFLECTION)

# Search modes
MODE_FIRST = "first"
MODE_ALL = "all"
MODES = (MODE_FIRST, MODE_ALL)

# Result statuses
STATUS_SOLVED = "solved"            # first mode, one solution returned
STATUS_COMPLETE = "complete"        # all mode, tree exhausted, >= 1 solution
STATUS_UNSOLVABLE = "unsolvable"    # tree exhausted, zero solutions
STATUS_CANCELLED = "cancelled"      # stopped before the tree was exhausted
STATUS_INCOMPLETE = "incomplete"    # subtrees lost to worker failures
STATUS_CONFIG_ERROR = "config_error"

_CHAR_IDS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class ConfigurationError(ValueError):
    """The puzzle is malformed and no search can be attempted."""


@dataclass(frozen=True)
class Piece:
    id: int
    name: str
    shape: VoxelSet
    count: int = 1
    symmetry: str = ROTATION
    color: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.shape)

    @property
    def char_id(self) -> str:
        if 0 <= self.id < len(_CHAR_IDS):
            return _CHAR_IDS[self.id]
        raise ValueError(f"Invalid piece id {self.id} (only 0-9 and A-Z are printable)")


@dataclass(frozen=True)
class Puzzle:
    name: str
    target: VoxelSet
    pieces: Tuple[Piece, ...]
    container_symmetry: str = ROTATION

    @property
    def total_piece_cells(self) -> int:
        return sum(p.size * p.count for p in self.pieces)

    @property
    def piece_count(self) -> int:
        return sum(p.count for p in self.pieces)

    def piece(self, piece_id: int) -> Piece:
        for p in self.pieces:
            if p.id == piece_id:
                return p
        raise KeyError(piece_id)


@dataclass(frozen=True)
class Orientation:
    piece_id: int
    index: int
    shape: VoxelSet


@dataclass(frozen=True)
class Placement:
    piece_id: int
    orientation: int
    translation: Cell
    footprint: VoxelSet

    def as_tuple(self) -> Tuple[int, int, Cell]:
        return (self.piece_id, self.orientation, self.translation)


@dataclass(frozen=True)
class Solution:
    placements: Tuple[Placement, ...]

    def as_tuples(self) -> List[Tuple[int, int, Cell]]:
        return [p.as_tuple() for p in self.placements]

    def key(self) -> Tuple[Tuple[int, Tuple[Cell, ...]], ...]:
        """Order-independent identity of the cover."""
        return tuple(sorted((p.piece_id, p.footprint.key) for p in self.placements))

    def cell_owner(self) -> Dict[Cell, int]:
        owner: Dict[Cell, int] = {}
        for p in self.placements:
            for c in p.footprint:
                owner[c] = p.piece_id
        return owner

    def __len__(self) -> int:
        return len(self.placements)


@dataclass
class WorkerFailure:
    task: int
    anchor: Optional[Tuple[int, int, Cell]]
    reason: str
    worker: Optional[int] = None


@dataclass
class SolverResult:
    status: str
    mode: str
    solutions: List[Solution] = field(default_factory=list)
    raw_count: int = 0
    canonical: bool = False
    error: Optional[str] = None
    reason: Optional[str] = None
    degraded: bool = False
    failures: List[WorkerFailure] = field(default_factory=list)
    nodes: int = 0
    subtrees: int = 0
    elapsed_sec: float = 0.0
    engine: str = "backtrack"
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status in (STATUS_SOLVED, STATUS_COMPLETE)

    @property
    def count(self) -> int:
        return len(self.solutions)

    @property
    def solution(self) -> Optional[Solution]:
        return self.solutions[0] if self.solutions else None

    @property
    def is_config_error(self) -> bool:
        return self.status == STATUS_CONFIG_ERROR

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "mode": self.mode,
            "ok": self.ok,
            "count": self.count,
            "raw_count": self.raw_count,
            "canonical": self.canonical,
            "error": self.error,
            "reason": self.reason,
            "degraded": self.degraded,
            "failures": [
                {"task": f.task, "anchor": f.anchor, "reason": f.reason, "worker": f.worker}
                for f in self.failures
            ],
            "nodes": self.nodes,
            "subtrees": self.subtrees,
            "elapsed_sec": round(self.elapsed_sec, 3),
            "engine": self.engine,
        }


def fmt_elapsed(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    if seconds < 60:
        return f"{seconds:.2f}s"
    m, s = divmod(int(seconds), 60)
    if m < 60:
        return f"{m}m {s}s"
    h, m = divmod(m, 60)
    return f"{h}h {m}m"
