# solver/voxels.py — integer lattice cells, voxel sets and bitmask indexing
from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from config import CFG

Cell = Tuple[int, int, int]
Matrix = Tuple[Tuple[int, int, int], Tuple[int, int, int], Tuple[int, int, int]]

_NEIGHBOR_DELTAS: Tuple[Cell, ...] = (
    (1, 0, 0), (-1, 0, 0),
    (0, 1, 0), (0, -1, 0),
    (0, 0, 1), (0, 0, -1),
)


def _as_cell(obj) -> Cell:
    try:
        x, y, z = obj
        return (int(x), int(y), int(z))
    except (TypeError, ValueError):
        raise TypeError(f"Not a cell triple: {obj!r}") from None


def apply_matrix(matrix: Matrix, cell: Cell) -> Cell:
    x, y, z = cell
    r0, r1, r2 = matrix
    return (
        r0[0] * x + r0[1] * y + r0[2] * z,
        r1[0] * x + r1[1] * y + r1[2] * z,
        r2[0] * x + r2[1] * y + r2[2] * z,
    )


class VoxelSet:
    """Immutable set of lattice cells with structural equality.

    Pieces and orientations are stored normalized (minimum corner at the
    origin); placement footprints keep their absolute position inside the
    target volume.
    """

    __slots__ = ("_cells", "_key", "_hash")

    def __init__(self, cells: Iterable[Sequence[int]] = ()):
        frozen: FrozenSet[Cell] = frozenset(_as_cell(c) for c in cells)
        self._cells = frozen
        self._key: Tuple[Cell, ...] = tuple(sorted(frozen))
        self._hash = hash(self._key)

    # ---- construction helpers ----

    @classmethod
    def normalized_from(cls, cells: Iterable[Sequence[int]]) -> "VoxelSet":
        return cls(cells).normalized()

    def normalized(self) -> "VoxelSet":
        if not self._cells:
            return self
        (mx, my, mz), _ = self.bounds()
        if mx == 0 and my == 0 and mz == 0:
            return self
        return self.translate((-mx, -my, -mz))

    def translate(self, vector: Sequence[int]) -> "VoxelSet":
        dx, dy, dz = _as_cell(vector)
        return VoxelSet((x + dx, y + dy, z + dz) for x, y, z in self._cells)

    def transform(self, matrix: Matrix) -> "VoxelSet":
        return VoxelSet(apply_matrix(matrix, c) for c in self._cells)

    # ---- geometry ----

    def bounds(self) -> Tuple[Cell, Cell]:
        """Return ``(min_corner, max_corner)``, both inclusive."""
        if not self._cells:
            raise ValueError("empty voxel set has no bounds")
        xs = [c[0] for c in self._cells]
        ys = [c[1] for c in self._cells]
        zs = [c[2] for c in self._cells]
        return (min(xs), min(ys), min(zs)), (max(xs), max(ys), max(zs))

    def dims(self) -> Cell:
        if not self._cells:
            return (0, 0, 0)
        (x0, y0, z0), (x1, y1, z1) = self.bounds()
        return (x1 - x0 + 1, y1 - y0 + 1, z1 - z0 + 1)

    def is_connected(self) -> bool:
        if not self._cells:
            return False
        start = self._key[0]
        seen = {start}
        stack = [start]
        while stack:
            x, y, z = stack.pop()
            for dx, dy, dz in _NEIGHBOR_DELTAS:
                n = (x + dx, y + dy, z + dz)
                if n in self._cells and n not in seen:
                    seen.add(n)
                    stack.append(n)
        return len(seen) == len(self._cells)

    # ---- set operations ----

    @property
    def cells(self) -> FrozenSet[Cell]:
        return self._cells

    @property
    def key(self) -> Tuple[Cell, ...]:
        return self._key

    def __contains__(self, cell) -> bool:
        try:
            return _as_cell(cell) in self._cells
        except TypeError:
            return False

    def __iter__(self) -> Iterator[Cell]:
        return iter(self._key)

    def __len__(self) -> int:
        return len(self._cells)

    def __bool__(self) -> bool:
        return bool(self._cells)

    def union(self, other: "VoxelSet") -> "VoxelSet":
        return VoxelSet(self._cells | other._cells)

    def difference(self, other: "VoxelSet") -> "VoxelSet":
        return VoxelSet(self._cells - other._cells)

    def isdisjoint(self, other: "VoxelSet") -> bool:
        return self._cells.isdisjoint(other._cells)

    def issubset(self, other: "VoxelSet") -> bool:
        return self._cells <= other._cells

    __or__ = union
    __sub__ = difference

    # ---- identity ----

    def __eq__(self, other) -> bool:
        if not isinstance(other, VoxelSet):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: "VoxelSet") -> bool:
        if not isinstance(other, VoxelSet):
            return NotImplemented
        return (len(self._key), self._key) < (len(other._key), other._key)

    def __hash__(self) -> int:
        return self._hash

    def __repr__(self) -> str:
        return f"VoxelSet({list(self._key)!r})"

    def __reduce__(self):
        return (VoxelSet, (self._key,))


def box(x: int, y: int, z: int) -> VoxelSet:
    """Cuboid of ``x × y × z`` unit cells anchored at the origin."""
    if x <= 0 or y <= 0 or z <= 0:
        raise ValueError(f"box dimensions must be positive, got {x}x{y}x{z}")
    return VoxelSet((i, j, k) for i in range(x) for j in range(y) for k in range(z))


class CellIndex:
    """Cell → bit table over a target volume.

    Every subset of the target is an ``int`` bitmask, so membership,
    union, difference and disjointness are single integer operations.
    Python integers grow as needed, which covers targets beyond the
    fixed-width bound without a separate bitset type.
    """

    def __init__(self, target: VoxelSet):
        if not target:
            raise ValueError("target volume is empty")
        self.target = target
        self.cells: Tuple[Cell, ...] = target.key
        self.bit_of: Dict[Cell, int] = {c: i for i, c in enumerate(self.cells)}
        self.full_mask: int = (1 << len(self.cells)) - 1
        self.fixed_width: bool = len(self.cells) <= int(getattr(CFG, "BITMASK_MAX_CELLS", 128))

    def __len__(self) -> int:
        return len(self.cells)

    def mask_of(self, cells: Iterable[Sequence[int]]) -> Optional[int]:
        """Bitmask for ``cells``, or ``None`` when any cell lies outside the target."""
        mask = 0
        bit_of = self.bit_of
        for c in cells:
            bit = bit_of.get(tuple(c))  # type: ignore[arg-type]
            if bit is None:
                return None
            mask |= 1 << bit
        return mask

    def contains(self, cells: Iterable[Sequence[int]]) -> bool:
        return self.mask_of(cells) is not None

    def cells_of(self, mask: int) -> List[Cell]:
        out: List[Cell] = []
        while mask:
            low = mask & -mask
            out.append(self.cells[low.bit_length() - 1])
            mask ^= low
        return out

    def voxels_of(self, mask: int) -> VoxelSet:
        return VoxelSet(self.cells_of(mask))


def iter_bits(mask: int) -> Iterator[int]:
    while mask:
        low = mask & -mask
        yield low.bit_length() - 1
        mask ^= low


__all__ = [
    "Cell",
    "Matrix",
    "VoxelSet",
    "CellIndex",
    "apply_matrix",
    "box",
    "iter_bits",
]
