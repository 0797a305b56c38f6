# solver/placements.py — fitting translations and the shared placement universe
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from models import Orientation, Placement, Puzzle
from solver.orientations import generate_orientations
from solver.voxels import CellIndex, VoxelSet


def est_translations(target_dims: Sequence[int], shape_dims: Sequence[int]) -> int:
    n = 1
    for t, s in zip(target_dims, shape_dims):
        n *= max(0, t - s + 1)
    return n


def fits_bounding_box(target_dims: Sequence[int], shape_dims: Sequence[int]) -> bool:
    return all(s <= t for t, s in zip(target_dims, shape_dims))


def enumerate_placements(index: CellIndex, orientations: Sequence[Orientation]) -> List[Tuple[Placement, int]]:
    """Return ``(placement, mask)`` for every translation that fits the target.

    Candidate translations are bounded by the target's bounding box; each is
    then tested for containment with the bitmask table, so irregular targets
    only keep footprints that lie entirely on target cells.
    """
    (ox, oy, oz), _ = index.target.bounds()
    tdims = index.target.dims()
    out: List[Tuple[Placement, int]] = []
    for ori in orientations:
        sdims = ori.shape.dims()
        if not fits_bounding_box(tdims, sdims):
            continue
        cells = ori.shape.key
        for tx in range(ox, ox + tdims[0] - sdims[0] + 1):
            for ty in range(oy, oy + tdims[1] - sdims[1] + 1):
                for tz in range(oz, oz + tdims[2] - sdims[2] + 1):
                    moved = [(x + tx, y + ty, z + tz) for x, y, z in cells]
                    mask = index.mask_of(moved)
                    if mask is None:
                        continue
                    placement = Placement(
                        piece_id=ori.piece_id,
                        orientation=ori.index,
                        translation=(tx, ty, tz),
                        footprint=VoxelSet(moved),
                    )
                    out.append((placement, mask))
    return out


@dataclass
class PlacementUniverse:
    """Read-only placement tables shared by every search branch and worker.

    Rows are placements; ``masks[r]`` is the footprint bitmask,
    ``piece_of[r]`` the piece slot (index into ``counts``) and
    ``cell_rows[bit]`` lists every row covering that cell.
    """

    index: CellIndex
    placements: Tuple[Placement, ...]
    masks: Tuple[int, ...]
    piece_of: Tuple[int, ...]
    piece_ids: Tuple[int, ...]
    counts: Tuple[int, ...]
    cell_rows: Tuple[Tuple[int, ...], ...]
    orientations: Dict[int, Tuple[Orientation, ...]]
    row_lookup: Dict[Tuple[int, int], int]

    def __len__(self) -> int:
        return len(self.placements)

    @property
    def cell_count(self) -> int:
        return len(self.index)

    def slot_of(self, piece_id: int) -> int:
        return self.piece_ids.index(piece_id)

    def rows_for_piece(self, piece_id: int) -> List[int]:
        slot = self.slot_of(piece_id)
        return [r for r, s in enumerate(self.piece_of) if s == slot]

    def find_row(self, piece_id: int, mask: int) -> Optional[int]:
        return self.row_lookup.get((piece_id, mask))

    def anchor_cell(self) -> int:
        """Bit of the cell covered by the fewest placements (lowest bit on ties)."""
        best_bit = 0
        best_count: Optional[int] = None
        for bit, rows in enumerate(self.cell_rows):
            if best_count is None or len(rows) < best_count:
                best_bit = bit
                best_count = len(rows)
        return best_bit


def build_universe(puzzle: Puzzle, index: Optional[CellIndex] = None) -> PlacementUniverse:
    index = index or CellIndex(puzzle.target)
    placements: List[Placement] = []
    masks: List[int] = []
    piece_of: List[int] = []
    orientations: Dict[int, Tuple[Orientation, ...]] = {}
    row_lookup: Dict[Tuple[int, int], int] = {}

    for slot, piece in enumerate(puzzle.pieces):
        oris = tuple(generate_orientations(piece))
        orientations[piece.id] = oris
        for placement, mask in enumerate_placements(index, oris):
            row_lookup[(piece.id, mask)] = len(placements)
            placements.append(placement)
            masks.append(mask)
            piece_of.append(slot)

    cell_rows: List[List[int]] = [[] for _ in range(len(index))]
    for row, mask in enumerate(masks):
        m = mask
        while m:
            low = m & -m
            cell_rows[low.bit_length() - 1].append(row)
            m ^= low

    return PlacementUniverse(
        index=index,
        placements=tuple(placements),
        masks=tuple(masks),
        piece_of=tuple(piece_of),
        piece_ids=tuple(p.id for p in puzzle.pieces),
        counts=tuple(p.count for p in puzzle.pieces),
        cell_rows=tuple(tuple(rows) for rows in cell_rows),
        orientations=orientations,
        row_lookup=row_lookup,
    )


__all__ = [
    "PlacementUniverse",
    "build_universe",
    "enumerate_placements",
    "est_translations",
    "fits_bounding_box",
]
