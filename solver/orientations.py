# solver/orientations.py — rigid orientations of a piece under a symmetry group
from __future__ import annotations

from functools import lru_cache
from itertools import permutations, product
from typing import List, Tuple

from models import NO_SYMMETRY, ROTATION, ROTATION_REFLECTION, Orientation, Piece
from solver.voxels import Matrix, VoxelSet

IDENTITY: Matrix = ((1, 0, 0), (0, 1, 0), (0, 0, 1))


def _det(m: Matrix) -> int:
    return (
        m[0][0] * (m[1][1] * m[2][2] - m[1][2] * m[2][1])
        - m[0][1] * (m[1][0] * m[2][2] - m[1][2] * m[2][0])
        + m[0][2] * (m[1][0] * m[2][1] - m[1][1] * m[2][0])
    )


@lru_cache(maxsize=None)
def _signed_permutation_matrices() -> Tuple[Matrix, ...]:
    mats: List[Matrix] = []
    for perm in permutations(range(3)):
        for signs in product((1, -1), repeat=3):
            rows = []
            for axis in range(3):
                row = [0, 0, 0]
                row[perm[axis]] = signs[axis]
                rows.append(tuple(row))
            mats.append(tuple(rows))  # type: ignore[arg-type]
    # identity is generated first: perm (0,1,2) with all-positive signs
    return tuple(mats)


@lru_cache(maxsize=None)
def rotation_matrices() -> Tuple[Matrix, ...]:
    """The 24 proper rotations of the cube, identity first."""
    return tuple(m for m in _signed_permutation_matrices() if _det(m) == 1)


@lru_cache(maxsize=None)
def improper_matrices() -> Tuple[Matrix, ...]:
    """The 24 mirror-composed rotations (determinant -1)."""
    return tuple(m for m in _signed_permutation_matrices() if _det(m) == -1)


def symmetry_group(tag: str) -> Tuple[Matrix, ...]:
    if tag == NO_SYMMETRY:
        return (IDENTITY,)
    if tag == ROTATION:
        return rotation_matrices()
    if tag == ROTATION_REFLECTION:
        return rotation_matrices() + improper_matrices()
    raise ValueError(f"Unknown symmetry tag: {tag!r}")


def distinct_shapes(shape: VoxelSet, tag: str) -> List[VoxelSet]:
    seen = set()
    out: List[VoxelSet] = []
    for m in symmetry_group(tag):
        candidate = shape.transform(m).normalized()
        if candidate in seen:
            continue
        seen.add(candidate)
        out.append(candidate)
    return out


def generate_orientations(piece: Piece) -> List[Orientation]:
    """Every distinct orientation of ``piece`` under its symmetry tag.

    The whole group is applied and results are de-duplicated structurally,
    keeping the first occurrence, so the identity orientation is always
    index 0 and pieces with internal symmetry yield fewer than 24 (or 48)
    entries.
    """
    shapes = distinct_shapes(piece.shape.normalized(), piece.symmetry)
    return [Orientation(piece_id=piece.id, index=i, shape=s) for i, s in enumerate(shapes)]


__all__ = [
    "IDENTITY",
    "rotation_matrices",
    "improper_matrices",
    "symmetry_group",
    "distinct_shapes",
    "generate_orientations",
]
