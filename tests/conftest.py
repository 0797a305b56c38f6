from typing import Iterable, Sequence

import pytest

from models import NO_SYMMETRY, ROTATION, Piece, Puzzle
from solver.voxels import VoxelSet, box

DOMINO = VoxelSet([(0, 0, 0), (0, 0, 1)])
V_TROMINO = VoxelSet([(0, 0, 0), (1, 0, 0), (0, 1, 0)])


def make_puzzle(
    target: VoxelSet,
    shapes: Sequence[Iterable],
    counts: Sequence[int] = (),
    *,
    symmetry: str = ROTATION,
    container: str = ROTATION,
    name: str = "test",
) -> Puzzle:
    pieces = []
    for i, shape in enumerate(shapes):
        count = counts[i] if i < len(counts) else 1
        pieces.append(Piece(id=i, name=f"p{i}", shape=VoxelSet(shape), count=count, symmetry=symmetry))
    return Puzzle(name=name, target=target, pieces=tuple(pieces), container_symmetry=container)


@pytest.fixture
def domino_cube():
    """2x2x2 box filled by four identical dominoes."""
    return make_puzzle(box(2, 2, 2), [DOMINO], [4])


@pytest.fixture
def domino_cube_plain():
    """Same box, container symmetry off so every cover is distinct."""
    return make_puzzle(box(2, 2, 2), [DOMINO], [4], container=NO_SYMMETRY)


@pytest.fixture
def t_shape_puzzle():
    """T-shaped target whose cell count matches two dominoes but cannot be tiled."""
    target = VoxelSet([(0, 0, 0), (1, 0, 0), (2, 0, 0), (1, 1, 0)])
    return make_puzzle(target, [DOMINO], [2])
