import pickle

import pytest

from config import CFG
from solver.voxels import CellIndex, VoxelSet, box, iter_bits


def test_structural_equality_ignores_input_order():
    a = VoxelSet([(1, 0, 0), (0, 0, 0)])
    b = VoxelSet([(0, 0, 0), (1, 0, 0), (0, 0, 0)])
    assert a == b
    assert hash(a) == hash(b)
    assert len(b) == 2


def test_normalized_moves_min_corner_to_origin():
    shape = VoxelSet([(3, 4, 5), (4, 4, 5), (3, 5, 6)])
    norm = shape.normalized()
    assert norm.bounds()[0] == (0, 0, 0)
    assert norm == VoxelSet([(0, 0, 0), (1, 0, 0), (0, 1, 1)])


def test_dims_and_bounds_are_inclusive():
    shape = box(2, 3, 1)
    assert shape.bounds() == ((0, 0, 0), (1, 2, 0))
    assert shape.dims() == (2, 3, 1)
    assert VoxelSet().dims() == (0, 0, 0)


def test_is_connected_requires_face_contact():
    assert VoxelSet([(0, 0, 0), (1, 0, 0)]).is_connected()
    # edge contact only
    assert not VoxelSet([(0, 0, 0), (1, 1, 0)]).is_connected()
    assert not VoxelSet().is_connected()


def test_box_rejects_non_positive_dimensions():
    with pytest.raises(ValueError):
        box(0, 2, 2)


def test_voxel_set_survives_pickling():
    shape = VoxelSet([(0, 0, 0), (0, 1, 0)])
    assert pickle.loads(pickle.dumps(shape)) == shape


def test_cell_index_masks_and_membership():
    index = CellIndex(box(2, 1, 1))
    assert index.full_mask == 0b11
    assert index.mask_of([(0, 0, 0)]) == 1
    assert index.mask_of([(0, 0, 0), (1, 0, 0)]) == 0b11
    assert index.mask_of([(2, 0, 0)]) is None
    assert not index.contains([(5, 5, 5)])
    assert index.voxels_of(0b10) == VoxelSet([(1, 0, 0)])
    assert list(iter_bits(0b101)) == [0, 2]


def test_fixed_width_flag_follows_config(monkeypatch):
    monkeypatch.setattr(CFG, "BITMASK_MAX_CELLS", 8)
    assert CellIndex(box(2, 2, 2)).fixed_width
    assert not CellIndex(box(3, 3, 1)).fixed_width
