# pylint: disable=missing-module-docstring,missing-function-docstring
import numpy as np
import pytest

from PyPIO_MPI.impl.rearranger import (
    REARR_BOX,
    NUM_REARRANGERS,
    REARR_SUBSET,
    REARRANGER_NAMES,
    assemble_slab,
    destinations,
    slab_bounds,
    split,
)

RECORD_SHAPE = (8, 4)


def test_box_writers_own_balanced_row_blocks():
    local_map = np.arange(32, dtype=np.int64)

    dest = destinations(REARR_BOX, local_map, RECORD_SHAPE, 3, comp_rank=0, comp_size=1)

    # rows 0-2, 3-5 and 6-7
    assert (dest == np.repeat([0, 1, 2], [12, 12, 8])).all()


def test_box_single_writer():
    dest = destinations(REARR_BOX, np.arange(5, 8), (8,), 1, comp_rank=1, comp_size=2)
    assert (dest == 0).all()


@pytest.mark.parametrize(
    "comp_rank, comp_size, n_writers, expected",
    ((0, 4, 2, 0), (1, 4, 2, 0), (2, 4, 2, 1), (3, 4, 2, 1), (4, 5, 1, 0), (2, 3, 3, 2)),
)
def test_subset_groups_compute_ranks_contiguously(comp_rank, comp_size, n_writers, expected):
    dest = destinations(REARR_SUBSET, np.arange(4), RECORD_SHAPE, n_writers, comp_rank, comp_size)
    assert (dest == expected).all()


def test_unknown_rearranger():
    with pytest.raises(ValueError):
        destinations(3, np.arange(4), RECORD_SHAPE, 1, 0, 1)


def test_split():
    dest = np.array([1, 0, 1])
    indices, values = np.array([4, 5, 6]), np.array([40.0, 50.0, 60.0])

    parts = split(dest, 3, indices, values)

    assert [list(part[0]) for part in parts] == [[5], [4, 6], []]
    assert [list(part[1]) for part in parts] == [[50.0], [40.0, 60.0], []]


@pytest.mark.parametrize(
    "indices, expected",
    (([], (0, 0)), ([4, 5, 6, 7], (1, 2)), ([31, 0], (0, 8)), ([9], (2, 3))),
)
def test_slab_bounds(indices, expected):
    assert slab_bounds(np.array(indices, dtype=np.int64), RECORD_SHAPE) == expected


def test_assemble_slab_reorders_scattered_indices():
    indices = np.array([11, 8, 10, 9, 7, 4, 5, 6])

    row_start, row_stop, block = assemble_slab(indices, 2 * indices + 1, RECORD_SHAPE, np.int32)

    assert (row_start, row_stop) == (1, 3)
    assert block.dtype == np.int32
    assert (block == 2 * np.arange(4, 12).reshape(2, 4) + 1).all()


def test_assemble_slab_rejects_partial_rows():
    with pytest.raises(ValueError, match="global index 6 missing"):
        assemble_slab(np.array([4, 5, 7]), np.zeros(3), RECORD_SHAPE, np.float64)


def test_rearranger_names():
    assert len(REARRANGER_NAMES) == NUM_REARRANGERS
    assert REARRANGER_NAMES[REARR_BOX] == "box"
    assert REARRANGER_NAMES[REARR_SUBSET] == "subset"
