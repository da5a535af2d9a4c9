""" mapping of compute-side decomposed data onto I/O writer ranks """

import numpy as np

from PyPIO_MPI.domain_decomposition import subdomain

REARR_BOX = 1
REARR_SUBSET = 2

NUM_REARRANGERS = 2

REARRANGER_NAMES = {REARR_BOX: "box", REARR_SUBSET: "subset"}


def row_length(record_shape):
    return int(np.prod(record_shape[1:], dtype=np.int64))


def destinations(rearranger, local_map, record_shape, n_writers, comp_rank, comp_size):
    """index (0..n_writers-1) of the writer receiving each locally owned element

    box: writer `w` owns a balanced block of rows of the record (first axis);
    subset: compute ranks are grouped contiguously, one writer per group."""
    if rearranger == REARR_BOX:
        n_rows = record_shape[0] if record_shape else 1
        starts = np.array(
            [subdomain(n_rows, writer, n_writers)[0] for writer in range(n_writers)],
            dtype=np.int64,
        )
        rows = local_map // max(row_length(record_shape), 1)
        return np.searchsorted(starts, rows, side="right") - 1
    if rearranger == REARR_SUBSET:
        writer = comp_rank * n_writers // comp_size
        return np.full(len(local_map), writer, dtype=np.int64)
    raise ValueError(f"unknown rearranger {rearranger!r}")


def split(dest, n_writers, *arrays):
    """per-writer tuples of the `arrays` entries headed to that writer"""
    return [tuple(array[dest == writer] for array in arrays) for writer in range(n_writers)]


def slab_bounds(indices, record_shape):
    """smallest [row_start, row_stop) along the first axis holding `indices`"""
    if len(indices) == 0:
        return 0, 0
    row_len = max(row_length(record_shape), 1)
    return int(indices.min()) // row_len, int(indices.max()) // row_len + 1


def assemble_slab(indices, values, record_shape, dtype):
    """dense (rows, *record_shape[1:]) block built from scattered flat indices"""
    row_start, row_stop = slab_bounds(indices, record_shape)
    row_len = max(row_length(record_shape), 1)
    offset = row_start * row_len
    block = np.empty((row_stop - row_start) * row_len, dtype=dtype)
    covered = np.zeros(block.size, dtype=bool)
    block[indices - offset] = values
    covered[indices - offset] = True
    if not covered.all():
        missing = int(np.flatnonzero(~covered)[0]) + offset
        raise ValueError(
            f"rows {row_start}:{row_stop} not fully covered, global index {missing} missing"
        )
    return row_start, row_stop, block.reshape((row_stop - row_start,) + tuple(record_shape[1:]))
