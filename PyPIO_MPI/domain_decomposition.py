# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring,invalid-name

from functools import lru_cache

import numba
import numpy as np

from PyPIO_MPI.errors import DecompositionRangeError

MPI_DIM = 0  # the partitioned axis; any trailing axis is replicated whole


@lru_cache()
def make_subdomain(jit_flags):
    @numba.njit(**dict(jit_flags))
    def subdomain(span, rank, size):
        if size < 1 or rank < 0 or rank >= size:
            raise ValueError("rank out of range")
        n_min = span // size
        n_extra = span % size
        first = rank * n_min + min(rank, n_extra)
        last = first + n_min + (1 if rank < n_extra else 0)
        return first, last

    return subdomain


subdomain = make_subdomain(jit_flags=())


class Decomposition:
    """the part of a global index space owned by one rank: flat (row-major)
    global indices, sorted, possibly empty"""

    def __init__(self, global_shape, local_map):
        self.global_shape = tuple(int(extent) for extent in global_shape)
        self.local_map = np.asarray(local_map, dtype=np.int64)

    @property
    def ndims(self):
        return len(self.global_shape)

    @property
    def global_size(self):
        return int(np.prod(self.global_shape, dtype=np.int64))

    def __len__(self):
        return len(self.local_map)

    def __repr__(self):
        return f"Decomposition(global_shape={self.global_shape}, n_local={len(self)})"


def _validate(global_shape, rank, size):
    if len(global_shape) not in (1, 2):
        raise DecompositionRangeError(
            f"only 1D and 2D decompositions are supported, got shape {global_shape}"
        )
    if any(extent < 0 for extent in global_shape):
        raise DecompositionRangeError(f"negative extent in shape {global_shape}")
    if size < 1:
        raise DecompositionRangeError(f"cannot decompose over {size} ranks")
    if not 0 <= rank < size:
        raise DecompositionRangeError(f"rank {rank} outside of [0, {size})")


def decomposition_map(global_shape, rank, size):
    global_shape = tuple(int(extent) for extent in global_shape)
    _validate(global_shape, rank, size)
    start, stop = subdomain(global_shape[MPI_DIM], rank, size)
    row_len = int(np.prod(global_shape[MPI_DIM + 1 :], dtype=np.int64))
    return Decomposition(
        global_shape, np.arange(start * row_len, stop * row_len, dtype=np.int64)
    )


def mpi_indices(global_shape, rank, size):
    """per-axis global coordinates of the locally owned block (cf. np.indices)"""
    decomposition = decomposition_map(global_shape, rank, size)
    return np.unravel_index(decomposition.local_map, decomposition.global_shape)


def create_decomposition_1d(iosystem, rank, size, dim_len, dtype):
    decomposition = decomposition_map((dim_len,), rank, size)
    return iosystem.init_decomp(dtype, decomposition)


def create_decomposition_2d(iosystem, rank, size, dim_len_2d, dtype):
    decomposition = decomposition_map(tuple(dim_len_2d), rank, size)
    return iosystem.init_decomp(dtype, decomposition)
