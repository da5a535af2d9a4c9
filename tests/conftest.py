# pylint: disable=missing-module-docstring,missing-function-docstring

import mpi4py
import numba_mpi

from .fixtures import iotype, mpi_tmp_path  # pylint: disable=unused-import


def pytest_sessionstart(session):  # pylint: disable=unused-argument
    if not numba_mpi.initialized():
        mpi4py.MPI.Init()
