# pylint: disable=missing-module-docstring,missing-function-docstring

from pathlib import Path

import mpi4py
import numba_mpi as mpi
import numpy as np
import pytest

from PyPIO_MPI.flavors import IOTYPE_NAMES, get_iotypes


@pytest.fixture
def mpi_tmp_path(tmp_path):
    """rank 0's `tmp_path`, shared by all ranks"""
    if not mpi.initialized():
        mpi4py.MPI.Init()
    path_data = np.array(str(tmp_path), "c")
    path = np.empty_like(path_data) if mpi.rank() != 0 else path_data
    mpi.bcast(path, 0)
    return Path(path.tobytes().decode("utf-8"))


@pytest.fixture(params=sorted(IOTYPE_NAMES), ids=IOTYPE_NAMES.get)
def iotype(request):
    if request.param not in get_iotypes():
        pytest.skip(f"{IOTYPE_NAMES[request.param]} not available in this build")
    return request.param
