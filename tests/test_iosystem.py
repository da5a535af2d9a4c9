# pylint: disable=missing-module-docstring,missing-function-docstring,redefined-outer-name
from contextlib import contextmanager

import h5py
import numba_mpi as mpi
import numpy as np
import pytest
from mpi4py import MPI

from PyPIO_MPI.domain_decomposition import decomposition_map
from PyPIO_MPI.errors import PIO_EINVAL, DecompositionRangeError, IoCollaboratorError
from PyPIO_MPI.flavors import PIO_IOTYPE_NETCDF
from PyPIO_MPI.impl.rearranger import REARR_BOX, REARR_SUBSET
from PyPIO_MPI.iosystem import init_sync
from PyPIO_MPI.schema import Dimension, Schema, Variable

SCHEMA = Schema(
    dimensions=(Dimension("time", 0, unlimited=True), Dimension("x", 8), Dimension("y", 4)),
    variables=(
        Variable("field", "float64", ("time", "x", "y")),
        Variable("coord", "int32", ("x",)),
        Variable("answer", "int32"),
    ),
    attributes={"title": "iosystem test"},
)


@contextmanager
def sync_iosystem(**kwargs):
    iosystem = init_sync(MPI.COMM_WORLD, **kwargs)
    try:
        yield iosystem
    finally:
        iosystem.finalize()


def io_layouts():
    """(num_iotasks, stride) pairs valid on the current pool"""
    size = mpi.size()
    return ((None, 1), (1, 1), ((size + 1) // 2, 2))


@pytest.mark.parametrize(
    "kwargs",
    (
        {"num_iotasks": 0},
        {"stride": 0},
        {"base": -1},
        {"num_iotasks": 1, "base": 1024},
        {"rearranger": 7},
    ),
)
def test_init_sync_rejects_invalid_placement(kwargs):
    with pytest.raises(IoCollaboratorError) as excinfo:
        init_sync(MPI.COMM_WORLD, **kwargs)
    assert excinfo.value.code == PIO_EINVAL


def test_init_sync_io_subset():
    with sync_iosystem(num_iotasks=1) as iosystem:
        assert iosystem.io_ranks == (0,)
        assert iosystem.is_io == (mpi.rank() == 0)
        assert iosystem.is_compute
        assert (iosystem.io_comm is not None) == iosystem.is_io


def test_finalize_is_idempotent_and_final():
    iosystem = init_sync(MPI.COMM_WORLD)
    iosystem.finalize()
    iosystem.finalize()
    with pytest.raises(IoCollaboratorError):
        iosystem.create_file(PIO_IOTYPE_NETCDF, "never.nc")


def test_metadata_round_trip(iotype, mpi_tmp_path):
    path = mpi_tmp_path / "metadata.nc"
    with sync_iosystem() as iosystem:
        with iosystem.create_file(iotype, path) as ncfile:
            ncfile.define(SCHEMA)
            ncfile.put_var("answer", np.int32(42))
            ncfile.put_var("coord", np.arange(8, dtype=np.int32))

        with iosystem.open_file(iotype, path) as ncfile:
            schema = ncfile.inquire()
            answer = ncfile.get_var("answer")
            coord = ncfile.get_var("coord")

    assert [dim.name for dim in schema.dimensions] == ["time", "x", "y"]
    assert schema.dimension("time").unlimited
    assert schema.dimension("time").length == 0
    assert schema.attributes == {"title": "iosystem test"}
    assert sorted(var.name for var in schema.variables) == ["answer", "coord", "field"]
    assert answer == 42
    assert (coord == np.arange(8)).all()


@pytest.mark.parametrize("rearranger", (REARR_BOX, REARR_SUBSET))
@pytest.mark.parametrize("layout", range(3))
def test_darray_round_trip(iotype, rearranger, layout, mpi_tmp_path):
    num_iotasks, stride = io_layouts()[layout]
    path = mpi_tmp_path / f"darray_{rearranger}_{layout}.nc"
    decomposition = decomposition_map((8, 4), mpi.rank(), mpi.size())

    with sync_iosystem(num_iotasks=num_iotasks, stride=stride, rearranger=rearranger) as iosystem:
        iodesc = iosystem.init_decomp("float64", decomposition)
        with iosystem.create_file(iotype, path) as ncfile:
            ncfile.define(SCHEMA)
            for record in range(2):
                ncfile.write_darray(
                    "field", iodesc, 100 * record + decomposition.local_map, record=record
                )
        with iosystem.open_file(iotype, path) as ncfile:
            assert ncfile.schema.dimension("time").length == 2
            back = [ncfile.read_darray("field", iodesc, record=record) for record in range(2)]
        iosystem.free_decomp(iodesc)

    for record in range(2):
        assert back[record].dtype == np.float64
        assert (back[record] == 100 * record + decomposition.local_map).all()

    mpi.barrier()
    if mpi.rank() == 0:
        with h5py.File(path, "r") as file:
            expected = np.arange(32).reshape(8, 4)
            assert (file["field"][()] == np.stack((expected, expected + 100))).all()


def test_failed_creation_discards_file(mpi_tmp_path):
    path = mpi_tmp_path / "discarded.nc"
    with sync_iosystem() as iosystem:
        with pytest.raises(RuntimeError):
            with iosystem.create_file(PIO_IOTYPE_NETCDF, path) as ncfile:
                ncfile.define(SCHEMA)
                raise RuntimeError("interrupted")
    mpi.barrier()
    assert not path.exists()


def test_write_darray_size_mismatch_agreed(mpi_tmp_path):
    decomposition = decomposition_map((8,), mpi.rank(), mpi.size())
    values = np.zeros(len(decomposition) + (1 if mpi.rank() == mpi.size() - 1 else 0))

    with sync_iosystem() as iosystem:
        iodesc = iosystem.init_decomp("int32", decomposition)
        with pytest.raises(DecompositionRangeError):
            with iosystem.create_file(PIO_IOTYPE_NETCDF, mpi_tmp_path / "mismatch.nc") as ncfile:
                ncfile.define(SCHEMA)
                ncfile.write_darray("coord", iodesc, values)


def test_write_darray_wrong_decomposition(mpi_tmp_path):
    with sync_iosystem() as iosystem:
        iodesc = iosystem.init_decomp("int32", decomposition_map((5,), mpi.rank(), mpi.size()))
        with pytest.raises(DecompositionRangeError):
            with iosystem.create_file(PIO_IOTYPE_NETCDF, mpi_tmp_path / "wrong.nc") as ncfile:
                ncfile.define(SCHEMA)
                ncfile.write_darray("coord", iodesc, np.zeros(len(iodesc.decomposition)))


def test_read_of_unwritten_record(mpi_tmp_path):
    path = mpi_tmp_path / "unwritten.nc"
    with sync_iosystem() as iosystem:
        iodesc = iosystem.init_decomp(
            "float64", decomposition_map((8, 4), mpi.rank(), mpi.size())
        )
        with iosystem.create_file(PIO_IOTYPE_NETCDF, path) as ncfile:
            ncfile.define(SCHEMA)
        with iosystem.open_file(PIO_IOTYPE_NETCDF, path) as ncfile:
            with pytest.raises(IoCollaboratorError):
                ncfile.read_darray("field", iodesc, record=0)


def test_open_missing_file(mpi_tmp_path):
    with sync_iosystem() as iosystem:
        with pytest.raises(IoCollaboratorError):
            iosystem.open_file(PIO_IOTYPE_NETCDF, mpi_tmp_path / "missing.nc")
        assert not iosystem.files


class _FailingClose:  # pylint: disable=too-few-public-methods
    def __init__(self, handle):
        self.handle = handle

    def close(self):
        self.handle.close()
        raise OSError("close failed")


def test_discard_after_close_failure_on_one_rank(mpi_tmp_path):
    path = mpi_tmp_path / "close_failure.nc"
    with sync_iosystem() as iosystem:
        ncfile = iosystem.create_file(PIO_IOTYPE_NETCDF, path)
        ncfile.define(SCHEMA)
        entry = iosystem.files.get(ncfile.ncid)
        if entry is not None and entry.handle is not None:
            entry.handle = _FailingClose(entry.handle)

        with pytest.raises(IoCollaboratorError, match="close failed"):
            ncfile.close(discard=True)
        assert not iosystem.files

    mpi.barrier()
    assert not path.exists()
