# pylint: disable=missing-module-docstring,missing-function-docstring,redefined-outer-name
import h5py
import numba_mpi as mpi
import numpy as np
import pytest
from mpi4py import MPI

from PyPIO_MPI.domain_decomposition import create_decomposition_1d, create_decomposition_2d
from PyPIO_MPI.errors import ERR_WRONG, VerificationMismatch
from PyPIO_MPI.flavors import PIO_IOTYPE_NETCDF
from PyPIO_MPI.iosystem import init_sync
from samples import (
    NUM_SAMPLES,
    TEST_VAL_42,
    canonical_value,
    check_nc_sample,
    check_nc_sample_0,
    check_nc_sample_1,
    create_nc_sample,
    create_nc_sample_0,
    create_nc_sample_1,
)
from samples._sample import first_mismatch

X_DIM_LEN, Y_DIM_LEN = 8, 4


@pytest.fixture
def iosystem():
    iosystem = init_sync(MPI.COMM_WORLD)
    yield iosystem
    iosystem.finalize()


def iodescs(iosystem):
    rank, size = mpi.rank(), mpi.size()
    return (
        None,
        create_decomposition_1d(iosystem, rank, size, X_DIM_LEN, "int32"),
        create_decomposition_2d(iosystem, rank, size, (X_DIM_LEN, Y_DIM_LEN), "float64"),
    )


def test_canonical_value():
    assert list(canonical_value(np.arange(8))) == [1, 3, 5, 7, 9, 11, 13, 15]


def test_first_mismatch():
    indices = np.array([4, 5, 6])
    assert first_mismatch(indices, np.array([9, 11, 13]), np.array([9, 11, 13])) is None
    assert "global index 5" in first_mismatch(indices, np.array([9, 11, 13]), [9, 0, 0])
    assert "expected (3,) values" in first_mismatch(indices, np.array([9, 11, 13]), [9])


@pytest.mark.parametrize("sample", range(NUM_SAMPLES))
def test_create_then_check(iosystem, iotype, sample, mpi_tmp_path):
    path = mpi_tmp_path / f"sample_{sample}.nc"
    iodesc = iodescs(iosystem)[sample]

    assert create_nc_sample(sample, iosystem, iotype, path, iodesc) == path
    check_nc_sample(sample, iosystem, iotype, path, iodesc)


def test_sample_files_on_media(iosystem, mpi_tmp_path):
    iodesc_1d, iodesc_2d = iodescs(iosystem)[1:]
    paths = [mpi_tmp_path / f"on_media_{sample}.nc" for sample in range(NUM_SAMPLES)]
    for sample, iodesc in enumerate((None, iodesc_1d, iodesc_2d)):
        create_nc_sample(sample, iosystem, PIO_IOTYPE_NETCDF, paths[sample], iodesc)

    mpi.barrier()
    if mpi.rank() == 0:
        with h5py.File(paths[0], "r") as file:
            assert file["scalar_sample_0"][()] == TEST_VAL_42
            assert file.attrs["title"] == "sample 0"
        with h5py.File(paths[1], "r") as file:
            assert list(file["var_sample_1"][()]) == [1, 3, 5, 7, 9, 11, 13, 15]
            assert file["var_sample_1"].dtype == np.int32
        with h5py.File(paths[2], "r") as file:
            assert file["var_sample_2"].shape == (2, X_DIM_LEN, Y_DIM_LEN)
            expected = 2 * np.arange(2 * X_DIM_LEN * Y_DIM_LEN) + 1
            assert (file["var_sample_2"][()].reshape(-1) == expected).all()
            assert file["var_sample_2"].attrs["units"] == "1"


def test_per_sample_wrappers(iosystem, mpi_tmp_path):
    iodesc = iodescs(iosystem)[1]
    create_nc_sample_0(iosystem, PIO_IOTYPE_NETCDF, mpi_tmp_path / "wrapped_0.nc")
    check_nc_sample_0(iosystem, PIO_IOTYPE_NETCDF, mpi_tmp_path / "wrapped_0.nc")
    create_nc_sample_1(iosystem, PIO_IOTYPE_NETCDF, mpi_tmp_path / "wrapped_1.nc", iodesc)
    check_nc_sample_1(iosystem, PIO_IOTYPE_NETCDF, mpi_tmp_path / "wrapped_1.nc", iodesc)


def corrupt(path, edit):
    mpi.barrier()
    if mpi.rank() == 0:
        with h5py.File(path, "r+") as file:
            edit(file)
    mpi.barrier()


def test_value_mismatch_detected(iosystem, mpi_tmp_path):
    path = mpi_tmp_path / "corrupt_values.nc"
    iodesc = iodescs(iosystem)[1]
    create_nc_sample(1, iosystem, PIO_IOTYPE_NETCDF, path, iodesc)

    def edit(file):
        file["var_sample_1"][X_DIM_LEN - 1] = -1

    corrupt(path, edit)

    with pytest.raises(VerificationMismatch) as excinfo:
        check_nc_sample(1, iosystem, PIO_IOTYPE_NETCDF, path, iodesc)
    assert excinfo.value.code == ERR_WRONG
    if mpi.rank() == mpi.size() - 1:
        assert f"global index {X_DIM_LEN - 1}" in str(excinfo.value)


def test_metadata_mismatch_detected(iosystem, mpi_tmp_path):
    path = mpi_tmp_path / "corrupt_title.nc"
    create_nc_sample(0, iosystem, PIO_IOTYPE_NETCDF, path)

    def edit(file):
        file.attrs["title"] = "tampered"

    corrupt(path, edit)

    with pytest.raises(VerificationMismatch, match="global attributes"):
        check_nc_sample(0, iosystem, PIO_IOTYPE_NETCDF, path)


@pytest.mark.parametrize("sample", (-1, NUM_SAMPLES))
def test_unknown_sample(iosystem, sample, mpi_tmp_path):
    with pytest.raises(ValueError):
        create_nc_sample(sample, iosystem, PIO_IOTYPE_NETCDF, mpi_tmp_path / "none.nc")
