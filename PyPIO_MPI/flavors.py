""" registry of storage-format flavors (iotypes) usable with the current h5py build """

from functools import lru_cache

import h5py

from PyPIO_MPI.errors import FlavorUnavailable

PIO_IOTYPE_PNETCDF = 1
PIO_IOTYPE_NETCDF = 2
PIO_IOTYPE_NETCDF4C = 3
PIO_IOTYPE_NETCDF4P = 4

NUM_FLAVORS = 4

IOTYPE_NAMES = {
    PIO_IOTYPE_PNETCDF: "pnetcdf",
    PIO_IOTYPE_NETCDF: "classic",
    PIO_IOTYPE_NETCDF4C: "serial4",
    PIO_IOTYPE_NETCDF4P: "parallel4",
}

PARALLEL_IOTYPES = (PIO_IOTYPE_PNETCDF, PIO_IOTYPE_NETCDF4P)


def _mpi_build():
    return bool(h5py.get_config().mpi)


def _deflate_available():
    return bool(h5py.h5z.filter_avail(h5py.h5z.FILTER_DEFLATE))


@lru_cache()
def get_iotypes():
    """ordered tuple of iotypes available in this build; computed once per process"""
    available = {
        PIO_IOTYPE_PNETCDF: _mpi_build(),
        PIO_IOTYPE_NETCDF: True,
        PIO_IOTYPE_NETCDF4C: _deflate_available(),
        PIO_IOTYPE_NETCDF4P: _mpi_build(),
    }
    return tuple(iotype for iotype in sorted(IOTYPE_NAMES) if available[iotype])


def get_iotype_name(iotype):
    try:
        return IOTYPE_NAMES[iotype]
    except KeyError as err:
        raise FlavorUnavailable(f"unknown iotype {iotype!r}") from err


def is_parallel(iotype):
    return iotype in PARALLEL_IOTYPES


def check_iotype(iotype):
    """raises FlavorUnavailable for unknown iotypes and for ones missing from this build"""
    name = get_iotype_name(iotype)
    if iotype not in get_iotypes():
        raise FlavorUnavailable(f"iotype {iotype} ({name}) not available in this build")
    return name
