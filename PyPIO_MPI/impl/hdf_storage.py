""" on-media layout of the netCDF-like schema in HDF5 files (via h5py) """

import h5py
import numpy as np

from PyPIO_MPI.flavors import (
    PIO_IOTYPE_NETCDF,
    PIO_IOTYPE_NETCDF4C,
    PIO_IOTYPE_NETCDF4P,
    PIO_IOTYPE_PNETCDF,
    get_iotype_name,
    is_parallel,
)
from PyPIO_MPI.schema import Dimension, Schema, Variable

DIM_NAMES = "_nc_dim_names"
DIM_LENGTHS = "_nc_dim_lengths"
DIM_UNLIMITED = "_nc_dim_unlimited"
VAR_DIMENSIONS = "_nc_dimensions"
FORMAT = "_nc_format"

RESERVED = (DIM_NAMES, DIM_LENGTHS, DIM_UNLIMITED, VAR_DIMENSIONS, FORMAT)

FLAVOR_SETTINGS = {
    PIO_IOTYPE_PNETCDF: {"libver": "earliest", "compression": None},
    PIO_IOTYPE_NETCDF: {"libver": "earliest", "compression": None},
    PIO_IOTYPE_NETCDF4C: {"libver": "latest", "compression": "gzip"},
    PIO_IOTYPE_NETCDF4P: {"libver": "latest", "compression": None},
}


def _names(array):
    return tuple(
        name.decode("utf-8") if isinstance(name, bytes) else str(name) for name in array
    )


def _encode(names):
    return np.array([name.encode("utf-8") for name in names], dtype="S")


class HDFStorage:
    """per-flavor h5py File handling; parallel flavors use the `mpio` driver"""

    @staticmethod
    def open(path, iotype, mode, comm=None):
        kwargs = {"libver": FLAVOR_SETTINGS[iotype]["libver"]}
        if mode in ("w", "x"):
            kwargs["track_order"] = True
        if is_parallel(iotype):
            return h5py.File(path, mode, driver="mpio", comm=comm, **kwargs)
        return h5py.File(path, mode, **kwargs)

    @staticmethod
    def define(file, schema, iotype):
        """collective for mpio files: every writer issues the same calls"""
        compression = FLAVOR_SETTINGS[iotype]["compression"]
        file.attrs[FORMAT] = get_iotype_name(iotype)
        if schema.dimensions:  # zero-sized attributes are not stored
            file.attrs[DIM_NAMES] = _encode([dim.name for dim in schema.dimensions])
            file.attrs[DIM_LENGTHS] = np.array(
                [0 if dim.unlimited else dim.length for dim in schema.dimensions],
                dtype=np.int64,
            )
            file.attrs[DIM_UNLIMITED] = np.array(
                [dim.unlimited for dim in schema.dimensions], dtype=np.int8
            )
        for key, value in schema.attributes.items():
            file.attrs[key] = value

        for var in schema.variables:
            shape = schema.shape(var.name)
            kwargs = {}
            if schema.is_record_variable(var.name):
                # chunks may not exceed a fixed extent, so zero-length axes stay resizable
                kwargs["maxshape"] = (None,) + tuple(n if n > 0 else None for n in shape[1:])
                kwargs["chunks"] = (1,) + tuple(max(n, 1) for n in shape[1:])
            if compression is not None and shape and ("chunks" in kwargs or all(shape)):
                kwargs["compression"] = compression
            dataset = file.create_dataset(var.name, shape=shape, dtype=var.dtype, **kwargs)
            if var.dimensions:
                dataset.attrs[VAR_DIMENSIONS] = _encode(var.dimensions)
            for key, value in var.attributes.items():
                dataset.attrs[key] = value

    @staticmethod
    def read_schema(file):
        names = _names(file.attrs.get(DIM_NAMES, ()))
        lengths = file.attrs.get(DIM_LENGTHS, np.zeros(0, dtype=np.int64))
        unlimited = file.attrs.get(DIM_UNLIMITED, np.zeros(0, dtype=np.int8))

        variables = []
        n_records = 0
        for name, dataset in file.items():
            var_dims = _names(dataset.attrs.get(VAR_DIMENSIONS, ()))
            variables.append(
                Variable(
                    name=name,
                    dtype=dataset.dtype.name,
                    dimensions=var_dims,
                    attributes={
                        k: v for k, v in dataset.attrs.items() if k not in RESERVED
                    },
                )
            )
            if var_dims and unlimited[names.index(var_dims[0])]:
                n_records = max(n_records, dataset.shape[0])

        dimensions = tuple(
            Dimension(
                name=name,
                length=n_records if unlimited[i] else int(lengths[i]),
                unlimited=bool(unlimited[i]),
            )
            for i, name in enumerate(names)
        )
        return Schema(
            dimensions=dimensions,
            variables=tuple(variables),
            attributes={k: v for k, v in file.attrs.items() if k not in RESERVED},
        )

    @staticmethod
    def ensure_records(dataset, record):
        """grows the unlimited axis to hold `record`; collective for mpio files"""
        if record >= dataset.shape[0]:
            dataset.resize((record + 1,) + dataset.shape[1:])
