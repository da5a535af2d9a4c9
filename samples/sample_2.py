""" sample 2: a record variable over (time, x, y), appended one record at a time """

import numpy as np

from PyPIO_MPI.schema import Dimension, Schema, Variable
from samples._sample import _Sample, canonical_value, first_mismatch

DIM_NAMES = ("time", "x", "y")
VAR_NAME = "var_sample_2"
DTYPE = "float64"
NUM_RECORDS = 2


class Sample2(_Sample):
    tag = 2
    n_records = NUM_RECORDS

    def schema(self, iodesc, n_records):
        x_dim_len, y_dim_len = iodesc.decomposition.global_shape
        return Schema(
            dimensions=(
                Dimension(DIM_NAMES[0], n_records, unlimited=True),
                Dimension(DIM_NAMES[1], x_dim_len),
                Dimension(DIM_NAMES[2], y_dim_len),
            ),
            variables=(
                Variable(VAR_NAME, DTYPE, DIM_NAMES, attributes={"units": "1"}),
            ),
            attributes={"title": "sample 2"},
        )

    @staticmethod
    def record_indices(iodesc, record):
        """global indices, across all records, of the locally owned elements"""
        return record * iodesc.decomposition.global_size + iodesc.decomposition.local_map

    def write(self, ncfile, iodesc):
        for record in range(NUM_RECORDS):
            indices = self.record_indices(iodesc, record)
            ncfile.write_darray(
                VAR_NAME, iodesc, canonical_value(indices).astype(DTYPE), record=record
            )

    def verify(self, ncfile, iodesc):
        problems = []
        for record in range(NUM_RECORDS):
            indices = self.record_indices(iodesc, record)
            values = ncfile.read_darray(VAR_NAME, iodesc, record=record)
            if values.dtype != np.dtype(DTYPE):
                problems.append(f"{VAR_NAME}: expected {DTYPE} values, got {values.dtype}")
                continue
            problem = first_mismatch(
                indices, canonical_value(indices).astype(DTYPE), values
            )
            if problem is not None:
                problems.append(f"record {record}: {problem}")
        # every record is read on every rank before reporting
        return problems[0] if problems else None
