""" sample 1: one 1D int variable written through a decomposition """

import numpy as np

from PyPIO_MPI.schema import Dimension, Schema, Variable
from samples._sample import _Sample, canonical_value, first_mismatch

DIM_NAME = "dim_sample_1"
VAR_NAME = "var_sample_1"
DTYPE = "int32"


class Sample1(_Sample):
    tag = 1

    def schema(self, iodesc, n_records):
        (dim_len,) = iodesc.decomposition.global_shape
        return Schema(
            dimensions=(Dimension(DIM_NAME, dim_len),),
            variables=(Variable(VAR_NAME, DTYPE, (DIM_NAME,)),),
        )

    def write(self, ncfile, iodesc):
        local_map = iodesc.decomposition.local_map
        ncfile.write_darray(VAR_NAME, iodesc, canonical_value(local_map).astype(DTYPE))

    def verify(self, ncfile, iodesc):
        local_map = iodesc.decomposition.local_map
        values = ncfile.read_darray(VAR_NAME, iodesc)
        if values.dtype != np.dtype(DTYPE):
            return f"{VAR_NAME}: expected {DTYPE} values, got {values.dtype}"
        return first_mismatch(local_map, canonical_value(local_map).astype(DTYPE), values)
