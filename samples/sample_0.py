""" sample 0: metadata only - one dimension, one scalar, one global attribute """

import numpy as np

from PyPIO_MPI.schema import Dimension, Schema, Variable
from samples._sample import TEST_VAL_42, _Sample

DIM_NAME = "dim_sample_0"
DIM_LEN = 4
VAR_NAME = "scalar_sample_0"


class Sample0(_Sample):
    tag = 0

    def schema(self, iodesc, n_records):
        return Schema(
            dimensions=(Dimension(DIM_NAME, DIM_LEN),),
            variables=(Variable(VAR_NAME, "int32"),),
            attributes={"title": "sample 0"},
        )

    def write(self, ncfile, iodesc):
        ncfile.put_var(VAR_NAME, np.int32(TEST_VAL_42))

    def verify(self, ncfile, iodesc):
        value = np.asarray(ncfile.get_var(VAR_NAME))
        if value.dtype != np.int32 or value.shape != () or value != TEST_VAL_42:
            return f"{VAR_NAME}: expected int32 scalar {TEST_VAL_42}, got {value!r}"
        return None
