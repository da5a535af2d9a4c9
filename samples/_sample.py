""" common create/check cycle of the canonical sample files """

import numpy as np

from PyPIO_MPI.errors import VerificationMismatch
from PyPIO_MPI.schema import schema_differences
from PyPIO_MPI.utils import agree_on_error

TEST_VAL_42 = 42


def canonical_value(global_index):
    """value stored at a given global index of every decomposed sample variable"""
    return 2 * np.asarray(global_index, dtype=np.int64) + 1


def first_mismatch(global_indices, expected, actual):
    """message naming the first differing global index, None if all equal"""
    actual = np.asarray(actual)
    if actual.shape != np.shape(expected):
        return f"expected {np.shape(expected)} values, got {actual.shape}"
    differ = np.flatnonzero(actual != expected)
    if len(differ) == 0:
        return None
    i = differ[0]
    return (
        f"value mismatch at global index {int(global_indices[i])}:"
        f" expected {expected[i]}, got {actual[i]}"
    )


class _Sample:
    tag = None
    n_records = 0

    def schema(self, iodesc, n_records):
        raise NotImplementedError()

    def write(self, ncfile, iodesc):
        raise NotImplementedError()

    def verify(self, ncfile, iodesc):
        """reads everything back; returns a mismatch message or None"""
        raise NotImplementedError()

    def create(self, iosystem, iotype, filename, iodesc=None):
        with iosystem.create_file(iotype, filename) as ncfile:
            ncfile.define(self.schema(iodesc, n_records=0))
            self.write(ncfile, iodesc)
        return filename

    def check(self, iosystem, iotype, filename, iodesc=None):
        with iosystem.open_file(iotype, filename) as ncfile:
            differences = schema_differences(
                self.schema(iodesc, n_records=self.n_records), ncfile.schema
            )
            problem = "; ".join(differences) if differences else None
            if problem is None:
                problem = self.verify(ncfile, iodesc)
            agree_on_error(
                iosystem.comp_comm,
                None if problem is None else VerificationMismatch(
                    f"sample {self.tag} in {filename}: {problem}"
                ),
                VerificationMismatch,
            )
