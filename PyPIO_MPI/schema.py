""" netCDF-like dataset schema: dimensions, variables and attributes """

from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Dimension:
    name: str
    length: int
    unlimited: bool = False


@dataclass(frozen=True)
class Variable:
    name: str
    dtype: str
    dimensions: Tuple[str, ...] = ()
    attributes: Mapping[str, object] = field(default_factory=dict)

    @property
    def ndims(self):
        return len(self.dimensions)


@dataclass(frozen=True)
class Schema:
    dimensions: Tuple[Dimension, ...] = ()
    variables: Tuple[Variable, ...] = ()
    attributes: Mapping[str, object] = field(default_factory=dict)

    def dimension(self, name) -> Dimension:
        for dim in self.dimensions:
            if dim.name == name:
                return dim
        raise KeyError(name)

    def variable(self, name) -> Variable:
        for var in self.variables:
            if var.name == name:
                return var
        raise KeyError(name)

    @property
    def unlimited_dimension(self) -> Optional[Dimension]:
        return next((dim for dim in self.dimensions if dim.unlimited), None)

    def shape(self, var_name, n_records=0):
        """on-media shape of a variable; the unlimited axis has `n_records` entries"""
        var = self.variable(var_name)
        return tuple(
            n_records if self.dimension(name).unlimited else self.dimension(name).length
            for name in var.dimensions
        )

    def record_shape(self, var_name):
        """shape of a single record (the unlimited axis dropped, if any)"""
        var = self.variable(var_name)
        return tuple(
            self.dimension(name).length
            for name in var.dimensions
            if not self.dimension(name).unlimited
        )

    def is_record_variable(self, var_name):
        return any(
            self.dimension(name).unlimited for name in self.variable(var_name).dimensions
        )

    def validate(self):
        names = [dim.name for dim in self.dimensions]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate dimension names: {names}")
        if sum(dim.unlimited for dim in self.dimensions) > 1:
            raise ValueError("at most one unlimited dimension is supported")
        for var in self.variables:
            np.dtype(var.dtype)
            for position, name in enumerate(var.dimensions):
                dim = self.dimension(name)
                if dim.unlimited and position != 0:
                    raise ValueError(
                        f"unlimited dimension {name} must lead in variable {var.name}"
                    )
        return self


def attributes_equal(expected, actual):
    if set(expected) != set(actual):
        return False
    return all(np.array_equal(np.asarray(expected[k]), np.asarray(actual[k])) for k in expected)


def schema_differences(expected, actual):
    """human-readable list of structural differences, empty if none"""
    differences = []
    expected_dims = [(d.name, d.length, d.unlimited) for d in expected.dimensions]
    actual_dims = [(d.name, d.length, d.unlimited) for d in actual.dimensions]
    if expected_dims != actual_dims:
        differences.append(f"dimensions: expected {expected_dims}, got {actual_dims}")
    if not attributes_equal(expected.attributes, actual.attributes):
        differences.append(
            f"global attributes: expected {dict(expected.attributes)},"
            f" got {dict(actual.attributes)}"
        )
    expected_names = [v.name for v in expected.variables]
    actual_names = [v.name for v in actual.variables]
    if expected_names != actual_names:
        differences.append(f"variables: expected {expected_names}, got {actual_names}")
        return differences
    for want, got in zip(expected.variables, actual.variables):
        if np.dtype(want.dtype) != np.dtype(got.dtype):
            differences.append(f"{want.name}: expected type {want.dtype}, got {got.dtype}")
        if tuple(want.dimensions) != tuple(got.dimensions):
            differences.append(
                f"{want.name}: expected dimensions {want.dimensions}, got {got.dimensions}"
            )
        if not attributes_equal(want.attributes, got.attributes):
            differences.append(f"{want.name}: attributes differ")
    return differences
