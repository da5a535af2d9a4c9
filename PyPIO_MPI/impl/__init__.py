""" internals of the I/O-system layer: request opcodes, rearranger, HDF5 layout """
