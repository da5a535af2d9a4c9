""" worker-pool set-up and teardown, and the compute/I-O role split """

import logging
from dataclasses import dataclass
from typing import Tuple

import numba_mpi as mpi
import numpy as np
from mpi4py import MPI

from PyPIO_MPI.domain_decomposition import subdomain
from PyPIO_MPI.errors import FinalizationError, TopologyError
from PyPIO_MPI.utils import configure_logging

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Topology:
    """the in-test communicator (or, on idle ranks, their own leftover one)"""

    comm: MPI.Comm
    rank: int
    size: int
    in_test: bool
    world_rank: int
    world_size: int


@dataclass(frozen=True)
class RoleAssignment:
    """rank ranges of the I/O pool and of each compute component"""

    io_pool: range
    components: Tuple[range, ...]

    def component_of(self, rank):
        """index of the component `rank` belongs to, None for I/O ranks"""
        for component, members in enumerate(self.components):
            if rank in members:
                return component
        if rank in self.io_pool:
            return None
        raise TopologyError(f"rank {rank} not assigned to any role")

    @property
    def size(self):
        return len(self.io_pool) + sum(len(members) for members in self.components)


def assign_roles(size, component_count, num_io_procs):
    """I/O pool first, then `component_count` balanced contiguous components"""
    if component_count < 1 or num_io_procs < 1:
        raise TopologyError(
            f"need at least one component and one I/O process,"
            f" got {component_count} and {num_io_procs}"
        )
    if component_count + num_io_procs > size:
        raise TopologyError(
            f"{component_count} component(s) + {num_io_procs} I/O process(es)"
            f" do not fit on {size} ranks"
        )
    n_compute = size - num_io_procs
    components = []
    for component in range(component_count):
        first, last = subdomain(n_compute, component, component_count)
        components.append(range(num_io_procs + first, num_io_procs + last))
    return RoleAssignment(io_pool=range(0, num_io_procs), components=tuple(components))


def pio_test_init2(min_ntasks, max_ntasks, comm=None, log_level=0, timing=None):
    """validates the pool size and splits off the first `max_ntasks` ranks

    Ranks beyond `max_ntasks` get `in_test=False`: they must do no I/O and
    only meet the others again in `pio_test_finalize`."""
    if comm is None:
        if not mpi.initialized():
            MPI.Init()
        comm = MPI.COMM_WORLD
    world_rank, world_size = comm.Get_rank(), comm.Get_size()
    configure_logging(log_level, rank=world_rank)

    if timing is not None:
        timing.initialize()

    if min_ntasks > max_ntasks:
        raise TopologyError(f"min_ntasks={min_ntasks} exceeds max_ntasks={max_ntasks}")
    if world_size < min_ntasks:
        raise TopologyError(
            f"test needs at least {min_ntasks} tasks, only {world_size} available"
        )
    if world_size > max_ntasks and world_rank == 0:
        _logger.info(
            "only the first %d of %d tasks take part in the test", max_ntasks, world_size
        )

    in_test = world_rank < max_ntasks
    test_comm = comm.Split(int(in_test), world_rank)
    return Topology(
        comm=test_comm,
        rank=test_comm.Get_rank(),
        size=test_comm.Get_size(),
        in_test=in_test,
        world_rank=world_rank,
        world_size=world_size,
    )


def pio_test_finalize(topology, status, comm=None, timing=None):
    """frees the test communicator and makes every rank of the pool agree on
    the status of world rank 0; returns that status"""
    try:
        if topology is not None and topology.comm != MPI.COMM_NULL:
            topology.comm.Free()
        if comm is None:
            buffer = np.array([status], dtype=np.int64)
            if mpi.bcast(buffer, 0) != 0:
                raise FinalizationError("status broadcast failed")
            status = int(buffer[0])
        else:
            status = comm.bcast(status, root=0)
    except MPI.Exception as err:
        raise FinalizationError(f"MPI error at finalize: {err}") from err
    finally:
        if timing is not None and timing.active:
            timing.finalize()
    return status
