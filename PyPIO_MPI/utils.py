""" MPI helpers shared across the harness """

import logging
from contextlib import contextmanager

import numba_mpi as mpi

from PyPIO_MPI.errors import PIOTestError

LOG_FORMAT = "%(rank)s %(levelname)s %(name)s: %(message)s"

_LOG_LEVELS = {0: logging.WARNING, 1: logging.INFO}


@contextmanager
def barrier_enclosed(comm=None):
    """world (or `comm`) barrier on entry and on exit"""
    _barrier(comm)
    try:
        yield
    finally:
        _barrier(comm)


def _barrier(comm):
    if comm is None:
        mpi.barrier()
    else:
        comm.Barrier()


class RankFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """stamps every record with the world rank of the emitting process"""

    def __init__(self, rank):
        super().__init__()
        self.rank = rank

    def filter(self, record):
        record.rank = self.rank
        return True


def configure_logging(log_level, rank=None):
    """maps PIO-style integer levels (0 quiet, 1 info, 2+ debug) onto `logging`"""
    level = _LOG_LEVELS.get(log_level, logging.DEBUG if log_level > 1 else logging.WARNING)
    logger = logging.getLogger("PyPIO_MPI")
    logger.setLevel(level)
    handler = next(
        (h for h in logger.handlers if getattr(h, "pio_handler", False)), None
    )
    if handler is None:
        handler = logging.StreamHandler()
        handler.pio_handler = True
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    for old in list(handler.filters):
        handler.removeFilter(old)
    handler.addFilter(RankFilter(mpi.rank() if rank is None else rank))
    return logger


def agree_on_error(comm, error, error_class):
    """collective: every rank of `comm` raises if any rank hit `error`

    The lowest rank's error wins, so all ranks raise the same exception type
    and code at the same collective point. `error` is the local exception or
    None; errors outside the PIOTestError hierarchy are wrapped in
    `error_class`."""
    local = None
    if error is not None:
        if isinstance(error, PIOTestError):
            local = (type(error), error.code, error.args[0] if error.args else "")
        else:
            local = (error_class, None, f"{type(error).__name__}: {error}")
    for source, entry in enumerate(comm.allgather(local)):
        if entry is None:
            continue
        kind, code, message = entry
        if source == comm.Get_rank():
            if isinstance(error, kind):
                raise error
            raise kind(message) from error
        raise kind(f"(rank {source}) {message}", code=code)
