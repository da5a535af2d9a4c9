""" error codes and exception hierarchy shared by the harness and the I/O layer """

import traceback

# harness-level codes
ERR_CHECK = 1109
ERR_INIT = 1110
ERR_AWFUL = 1111
ERR_WRONG = 1112
ERR_GPTL = 1113
ERR_MPI = 1114

# I/O-layer codes (same values as the netCDF/PIO C library)
PIO_NOERR = 0
PIO_EINVAL = -36
PIO_EIO = -68
PIO_EBADIOTYPE = -255


class PIOTestError(Exception):
    """base class carrying a stable integer code"""

    code = ERR_AWFUL

    def __init__(self, message="", code=None):
        super().__init__(message)
        if code is not None:
            self.code = code

    def __str__(self):
        return f"[{self.code}] {super().__str__()}"


class TopologyError(PIOTestError):
    """worker pool too small, unreachable or impossible to split"""

    code = ERR_INIT


class FlavorUnavailable(PIOTestError):
    """unknown iotype or one not compiled into the current build"""

    code = PIO_EBADIOTYPE


class DecompositionRangeError(PIOTestError):
    """malformed shape / rank-count combination"""

    code = PIO_EINVAL


class IoCollaboratorError(PIOTestError):
    """failure surfaced by open/create/define/write/read/close"""

    code = PIO_EIO


class VerificationMismatch(PIOTestError):
    """read-back data or metadata differs from what was written"""

    code = ERR_WRONG


class FinalizationError(PIOTestError):
    """communicator teardown failed"""

    code = ERR_MPI


class InstrumentationError(PIOTestError):
    """timing subsystem used outside of its lifecycle"""

    code = ERR_GPTL


FATAL_ERRORS = (TopologyError, FinalizationError)


def error_line(exc, rank):
    """one-line report in the `<rank> Error <code> in <file>, line <line>` form"""
    code = getattr(exc, "code", ERR_AWFUL)
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    if frames:
        filename, lineno = frames[-1].filename, frames[-1].lineno
    else:
        filename, lineno = "<unknown>", 0
    return f"{rank} Error {code} in {filename}, line {lineno}: {exc}"
