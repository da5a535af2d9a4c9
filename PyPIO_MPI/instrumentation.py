""" process-scoped timing with an explicit initialize/finalize lifecycle """

import logging
import time
from contextlib import contextmanager

from PyPIO_MPI.errors import InstrumentationError

_logger = logging.getLogger(__name__)


class Timing:
    """accumulates wall-clock time per named region; owned by the runner"""

    def __init__(self):
        self.__initialized = False
        self.__finalized = False
        self.totals = {}
        self.counts = {}

    @property
    def active(self):
        return self.__initialized and not self.__finalized

    def initialize(self):
        """returns False (and does nothing) when already initialized"""
        if self.__finalized:
            raise InstrumentationError("timing already finalized")
        if self.__initialized:
            return False
        self.__initialized = True
        return True

    @contextmanager
    def timer(self, name):
        if not self.active:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.totals[name] = self.totals.get(name, 0.0) + time.perf_counter() - start
            self.counts[name] = self.counts.get(name, 0) + 1

    def finalize(self):
        if not self.__initialized:
            raise InstrumentationError("timing finalized before initialize")
        if self.__finalized:
            return False
        self.__finalized = True
        for name in sorted(self.totals):
            _logger.debug(
                "timer %s: %d call(s), %.6f s", name, self.counts[name], self.totals[name]
            )
        return True
