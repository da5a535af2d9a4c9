# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from PyPIO_MPI.errors import InstrumentationError
from PyPIO_MPI.instrumentation import Timing


def test_lifecycle():
    timing = Timing()
    assert not timing.active

    assert timing.initialize()
    assert not timing.initialize()
    assert timing.active

    with timing.timer("region"):
        pass
    with timing.timer("region"):
        pass

    assert timing.counts == {"region": 2}
    assert timing.totals["region"] >= 0

    assert timing.finalize()
    assert not timing.finalize()
    assert not timing.active


def test_timer_inactive_is_noop():
    timing = Timing()
    with timing.timer("region"):
        pass
    assert not timing.totals


def test_initialize_after_finalize():
    timing = Timing()
    timing.initialize()
    timing.finalize()
    with pytest.raises(InstrumentationError):
        timing.initialize()


def test_finalize_before_initialize():
    with pytest.raises(InstrumentationError):
        Timing().finalize()
