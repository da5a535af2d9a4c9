""" top-level runner: topology set-up, driver(s), aggregate status, teardown """

import logging

from PyPIO_MPI import drivers
from PyPIO_MPI.drivers import MODE_ASYNC, MODE_SYNC, X_DIM_LEN, Y_DIM_LEN, TestResult
from PyPIO_MPI.errors import FinalizationError, PIOTestError, error_line
from PyPIO_MPI.flavors import get_iotypes
from PyPIO_MPI.impl.rearranger import REARR_BOX
from PyPIO_MPI.instrumentation import Timing
from PyPIO_MPI.topology import pio_test_finalize, pio_test_init2

_logger = logging.getLogger(__name__)

MODE_BOTH = "both"
MODES = (MODE_SYNC, MODE_ASYNC, MODE_BOTH)


def first_failure(results):
    """code of the first failed combination in execution order, 0 if none"""
    return next((result.code for result in results if not result.passed), 0)


def aggregate_status(results, comm=None):
    """first failure of the lowest rank that has one; identical on all ranks of `comm`"""
    local = first_failure(results)
    if comm is None:
        return local
    return next((code for code in comm.allgather(local) if code != 0), 0)


def run_drivers(
    topology,
    test_name,
    *,
    dim_len,
    component_count,
    num_io_procs,
    mode,
    rearrangers,
    flavors,
    output_dir,
    skip_unavailable,
    timing,
    results=None,
):  # pylint: disable=too-many-arguments
    """appends to `results` as each driver pass completes, so a later fatal
    error leaves the outcome of earlier passes in place"""
    results = [] if results is None else results
    for rearranger in rearrangers:
        if mode in (MODE_SYNC, MODE_BOTH):
            results += drivers.test_no_async2(
                topology.rank,
                flavors,
                topology.comm,
                topology.size,
                *dim_len,
                test_name=test_name,
                output_dir=output_dir,
                rearranger=rearranger,
                skip_unavailable=skip_unavailable,
                timing=timing,
            )
        if mode in (MODE_ASYNC, MODE_BOTH):
            results += drivers.test_async2(
                topology.rank,
                flavors,
                topology.comm,
                component_count,
                num_io_procs,
                topology.size,
                test_name,
                dim_len=dim_len,
                output_dir=output_dir,
                rearranger=rearranger,
                skip_unavailable=skip_unavailable,
                timing=timing,
            )
    return results


def run_test_main(
    test_name,
    *,
    min_ntasks=1,
    max_ntasks=4,
    dim_len=(X_DIM_LEN, Y_DIM_LEN),
    component_count=1,
    num_io_procs=1,
    mode=MODE_SYNC,
    rearrangers=(REARR_BOX,),
    flavors=None,
    log_level=0,
    output_dir=".",
    skip_unavailable=True,
    comm=None,
):  # pylint: disable=too-many-arguments,too-many-locals
    """runs the named test; returns 0 iff every combination passed, otherwise
    the first failing code - the same value on every rank of the pool"""
    if mode not in MODES:
        raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
    timing = Timing()
    topology = None
    status = 0
    results = []
    try:
        topology = pio_test_init2(
            min_ntasks, max_ntasks, comm=comm, log_level=log_level, timing=timing
        )
        if topology.in_test:
            try:
                run_drivers(
                    topology,
                    test_name,
                    dim_len=tuple(dim_len),
                    component_count=component_count,
                    num_io_procs=num_io_procs,
                    mode=mode,
                    rearrangers=tuple(rearrangers),
                    flavors=get_iotypes() if flavors is None else tuple(flavors),
                    output_dir=output_dir,
                    skip_unavailable=skip_unavailable,
                    timing=timing,
                    results=results,
                )
            except PIOTestError as err:
                # raised identically on every in-test rank, recorded after
                # whatever the earlier passes produced
                _logger.error(error_line(err, topology.world_rank))
                results.append(
                    TestResult(mode, None, None, None, code=err.code, message=str(err))
                )
            status = aggregate_status(results, topology.comm)
    except PIOTestError as err:
        _logger.error(error_line(err, topology.world_rank if topology else "-"))
        status = err.code
    finally:
        try:
            status = pio_test_finalize(topology, status, comm=comm, timing=timing)
        except FinalizationError as err:
            _logger.error(error_line(err, topology.world_rank if topology else "-"))
            status = err.code

    if results:
        _logger.info(
            "%s: %d passed, %d failed, %d skipped, status %d",
            test_name,
            sum(r.passed and not r.skipped for r in results),
            sum(not r.passed for r in results),
            sum(r.skipped for r in results),
            status,
        )
    return status
