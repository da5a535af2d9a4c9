""" command-line entry point, e.g.:
mpiexec -n 4 python -m PyPIO_MPI test_darray --min-ntasks 1 --max-ntasks 4 --mode both
"""

import argparse
import sys

from PyPIO_MPI.drivers import MODE_SYNC, X_DIM_LEN, Y_DIM_LEN
from PyPIO_MPI.flavors import IOTYPE_NAMES
from PyPIO_MPI.impl.rearranger import REARRANGER_NAMES
from PyPIO_MPI.runner import MODES, run_test_main

_IOTYPES_BY_NAME = {name: iotype for iotype, name in IOTYPE_NAMES.items()}
_REARRANGERS_BY_NAME = {name: rearr for rearr, name in REARRANGER_NAMES.items()}


def type_tuple(string):
    """Convert comma-separated string to tuple."""
    return tuple(map(int, string.split(",")))


def make_parser():
    parser = argparse.ArgumentParser(prog="python -m PyPIO_MPI")
    parser.add_argument("test_name", help="prefix of the sample files written")
    parser.add_argument("--min-ntasks", type=int, default=1)
    parser.add_argument("--max-ntasks", type=int, default=4)
    parser.add_argument(
        "--dim-len",
        type=type_tuple,
        default=(X_DIM_LEN, Y_DIM_LEN),
        help="global x,y lengths of the decomposed sample variables",
    )
    parser.add_argument("--mode", choices=MODES, default=MODE_SYNC)
    parser.add_argument("--component-count", type=int, default=1)
    parser.add_argument("--num-io-procs", type=int, default=1)
    parser.add_argument(
        "--rearranger",
        choices=sorted(_REARRANGERS_BY_NAME),
        action="append",
        help="may be repeated; defaults to box",
    )
    parser.add_argument(
        "--flavor",
        choices=sorted(_IOTYPES_BY_NAME),
        action="append",
        help="may be repeated; defaults to every flavor available in this build",
    )
    parser.add_argument("--log-level", type=int, default=0)
    parser.add_argument("--output-dir", type=str, default=".")
    parser.add_argument(
        "--fail-unavailable",
        action="store_true",
        help="count requested-but-unavailable flavors as failures instead of skipping them",
    )
    return parser


def main(argv=None):
    args = make_parser().parse_args(argv)
    if len(args.dim_len) != 2:
        raise SystemExit(f"--dim-len expects two comma-separated integers, got {args.dim_len}")
    return run_test_main(
        args.test_name,
        min_ntasks=args.min_ntasks,
        max_ntasks=args.max_ntasks,
        dim_len=args.dim_len,
        component_count=args.component_count,
        num_io_procs=args.num_io_procs,
        mode=args.mode,
        rearrangers=tuple(_REARRANGERS_BY_NAME[name] for name in args.rearranger or ("box",)),
        flavors=(
            None if args.flavor is None else tuple(_IOTYPES_BY_NAME[name] for name in args.flavor)
        ),
        log_level=args.log_level,
        output_dir=args.output_dir,
        skip_unavailable=not args.fail_unavailable,
    )


if __name__ == "__main__":
    sys.exit(main())
