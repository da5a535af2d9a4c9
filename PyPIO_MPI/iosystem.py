""" I/O-system contexts over mpi4py communicators and h5py files

Two set-ups share one request vocabulary (see `impl.messages`):

* `init_sync` - every rank of a communicator computes, a (strided) subset
  of them also does I/O; each request is issued collectively by all ranks;
* `init_async` - compute components and a dedicated I/O pool; the root of
  a component sends each request to the I/O root, which hands it to the
  whole pool (`IOServer.serve`); both sides then run the same collective
  handler over the component/I-O union communicator.

Every handler ends in an error agreement (`agree_on_error`) so that all
ranks of the union raise at the same point or none does.
"""

import logging
import os

import numpy as np
from mpi4py import MPI

from PyPIO_MPI.errors import (
    PIO_EINVAL,
    DecompositionRangeError,
    IoCollaboratorError,
    PIOTestError,
)
from PyPIO_MPI.flavors import check_iotype, is_parallel
from PyPIO_MPI.impl import messages
from PyPIO_MPI.impl.hdf_storage import HDFStorage
from PyPIO_MPI.impl.rearranger import (
    REARR_BOX,
    REARRANGER_NAMES,
    assemble_slab,
    destinations,
    row_length,
    slab_bounds,
    split,
)
from PyPIO_MPI.utils import agree_on_error

_logger = logging.getLogger(__name__)

IO_ERRORS = (PIOTestError, OSError, ValueError, KeyError, TypeError)


class IODesc:
    """a decomposition bound to an I/O system (compute side only)"""

    def __init__(self, ioid, dtype, decomposition, rearranger, comp_rank, comp_size):
        self.ioid = ioid
        self.dtype = np.dtype(dtype)
        self.decomposition = decomposition
        self.rearranger = rearranger
        self.comp_rank = comp_rank
        self.comp_size = comp_size
        self.__routes = {}

    def destinations(self, n_writers):
        if n_writers not in self.__routes:
            self.__routes[n_writers] = destinations(
                self.rearranger,
                self.decomposition.local_map,
                self.decomposition.global_shape,
                n_writers,
                self.comp_rank,
                self.comp_size,
            )
        return self.__routes[n_writers]


class _OpenFile:  # pylint: disable=too-few-public-methods
    def __init__(self, path, iotype, handle):
        self.path = path
        self.iotype = iotype
        self.handle = handle
        self.schema = None


class IOSystem:  # pylint: disable=too-many-instance-attributes
    """one I/O context as seen from one rank of the union communicator"""

    def __init__(
        self,
        *,
        union_comm,
        comp_comm,
        io_comm,
        io_ranks,
        comp_ranks,
        rearranger,
        async_mode,
        component=0,
    ):  # pylint: disable=too-many-arguments
        self.union_comm = union_comm
        self.comp_comm = comp_comm
        self.io_comm = io_comm
        self.io_ranks = tuple(io_ranks)
        self.comp_ranks = tuple(comp_ranks)
        self.rearranger = rearranger
        self.async_mode = async_mode
        self.component = component
        self.union_rank = union_comm.Get_rank()
        self.is_io = self.union_rank in self.io_ranks
        self.is_compute = self.union_rank in self.comp_ranks
        self.files = {}
        self.decomps = {}
        self.finalized = False
        self.__next_ncid = 0
        self.__next_ioid = 0

    @property
    def io_root(self):
        return self.io_ranks[0]

    @property
    def comp_root(self):
        return self.comp_ranks[0]

    def writers(self, iotype):
        """union ranks holding the file open: the whole I/O pool for parallel
        flavors, the I/O root alone for serial ones"""
        return self.io_ranks if is_parallel(iotype) else self.io_ranks[:1]

    # compute-side API

    def init_decomp(self, dtype, decomposition):
        ioid = self.__next_ioid
        self.__next_ioid += 1
        self.decomps[ioid] = IODesc(
            ioid,
            dtype,
            decomposition,
            self.rearranger,
            self.comp_comm.Get_rank(),
            self.comp_comm.Get_size(),
        )
        return self.decomps[ioid]

    def free_decomp(self, iodesc):
        self.decomps.pop(iodesc.ioid, None)

    def create_file(self, iotype, path):
        check_iotype(iotype)
        ncid = self.request(messages.MSG_CREATE_FILE, iotype=iotype, path=str(path))
        _logger.debug("created %s as ncid %d", path, ncid)
        return NCFile(self, ncid, iotype, path, created=True)

    def open_file(self, iotype, path, mode="r"):
        check_iotype(iotype)
        ncid, schema = self.request(
            messages.MSG_OPEN_FILE, iotype=iotype, path=str(path), mode=mode
        )
        _logger.debug("opened %s as ncid %d", path, ncid)
        ncfile = NCFile(self, ncid, iotype, path, created=False)
        ncfile.schema = schema
        return ncfile

    def finalize(self):
        if not self.finalized:
            self.request(messages.MSG_FINALIZE)

    def request(self, opcode, local=None, **args):
        """issues a collective request; in async mode the component root first
        forwards it to the I/O root"""
        if self.finalized:
            raise IoCollaboratorError("I/O system already finalized", code=PIO_EINVAL)
        if self.async_mode and self.union_rank == self.comp_root:
            self.union_comm.send((opcode, args), dest=self.io_root, tag=messages.MSG_TAG)
        return self.dispatch(opcode, args, local)

    def dispatch(self, opcode, args, local=None):
        return self._HANDLERS[opcode](self, **args, **(local or {}))

    # collective handlers, run by every rank of the union communicator

    def _agree(self, error, drop_ncid=None):
        try:
            agree_on_error(self.union_comm, error, IoCollaboratorError)
        except PIOTestError:
            if drop_ncid is not None:
                self._drop(drop_ncid)
            raise

    def _drop(self, ncid):
        entry = self.files.pop(ncid, None)
        if entry is not None and entry.handle is not None:
            entry.handle.close()

    def _new_ncid(self):
        ncid = self.__next_ncid
        self.__next_ncid += 1
        return ncid

    def _handle_create_file(self, iotype, path):
        ncid, error = None, None
        if self.is_io:
            ncid = self._new_ncid()
            handle = None
            try:
                if self.union_rank in self.writers(iotype):
                    handle = HDFStorage.open(path, iotype, "w", comm=self.io_comm)
            except IO_ERRORS as err:
                error = err
            self.files[ncid] = _OpenFile(path, iotype, handle)
        self._agree(error, drop_ncid=ncid)
        return self.union_comm.bcast(ncid, root=self.io_root)

    def _handle_open_file(self, iotype, path, mode):
        ncid, schema, error = None, None, None
        if self.is_io:
            ncid = self._new_ncid()
            handle = None
            try:
                if self.union_rank in self.writers(iotype):
                    handle = HDFStorage.open(path, iotype, mode, comm=self.io_comm)
                if self.union_rank == self.io_root:
                    schema = HDFStorage.read_schema(handle)
            except IO_ERRORS as err:
                error = err
            self.files[ncid] = _OpenFile(path, iotype, handle)
        self._agree(error, drop_ncid=ncid)
        ncid, schema = self.union_comm.bcast((ncid, schema), root=self.io_root)
        if self.is_io:
            self.files[ncid].schema = schema
        return ncid, schema

    def _handle_define(self, ncid, schema):
        error = None
        try:
            schema.validate()
            if self.is_io:
                entry = self.files[ncid]
                entry.schema = schema
                if entry.handle is not None:
                    HDFStorage.define(entry.handle, schema, entry.iotype)
        except IO_ERRORS as err:
            error = err
        self._agree(error)

    def _handle_inquire(self, ncid):
        schema, error = None, None
        if self.union_rank == self.io_root:
            try:
                schema = HDFStorage.read_schema(self.files[ncid].handle)
            except IO_ERRORS as err:
                error = err
        self._agree(error)
        schema = self.union_comm.bcast(schema, root=self.io_root)
        if self.is_io:
            self.files[ncid].schema = schema
        return schema

    def _handle_put_var(self, ncid, name, values=None):
        values = self.union_comm.bcast(
            values if self.union_rank == self.comp_root else None, root=self.comp_root
        )
        error = None
        if self.is_io:
            entry = self.files[ncid]
            try:
                if entry.handle is not None:
                    dataset = entry.handle[name]
                    values = np.asarray(values, dtype=dataset.dtype)
                    if entry.schema.is_record_variable(name):
                        HDFStorage.ensure_records(dataset, values.shape[0] - 1)
                    if self.union_rank == self.io_root:
                        dataset[...] = values
            except IO_ERRORS as err:
                error = err
        self._agree(error)

    def _handle_get_var(self, ncid, name):
        values, error = None, None
        if self.union_rank == self.io_root:
            try:
                values = self.files[ncid].handle[name][()]
            except IO_ERRORS as err:
                error = err
        self._agree(error)
        return self.union_comm.bcast(values, root=self.io_root)

    def _handle_write_darray(
        self, ncid, name, record, iotype, values=None, iodesc=None
    ):  # pylint: disable=too-many-arguments
        writer_ranks = self.writers(iotype)
        outgoing = [None] * self.union_comm.Get_size()
        if self.is_compute:
            dest = iodesc.destinations(len(writer_ranks))
            parts = split(dest, len(writer_ranks), iodesc.decomposition.local_map, values)
            for writer, part in zip(writer_ranks, parts):
                outgoing[writer] = part
        incoming = self.union_comm.alltoall(outgoing)
        error = None
        if self.union_rank in writer_ranks:
            try:
                self._write_slab(self.files[ncid], name, record, incoming)
            except IO_ERRORS as err:
                error = err
        self._agree(error)

    @staticmethod
    def _write_slab(entry, name, record, incoming):
        dataset = entry.handle[name]
        record_shape = entry.schema.record_shape(name)
        parts = [part for part in incoming if part is not None]
        indices = np.concatenate([part[0] for part in parts] or [np.zeros(0, np.int64)])
        values = np.concatenate([part[1] for part in parts] or [np.zeros(0, dataset.dtype)])
        is_record = entry.schema.is_record_variable(name)
        if is_record:
            if record is None:
                raise ValueError(f"record variable {name} written without a record number")
            HDFStorage.ensure_records(dataset, record)
        if len(indices) == 0:
            return
        row_start, row_stop, block = assemble_slab(indices, values, record_shape, dataset.dtype)
        if is_record:
            dataset[record, row_start:row_stop] = block
        else:
            dataset[row_start:row_stop] = block

    def _handle_read_darray(
        self, ncid, name, record, iotype, iodesc=None, dtype=None
    ):  # pylint: disable=too-many-arguments
        writer_ranks = self.writers(iotype)
        outgoing = [None] * self.union_comm.Get_size()
        dest = None
        if self.is_compute:
            dest = iodesc.destinations(len(writer_ranks))
            parts = split(dest, len(writer_ranks), iodesc.decomposition.local_map)
            for writer, (indices,) in zip(writer_ranks, parts):
                outgoing[writer] = indices
        requested = self.union_comm.alltoall(outgoing)
        replies, error = [None] * self.union_comm.Get_size(), None
        if self.union_rank in writer_ranks:
            try:
                replies = self._read_slab(self.files[ncid], name, record, requested)
            except IO_ERRORS as err:
                error = err
        self._agree(error)
        incoming = self.union_comm.alltoall(replies)
        if not self.is_compute:
            return None
        values = np.empty(len(iodesc.decomposition), dtype=dtype)
        for writer_index, writer in enumerate(writer_ranks):
            values[dest == writer_index] = incoming[writer]
        return values

    @staticmethod
    def _read_slab(entry, name, record, requested):
        dataset = entry.handle[name]
        record_shape = entry.schema.record_shape(name)
        is_record = entry.schema.is_record_variable(name)
        if is_record and (record is None or not 0 <= record < dataset.shape[0]):
            raise ValueError(f"record {record} of {name} has not been written")
        replies = [None] * len(requested)
        wanted = [indices for indices in requested if indices is not None and len(indices)]
        if not wanted:
            return [
                None if indices is None else np.zeros(0, dataset.dtype)
                for indices in requested
            ]
        row_start, row_stop = slab_bounds(np.concatenate(wanted), record_shape)
        if is_record:
            block = dataset[record, row_start:row_stop]
        else:
            block = dataset[row_start:row_stop]
        flat = np.asarray(block).reshape(-1)
        offset = row_start * max(row_length(record_shape), 1)
        for source, indices in enumerate(requested):
            if indices is not None:
                replies[source] = flat[indices - offset]
        return replies

    def _handle_close_file(self, ncid, discard=False):
        error = None
        if self.is_io:
            entry = self.files.pop(ncid)
            try:
                if entry.handle is not None:
                    entry.handle.close()
            except IO_ERRORS as err:
                error = err
            if discard:
                # reached by every I/O rank, whether or not its close succeeded
                self.io_comm.Barrier()
                try:
                    if self.union_rank == self.io_root and os.path.exists(entry.path):
                        os.remove(entry.path)
                except OSError as err:
                    error = error or err
        self._agree(error)

    def _handle_finalize(self):
        for ncid in sorted(self.files):
            _logger.warning("closing ncid %d left open at finalize", ncid)
            self._drop(ncid)
        self.decomps.clear()
        if self.async_mode:
            self.union_comm.Free()
            if self.comp_comm is not None:
                self.comp_comm.Free()
        elif self.io_comm is not None:
            self.io_comm.Free()
        self.finalized = True

    _HANDLERS = {
        messages.MSG_CREATE_FILE: _handle_create_file,
        messages.MSG_OPEN_FILE: _handle_open_file,
        messages.MSG_DEFINE: _handle_define,
        messages.MSG_INQUIRE: _handle_inquire,
        messages.MSG_PUT_VAR: _handle_put_var,
        messages.MSG_GET_VAR: _handle_get_var,
        messages.MSG_WRITE_DARRAY: _handle_write_darray,
        messages.MSG_READ_DARRAY: _handle_read_darray,
        messages.MSG_CLOSE_FILE: _handle_close_file,
        messages.MSG_FINALIZE: _handle_finalize,
    }


class NCFile:
    """compute-side handle of an open file; closes (and, if it was being
    created, discards) the file when leaving a `with` block on error"""

    def __init__(self, iosystem, ncid, iotype, path, created):  # pylint: disable=too-many-arguments
        self.iosystem = iosystem
        self.ncid = ncid
        self.iotype = iotype
        self.path = path
        self.created = created
        self.schema = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if not self.closed:
            self.close(discard=self.created and exc_type is not None)
        return False

    def define(self, schema):
        self.iosystem.request(messages.MSG_DEFINE, ncid=self.ncid, schema=schema)
        self.schema = schema

    def inquire(self):
        self.schema = self.iosystem.request(messages.MSG_INQUIRE, ncid=self.ncid)
        return self.schema

    def put_var(self, name, values):
        self.iosystem.request(
            messages.MSG_PUT_VAR,
            local={"values": np.asarray(values)},
            ncid=self.ncid,
            name=name,
        )

    def get_var(self, name):
        return self.iosystem.request(messages.MSG_GET_VAR, ncid=self.ncid, name=name)

    def write_darray(self, name, iodesc, values, record=None):
        values = self._check_darray(name, iodesc, values, record)
        self.iosystem.request(
            messages.MSG_WRITE_DARRAY,
            local={"values": values, "iodesc": iodesc},
            ncid=self.ncid,
            name=name,
            record=record,
            iotype=self.iotype,
        )

    def read_darray(self, name, iodesc, record=None):
        self._check_darray(name, iodesc, None, record)
        return self.iosystem.request(
            messages.MSG_READ_DARRAY,
            local={"iodesc": iodesc, "dtype": np.dtype(self.schema.variable(name).dtype)},
            ncid=self.ncid,
            name=name,
            record=record,
            iotype=self.iotype,
        )

    def close(self, discard=False):
        self.iosystem.request(messages.MSG_CLOSE_FILE, ncid=self.ncid, discard=discard)
        self.closed = True

    def _check_darray(self, name, iodesc, values, record):
        """collective over the compute ranks, before anything reaches the I/O side"""
        error = None
        try:
            if self.closed or self.schema is None:
                raise ValueError(f"{self.path} is closed or has no schema")
            var = self.schema.variable(name)
            if self.schema.record_shape(name) != iodesc.decomposition.global_shape:
                raise ValueError(
                    f"decomposition over {iodesc.decomposition.global_shape} does not"
                    f" match {name}{self.schema.record_shape(name)}"
                )
            if self.schema.is_record_variable(name) != (record is not None):
                raise ValueError(f"record number {record} invalid for {name}")
            if values is not None:
                values = np.asarray(values, dtype=var.dtype).reshape(-1)
                if len(values) != len(iodesc.decomposition):
                    raise ValueError(
                        f"{len(values)} values for {len(iodesc.decomposition)} local indices"
                    )
        except (KeyError, ValueError, TypeError) as err:
            error = DecompositionRangeError(str(err))
        agree_on_error(self.iosystem.comp_comm, error, DecompositionRangeError)
        return values


class IOServer:  # pylint: disable=too-few-public-methods
    """service loop of the dedicated I/O pool"""

    def __init__(self, io_comm, iosystems):
        self.io_comm = io_comm
        self.iosystems = tuple(iosystems)

    def serve(self):
        """returns once every compute component has finalized its I/O system"""
        is_root = self.io_comm.Get_rank() == 0
        pending = []
        if is_root:
            pending = [self._post(iosystem) for iosystem in self.iosystems]
        n_active = len(self.iosystems)
        while n_active:
            message = MPI.Request.waitany(pending) if is_root else None
            component, (opcode, args) = self.io_comm.bcast(message, root=0)
            iosystem = self.iosystems[component]
            try:
                iosystem.dispatch(opcode, args)
            except PIOTestError as err:
                _logger.info("component %d, request %d failed: %s", component, opcode, err)
            if opcode == messages.MSG_FINALIZE:
                n_active -= 1
                if is_root:
                    pending[component] = MPI.REQUEST_NULL
            elif is_root:
                pending[component] = self._post(iosystem)
        self.io_comm.Free()

    @staticmethod
    def _post(iosystem):
        return iosystem.union_comm.irecv(
            bytearray(messages.MSG_BUFSIZE), source=iosystem.comp_root, tag=messages.MSG_TAG
        )


def init_sync(comm, num_iotasks=None, stride=1, base=0, rearranger=REARR_BOX):
    """all ranks of `comm` compute; ranks base, base+stride, ... also do I/O"""
    size, rank = comm.Get_size(), comm.Get_rank()
    num_iotasks = size if num_iotasks is None else num_iotasks
    io_ranks = tuple(base + i * stride for i in range(num_iotasks))
    if rearranger not in REARRANGER_NAMES:
        raise IoCollaboratorError(f"unknown rearranger {rearranger}", code=PIO_EINVAL)
    if num_iotasks < 1 or stride < 1 or base < 0 or io_ranks[-1] >= size:
        raise IoCollaboratorError(
            f"cannot place {num_iotasks} I/O tasks (stride {stride}, base {base})"
            f" on {size} ranks",
            code=PIO_EINVAL,
        )
    io_comm = comm.Split(0 if rank in io_ranks else MPI.UNDEFINED, rank)
    return IOSystem(
        union_comm=comm,
        comp_comm=comm,
        io_comm=None if io_comm == MPI.COMM_NULL else io_comm,
        io_ranks=io_ranks,
        comp_ranks=range(size),
        rearranger=rearranger,
        async_mode=False,
    )


def init_async(comm, roles, rearranger=REARR_BOX):
    """returns `(iosystem, None)` on compute ranks and `(None, server)` on
    I/O ranks; collective over `comm`"""
    if rearranger not in REARRANGER_NAMES:
        raise IoCollaboratorError(f"unknown rearranger {rearranger}", code=PIO_EINVAL)
    rank = comm.Get_rank()
    io_pool = tuple(roles.io_pool)
    my_component = next(
        (c for c, members in enumerate(roles.components) if rank in members), None
    )
    is_io = rank in io_pool

    group_comm = comm.Split(0 if is_io else 1 + my_component, rank)

    unions = []
    for component, members in enumerate(roles.components):
        member = is_io or component == my_component
        union_comm = comm.Split(0 if member else MPI.UNDEFINED, rank)
        if member:
            ordered = sorted(io_pool + tuple(members))
            unions.append(
                (
                    component,
                    union_comm,
                    tuple(ordered.index(r) for r in io_pool),
                    tuple(ordered.index(r) for r in members),
                )
            )

    iosystems = [
        IOSystem(
            union_comm=union_comm,
            comp_comm=None if is_io else group_comm,
            io_comm=group_comm if is_io else None,
            io_ranks=io_ranks,
            comp_ranks=comp_ranks,
            rearranger=rearranger,
            async_mode=True,
            component=component,
        )
        for component, union_comm, io_ranks, comp_ranks in unions
    ]
    if is_io:
        return None, IOServer(group_comm, iosystems)
    return iosystems[0], None
