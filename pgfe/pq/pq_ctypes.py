"""
libpq Python wrapper using ctypes bindings.

Clients shouldn't use this module directly, unless for testing: they should use
the `pq` module instead.
"""

# Copyright (C) 2023-2024 The pgfe Team

import os
import sys
import logging
from errno import EAGAIN, ECANCELED, EWOULDBLOCK
from weakref import ref
from decimal import Decimal
from functools import partial

from ctypes import Array, byref, create_string_buffer, string_at
from ctypes import addressof, c_char_p, c_int, get_errno, set_errno
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
from typing import Tuple, Union

from .. import errors as e
from .._encodings import pg2pyenc
from . import _pq_ctypes as impl
from .abc import Buffer, NoticeCallback, Text
from .misc import ConninfoOption, Notify, connection_summary
from ._enums import ConnStatus, ContextVisibility, DiagnosticField, ExecStatus
from ._enums import Format, PipelineStatus, PollingStatus, Trace
from ._enums import TransactionStatus, Verbosity

__impl__ = "python"

logger = logging.getLogger("pgfe")

Value = Union[None, str, bytes]
NoticeHandler = Tuple[NoticeCallback, Tuple[Any, ...]]

FREED_MSG = "attempt to use a freed object"


def version() -> int:
    """Return the version number of the libpq currently loaded.

    The number is in the same format of `Connection.server_version`.

    Certain features might not be available if the libpq library used is too old.
    """
    return impl.PQlibVersion()


def notice_receiver(
    arg: Any, result_ptr: impl.PGresult_struct, wconn: "ref[Connection]"
) -> None:
    pgconn = wconn()
    if not (pgconn and pgconn._receiver):
        return

    fn, args = pgconn._receiver
    res = Result(result_ptr, pgconn, borrowed=True)
    try:
        fn(res, *args)
    except Exception as exc:
        logger.exception("error in notice receiver: %s", exc)
    finally:
        # The result belongs to the libpq and is only valid in the callback
        res._pgresult_ptr = None


def notice_processor(arg: Any, message: bytes, wconn: "ref[Connection]") -> None:
    pgconn = wconn()
    if not (pgconn and pgconn._processor):
        return

    fn, args = pgconn._processor
    try:
        fn(message.decode(pgconn._pyenc, "replace"), *args)
    except Exception as exc:
        logger.exception("error in notice processor: %s", exc)


class Connection:
    """
    Python representation of a libpq connection.
    """

    __module__ = "pgfe.pq"
    __slots__ = (
        "_pgconn_ptr",
        "_receiver",
        "_processor",
        "_notice_receiver",
        "_notice_processor",
        "_default_receiver",
        "_default_processor",
        "_trace_writer",
        "_trace_stream",
        "_procpid",
        "__weakref__",
    )

    def __init__(self, pgconn_ptr: impl.PGconn_struct):
        self._pgconn_ptr: Optional[impl.PGconn_struct] = pgconn_ptr

        # User callbacks, with their extra arguments
        self._receiver: Optional[NoticeHandler] = None
        self._processor: Optional[NoticeHandler] = None

        # Trampolines installed in the libpq and the defaults they replaced
        self._notice_receiver: Any = None
        self._notice_processor: Any = None
        self._default_receiver: Any = None
        self._default_processor: Any = None

        self._trace_writer: Any = None
        self._trace_stream: Any = None

        self._procpid = os.getpid()

    def __del__(self) -> None:
        # Close the connection only if it was created in this process,
        # not if this object is being GC'd after fork.
        if os.getpid() == self._procpid:
            self.finish()

    def __repr__(self) -> str:
        cls = f"{self.__class__.__module__}.{self.__class__.__qualname__}"
        info = connection_summary(self)
        return f"<{cls} {info} at 0x{id(self):x}>"

    @classmethod
    def connect(cls, conninfo: Text = "", nonblock: bool = False) -> "Connection":
        """
        Create a new connection to the database.

        If *nonblock* is false, block until the connection is established
        (successfully or not: check `status` and `error_message`). Otherwise
        return immediately: the connection must be completed by calling
        `connect_poll()` until it returns ``ok`` or ``failed``.
        """
        if isinstance(conninfo, str):
            conninfo = conninfo.encode()
        elif not isinstance(conninfo, bytes):
            raise TypeError(
                f"str or bytes expected, got {type(conninfo)} instead"
            )

        set_errno(0)
        if nonblock:
            pgconn_ptr = impl.PQconnectStart(conninfo)
        else:
            pgconn_ptr = impl.PQconnectdb(conninfo)
        if not pgconn_ptr:
            raise e.OperationalError(
                "couldn't allocate PGconn",
                errno=get_errno() or ECANCELED,
                op="connect",
            )

        rv = cls(pgconn_ptr)
        logger.debug("connection created: %s", rv)
        return rv

    def connect_poll(self) -> str:
        return PollingStatus.label_of(self._call_int(impl.PQconnectPoll))

    def finish(self) -> None:
        """
        Close the connection and release the callbacks and the trace stream.

        Calling the method more than once is not an error.
        """
        self._pgconn_ptr, p = None, self._pgconn_ptr
        if p:
            logger.debug("finishing connection at 0x%x", id(self))
            impl.PQfinish(p)

        self._close_trace_stream()
        self._trace_writer = None
        self._receiver = self._processor = None
        self._notice_receiver = self._notice_processor = None
        self._default_receiver = self._default_processor = None

    @property
    def pgconn_ptr(self) -> Optional[int]:
        """The pointer to the underlying ``PGconn`` structure, as integer.

        `!None` if the connection is closed.

        The value can be used to pass the structure to libpq functions which
        pgfe doesn't wrap, using FFI libraries such as `ctypes`.
        """
        if self._pgconn_ptr is None:
            return None

        return addressof(self._pgconn_ptr.contents)  # type: ignore[attr-defined]

    @property
    def conninfo(self) -> Dict[str, ConninfoOption]:
        """The connection options in use, by keyword."""
        self._ensure_pgconn()
        opts = impl.PQconninfo(self._pgconn_ptr)
        if not opts:
            raise MemoryError("couldn't allocate connection info")
        try:
            rv = {}
            for opt in opts:
                if not opt.keyword:
                    break
                keyword = opt.keyword.decode()
                rv[keyword] = ConninfoOption(
                    keyword=keyword,
                    envvar=_opt_str(opt.envvar),
                    compiled=_opt_str(opt.compiled),
                    val=_opt_str(opt.val),
                    label=opt.label.decode(),
                    dispchar=opt.dispchar.decode(),
                    dispsize=opt.dispsize,
                )
            return rv
        finally:
            impl.PQconninfoFree(opts)

    @property
    def db(self) -> str:
        return self._call_text(impl.PQdb)

    @property
    def user(self) -> str:
        return self._call_text(impl.PQuser)

    @property
    def password(self) -> str:
        return self._call_text(impl.PQpass)

    @property
    def host(self) -> str:
        return self._call_text(impl.PQhost)

    @property
    def hostaddr(self) -> str:
        return self._call_text(impl.PQhostaddr)

    @property
    def port(self) -> str:
        return self._call_text(impl.PQport)

    @property
    def options(self) -> str:
        return self._call_text(impl.PQoptions)

    @property
    def status(self) -> str:
        # Safe on a finished connection: the libpq reports it as bad
        return ConnStatus.label_of(impl.PQstatus(self._pgconn_ptr))

    @property
    def transaction_status(self) -> str:
        return TransactionStatus.label_of(
            impl.PQtransactionStatus(self._pgconn_ptr)
        )

    @property
    def pipeline_status(self) -> str:
        if impl.libpq_version < 140000:
            return PipelineStatus.OFF.label
        return PipelineStatus.label_of(impl.PQpipelineStatus(self._pgconn_ptr))

    def parameter_status(self, name: Text) -> Optional[str]:
        """Look up a current parameter setting of the server, e.g. ``TimeZone``."""
        self._ensure_pgconn()
        rv = impl.PQparameterStatus(self._pgconn_ptr, self._encode(name))
        return rv.decode(self._pyenc, "replace") if rv is not None else None

    @property
    def error_message(self) -> Optional[str]:
        """The last error message of the connection, `!None` if empty."""
        self._ensure_pgconn()
        rv = impl.PQerrorMessage(self._pgconn_ptr)
        return rv.decode(self._pyenc, "replace") if rv else None

    @property
    def protocol_version(self) -> int:
        return self._call_int(impl.PQprotocolVersion)

    @property
    def server_version(self) -> int:
        return self._call_int(impl.PQserverVersion)

    @property
    def socket(self) -> int:
        rv = self._call_int(impl.PQsocket)
        if rv == -1:
            raise e.OperationalError("the connection is lost", op="PQsocket")
        return rv

    @property
    def backend_pid(self) -> int:
        return self._call_int(impl.PQbackendPID)

    @property
    def connection_needs_password(self) -> bool:
        return self._call_bool(impl.PQconnectionNeedsPassword)

    @property
    def connection_used_password(self) -> bool:
        return self._call_bool(impl.PQconnectionUsedPassword)

    @property
    def ssl_in_use(self) -> bool:
        return self._call_bool(impl.PQsslInUse)

    def ssl_attribute(self, name: Text) -> Optional[str]:
        """Return SSL-related information about the connection, e.g. ``cipher``."""
        self._ensure_pgconn()
        rv = impl.PQsslAttribute(self._pgconn_ptr, self._encode(name))
        return rv.decode() if rv is not None else None

    @property
    def ssl_attribute_names(self) -> List[str]:
        """The names of the attributes available to `ssl_attribute()`."""
        self._ensure_pgconn()
        names = impl.PQsslAttributeNames(self._pgconn_ptr)
        rv = []
        if names:
            i = 0
            while names[i] is not None:
                rv.append(names[i].decode())
                i += 1
        return rv

    @property
    def client_encoding(self) -> str:
        """The name of the client encoding, e.g. ``UTF8``."""
        self._ensure_pgconn()
        rv = impl.pg_encoding_to_char(impl.PQclientEncoding(self._pgconn_ptr))
        return rv.decode("ascii")

    def set_client_encoding(self, name: Text) -> None:
        self._ensure_pgconn()
        set_errno(0)
        if impl.PQsetClientEncoding(self._pgconn_ptr, self._encode(name)) != 0:
            raise self._error("PQsetClientEncoding")

    def set_error_verbosity(self, verbosity: str = "default") -> str:
        """Set the verbosity of the error messages, return the previous one."""
        value = Verbosity.from_label(verbosity)
        self._ensure_pgconn()
        rv = impl.PQsetErrorVerbosity(self._pgconn_ptr, value)
        return Verbosity.label_of(rv)

    def set_error_context_visibility(self, visibility: str = "errors") -> str:
        """Set when to show the ``CONTEXT`` field, return the previous value."""
        value = ContextVisibility.from_label(visibility)
        self._ensure_pgconn()
        rv = impl.PQsetErrorContextVisibility(self._pgconn_ptr, value)
        return ContextVisibility.label_of(rv)

    def trace(self, writer: Any) -> Any:
        """
        Log the client/server communication to *writer*.

        *writer* is a file descriptor or a file object with a ``fileno()``
        method. A reference to it is kept until `untrace()` or `finish()`.
        Return the writer previously installed, if any.

        Only supported on Linux.
        """
        self._ensure_pgconn()
        if sys.platform != "linux":
            raise e.NotSupportedError(
                f"tracing is not supported on {sys.platform}"
            )

        fileno = writer if isinstance(writer, int) else writer.fileno()
        fd = os.dup(fileno)
        set_errno(0)
        stream = impl.fdopen(fd, b"w")
        if not stream:
            errnum = get_errno() or ECANCELED
            os.close(fd)
            raise e.OperationalError(
                "couldn't open the trace stream", errno=errnum, op="fdopen"
            )
        impl.setvbuf(stream, None, impl._IONBF, 0)

        prev = self.untrace()
        impl.PQtrace(self._pgconn_ptr, stream)
        self._trace_stream = stream
        self._trace_writer = writer
        return prev

    def untrace(self) -> Any:
        """Stop tracing the communication. Return the writer removed, if any."""
        self._ensure_pgconn()
        impl.PQuntrace(self._pgconn_ptr)
        self._close_trace_stream()
        prev, self._trace_writer = self._trace_writer, None
        return prev

    def set_trace_flags(self, *flags: str) -> None:
        """
        Control the format of the trace output.

        Accepted flags are ``suppress_timestamps`` and ``regress_mode``.
        """
        value = 0
        for flag in flags:
            try:
                value |= Trace.from_label(flag)
            except ValueError:
                raise ValueError(f"invalid trace flag: {flag}") from None

        self._ensure_pgconn()
        impl.PQsetTraceFlags(self._pgconn_ptr, value)

    def _close_trace_stream(self) -> None:
        self._trace_stream, stream = None, self._trace_stream
        if stream:
            impl.fclose(stream)

    def set_notice_receiver(
        self, fn: Optional[NoticeCallback], *args: Any
    ) -> None:
        """
        Install a callback to receive the notices from the server.

        *fn* is called with a borrowed `Result` describing the notice and
        the extra *args*. The result is only valid for the duration of the
        call. Passing `!None` restores the libpq default receiver.
        """
        self._ensure_pgconn()
        if fn is None:
            if self._notice_receiver is not None:
                impl.PQsetNoticeReceiver(
                    self._pgconn_ptr, self._default_receiver, None
                )
                self._notice_receiver = self._default_receiver = None
            self._receiver = None
            return

        if not callable(fn):
            raise TypeError(f"callable expected, got {type(fn)} instead")

        self._receiver = (fn, args)
        if self._notice_receiver is None:
            self._notice_receiver = impl.PQnoticeReceiver(  # type: ignore
                partial(notice_receiver, wconn=ref(self))
            )
            self._default_receiver = impl.PQsetNoticeReceiver(
                self._pgconn_ptr, self._notice_receiver, None
            )

    def set_notice_processor(
        self, fn: Optional[NoticeCallback], *args: Any
    ) -> None:
        """
        Install a callback to process the notices from the server.

        *fn* is called with the notice message as a string and the extra
        *args*. Passing `!None` restores the libpq default processor.
        """
        self._ensure_pgconn()
        if fn is None:
            if self._notice_processor is not None:
                impl.PQsetNoticeProcessor(
                    self._pgconn_ptr, self._default_processor, None
                )
                self._notice_processor = self._default_processor = None
            self._processor = None
            return

        if not callable(fn):
            raise TypeError(f"callable expected, got {type(fn)} instead")

        self._processor = (fn, args)
        if self._notice_processor is None:
            self._notice_processor = impl.PQnoticeProcessor(  # type: ignore
                partial(notice_processor, wconn=ref(self))
            )
            self._default_processor = impl.PQsetNoticeProcessor(
                self._pgconn_ptr, self._notice_processor, None
            )

    def call_notice_receiver(self, result: "Result") -> bool:
        """
        Call the notice receiver installed with *result*.

        Return `!False` if no receiver is installed.
        """
        self._ensure_pgconn()
        if not self._receiver:
            return False
        fn, args = self._receiver
        fn(result, *args)
        return True

    def call_notice_processor(self, message: str) -> bool:
        """
        Call the notice processor installed with *message*.

        Return `!False` if no processor is installed.
        """
        self._ensure_pgconn()
        if not self._processor:
            return False
        fn, args = self._processor
        fn(message, *args)
        return True

    def exec(self, command: Text) -> "Result":
        self._ensure_pgconn()
        command = self._encode(command)
        set_errno(0)
        rv = impl.PQexec(self._pgconn_ptr, command)
        if not rv:
            raise self._error("PQexec")
        return Result(rv, self)

    def exec_params(self, command: Text, *params: Any) -> "Result":
        self._ensure_pgconn()
        args = self._query_params_args(command, params)
        set_errno(0)
        rv = impl.PQexecParams(*args)
        if not rv:
            raise self._error("PQexecParams")
        return Result(rv, self)

    def send_query(self, command: Text) -> None:
        self._ensure_pgconn()
        command = self._encode(command)
        set_errno(0)
        if not impl.PQsendQuery(self._pgconn_ptr, command):
            raise self._error("PQsendQuery")

    def send_query_params(self, command: Text, *params: Any) -> None:
        self._ensure_pgconn()
        args = self._query_params_args(command, params)
        set_errno(0)
        if not impl.PQsendQueryParams(*args):
            raise self._error("PQsendQueryParams")

    def prepare(self, name: Text, command: Text, *param_types: int) -> "Result":
        self._ensure_pgconn()
        args = self._prepare_args(name, command, param_types)
        set_errno(0)
        rv = impl.PQprepare(*args)
        if not rv:
            raise self._error("PQprepare")
        return Result(rv, self)

    def send_prepare(self, name: Text, command: Text, *param_types: int) -> None:
        self._ensure_pgconn()
        args = self._prepare_args(name, command, param_types)
        set_errno(0)
        if not impl.PQsendPrepare(*args):
            raise self._error("PQsendPrepare")

    def exec_prepare(self, name: Text, *params: Any) -> "Result":
        self._ensure_pgconn()
        # same arguments of PQexecParams, without the param types
        args = self._query_params_args(name, params)
        args = args[:3] + args[4:]
        set_errno(0)
        rv = impl.PQexecPrepared(*args)
        if not rv:
            raise self._error("PQexecPrepared")
        return Result(rv, self)

    def send_query_prepared(self, name: Text, *params: Any) -> None:
        self._ensure_pgconn()
        args = self._query_params_args(name, params)
        args = args[:3] + args[4:]
        set_errno(0)
        if not impl.PQsendQueryPrepared(*args):
            raise self._error("PQsendQueryPrepared")

    def _prepare_args(
        self, name: Text, command: Text, param_types: Sequence[int]
    ) -> Any:
        atypes: Optional[Array[impl.Oid]]
        if not param_types:
            nparams = 0
            atypes = None
        else:
            nparams = len(param_types)
            atypes = (impl.Oid * nparams)(*param_types)

        return (
            self._pgconn_ptr,
            self._encode(name),
            self._encode(command),
            nparams,
            atypes,
        )

    def _query_params_args(self, command: Text, params: Sequence[Any]) -> Any:
        bcommand = self._encode(command)

        aparams: Optional[Array[c_char_p]]
        alenghts: Optional[Array[c_int]]
        if params:
            values = [self._encode_param(p) for p in params]
            nparams = len(values)
            aparams = (c_char_p * nparams)(*values)
            alenghts = (c_int * nparams)(*(len(v) if v else 0 for v in values))
        else:
            nparams = 0
            aparams = alenghts = None

        # All the parameters are passed, and the results requested, as text
        return (
            self._pgconn_ptr,
            bcommand,
            nparams,
            None,
            aparams,
            alenghts,
            None,
            Format.TEXT,
        )

    def _encode_param(self, value: Any) -> Optional[bytes]:
        """Convert a Python value to a parameter in text format."""
        if value is None:
            return None
        # bool before int: bool is an int subclass
        elif isinstance(value, bool):
            return b"TRUE" if value else b"FALSE"
        # Bypass the __str__ of subclasses, e.g. IntEnum
        elif isinstance(value, int):
            return int.__repr__(value).encode()
        elif isinstance(value, float):
            return float.__repr__(value).encode()
        elif isinstance(value, Decimal):
            return Decimal.__str__(value).encode()
        elif isinstance(value, str):
            return value.encode(self._pyenc)
        elif isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        else:
            raise TypeError(f"{type(value).__name__} param is not supported")

    def set_single_row_mode(self) -> bool:
        """
        Select single-row mode for the query just sent.

        Return `!False` if the mode couldn't be selected, e.g. if no query is
        in progress.
        """
        return self._call_bool(impl.PQsetSingleRowMode)

    def get_result(self) -> Optional["Result"]:
        """
        Return the next result of the command sent.

        Return `!None` when all the results have been returned.
        """
        self._ensure_pgconn()
        set_errno(0)
        rv = impl.PQgetResult(self._pgconn_ptr)
        if rv:
            return Result(rv, self)
        if impl.PQstatus(self._pgconn_ptr) == ConnStatus.BAD:
            if impl.PQerrorMessage(self._pgconn_ptr):
                raise self._error("PQgetResult")
        return None

    def consume_input(self) -> None:
        self._ensure_pgconn()
        set_errno(0)
        if 1 != impl.PQconsumeInput(self._pgconn_ptr):
            raise self._error("PQconsumeInput")

    def is_busy(self) -> bool:
        """
        Consume the input available and return `!True` if a result is pending.

        The input is consumed until either a result is ready or the socket
        has no more data to read, so that the method is safe to use with
        edge-triggered readiness notifications: if it returns `!True`, the
        caller can wait for the socket to be readable again.
        """
        self._ensure_pgconn()
        while True:
            set_errno(0)
            if 1 != impl.PQconsumeInput(self._pgconn_ptr):
                raise self._error("PQconsumeInput")
            call_again = get_errno() in (EAGAIN, EWOULDBLOCK)

            if not impl.PQisBusy(self._pgconn_ptr):
                return False
            elif call_again:
                return True

    def set_nonblocking(self, arg: bool) -> None:
        self._ensure_pgconn()
        set_errno(0)
        if 0 > impl.PQsetnonblocking(self._pgconn_ptr, int(bool(arg))):
            raise self._error("PQsetnonblocking")

    def is_nonblocking(self) -> bool:
        return self._call_bool(impl.PQisnonblocking)

    def flush(self) -> bool:
        """
        Try to flush the data queued to the server.

        Return `!True` if all the data was sent, `!False` if the send would
        block: wait for the socket to be writable and call it again.
        """
        self._ensure_pgconn()
        set_errno(0)
        rv: int = impl.PQflush(self._pgconn_ptr)
        if rv < 0:
            raise self._error("PQflush")
        return rv == 0

    def get_cancel(self) -> "Cancel":
        """
        Create an object with the information needed to cancel a command.
        """
        self._ensure_pgconn()
        set_errno(0)
        rv = impl.PQgetCancel(self._pgconn_ptr)
        if not rv:
            raise self._error("PQgetCancel")
        return Cancel(rv)

    def notifies(self) -> Optional[Notify]:
        """
        Consume the input available and return a pending notification.

        Return `!None` if no notification is pending.
        """
        self.consume_input()
        ptr = impl.PQnotifies(self._pgconn_ptr)
        if not ptr:
            return None

        try:
            c = ptr.contents
            enc = self._pyenc
            return Notify(c.relname.decode(enc), c.extra.decode(enc), c.be_pid)
        finally:
            impl.PQfreemem(ptr)

    def put_copy_data(self, buffer: Buffer) -> bool:
        """
        Send data to the server during ``COPY FROM STDIN``.

        Return `!False` if the data couldn't be queued because the send would
        block: wait for the socket to be writable and try again.
        """
        self._ensure_pgconn()
        if not isinstance(buffer, bytes):
            buffer = bytes(buffer)
        set_errno(0)
        rv = impl.PQputCopyData(self._pgconn_ptr, buffer, len(buffer))
        if rv < 0:
            raise self._error("PQputCopyData")
        return rv == 1

    def put_copy_end(self, error: Optional[Text] = None) -> bool:
        """
        Signal the end of ``COPY FROM STDIN``.

        If *error* is specified the copy is failed with that message.
        Return `!False` if the send would block.
        """
        self._ensure_pgconn()
        berror = self._encode(error) if error is not None else None
        set_errno(0)
        rv = impl.PQputCopyEnd(self._pgconn_ptr, berror)
        if rv < 0:
            raise self._error("PQputCopyEnd")
        return rv == 1

    def get_copy_data(self, async_: bool = False) -> Optional[bytes]:
        """
        Receive a row of data during ``COPY TO STDOUT``.

        Return `!None` when the copy is complete. If *async_* is true and no
        row is available yet, return an empty bytes string.
        """
        self._ensure_pgconn()
        buffer_ptr = c_char_p()
        set_errno(0)
        nbytes = impl.PQgetCopyData(
            self._pgconn_ptr, byref(buffer_ptr), int(bool(async_))
        )
        if nbytes == -2:
            raise self._error("PQgetCopyData")
        if nbytes == -1:
            return None
        if nbytes == 0:
            return b""

        try:
            return string_at(buffer_ptr, nbytes)
        finally:
            impl.PQfreemem(buffer_ptr)

    def make_empty_result(self, status: str = "command_ok") -> "Result":
        value = ExecStatus.from_label(status)
        self._ensure_pgconn()
        rv = impl.PQmakeEmptyPGresult(self._pgconn_ptr, value)
        if not rv:
            raise MemoryError("couldn't allocate empty PGresult")
        return Result(rv, self)

    def enter_pipeline_mode(self) -> None:
        """Enter pipeline mode.

        :raises ~pgfe.OperationalError: in case of failure to enter the
            pipeline mode.
        """
        self._ensure_pgconn()
        set_errno(0)
        if impl.PQenterPipelineMode(self._pgconn_ptr) != 1:
            raise self._error("PQenterPipelineMode")

    def exit_pipeline_mode(self) -> None:
        """Exit pipeline mode.

        :raises ~pgfe.OperationalError: in case of failure to exit the
            pipeline mode, e.g. if not all the results have been consumed.
        """
        self._ensure_pgconn()
        set_errno(0)
        if impl.PQexitPipelineMode(self._pgconn_ptr) != 1:
            raise self._error("PQexitPipelineMode")

    def pipeline_sync(self) -> None:
        """Mark a synchronization point in a pipeline.

        :raises ~pgfe.OperationalError: if the connection is not in pipeline
            mode or if sync failed.
        """
        self._ensure_pgconn()
        set_errno(0)
        if impl.PQpipelineSync(self._pgconn_ptr) != 1:
            raise self._error("PQpipelineSync")

    def send_flush_request(self) -> None:
        """Sends a request for the server to flush its output buffer.

        :raises ~pgfe.OperationalError: if the flush request failed.
        """
        self._ensure_pgconn()
        set_errno(0)
        if impl.PQsendFlushRequest(self._pgconn_ptr) == 0:
            raise self._error("PQsendFlushRequest")

    @property
    def _pyenc(self) -> str:
        """The name of the Python codec of the client encoding."""
        if not self._pgconn_ptr:
            return "utf-8"
        name = impl.pg_encoding_to_char(impl.PQclientEncoding(self._pgconn_ptr))
        try:
            return pg2pyenc(name.decode("ascii"))
        except e.NotSupportedError:
            return "utf-8"

    def _encode(self, s: Text) -> bytes:
        if isinstance(s, str):
            return s.encode(self._pyenc)
        elif isinstance(s, bytes):
            return s
        else:
            raise TypeError(f"str or bytes expected, got {type(s)} instead")

    def _error(self, op: str) -> e.OperationalError:
        """
        Return an exception describing the failure of the libpq function *op*.

        Must be called right after the failed call, to capture its errno.
        """
        errnum = get_errno() or ECANCELED
        msg = impl.PQerrorMessage(self._pgconn_ptr)
        if msg:
            smsg = msg.decode(self._pyenc, "replace").rstrip()
        else:
            smsg = f"{op} failed"
        return e.OperationalError(smsg, errno=errnum, op=op)

    def _call_text(
        self, func: Callable[[impl.PGconn_struct], Optional[bytes]]
    ) -> str:
        """
        Call one of the pgconn libpq functions returning a string.
        """
        self._ensure_pgconn()
        rv = func(self._pgconn_ptr)  # type: ignore[arg-type]
        return rv.decode(self._pyenc, "replace") if rv is not None else ""

    def _call_int(self, func: Callable[[impl.PGconn_struct], int]) -> int:
        """
        Call one of the pgconn libpq functions returning an int.
        """
        self._ensure_pgconn()
        return func(self._pgconn_ptr)  # type: ignore[arg-type]

    def _call_bool(self, func: Callable[[impl.PGconn_struct], int]) -> bool:
        """
        Call one of the pgconn libpq functions returning a logical value.
        """
        self._ensure_pgconn()
        return bool(func(self._pgconn_ptr))  # type: ignore[arg-type]

    def _ensure_pgconn(self) -> None:
        if not self._pgconn_ptr:
            raise e.InterfaceError(FREED_MSG)


def _opt_str(b: Optional[bytes]) -> Optional[str]:
    return b.decode() if b is not None else None


class Result:
    """
    Python representation of a libpq result.

    Rows and columns are numbered from 1.
    """

    __module__ = "pgfe.pq"
    __slots__ = ("_pgresult_ptr", "_conn", "_borrowed", "_encoding")

    def __init__(
        self,
        pgresult_ptr: impl.PGresult_struct,
        conn: Optional[Connection] = None,
        borrowed: bool = False,
    ):
        self._pgresult_ptr: Optional[impl.PGresult_struct] = pgresult_ptr
        self._conn = conn
        self._borrowed = borrowed
        self._encoding = conn._pyenc if conn else "utf-8"

    def __del__(self) -> None:
        self.clear()

    def __repr__(self) -> str:
        cls = f"{self.__class__.__module__}.{self.__class__.__qualname__}"
        if self._pgresult_ptr is None:
            return f"<{cls} [cleared] at 0x{id(self):x}>"
        return f"<{cls} [{self.status}] at 0x{id(self):x}>"

    def __iter__(self) -> Iterator[Tuple[int, List[Value]]]:
        return self.iter_rows()

    def clear(self) -> None:
        """
        Release the result.

        Calling the method more than once is not an error. Results received
        by a notice receiver belong to the libpq and are not freed.
        """
        self._pgresult_ptr, p = None, self._pgresult_ptr
        if p and not self._borrowed:
            impl.PQclear(p)

    @property
    def pgresult_ptr(self) -> Optional[int]:
        """The pointer to the underlying ``PGresult`` structure, as integer.

        `!None` if the result was cleared.
        """
        if self._pgresult_ptr is None:
            return None

        return addressof(self._pgresult_ptr.contents)  # type: ignore[attr-defined]

    @property
    def is_borrowed(self) -> bool:
        """True if the result belongs to the libpq, e.g. in a notice receiver."""
        return self._borrowed

    @property
    def connection(self) -> Optional[Connection]:
        """The connection which generated the result."""
        self._ensure_pgresult()
        return self._conn

    @property
    def status(self) -> str:
        return ExecStatus.label_of(impl.PQresultStatus(self._ptr))

    @property
    def error_message(self) -> Optional[str]:
        return self._decode(impl.PQresultErrorMessage(self._ptr))

    def verbose_error_message(
        self, verbosity: str = "default", visibility: str = "errors"
    ) -> Optional[str]:
        """
        Return the error message formatted with a specific verbosity.

        See `Connection.set_error_verbosity()` and
        `Connection.set_error_context_visibility()` for the values accepted.
        """
        v = Verbosity.from_label(verbosity)
        c = ContextVisibility.from_label(visibility)
        out = impl.PQresultVerboseErrorMessage(self._ptr, v, c)
        if not out:
            raise MemoryError("couldn't allocate the error message")
        try:
            return self._decode(string_at(out))
        finally:
            impl.PQfreemem(out)

    def error_field(self, fieldcode: str) -> Optional[str]:
        """Return a field of the error report, e.g. ``sqlstate``."""
        code = DiagnosticField.from_label(fieldcode)
        rv = impl.PQresultErrorField(self._ptr, code)
        return rv.decode(self._encoding, "replace") if rv is not None else None

    @property
    def ntuples(self) -> int:
        return impl.PQntuples(self._ptr)

    @property
    def nfields(self) -> int:
        return impl.PQnfields(self._ptr)

    @property
    def binary_tuples(self) -> bool:
        return bool(impl.PQbinaryTuples(self._ptr))

    def fname(self, column_number: int) -> Optional[str]:
        rv = impl.PQfname(self._ptr, self._col(column_number))
        return rv.decode(self._encoding) if rv is not None else None

    def fnumber(self, column_name: Text) -> Optional[int]:
        """
        Return the number of the column with the given name.

        The name is matched exactly, case included. Return `!None` if no
        column has that name.
        """
        if isinstance(column_name, bytes):
            column_name = column_name.decode(self._encoding)
        # Quote the name, or the libpq would downcase it
        quoted = '"%s"' % column_name.replace('"', '""')
        rv = impl.PQfnumber(self._ptr, quoted.encode(self._encoding))
        return rv + 1 if rv >= 0 else None

    def ftable(self, column_number: int) -> Optional[int]:
        """The OID of the table the column was fetched from, if any."""
        rv = impl.PQftable(self._ptr, self._col(column_number))
        return rv or None

    def ftablecol(self, column_number: int) -> Optional[int]:
        """The number of the column in its table, if any."""
        rv = impl.PQftablecol(self._ptr, self._col(column_number))
        return rv or None

    def fformat(self, column_number: int) -> str:
        rv = impl.PQfformat(self._ptr, self._col(column_number))
        try:
            return Format(rv).label
        except ValueError:
            return "unknown"

    def ftype(self, column_number: int) -> Optional[int]:
        rv = impl.PQftype(self._ptr, self._col(column_number))
        return rv or None

    def fmod(self, column_number: int) -> int:
        return impl.PQfmod(self._ptr, self._col(column_number))

    def fsize(self, column_number: int) -> int:
        return impl.PQfsize(self._ptr, self._col(column_number))

    def get_value(self, row_number: int, column_number: int) -> Value:
        """
        Return the value of a field.

        Return `!None` for NULL values, `!str` for fields in text format,
        `!bytes` for fields in binary format.
        """
        p = self._ptr
        row = self._row(row_number)
        col = self._col(column_number)
        return self._get_value(p, row, col)

    def _get_value(self, p: impl.PGresult_struct, row: int, col: int) -> Value:
        length: int = impl.PQgetlength(p, row, col)
        if length:
            v = impl.PQgetvalue(p, row, col)
            data = string_at(v, length)
        elif impl.PQgetisnull(p, row, col):
            return None
        else:
            data = b""

        if impl.PQfformat(p, col) == Format.BINARY:
            return data
        return data.decode(self._encoding)

    def get_length(self, row_number: int, column_number: int) -> int:
        p = self._ptr
        return impl.PQgetlength(
            p, self._row(row_number), self._col(column_number)
        )

    def get_is_null(self, row_number: int, column_number: int) -> bool:
        p = self._ptr
        return bool(
            impl.PQgetisnull(p, self._row(row_number), self._col(column_number))
        )

    @property
    def nparams(self) -> int:
        return impl.PQnparams(self._ptr)

    def param_type(self, param_number: int) -> Optional[int]:
        p = self._ptr
        if not 1 <= param_number <= impl.PQnparams(p):
            raise IndexError(f"parameter number out of range: {param_number}")
        return impl.PQparamtype(p, param_number - 1) or None

    @property
    def cmd_status(self) -> Optional[str]:
        return self._decode(impl.PQcmdStatus(self._ptr))

    @property
    def cmd_tuples(self) -> Optional[int]:
        rv = impl.PQcmdTuples(self._ptr)
        return int(rv) if rv else None

    @property
    def oid_value(self) -> Optional[int]:
        return impl.PQoidValue(self._ptr) or None

    def rows(self) -> List[List[Value]]:
        """Return all the values of the result, as a list of rows."""
        return [values for _, values in self.iter_rows()]

    def iter_rows(self, start: int = 0) -> Iterator[Tuple[int, List[Value]]]:
        """
        Iterate on the rows of the result, skipping the first *start* ones.

        Yield (row number, values) pairs.
        """
        p = self._ptr
        nfields = impl.PQnfields(p)
        for row in range(max(start, 0), impl.PQntuples(p)):
            p = self._ptr
            yield row + 1, [self._get_value(p, row, col) for col in range(nfields)]

    def stat(self) -> Dict[str, Any]:
        """
        Return a summary of the result as a dictionary.

        The keys available depend on the status of the result: ``status`` and
        ``cmd_status`` are always available; results with data report
        ``ntuples``, ``nfields``, ``binary_tuples`` and ``fields`` (the
        description of the columns); successful commands report
        ``cmd_tuples``, ``oid_value``, ``nparams`` and ``params`` (the types
        of the parameters); failed ones report ``error``.
        """
        status = ExecStatus(impl.PQresultStatus(self._ptr))
        rv: Dict[str, Any] = {
            "status": status.label,
            "cmd_status": self.cmd_status,
        }

        if status in (ExecStatus.TUPLES_OK, ExecStatus.SINGLE_TUPLE):
            rv["ntuples"] = ntuples = self.ntuples
            if ntuples:
                rv["nfields"] = nfields = self.nfields
                rv["binary_tuples"] = self.binary_tuples
                rv["fields"] = [
                    {
                        "col": col,
                        "name": self.fname(col),
                        "table": self.ftable(col),
                        "tablecol": self.ftablecol(col),
                        "format": self.fformat(col),
                        "type": self.ftype(col),
                        "size": self.fsize(col),
                        "mod": self.fmod(col),
                    }
                    for col in range(1, nfields + 1)
                ]

        if status in _stat_ok_statuses:
            cmd_tuples = self.cmd_tuples
            if cmd_tuples is not None:
                rv["cmd_tuples"] = cmd_tuples
            rv["oid_value"] = self.oid_value
            nparams = self.nparams
            if nparams:
                rv["nparams"] = nparams
                rv["params"] = [
                    self.param_type(i) for i in range(1, nparams + 1)
                ]

        elif status in _stat_error_statuses:
            rv["error"] = self.error_message

        return rv

    @property
    def _ptr(self) -> impl.PGresult_struct:
        if not self._pgresult_ptr:
            raise e.InterfaceError(FREED_MSG)
        return self._pgresult_ptr

    def _ensure_pgresult(self) -> None:
        if not self._pgresult_ptr:
            raise e.InterfaceError(FREED_MSG)

    def _row(self, row_number: int) -> int:
        if not 1 <= row_number <= impl.PQntuples(self._ptr):
            raise IndexError(f"row number out of range: {row_number}")
        return row_number - 1

    def _col(self, column_number: int) -> int:
        if not 1 <= column_number <= impl.PQnfields(self._ptr):
            raise IndexError(f"column number out of range: {column_number}")
        return column_number - 1

    def _decode(self, b: Optional[bytes]) -> Optional[str]:
        return b.decode(self._encoding, "replace") if b else None


_stat_ok_statuses = (
    ExecStatus.TUPLES_OK,
    ExecStatus.SINGLE_TUPLE,
    ExecStatus.COMMAND_OK,
)

_stat_error_statuses = (
    ExecStatus.PIPELINE_ABORTED,
    ExecStatus.BAD_RESPONSE,
    ExecStatus.NONFATAL_ERROR,
    ExecStatus.FATAL_ERROR,
)


class Cancel:
    """
    Token to cancel the current operation on a connection.

    Created by `Connection.get_cancel()`. The object is independent from the
    connection and can be used from a different thread.
    """

    __module__ = "pgfe.pq"
    __slots__ = ("pgcancel_ptr",)

    def __init__(self, pgcancel_ptr: impl.PGcancel_struct):
        self.pgcancel_ptr: Optional[impl.PGcancel_struct] = pgcancel_ptr

    def __del__(self) -> None:
        self.free()

    def free(self) -> bool:
        """
        Free the data structure created by :pq:`PQgetCancel()`.

        Return `!True` if the structure was released by this call, `!False`
        if it had been already released. Automatically invoked by
        `!__del__()`.
        """
        self.pgcancel_ptr, p = None, self.pgcancel_ptr
        if p:
            impl.PQfreeCancel(p)
            return True
        return False

    def cancel(self) -> None:
        """Requests that the server abandon processing of the current command.

        :raises ~pgfe.OperationalError: if the request couldn't be sent.
        """
        if not self.pgcancel_ptr:
            raise e.InterfaceError(FREED_MSG)
        buf = create_string_buffer(256)
        set_errno(0)
        res = impl.PQcancel(self.pgcancel_ptr, buf, len(buf))
        if not res:
            raise e.OperationalError(
                f"cancel failed: {buf.value.decode('utf8', 'replace')}",
                errno=get_errno() or ECANCELED,
                op="PQcancel",
            )


# importing the ssl module sets up Python's libcrypto callbacks
import ssl  # noqa

# disable libcrypto setup in libpq, so it won't stomp on the callbacks
# that have already been set up
impl.PQinitOpenSSL(1, 0)
