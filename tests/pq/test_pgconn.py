import sys
import ctypes
import weakref
from select import select
from tempfile import TemporaryFile

import pytest

import pgfe
from pgfe import pq


def wait(conn, return_on="ok", timeout=None):
    while True:
        assert conn.status != "bad", conn.error_message
        rv = conn.connect_poll()
        if rv == return_on:
            return
        elif rv == "reading":
            select([conn.socket], [], [], timeout)
        elif rv == "writing":
            select([], [conn.socket], [], timeout)
        else:
            pytest.fail(f"unexpected poll result: {rv}")


def test_connectdb(dsn):
    conn = pq.Connection.connect(dsn)
    assert conn.status == "ok", conn.error_message
    conn.finish()


def test_connectdb_bytes(dsn):
    conn = pq.Connection.connect(dsn.encode())
    assert conn.status == "ok", conn.error_message
    conn.finish()


def test_connectdb_error():
    conn = pq.Connection.connect("host=127.0.0.1 port=1 connect_timeout=2")
    assert conn.status == "bad"
    assert conn.error_message
    conn.finish()


@pytest.mark.parametrize("baddsn", [None, 42])
def test_connectdb_badtype(baddsn):
    with pytest.raises(TypeError):
        pq.Connection.connect(baddsn)


def test_connect_async(dsn):
    conn = pq.Connection.connect(dsn, nonblock=True)
    conn.set_nonblocking(True)
    wait(conn)
    assert conn.status == "ok"
    conn.finish()
    with pytest.raises(pgfe.InterfaceError):
        conn.connect_poll()


def test_connect_async_bad():
    conn = pq.Connection.connect("host=127.0.0.1 port=1", nonblock=True)
    while True:
        if conn.status == "bad":
            break
        rv = conn.connect_poll()
        if rv == "failed":
            break
        elif rv == "reading":
            select([conn.socket], [], [], 1)
        elif rv == "writing":
            select([], [conn.socket], [], 1)

    assert conn.status == "bad"
    assert conn.error_message
    conn.finish()


def test_finish(pgconn):
    assert pgconn.status == "ok"
    pgconn.finish()
    assert pgconn.status == "bad"
    assert pgconn.transaction_status == "unknown"
    assert pgconn.pipeline_status == "off"
    pgconn.finish()
    assert pgconn.status == "bad"


def test_freed_object(pgconn):
    pgconn.finish()
    for meth in (
        lambda: pgconn.db,
        lambda: pgconn.socket,
        lambda: pgconn.exec("select 1"),
        lambda: pgconn.get_result(),
        lambda: pgconn.set_nonblocking(True),
        lambda: pgconn.get_cancel(),
        lambda: pgconn.conninfo,
    ):
        with pytest.raises(pgfe.InterfaceError, match="freed object"):
            meth()


def test_weakref(dsn, gc_collect):
    conn = pq.Connection.connect(dsn)
    w = weakref.ref(conn)
    conn.finish()
    del conn
    gc_collect()
    assert w() is None


def test_weakref_with_notice(dsn, gc_collect):
    conn = pq.Connection.connect(dsn)
    conn.set_notice_receiver(lambda res: None)
    conn.set_notice_processor(lambda msg: None)
    w = weakref.ref(conn)
    del conn
    gc_collect()
    assert w() is None


def test_pgconn_ptr(pgconn, libpq):
    assert isinstance(pgconn.pgconn_ptr, int)

    f = libpq.PQserverVersion
    f.argtypes = [ctypes.c_void_p]
    f.restype = ctypes.c_int
    ver = f(pgconn.pgconn_ptr)
    assert ver == pgconn.server_version

    pgconn.finish()
    assert pgconn.pgconn_ptr is None


def test_repr(pgconn):
    assert "[IDLE]" in repr(pgconn)
    assert repr(pgconn).startswith("<pgfe.pq.Connection")
    pgconn.finish()
    assert "[closed]" in repr(pgconn)


def test_info(pgconn):
    for attr in ("db", "user", "host", "port", "options", "password"):
        assert isinstance(getattr(pgconn, attr), str)
    assert pgconn.db


@pytest.mark.libpq(">= 12")
def test_hostaddr(pgconn):
    assert isinstance(pgconn.hostaddr, str)


@pytest.mark.libpq("< 12")
def test_hostaddr_missing(pgconn):
    with pytest.raises(pgfe.NotSupportedError):
        pgconn.hostaddr


def test_conninfo(pgconn):
    info = pgconn.conninfo
    assert "dbname" in info
    opt = info["dbname"]
    assert isinstance(opt, pq.ConninfoOption)
    assert opt.keyword == "dbname"
    assert opt.val == pgconn.db
    assert opt.envvar == "PGDATABASE"


def test_transaction_status(pgconn):
    assert pgconn.transaction_status == "idle"
    pgconn.exec("begin")
    assert pgconn.transaction_status == "intrans"
    pgconn.send_query("select 1")
    assert pgconn.transaction_status == "active"
    while pgconn.get_result():
        pass
    pgconn.exec("select wat")
    assert pgconn.transaction_status == "inerror"
    pgconn.exec("rollback")
    assert pgconn.transaction_status == "idle"


def test_parameter_status(pgconn):
    assert pgconn.parameter_status("server_encoding")
    assert pgconn.parameter_status(b"server_encoding")
    assert pgconn.parameter_status("wat") is None


def test_encoding(pgconn):
    pgconn.set_client_encoding("LATIN1")
    assert pgconn.client_encoding == "LATIN1"
    assert pgconn.parameter_status("client_encoding") == "LATIN1"

    pgconn.set_client_encoding(b"UTF8")
    assert pgconn.client_encoding == "UTF8"

    with pytest.raises(pgfe.OperationalError) as excinfo:
        pgconn.set_client_encoding("nosuchenc")
    assert excinfo.value.op == "PQsetClientEncoding"
    assert excinfo.value.errno
    assert pgconn.client_encoding == "UTF8"


def test_error_message(pgconn):
    assert pgconn.error_message is None
    res = pgconn.exec("select wat")
    assert res.status == "fatal_error"
    assert "wat" in pgconn.error_message


def test_versions(pgconn):
    assert pgconn.protocol_version == 3
    assert pgconn.server_version >= 90500


def test_backend_pid(pgconn):
    pid = pgconn.backend_pid
    assert pid > 0
    res = pgconn.exec("select pg_backend_pid()")
    assert int(res.get_value(1, 1)) == pid


def test_socket(pgconn):
    assert pgconn.socket > 0
    pgconn.finish()
    with pytest.raises(pgfe.InterfaceError):
        pgconn.socket


def test_password(pgconn):
    assert isinstance(pgconn.connection_needs_password, bool)
    assert pgconn.connection_needs_password is False
    assert isinstance(pgconn.connection_used_password, bool)


def test_ssl(pgconn):
    assert isinstance(pgconn.ssl_in_use, bool)
    names = pgconn.ssl_attribute_names
    assert isinstance(names, list)
    assert all(isinstance(name, str) for name in names)
    if not pgconn.ssl_in_use:
        assert pgconn.ssl_attribute("cipher") is None
    else:
        assert pgconn.ssl_attribute("cipher")
    assert pgconn.ssl_attribute("wat") is None


def test_error_verbosity(pgconn):
    assert pgconn.set_error_verbosity("terse") == "default"
    assert pgconn.set_error_verbosity("verbose") == "terse"
    assert pgconn.set_error_verbosity() == "verbose"
    with pytest.raises(ValueError):
        pgconn.set_error_verbosity("loud")


def test_error_context_visibility(pgconn):
    assert pgconn.set_error_context_visibility("always") == "errors"
    assert pgconn.set_error_context_visibility("never") == "always"
    assert pgconn.set_error_context_visibility() == "never"
    with pytest.raises(ValueError):
        pgconn.set_error_context_visibility("sometimes")


def test_nonblocking(pgconn):
    assert pgconn.is_nonblocking() is False
    pgconn.set_nonblocking(True)
    assert pgconn.is_nonblocking() is True
    pgconn.set_nonblocking(False)
    assert pgconn.is_nonblocking() is False


def test_get_cancel(pgconn):
    cancel = pgconn.get_cancel()
    assert isinstance(cancel, pq.Cancel)
    assert cancel.free()


def test_make_empty_result(pgconn):
    res = pgconn.make_empty_result()
    assert res.status == "command_ok"
    assert res.connection is pgconn

    res = pgconn.make_empty_result("fatal_error")
    assert res.status == "fatal_error"

    with pytest.raises(ValueError):
        pgconn.make_empty_result("wat")


@pytest.mark.skipif(sys.platform != "linux", reason="trace only on Linux")
def test_trace_writers(pgconn):
    with TemporaryFile() as f1, TemporaryFile() as f2:
        assert pgconn.trace(f1) is None
        assert pgconn.trace(f2.fileno()) is f1
        pgconn.exec("select 1")
        assert pgconn.untrace() == f2.fileno()
        assert pgconn.untrace() is None

        f2.seek(0)
        assert f2.read()
        f1.seek(0)
        assert f1.read() == b""


def test_trace(pgconn, trace):
    tracelog = trace.trace(pgconn)
    pgconn.exec("select 1")
    entries = list(tracelog)
    assert entries[0].direction == "F"
    assert entries[0].type == "Query"
    assert any(entry.type == "ReadyForQuery" for entry in entries)


def test_trace_flags_invalid(pgconn):
    with pytest.raises(ValueError, match="invalid trace flag: wat"):
        pgconn.set_trace_flags("suppress_timestamps", "wat")


@pytest.mark.libpq("< 14")
def test_trace_flags_not_supported(pgconn):
    with pytest.raises(pgfe.NotSupportedError):
        pgconn.set_trace_flags("regress_mode")


@pytest.mark.skipif(sys.platform != "linux", reason="trace only on Linux")
def test_trace_after_finish(pgconn):
    with TemporaryFile() as f:
        pgconn.trace(f)
        pgconn.finish()
        with pytest.raises(pgfe.InterfaceError):
            pgconn.untrace()
