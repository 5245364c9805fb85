import sys
import time
import select  # noqa: used in pytest.mark.skipif
import socket
import asyncio
import selectors

import pytest

import pgfe
from pgfe import waiting
from pgfe import generators

skip_if_not_linux = pytest.mark.skipif(
    not sys.platform.startswith("linux"), reason="non-Linux platform"
)

waitfns = [
    "wait",
    "wait_selector",
    pytest.param(
        "wait_epoll", marks=pytest.mark.skipif("not hasattr(select, 'epoll')")
    ),
]

events = ["R", "W", "RW"]
timeouts = [pytest.param({}, id="blank")]
timeouts += [pytest.param({"timeout": x}, id=str(x)) for x in [None, 0, 0.2, 10]]


def test_wait_default():
    if selectors.DefaultSelector is getattr(selectors, "EpollSelector", None):
        assert waiting.wait is waiting.wait_epoll
    else:
        assert waiting.wait is waiting.wait_selector


@pytest.mark.parametrize("timeout", timeouts)
def test_wait_conn(dsn, timeout):
    gen = generators.connect(dsn)
    conn = waiting.wait_conn(gen, **timeout)
    assert conn.status == "ok"
    assert conn.is_nonblocking()
    conn.finish()


def test_wait_conn_bad(dsn):
    gen = generators.connect("dbname=nosuchdb")
    with pytest.raises(pgfe.OperationalError):
        waiting.wait_conn(gen)


@pytest.mark.parametrize("waitfn", waitfns)
@pytest.mark.parametrize("event", events)
@skip_if_not_linux
def test_wait_ready(waitfn, event):
    wait = getattr(waiting.Wait, event)
    ready = getattr(waiting.Ready, event)
    waitfn = getattr(waiting, waitfn)

    def gen():
        r = yield wait
        return r

    with socket.socket() as s:
        r = waitfn(gen(), s.fileno())
    assert r & ready


@pytest.mark.parametrize("waitfn", waitfns)
@pytest.mark.parametrize("timeout", timeouts)
def test_wait(pgconn, waitfn, timeout):
    waitfn = getattr(waiting, waitfn)

    pgconn.set_nonblocking(True)
    pgconn.send_query("select 1")
    gen = generators.execute(pgconn)
    (res,) = waitfn(gen, pgconn.socket, **timeout)
    assert res.status == "tuples_ok"


@pytest.mark.parametrize("waitfn", waitfns)
def test_wait_large_result(pgconn, waitfn):
    waitfn = getattr(waiting, waitfn)

    pgconn.set_nonblocking(True)
    pgconn.send_query("select repeat('x', 1000) from generate_series(1, 1000)")
    (res,) = waitfn(generators.execute(pgconn), pgconn.socket, timeout=5)
    assert res.status == "tuples_ok"
    assert res.ntuples == 1000


@pytest.mark.parametrize("waitfn", waitfns)
def test_wait_bad(pgconn, waitfn):
    waitfn = getattr(waiting, waitfn)

    pgconn.send_query("select 1")
    gen = generators.execute(pgconn)
    pgconn.finish()
    with pytest.raises(pgfe.InterfaceError):
        waitfn(gen, 0)


@pytest.mark.slow
@pytest.mark.timing
@pytest.mark.parametrize("waitfn", waitfns)
def test_wait_timeout(pgconn, waitfn):
    waitfn = getattr(waiting, waitfn)

    pgconn.set_nonblocking(True)
    pgconn.send_query("select pg_sleep(0.5)")
    gen = generators.execute(pgconn)

    ts = [time.time()]

    def gen_wrapper():
        try:
            x = next(gen)
            while True:
                res = yield x
                ts.append(time.time())
                x = gen.send(res)
        except StopIteration as ex:
            return ex.value

    (res,) = waitfn(gen_wrapper(), pgconn.socket, timeout=0.1)
    assert res.status == "tuples_ok"
    # the timeout only wakes up the waiter: the generator is resumed on ready
    assert ts[-1] - ts[0] == pytest.approx(0.5, abs=0.3)


@pytest.mark.asyncio
async def test_wait_conn_async(dsn):
    gen = generators.connect(dsn)
    conn = await waiting.wait_conn_async(gen)
    assert conn.status == "ok"
    conn.finish()


@pytest.mark.asyncio
async def test_wait_conn_async_bad(dsn):
    gen = generators.connect("dbname=nosuchdb")
    with pytest.raises(pgfe.OperationalError):
        await waiting.wait_conn_async(gen)


@pytest.mark.asyncio
@pytest.mark.parametrize("event", events)
@skip_if_not_linux
async def test_wait_ready_async(event):
    wait = getattr(waiting.Wait, event)
    ready = getattr(waiting.Ready, event)

    def gen():
        r = yield wait
        return r

    with socket.socket() as s:
        r = await waiting.wait_async(gen(), s.fileno())
    assert r & ready


@pytest.mark.asyncio
async def test_wait_async(pgconn):
    pgconn.set_nonblocking(True)
    pgconn.send_query("select 1")
    gen = generators.execute(pgconn)
    (res,) = await waiting.wait_async(gen, pgconn.socket)
    assert res.status == "tuples_ok"


@pytest.mark.asyncio
async def test_wait_async_bad(pgconn):
    pgconn.send_query("select 1")
    gen = generators.execute(pgconn)
    pgconn.finish()
    with pytest.raises(pgfe.InterfaceError):
        await waiting.wait_async(gen, 0)


def test_bad_wait_state():
    def gen():
        yield 42

    with pytest.raises(pgfe.InternalError, match="bad poll status"):
        asyncio.run(waiting.wait_async(gen(), 0))


@pytest.mark.asyncio
@skip_if_not_linux
async def test_wait_ready_async_rw_both():
    def gen():
        r = yield waiting.Wait.RW
        return r

    a, b = socket.socketpair()
    with a, b:
        b.send(b"x")
        r = await waiting.wait_async(gen(), a.fileno())
    assert r == waiting.Ready.RW


@pytest.mark.asyncio
@skip_if_not_linux
async def test_wait_async_cancel_removes_callbacks():
    def gen():
        while True:
            yield waiting.Wait.R

    loop = asyncio.get_running_loop()
    a, b = socket.socketpair()
    with a, b:
        task = loop.create_task(waiting.wait_async(gen(), a.fileno()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert loop.remove_reader(a.fileno()) is False
        assert loop.remove_writer(a.fileno()) is False


@pytest.mark.asyncio
@skip_if_not_linux
async def test_wait_conn_async_cancel_removes_callbacks():
    loop = asyncio.get_running_loop()
    a, b = socket.socketpair()

    def gen():
        while True:
            yield a.fileno(), waiting.Wait.R

    with a, b:
        task = loop.create_task(waiting.wait_conn_async(gen()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert loop.remove_reader(a.fileno()) is False
        assert loop.remove_writer(a.fileno()) is False
