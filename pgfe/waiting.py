"""
Code concerned with waiting in different contexts (blocking, async, etc).

These functions are designed to consume the generators returned by the
`generators` module function and to return their final value.

"""

# Copyright (C) 2023-2024 The pgfe Team


import select
import selectors
from enum import IntEnum
from typing import Dict, Optional
from asyncio import get_event_loop, Event
from selectors import DefaultSelector, EVENT_READ, EVENT_WRITE

from . import errors as e
from .abc import PQGen, PQGenConn, RV


class Wait(IntEnum):
    R = EVENT_READ
    W = EVENT_WRITE
    RW = EVENT_READ | EVENT_WRITE


class Ready(IntEnum):
    R = EVENT_READ
    W = EVENT_WRITE
    RW = EVENT_READ | EVENT_WRITE


def wait_selector(
    gen: PQGen[RV], fileno: int, timeout: Optional[float] = None
) -> RV:
    """
    Wait for a generator using the best strategy available.

    :param gen: a generator performing database operations and yielding
        `Wait` values when it would block.
    :param fileno: the file descriptor to wait on.
    :param timeout: timeout (in seconds) to check for other interrupt, e.g.
        to allow Ctrl-C.
    :type timeout: float
    :return: whatever *gen* returns on completion.

    Consume *gen*, scheduling `fileno` for completion when it is reported to
    block. Once ready again send the ready state back to *gen*.
    """
    try:
        s = next(gen)
        with DefaultSelector() as sel:
            while 1:
                sel.register(fileno, s)
                ready = None
                while not ready:
                    ready = sel.select(timeout=timeout)
                sel.unregister(fileno)
                s = gen.send(Ready(ready[0][1]))

    except StopIteration as ex:
        rv: RV = ex.args[0] if ex.args else None
        return rv


def wait_conn(gen: PQGenConn[RV], timeout: Optional[float] = None) -> RV:
    """
    Wait for a connection generator using the best strategy available.

    :param gen: a generator performing database operations and yielding
        (fd, `Wait`) pairs when it would block.
    :param timeout: timeout (in seconds) to check for other interrupt, e.g.
        to allow Ctrl-C.
    :type timeout: float
    :return: whatever *gen* returns on completion.

    Behave like in `wait()`, but take the fileno to wait from the generator
    itself, which might change during processing.
    """
    try:
        fileno, s = next(gen)
        with DefaultSelector() as sel:
            while 1:
                sel.register(fileno, s)
                ready = None
                while not ready:
                    ready = sel.select(timeout=timeout)
                sel.unregister(fileno)
                fileno, s = gen.send(Ready(ready[0][1]))

    except StopIteration as ex:
        rv: RV = ex.args[0] if ex.args else None
        return rv


async def wait_async(gen: PQGen[RV], fileno: int) -> RV:
    """
    Coroutine waiting for a generator to complete.

    :param gen: a generator performing database operations and yielding
        `Wait` values when it would block.
    :param fileno: the file descriptor to wait on.
    :return: whatever *gen* returns on completion.

    Behave like in `wait()`, but exposing an `asyncio` interface.
    """
    # Use an event to block and restart after the fd state changes.
    ev = Event()
    loop = get_event_loop()
    ready: int
    s: Wait

    def wakeup(state: Ready) -> None:
        nonlocal ready
        ready |= state
        ev.set()

    try:
        s = next(gen)
        while 1:
            if s not in _wait_states:
                raise e.InternalError(f"bad poll status: {s}")
            reader = s & Wait.R
            writer = s & Wait.W
            ev.clear()
            ready = 0
            if reader:
                loop.add_reader(fileno, wakeup, Ready.R)
            if writer:
                loop.add_writer(fileno, wakeup, Ready.W)
            try:
                await ev.wait()
            finally:
                if reader:
                    loop.remove_reader(fileno)
                if writer:
                    loop.remove_writer(fileno)
            s = gen.send(Ready(ready))

    except StopIteration as ex:
        rv: RV = ex.args[0] if ex.args else None
        return rv


async def wait_conn_async(gen: PQGenConn[RV]) -> RV:
    """
    Coroutine waiting for a connection generator to complete.

    :param gen: a generator performing database operations and yielding
        (fd, `Wait`) pairs when it would block.
    :return: whatever *gen* returns on completion.

    Behave like in `wait()`, but take the fileno to wait from the generator
    itself, which might change during processing.
    """
    ev = Event()
    loop = get_event_loop()
    ready: int
    s: Wait

    def wakeup(state: Ready) -> None:
        nonlocal ready
        ready |= state
        ev.set()

    try:
        fileno, s = next(gen)
        while 1:
            if s not in _wait_states:
                raise e.InternalError(f"bad poll status: {s}")
            reader = s & Wait.R
            writer = s & Wait.W
            ev.clear()
            ready = 0
            if reader:
                loop.add_reader(fileno, wakeup, Ready.R)
            if writer:
                loop.add_writer(fileno, wakeup, Ready.W)
            try:
                await ev.wait()
            finally:
                if reader:
                    loop.remove_reader(fileno)
                if writer:
                    loop.remove_writer(fileno)
            fileno, s = gen.send(Ready(ready))

    except StopIteration as ex:
        rv: RV = ex.args[0] if ex.args else None
        return rv


_wait_states = frozenset(Wait)


def wait_epoll(
    gen: PQGen[RV], fileno: int, timeout: Optional[float] = None
) -> RV:
    """
    Wait for a generator using edge-triggered epoll.

    Parameters are like for `wait()`. If it is detected that the best selector
    strategy is `epoll` then this function will be used instead of `wait`.

    The generators reading from the server drain the input before asking to
    wait again (see `Connection.is_busy()`), so the socket is registered with
    ``EPOLLET``. The registration is modified at every step, which reports
    the file again if it is already ready.

    See also: https://linux.die.net/man/2/epoll_ctl
    """
    if timeout is None or timeout < 0:
        timeout = -1.0

    try:
        s = next(gen)
        with select.epoll() as epoll:
            epoll.register(fileno, poll_evmasks[s])
            while 1:
                fileevs = None
                while not fileevs:
                    fileevs = epoll.poll(timeout)
                s = gen.send(_epoll_ready(fileevs[0][1]))
                epoll.modify(fileno, poll_evmasks[s])

    except StopIteration as ex:
        rv: RV = ex.args[0] if ex.args else None
        return rv


def _epoll_ready(ev: int) -> Ready:
    # Errors and hangups are reported as readable: reading will fail.
    r = bool(ev & ~select.EPOLLOUT)
    w = bool(ev & select.EPOLLOUT)
    if r and w:
        return Ready.RW
    elif r:
        return Ready.R
    else:
        return Ready.W


poll_evmasks: Dict[Wait, int]

if hasattr(select, "epoll"):
    poll_evmasks = {
        Wait.R: select.EPOLLET | select.EPOLLIN,
        Wait.W: select.EPOLLET | select.EPOLLOUT,
        Wait.RW: select.EPOLLET | select.EPOLLIN | select.EPOLLOUT,
    }
else:
    poll_evmasks = {}

if selectors.DefaultSelector is getattr(selectors, "EpollSelector", None):
    wait = wait_epoll
else:
    wait = wait_selector
