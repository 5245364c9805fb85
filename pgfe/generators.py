"""
Generators implementing communication protocols with the libpq

Certain operations (connection, querying) are an interleave of libpq calls and
waiting for the socket to be ready. This module contains the code to execute
the operations, yielding a polling state whenever there is to wait. The
functions in the `waiting` module are the ones who wait more or less
cooperatively for the socket to be ready and make these generators continue.

All these generators yield `Wait` states (or (fileno, `Wait`) pairs, for
`connect()`) whenever an operation would block. The generator can be
restarted sending the appropriate `Ready` state when the file descriptor is
ready.

The generators reading from the server use `Connection.is_busy()`, which
consumes all the input available before asking to wait: they can be driven
by edge-triggered waiters.
"""

# Copyright (C) 2023-2024 The pgfe Team

import logging
from typing import List, Optional, Union

from . import errors as e
from .abc import PQGen, PQGenConn
from .pq import Connection, ExecStatus, Notify, PollingStatus, Result
from .pq.abc import Buffer, Text
from .waiting import Wait, Ready

logger = logging.getLogger(__name__)


def connect(conninfo: Text = "") -> PQGenConn[Connection]:
    """
    Generator to create a database connection without blocking.

    The connection returned is in nonblocking mode.
    """
    conn = Connection.connect(conninfo, nonblock=True)
    logger.debug("connection started: %s", conn)
    while 1:
        if conn.status == "bad":
            msg = conn.error_message or "no details available"
            conn.finish()
            raise e.OperationalError(f"connection is bad: {msg.rstrip()}")

        status = conn.connect_poll()
        if status == PollingStatus.OK.label:
            break
        elif status == PollingStatus.READING.label:
            yield conn.socket, Wait.R
        elif status == PollingStatus.WRITING.label:
            yield conn.socket, Wait.W
        elif status == PollingStatus.FAILED.label:
            msg = conn.error_message or "no details available"
            conn.finish()
            raise e.OperationalError(f"connection failed: {msg.rstrip()}")
        else:
            raise e.InternalError(f"unexpected poll status: {status}")

    conn.set_nonblocking(True)
    return conn


def execute(pgconn: Connection) -> PQGen[List[Result]]:
    """
    Generator sending a query and returning results without blocking.

    The query must have already been sent using `pgconn.send_query()` or
    similar. Flush the query and then return the result using nonblocking
    functions.

    Return the list of results returned by the database (whether success
    or error).
    """
    yield from send(pgconn)
    rv = yield from fetch_many(pgconn)
    return rv


def send(pgconn: Connection) -> PQGen[None]:
    """
    Generator to send a query to the server without blocking.

    The query must have already been sent using `pgconn.send_query()` or
    similar. Flush the query and then return the result using nonblocking
    functions.

    After this generator has finished you may want to cycle using `fetch()`
    to retrieve the results available.
    """
    while not pgconn.flush():
        ready = yield Wait.RW
        if ready & Ready.R:
            # This call may read notifies: they will be saved in the
            # connection and returned later by `notifies()`.
            pgconn.consume_input()


def fetch_many(pgconn: Connection) -> PQGen[List[Result]]:
    """
    Generator retrieving results from the database without blocking.

    The query must have already been sent to the server, so pgconn.flush() has
    already returned true.

    Return the list of results returned by the database (whether success
    or error).
    """
    results: List[Result] = []
    while 1:
        res = yield from fetch(pgconn)
        if not res:
            break

        results.append(res)
        if res.status in _copy_statuses:
            # After entering copy mode the libpq will create a phony result
            # for every request so let's break the endless loop.
            break

        if res.status == ExecStatus.PIPELINE_SYNC.label:
            # The sync result is not followed by a NULL result
            break

    return results


def fetch(pgconn: Connection) -> PQGen[Optional[Result]]:
    """
    Generator retrieving a single result from the database without blocking.

    The query must have already been sent to the server, so pgconn.flush() has
    already returned true.

    Return a result from the database (whether success or error), `!None`
    if there are no more results.
    """
    while pgconn.is_busy():
        yield Wait.R

    return pgconn.get_result()


_copy_statuses = (
    ExecStatus.COPY_IN.label,
    ExecStatus.COPY_OUT.label,
    ExecStatus.COPY_BOTH.label,
)


def notifies(pgconn: Connection) -> PQGen[List[Notify]]:
    """
    Generator waiting for the socket to be readable and returning the
    notifications received.
    """
    yield Wait.R

    ns = []
    while 1:
        n = pgconn.notifies()
        if n:
            ns.append(n)
        else:
            break

    return ns


def copy_from(pgconn: Connection) -> PQGen[Union[bytes, Result]]:
    """
    Generator receiving a row of data during ``COPY TO STDOUT``.

    Return the data received or, at the end of the copy, the final result
    of the operation. A failed copy raises an exception.
    """
    while 1:
        data = pgconn.get_copy_data(async_=True)
        if data != b"":
            break

        # would block
        yield Wait.R
        pgconn.consume_input()

    if data is not None:
        return data

    # Retrieve the final result of copy
    results = yield from fetch_many(pgconn)
    return _copy_result(results)


def copy_to(pgconn: Connection, buffer: Buffer) -> PQGen[None]:
    """Generator sending a block of data during ``COPY FROM STDIN``."""
    # Retry enqueuing data until successful
    while not pgconn.put_copy_data(buffer):
        yield Wait.W


def copy_end(pgconn: Connection, error: Optional[Text] = None) -> PQGen[Result]:
    """
    Generator terminating ``COPY FROM STDIN`` and returning its result.

    If *error* is specified the copy is failed with that message.
    """
    # Retry enqueuing end copy message until successful
    while not pgconn.put_copy_end(error):
        yield Wait.W

    # Repeat until it the message is flushed to the server
    while not pgconn.flush():
        yield Wait.W

    # Retrieve the final result of copy
    results = yield from fetch_many(pgconn)
    return _copy_result(results)


def _copy_result(results: List[Result]) -> Result:
    if len(results) != 1:
        raise e.InternalError(
            f"expected 1 result at the end of copy, got {len(results)}"
        )

    result = results[0]
    if result.status != ExecStatus.COMMAND_OK.label:
        raise e.error_from_result(result)

    return result
