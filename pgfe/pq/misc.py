"""
Various functionalities to make easier to work with the libpq.
"""

# Copyright (C) 2023-2024 The pgfe Team

import os
import ctypes.util
from typing import NamedTuple, Optional, TYPE_CHECKING

from ._enums import ConnStatus

if TYPE_CHECKING:
    from .abc import PGconn


class Notify(NamedTuple):
    """An asynchronous notification received from the server."""

    relname: str
    """The name of the channel on which the notification was raised."""
    extra: str
    """The notification payload."""
    be_pid: int
    """The PID of the backend process which sent the notification."""


class ConninfoOption(NamedTuple):
    """A connection parameter, as returned by `Connection.conninfo`."""

    keyword: str
    envvar: Optional[str]
    compiled: Optional[str]
    val: Optional[str]
    label: str
    dispchar: str
    dispsize: int


# Report the public module, where the classes are exported from.
Notify.__module__ = "pgfe.pq"
ConninfoOption.__module__ = "pgfe.pq"


def find_libpq_full_path() -> Optional[str]:
    """
    Return the name of the libpq to load.

    The :envvar:`PGFE_LIBPQ` environment variable, if set, names the library
    to load explicitly; otherwise the system libpq is looked up.
    """
    libname = os.environ.get("PGFE_LIBPQ")
    if libname:
        return libname
    return ctypes.util.find_library("pq")


def connection_summary(pgconn: "PGconn") -> str:
    """
    Return summary information on a connection.

    Useful for __repr__
    """
    parts = []
    if pgconn.pgconn_ptr is None:
        return "[closed]"

    if pgconn.status == ConnStatus.OK.label:
        status = pgconn.transaction_status.upper()
        if not pgconn.host.startswith("/"):
            parts.append(("host", pgconn.host))
        if pgconn.port != "5432":
            parts.append(("port", pgconn.port))
        if pgconn.user != pgconn.db:
            parts.append(("user", pgconn.user))
        parts.append(("database", pgconn.db))
    else:
        status = pgconn.status.upper()

    sparts = " ".join("%s=%s" % part for part in parts)
    if sparts:
        sparts = f" ({sparts})"
    return f"[{status}]{sparts}"
