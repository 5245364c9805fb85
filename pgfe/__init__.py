"""
pgfe -- PostgreSQL frontend driver for Python
"""

# Copyright (C) 2023-2024 The pgfe Team

import logging
from typing import TYPE_CHECKING

from .wire import htonl, htons, ntohl, ntohs, strxor, unpack
from .errors import Warning, Error, InterfaceError, DatabaseError
from .errors import DataError, OperationalError, IntegrityError
from .errors import InternalError, ProgrammingError, NotSupportedError

from .version import __version__

if TYPE_CHECKING:
    from .pq import Connection
    from .pq.abc import Text

# Set the logger to a quiet default, can be enabled if needed
logger = logging.getLogger("pgfe")
if logger.level == logging.NOTSET:
    logger.setLevel(logging.WARNING)


def connect(conninfo: "Text" = "", nonblock: bool = False) -> "Connection":
    """
    Create a new connection to the database.

    Shortcut for `pgfe.pq.Connection.connect()`: the libpq is only loaded
    the first time a connection is requested.
    """
    from .pq import Connection

    return Connection.connect(conninfo, nonblock=nonblock)


__all__ = [
    "__version__",
    "connect",
    "htonl",
    "htons",
    "ntohl",
    "ntohs",
    "strxor",
    "unpack",
    "Warning",
    "Error",
    "InterfaceError",
    "DatabaseError",
    "DataError",
    "OperationalError",
    "IntegrityError",
    "InternalError",
    "ProgrammingError",
    "NotSupportedError",
]
