"""
libpq enum definitions for pgfe

The public interface of the `pq` objects uses the lowercase *label* of these
enums (e.g. ``"tuples_ok"``); the enums themselves map the labels to the
values of the libpq C enums.
"""

# Copyright (C) 2023-2024 The pgfe Team

from enum import IntEnum, IntFlag, auto
from typing import Type, TypeVar

E = TypeVar("E", bound="Labelled")


class Labelled:
    """Mixin exposing an enum member as a lowercase string."""

    name: str

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls: Type[E], label: str) -> E:
        if isinstance(label, cls):
            return label
        try:
            return cls[label.upper()]  # type: ignore[index, no-any-return]
        except (KeyError, AttributeError):
            raise ValueError(
                f"invalid {cls.__name__} label: {label!r}"
            ) from None

    @classmethod
    def label_of(cls, value: int) -> str:
        """Return the label of a libpq value, raising for unknown ones."""
        try:
            return cls(value).label  # type: ignore[call-arg]
        except ValueError:
            raise ValueError(f"unknown {cls.__name__}: {value}") from None


class ConnStatus(Labelled, IntEnum):
    """
    Current status of the connection.
    """

    __module__ = "pgfe.pq"

    OK = 0
    """The connection is in a working state."""
    BAD = auto()
    """The connection is closed."""

    STARTED = auto()
    MADE = auto()
    AWAITING_RESPONSE = auto()
    AUTH_OK = auto()
    SETENV = auto()
    SSL_STARTUP = auto()
    NEEDED = auto()
    CHECK_WRITABLE = auto()
    CONSUME = auto()
    GSS_STARTUP = auto()
    CHECK_TARGET = auto()
    CHECK_STANDBY = auto()


class PollingStatus(Labelled, IntEnum):
    """
    The status of the socket during a connection.

    If ``READING`` or ``WRITING`` you may select before polling again.
    """

    __module__ = "pgfe.pq"

    FAILED = 0
    """Connection attempt failed."""
    READING = auto()
    """Will have to wait before reading new data."""
    WRITING = auto()
    """Will have to wait before writing new data."""
    OK = auto()
    """Connection completed."""

    ACTIVE = auto()


class ExecStatus(Labelled, IntEnum):
    """
    The status of a command.
    """

    __module__ = "pgfe.pq"

    EMPTY_QUERY = 0
    """The string sent to the server was empty."""

    COMMAND_OK = auto()
    """Successful completion of a command returning no data."""

    TUPLES_OK = auto()
    """
    Successful completion of a command returning data (such as a SELECT or SHOW).
    """

    COPY_OUT = auto()
    """Copy Out (from server) data transfer started."""

    COPY_IN = auto()
    """Copy In (to server) data transfer started."""

    BAD_RESPONSE = auto()
    """The server's response was not understood."""

    NONFATAL_ERROR = auto()
    """A nonfatal error (a notice or warning) occurred."""

    FATAL_ERROR = auto()
    """A fatal error occurred."""

    COPY_BOTH = auto()
    """
    Copy In/Out (to and from server) data transfer started.

    This feature is currently used only for streaming replication, so this
    status should not occur in ordinary applications.
    """

    SINGLE_TUPLE = auto()
    """
    The result contains a single result tuple from the current command.

    This status occurs only when single-row mode has been selected for the
    query.
    """

    PIPELINE_SYNC = auto()
    """
    The result represents a synchronization point in pipeline mode,
    requested by `~Connection.pipeline_sync()`.
    """

    PIPELINE_ABORTED = auto()
    """
    The result represents a pipeline that has received an error from the
    server.
    """


class TransactionStatus(Labelled, IntEnum):
    """
    The transaction status of a connection.
    """

    __module__ = "pgfe.pq"

    IDLE = 0
    """Connection ready, no transaction active."""

    ACTIVE = auto()
    """A command is in progress."""

    INTRANS = auto()
    """Connection idle in an open transaction."""

    INERROR = auto()
    """An error happened in the current transaction."""

    UNKNOWN = auto()
    """Unknown connection state, broken connection."""


class PipelineStatus(Labelled, IntEnum):
    """Pipeline mode status of the libpq connection."""

    __module__ = "pgfe.pq"

    OFF = 0
    """
    The connection is *not* in pipeline mode.
    """
    ON = auto()
    """
    The connection is in pipeline mode.
    """
    ABORTED = auto()
    """
    The connection is in pipeline mode and an error occurred while
    processing the current pipeline. The aborted flag is cleared when
    `~Connection.get_result()` returns the ``pipeline_sync`` result.
    """


class Verbosity(Labelled, IntEnum):
    """
    Verbosity of the error messages returned by the libpq.
    """

    __module__ = "pgfe.pq"

    TERSE = 0
    DEFAULT = auto()
    VERBOSE = auto()
    SQLSTATE = auto()


class ContextVisibility(Labelled, IntEnum):
    """
    When to include the ``CONTEXT`` field in the error messages.
    """

    __module__ = "pgfe.pq"

    NEVER = 0
    ERRORS = auto()
    ALWAYS = auto()


class Trace(Labelled, IntFlag):
    """
    Flags to control the output of `~Connection.trace()`.
    """

    __module__ = "pgfe.pq"

    SUPPRESS_TIMESTAMPS = 1
    """Do not include timestamps in messages."""

    REGRESS_MODE = 2
    """Redact some fields, e.g. OIDs, from messages."""


class DiagnosticField(Labelled, IntEnum):
    """
    Fields in an error report.
    """

    __module__ = "pgfe.pq"

    # from postgres_ext.h
    SEVERITY = ord("S")
    SEVERITY_NONLOCALIZE = ord("V")  # PG_DIAG_SEVERITY_NONLOCALIZED
    SQLSTATE = ord("C")
    MESSAGE_PRIMARY = ord("M")
    MESSAGE_DETAIL = ord("D")
    MESSAGE_HINT = ord("H")
    STATEMENT_POSITION = ord("P")
    INTERNAL_POSITION = ord("p")
    INTERNAL_QUERY = ord("q")
    CONTEXT = ord("W")
    SCHEMA_NAME = ord("s")
    TABLE_NAME = ord("t")
    COLUMN_NAME = ord("c")
    DATATYPE_NAME = ord("d")
    CONSTRAINT_NAME = ord("n")
    SOURCE_FILE = ord("F")
    SOURCE_LINE = ord("L")
    SOURCE_FUNCTION = ord("R")


class Format(Labelled, IntEnum):
    """
    Enum representing the format of a query argument or return value.
    """

    __module__ = "pgfe.pq"

    TEXT = 0
    """Text parameter."""
    BINARY = 1
    """Binary parameter."""
