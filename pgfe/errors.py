"""
pgfe exceptions

DBAPI-defined Exceptions are defined in the following hierarchy::

    Exceptions
    |__Warning
    |__Error
       |__InterfaceError
       |__DatabaseError
          |__DataError
          |__OperationalError
          |__IntegrityError
          |__InternalError
          |__ProgrammingError
          |__NotSupportedError
"""

# Copyright (C) 2023-2024 The pgfe Team

import errno as _errno
from typing import Any, Dict, Optional, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from .pq.abc import PGresult

DiagnosticInfo = Dict[str, Optional[str]]


class Warning(Exception):
    """
    Exception raised for important warnings.

    Defined for DBAPI compatibility, but never raised by ``pgfe``.
    """

    __module__ = "pgfe"


class Error(Exception):
    """
    Base exception for all the errors pgfe will raise.

    Errors raised after a failed libpq call carry the error record of the
    failure: `errno` (the system error captured after the call, or
    ``ECANCELED`` if libpq didn't set any), `errno_kind` (its symbolic name)
    and `op` (the name of the failed libpq function). The message is the
    connection error message.

    This exception is guaranteed to be picklable.
    """

    __module__ = "pgfe"

    def __init__(
        self,
        *args: Any,
        errno: Optional[int] = None,
        op: Optional[str] = None,
        info: Optional[DiagnosticInfo] = None,
    ):
        super().__init__(*args)
        self.errno = errno
        self.op = op
        self._info = info

    @property
    def errno_kind(self) -> Optional[str]:
        """The symbolic name of `errno`, e.g. ``EAGAIN``."""
        if self.errno is None:
            return None
        return _errno.errorcode.get(self.errno, f"E{self.errno}")

    @property
    def sqlstate(self) -> Optional[str]:
        """The SQLSTATE of the error, if the error comes from the server."""
        return self.diag.sqlstate

    @property
    def diag(self) -> "Diagnostic":
        """
        A `Diagnostic` object to inspect details of the errors from the database.
        """
        return Diagnostic(self._info)


class InterfaceError(Error):
    """
    An error related to the database interface rather than the database itself.
    """

    __module__ = "pgfe"


class DatabaseError(Error):
    """
    Exception raised for errors that are related to the database.
    """

    __module__ = "pgfe"


class DataError(DatabaseError):
    """
    An error caused by problems with the processed data.

    Examples may be division by zero, numeric value out of range, malformed
    protocol messages, etc.
    """

    __module__ = "pgfe"


class OperationalError(DatabaseError):
    """
    An error related to the database's operation.

    These errors are not necessarily under the control of the programmer, e.g.
    an unexpected disconnect occurs, the data source name is not found, a
    transaction could not be processed, a memory allocation error occurred
    during processing, etc.
    """

    __module__ = "pgfe"


class IntegrityError(DatabaseError):
    """
    An error caused when the relational integrity of the database is affected.

    An example may be a foreign key check failed.
    """

    __module__ = "pgfe"


class InternalError(DatabaseError):
    """
    An error generated when the database encounters an internal error,

    Examples could be the transaction is out of sync, the libpq reports an
    unexpected state, etc.
    """

    __module__ = "pgfe"


class ProgrammingError(DatabaseError):
    """
    Exception raised for programming errors

    Examples may be table not found or already exists, syntax error in the SQL
    statement, wrong number of parameters specified, etc.
    """

    __module__ = "pgfe"


class NotSupportedError(DatabaseError):
    """
    A method or database API was used which is not supported by the database,
    or by the libpq loaded.
    """

    __module__ = "pgfe"


class Diagnostic:
    """Details from a database error report."""

    __module__ = "pgfe.errors"

    def __init__(self, info: Optional[DiagnosticInfo]):
        self._info = info or {}

    def get(self, field: str) -> Optional[str]:
        """
        Return the value of a field of the report, by label.

        Labels are the ones accepted by `~pgfe.pq.Result.error_field()`.
        """
        return self._info.get(field)

    @property
    def severity(self) -> Optional[str]:
        return self.get("severity")

    @property
    def sqlstate(self) -> Optional[str]:
        return self.get("sqlstate")

    @property
    def message_primary(self) -> Optional[str]:
        return self.get("message_primary")

    @property
    def message_detail(self) -> Optional[str]:
        return self.get("message_detail")

    @property
    def message_hint(self) -> Optional[str]:
        return self.get("message_hint")

    @property
    def context(self) -> Optional[str]:
        return self.get("context")


def error_from_result(result: "PGresult") -> Error:
    """
    Return an exception describing an error `~pgfe.pq.Result`.

    The class of the exception is chosen according to the SQLSTATE class.
    """
    from .pq import DiagnosticField

    info = {f.label: result.error_field(f.label) for f in DiagnosticField}
    cls = get_base_exception(info.get("sqlstate") or "")
    msg = info.get("message_primary") or result.error_message
    return cls(msg or "no details available", info=info)


def get_base_exception(sqlstate: str) -> Type[Error]:
    return (
        _base_exc_map.get(sqlstate[:2])
        or _base_exc_map.get(sqlstate[:1])
        or DatabaseError
    )


_base_exc_map = {
    "08": OperationalError,  # Connection Exception
    "0A": NotSupportedError,  # Feature Not Supported
    "20": ProgrammingError,  # Case Not Foud
    "21": ProgrammingError,  # Cardinality Violation
    "22": DataError,  # Data Exception
    "23": IntegrityError,  # Integrity Constraint Violation
    "24": InternalError,  # Invalid Cursor State
    "25": InternalError,  # Invalid Transaction State
    "26": ProgrammingError,  # Invalid SQL Statement Name *
    "27": OperationalError,  # Triggered Data Change Violation
    "28": OperationalError,  # Invalid Authorization Specification
    "2B": InternalError,  # Dependent Privilege Descriptors Still Exist
    "2D": InternalError,  # Invalid Transaction Termination
    "34": ProgrammingError,  # Invalid Cursor Name *
    "3D": ProgrammingError,  # Invalid Catalog Name
    "3F": ProgrammingError,  # Invalid Schema Name
    "40": OperationalError,  # Transaction Rollback
    "42": ProgrammingError,  # Syntax Error or Access Rule Violation
    "44": ProgrammingError,  # WITH CHECK OPTION Violation
    "53": OperationalError,  # Insufficient Resources
    "54": OperationalError,  # Program Limit Exceeded
    "55": OperationalError,  # Object Not In Prerequisite State
    "57": OperationalError,  # Operator Intervention
    "58": OperationalError,  # System Error (errors external to PostgreSQL)
    "F": OperationalError,  # Configuration File Error
    "H": OperationalError,  # Foreign Data Wrapper Error (SQL/MED)
    "P": ProgrammingError,  # PL/pgSQL Error
    "X": InternalError,  # Internal Error
}
