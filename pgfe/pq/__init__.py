"""
pgfe libpq wrapper

This package exposes the libpq functionalities as Python objects and functions.

The library is accessed via `ctypes`: the libpq must be installed on the
system, or its path specified in the :envvar:`PGFE_LIBPQ` environment variable.
"""

# Copyright (C) 2023-2024 The pgfe Team

import logging

from .misc import ConninfoOption, Notify
from ._enums import ConnStatus, ContextVisibility, DiagnosticField
from ._enums import ExecStatus, Format, PipelineStatus, PollingStatus
from ._enums import Trace, TransactionStatus, Verbosity
from . import abc

logger = logging.getLogger(__name__)

try:
    from .pq_ctypes import Cancel, Connection, Result, version, __impl__
except OSError as ex:
    logger.debug("error loading the libpq: %s", ex)
    raise ImportError(f"couldn't load the libpq: {ex}") from ex

__all__ = (
    "Cancel",
    "ConnStatus",
    "Connection",
    "ConninfoOption",
    "ContextVisibility",
    "DiagnosticField",
    "ExecStatus",
    "Format",
    "Notify",
    "PipelineStatus",
    "PollingStatus",
    "Result",
    "Trace",
    "TransactionStatus",
    "Verbosity",
    "abc",
    "version",
    "__impl__",
)
