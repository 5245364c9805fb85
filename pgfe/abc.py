"""
Protocol objects and types used by the waiting and generators modules.
"""

# Copyright (C) 2023-2024 The pgfe Team

from typing import Generator, Tuple, TypeVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .waiting import Wait, Ready

# Waiting protocol types

RV = TypeVar("RV")

PQGenConn = Generator[Tuple[int, "Wait"], "Ready", RV]
"""Generator for processes where the connection file number can change.

This can happen in connection, but not in normal querying.
"""

PQGen = Generator["Wait", "Ready", RV]
"""Generator for processes where the connection file number won't change.

The items generated are the `Wait` states.
"""
