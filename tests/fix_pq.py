import sys
import ctypes
from typing import Iterator, List, NamedTuple
from tempfile import TemporaryFile

import pytest

from .utils import check_libpq_version

try:
    from pgfe import pq
except ImportError:
    pq = None  # type: ignore


def pytest_report_header(config):
    if pq is None:
        return ["libpq not available"]

    return [
        f"libpq wrapper implementation: {pq.__impl__}",
        f"libpq used: {pq.version()}",
    ]


def pytest_configure(config):
    # register libpq marker
    config.addinivalue_line(
        "markers",
        "libpq(version_expr): run the test only with matching libpq"
        " (e.g. '>= 10', '< 9.6')",
    )


def pytest_runtest_setup(item):
    for m in item.iter_markers(name="libpq"):
        assert len(m.args) == 1
        if pq is None:
            pytest.skip("libpq not available")
        msg = check_libpq_version(pq.version(), m.args[0])
        if msg:
            pytest.skip(msg)


@pytest.fixture
def libpq():
    """Return a ctypes wrapper to access the libpq."""
    from pgfe.pq.misc import find_libpq_full_path

    libname = find_libpq_full_path()
    if not libname:
        pytest.skip("libpq libname not found")
    return ctypes.pydll.LoadLibrary(libname)


@pytest.fixture
def trace(libpq):
    pqver = pq.version()
    if pqver < 140000:
        pytest.skip(f"trace not available on libpq {pqver}")
    if sys.platform != "linux":
        pytest.skip(f"trace not available on {sys.platform}")

    yield Tracer()


class Tracer:
    def trace(self, pgconn):
        return TraceLog(pgconn)


class TraceLog:
    def __init__(self, pgconn: "pq.Connection"):
        self.pgconn = pgconn
        self.tempfile = TemporaryFile(buffering=0)
        pgconn.trace(self.tempfile)
        pgconn.set_trace_flags("suppress_timestamps")

    def __del__(self):
        if self.pgconn.pgconn_ptr is not None:
            self.pgconn.untrace()
        self.tempfile.close()

    def __iter__(self) -> "Iterator[TraceEntry]":
        self.tempfile.seek(0)
        data = self.tempfile.read()
        for entry in self._parse_entries(data):
            yield entry

    def _parse_entries(self, data: bytes) -> "Iterator[TraceEntry]":
        for line in data.splitlines():
            direction, length, type, *content = line.split(b"\t")
            yield TraceEntry(
                direction=direction.decode(),
                length=int(length.decode()),
                type=type.decode(),
                # Note: the items encoding is not very solid: no escaped
                # backslash, no escaped quotes.
                # At the moment we don't need a proper parser.
                content=[content[0]] if content else [],
            )


class TraceEntry(NamedTuple):
    direction: str
    length: int
    type: str
    content: List[bytes]
