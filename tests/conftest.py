import gc
import selectors

import pytest

pytest_plugins = (
    "tests.fix_db",
    "tests.fix_pq",
)


def pytest_configure(config):
    markers = [
        "slow: this test is kinda slow (skip with -m 'not slow')",
        "timing: the test is timing based and can fail on cheese hardware",
    ]

    for marker in markers:
        config.addinivalue_line("markers", marker)


def pytest_report_header(config):
    return [f"default selector: {selectors.DefaultSelector.__name__}"]


@pytest.fixture
def gc_collect():
    """
    Provides a consistent way to run garbage collection.
    """

    def collect():
        for i in range(3):
            gc.collect()

    return collect


# The tests below need the libpq: don't fail collecting them if it's missing
try:
    import pgfe.pq  # noqa: F401
except ImportError:
    collect_ignore = ["pq", "test_generators.py", "test_waiting.py"]
