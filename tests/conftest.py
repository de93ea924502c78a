import pytest

from tests.helpers import FakeScheduler, FakeServer


@pytest.fixture
def server():
    """A fake SSE endpoint; the test decides how and when each request is answered."""
    return FakeServer()


@pytest.fixture
def scheduler():
    return FakeScheduler()
