import pytest

from fdbcounter.counter import Counter
from fdbcounter.memstore import MemoryDatabase


@pytest.fixture
def db():
    return MemoryDatabase()


@pytest.fixture
def counter(db):
    # no coalescing unless a test asks for it
    return Counter(db, b'test/counter/', coalesce_probability=0.0)
