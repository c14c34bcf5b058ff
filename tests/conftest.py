import os
import sqlite3
import time

import pytest

from edit_tracker.cache import EditCache
from edit_tracker.database.ops import DBOperations
from edit_tracker.database.schema import init_schema

# Far enough in the past that nothing written during a test looks older.
BASE_TIME = time.time() - 3600


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)


@pytest.fixture
def cache(tmp_path):
    """An opened EditCache backed by a file under tmp_path."""
    c = EditCache(tmp_path / "cache_home" / "cache.sqlite")
    assert c.open()
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def make_file():
    """
    Creates a file and pins its mtime (seconds relative to BASE_TIME).
    The parent folder's mtime is pinned to BASE_TIME as well, so creating
    files does not make a folder look freshly modified.
    """
    def _make(path, offset=0.0, data=b"data"):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        os.utime(path, (BASE_TIME + offset, BASE_TIME + offset))
        os.utime(path.parent, (BASE_TIME, BASE_TIME))
        return path
    return _make


def set_mtime(path, offset):
    os.utime(path, (BASE_TIME + offset, BASE_TIME + offset))
