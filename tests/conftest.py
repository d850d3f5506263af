import pytest
from sqlalchemy import text

from crossportal.store import PropertyStore


@pytest.fixture
def store(tmp_path):
    s = PropertyStore.from_url(f"sqlite:///{tmp_path / 'crm.db'}")
    s.create_schema()
    return s


@pytest.fixture
def insert(store):
    """Insert a row into one of the listing tables."""
    def _insert(table: str, **row):
        columns = ", ".join(row)
        params = ", ".join(f":{c}" for c in row)
        with store.engine.begin() as conn:
            conn.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({params})"), row)
    return _insert
