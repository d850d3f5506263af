"""
Read access to the CRM listing tables.

Two tables hold listings: ``properties`` (the agency's own and ingested
listings, with an agency name but no portal column) and
``shared_properties`` (listings found on portals, with a portal column).
The store only reads them; their schema belongs to the CRM.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .models import PropertyRecord
from .normalize import detect_portal


logger = logging.getLogger(__name__)

PROPERTIES = "properties"
SHARED_PROPERTIES = "shared_properties"
TABLES = (PROPERTIES, SHARED_PROPERTIES)

DEFAULT_ROW_LIMIT = 50

# Minimal DDL for tests and local runs, a subset of the CRM columns
SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS properties (
        id INTEGER PRIMARY KEY,
        address TEXT NOT NULL,
        city TEXT,
        price INTEGER,
        size INTEGER,
        floor TEXT,
        bedrooms INTEGER,
        description TEXT,
        latitude TEXT,
        longitude TEXT,
        external_link TEXT,
        agency_name TEXT,
        owner_phone TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS shared_properties (
        id INTEGER PRIMARY KEY,
        address TEXT NOT NULL,
        city TEXT,
        price INTEGER,
        size INTEGER,
        floor TEXT,
        bedrooms INTEGER,
        description TEXT,
        external_link TEXT,
        portal_source TEXT,
        owner_phone TEXT
    )
    """,
]

# Column list per table; shared_properties has no agency, properties no portal
_SELECT_COLUMNS = {
    PROPERTIES: "id, address, price, size, external_link, owner_phone, agency_name, NULL AS portal_source",
    SHARED_PROPERTIES: "id, address, price, size, external_link, owner_phone, NULL AS agency_name, portal_source",
}


@dataclass
class StoredListing:
    """One row of either listing table."""
    table: str
    id: int
    address: str
    price: Optional[int]
    size: Optional[int]
    external_link: Optional[str]
    owner_phone: Optional[str]
    agency_name: Optional[str]
    portal_source: Optional[str]


class PropertyStore:
    """Range and substring queries over ``properties`` and ``shared_properties``."""

    def __init__(self, engine: Engine, row_limit: int = DEFAULT_ROW_LIMIT):
        self.engine = engine
        self.row_limit = row_limit

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> PropertyStore:
        return cls(create_engine(database_url), **kwargs)

    def create_schema(self) -> None:
        with self.engine.begin() as conn:
            for ddl in SCHEMA_DDL:
                conn.execute(text(ddl))

    def _fetch(self, table: str, where: str, params: dict) -> list[StoredListing]:
        sql = f"SELECT {_SELECT_COLUMNS[table]} FROM {table} WHERE {where} LIMIT :limit"
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), {**params, "limit": self.row_limit}).mappings().all()
        return [StoredListing(table=table, **dict(row)) for row in rows]

    def find_by_price_and_size(
        self,
        table: str,
        price_min: int,
        price_max: int,
        size_min: Optional[int] = None,
        size_max: Optional[int] = None,
    ) -> list[StoredListing]:
        """Rows priced within [price_min, price_max], and sized within the size range if given."""
        where = "price BETWEEN :price_min AND :price_max"
        params = {"price_min": price_min, "price_max": price_max}
        if size_min is not None and size_max is not None:
            where += " AND size BETWEEN :size_min AND :size_max"
            params.update(size_min=size_min, size_max=size_max)
        return self._fetch(table, where, params)

    def find_by_address_words(self, table: str, words: list[str]) -> list[StoredListing]:
        """Rows whose lower-cased address contains any of ``words``."""
        if not words:
            return []
        clauses = []
        params = {}
        for i, word in enumerate(words):
            clauses.append(f"LOWER(address) LIKE :word{i}")
            params[f"word{i}"] = f"%{word.lower()}%"
        return self._fetch(table, "(" + " OR ".join(clauses) + ")", params)

    def load_properties(self, limit: Optional[int] = None) -> list[PropertyRecord]:
        """All ``properties`` rows as records for deduplication."""
        sql = (
            "SELECT id, address, price, size, floor, bedrooms, description, latitude, longitude, "
            "external_link, agency_name, owner_phone FROM properties ORDER BY id"
        )
        params = {}
        if limit:
            sql += " LIMIT :limit"
            params["limit"] = limit
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        records = []
        for row in rows:
            data = dict(row)
            data["latitude"] = _to_float(data.get("latitude"))
            data["longitude"] = _to_float(data.get("longitude"))
            data["portal_source"] = detect_portal(data.get("external_link"))
            records.append(PropertyRecord(**data))
        logger.debug(f"Loaded {len(records)} properties")
        return records


def _to_float(value) -> Optional[float]:
    # Coordinates are stored as text
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
