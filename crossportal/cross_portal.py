"""
Cross-portal search: is a freshly scraped listing already on other portals?

Two strategies run one after the other against both listing tables:

1. price and size window (price within 5%, size within 5 m²). Same unit,
   different address wording on each portal; kept from score 25.
2. street words (up to three identifying words of the street name, any of
   them in the address); kept from score 40 since text alone is weaker.

The agencies behind the matches decide the classification:
privato, monocondiviso, pluricondiviso or privato+agenzia.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .models import (
    CLASSIFICATION_MULTI_AGENCY,
    CLASSIFICATION_PRIVATE,
    CLASSIFICATION_PRIVATE_AND_AGENCY,
    CLASSIFICATION_SINGLE_AGENCY,
    CrossPortalMatch,
    CrossPortalSearchResult,
    SourceListing,
)
from .normalize import (
    PORTAL_OTHER,
    detect_portal,
    is_mobile_phone,
    is_private_seller_name,
    normalize_agency_name,
    street_words,
)
from .scoring import CROSS_PORTAL_POLICY, ScoringPolicy, describe, score_pair
from .store import PROPERTIES, TABLES, PropertyStore, StoredListing


logger = logging.getLogger(__name__)

PRICE_TOLERANCE = 0.05
SIZE_TOLERANCE_M2 = 5
PRICE_SIZE_MIN_SCORE = 25
ADDRESS_MIN_SCORE = 40
MAX_ADDRESS_WORDS = 3
MAX_RESULTS = 20


def agency_of(match: CrossPortalMatch) -> Optional[str]:
    """Agency name of a match, None for blanks and private-seller labels."""
    name = (match.agency_name or "").strip()
    if not name or is_private_seller_name(name):
        return None
    return name


def unique_agencies(matches: list[CrossPortalMatch]) -> list[str]:
    """Distinct agency names, compared on their normalized form, first spelling kept."""
    seen: dict[str, str] = {}
    for match in matches:
        name = agency_of(match)
        if name:
            seen.setdefault(normalize_agency_name(name), name)
    return list(seen.values())


def classify_matches(matches: list[CrossPortalMatch]) -> str:
    agencies = unique_agencies(matches)
    has_private_phone = any(
        m.owner_phone and is_mobile_phone(m.owner_phone) and not agency_of(m)
        for m in matches
    )

    if has_private_phone and agencies:
        return CLASSIFICATION_PRIVATE_AND_AGENCY
    if not agencies:
        return CLASSIFICATION_PRIVATE
    if len(agencies) == 1:
        return CLASSIFICATION_SINGLE_AGENCY
    return CLASSIFICATION_MULTI_AGENCY


class CrossPortalSearch:
    """Finds listings of the same unit in both listing tables."""

    def __init__(
        self,
        store: PropertyStore,
        policy: ScoringPolicy = CROSS_PORTAL_POLICY,
        max_results: int = MAX_RESULTS,
    ):
        self.store = store
        self.policy = policy
        self.max_results = max_results
        self.logger = logging.getLogger(__name__)

    def _query_both_tables(self, query: Callable[[str], list[StoredListing]]) -> list[StoredListing]:
        with ThreadPoolExecutor(max_workers=len(TABLES)) as pool:
            futures = [pool.submit(query, table) for table in TABLES]
            rows: list[StoredListing] = []
            for future in futures:
                rows.extend(future.result())
        return rows

    def _price_size_candidates(self, source: SourceListing) -> list[StoredListing]:
        if not source.price:
            return []
        price_min = math.floor(source.price * (1 - PRICE_TOLERANCE))
        price_max = math.ceil(source.price * (1 + PRICE_TOLERANCE))
        size_min = size_max = None
        if source.size:
            size_min = source.size - SIZE_TOLERANCE_M2
            size_max = source.size + SIZE_TOLERANCE_M2
        return self._query_both_tables(
            lambda table: self.store.find_by_price_and_size(table, price_min, price_max, size_min, size_max)
        )

    def _address_candidates(self, source: SourceListing) -> list[StoredListing]:
        words = street_words(source.address, longer_than=3)[:MAX_ADDRESS_WORDS]
        if not words:
            return []
        self.logger.debug(f"Address words: {words}")
        return self._query_both_tables(lambda table: self.store.find_by_address_words(table, words))

    def _to_match(self, source: SourceListing, row: StoredListing) -> CrossPortalMatch:
        result = score_pair(source, row, self.policy)
        if row.table == PROPERTIES:
            portal = detect_portal(row.external_link)
        else:
            portal = row.portal_source or PORTAL_OTHER
        return CrossPortalMatch(
            id=row.id,
            table=row.table,
            address=row.address,
            price=row.price,
            size=row.size,
            portal_source=portal,
            external_link=row.external_link,
            match_score=result.score,
            match_reason=describe(result),
            agency_name=row.agency_name,
            owner_phone=row.owner_phone,
        )

    def search(self, source: SourceListing) -> CrossPortalSearchResult:
        self.logger.info(f"Searching other portals for: {source.address}")

        matches: list[CrossPortalMatch] = []
        seen: set[tuple[str, int]] = set()

        strategies = [
            ("price+size", self._price_size_candidates, PRICE_SIZE_MIN_SCORE),
            ("address", self._address_candidates, ADDRESS_MIN_SCORE),
        ]
        for label, find_candidates, min_score in strategies:
            accepted = 0
            for row in find_candidates(source):
                key = (row.table, row.id)
                if key in seen:
                    continue
                if source.url and row.external_link == source.url:
                    continue
                match = self._to_match(source, row)
                if match.match_score >= min_score:
                    seen.add(key)
                    matches.append(match)
                    accepted += 1
            self.logger.debug(f"Strategy {label}: {accepted} matches")

        matches.sort(key=lambda m: m.match_score, reverse=True)
        agencies = unique_agencies(matches)
        classification = classify_matches(matches)

        self.logger.info(
            f"Found {len(matches)} matches, {len(agencies)} agencies, classification: {classification}"
        )

        return CrossPortalSearchResult(
            source_property=source,
            matching_listings=matches[:self.max_results],
            total_agencies=len(agencies),
            unique_agencies=agencies,
            classification=classification,
        )


def search_cross_portal_listings(store: PropertyStore, source: SourceListing) -> CrossPortalSearchResult:
    return CrossPortalSearch(store).search(source)
