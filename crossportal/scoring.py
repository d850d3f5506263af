"""
Pairwise similarity of two listings.

A ScoringPolicy holds the per-dimension weights and thresholds; two presets
cover the two uses in the CRM:

DEDUP_POLICY
    Duplicate detection inside the CRM. Fuzzy address similarity (or distance,
    when both sides are geocoded) 40, price 20, size 20, floor 10, bedrooms 10,
    normalized to 0-100 over the dimensions present on both listings.

CROSS_PORTAL_POLICY
    Matching a freshly scraped listing against the database. Street-word
    overlap 40 plus 30 for the same civic number, price 20, size 10, summed.

Listings are read by attribute (address, price, size, floor, bedrooms,
latitude, longitude); missing attributes skip their dimension.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from rapidfuzz import fuzz

from .models import PairScore
from .normalize import extract_street_and_number, is_generic_address, normalize_address, street_words


ADDRESS_FUZZY = "fuzzy"
ADDRESS_STREET_WORDS = "street_words"

PRICE_VS_MEAN = "mean"
PRICE_VS_SOURCE = "source"

GENERIC_ADDRESS_REASON = "Match impossibile: indirizzo generico o assente"
PARTIAL_MATCH_REASON = "Corrispondenza parziale"


@dataclass(frozen=True)
class ScoringPolicy:
    """Weights and thresholds of one similarity formula.

    Tiers are checked in order; the first one that fits awards its points.
    Price tiers are (relative difference upper bound, exclusive; points; label)
    and size tiers are (absolute m² difference upper bound, inclusive; points;
    label). Labels are format strings receiving ``diff``, ``a`` and ``b``.
    """
    name: str
    address_mode: str
    address_weight: float = 40
    address_threshold: float = 0.75
    civic_weight: float = 0
    require_specific_address: bool = False
    geo_radius_m: Optional[float] = None
    price_basis: str = PRICE_VS_MEAN
    price_tiers: tuple[tuple[float, float, str], ...] = ()
    size_tiers: tuple[tuple[int, float, str], ...] = ()
    floor_weight: float = 0
    bedrooms_weight: float = 0
    normalize_to_max: bool = False

    @property
    def price_weight(self) -> float:
        return max((points for _, points, _ in self.price_tiers), default=0)

    @property
    def size_weight(self) -> float:
        return max((points for _, points, _ in self.size_tiers), default=0)

    @property
    def max_score(self) -> float:
        """Best attainable raw total when every dimension matches."""
        return (
            self.address_weight + self.civic_weight + self.price_weight
            + self.size_weight + self.floor_weight + self.bedrooms_weight
        )


DEDUP_POLICY = ScoringPolicy(
    name="dedup",
    address_mode=ADDRESS_FUZZY,
    address_weight=40,
    address_threshold=0.75,
    require_specific_address=True,
    geo_radius_m=500,
    price_basis=PRICE_VS_MEAN,
    price_tiers=(
        (0.05, 20, "Prezzo molto simile (diff {diff:.1f}%)"),
        (0.10, 15, "Prezzo simile (diff {diff:.1f}%)"),
    ),
    size_tiers=(
        (5, 20, "Metratura identica ({a} vs {b} mq)"),
        (10, 15, "Metratura simile ({a} vs {b} mq)"),
    ),
    floor_weight=10,
    bedrooms_weight=10,
    normalize_to_max=True,
)

CROSS_PORTAL_POLICY = ScoringPolicy(
    name="cross_portal",
    address_mode=ADDRESS_STREET_WORDS,
    address_weight=40,
    civic_weight=30,
    price_basis=PRICE_VS_SOURCE,
    price_tiers=(
        (0.03, 20, "Stesso prezzo"),
        (0.10, 10, "Prezzo simile"),
    ),
    size_tiers=(
        (0, 10, "Stessa metratura"),
        (3, 5, "Metratura simile"),
    ),
)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance between two points in meters."""
    R = 6371000
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def _coordinates(item: Any) -> Optional[tuple[float, float]]:
    lat = getattr(item, "latitude", None)
    lon = getattr(item, "longitude", None)
    if lat is None or lon is None:
        return None
    try:
        return float(lat), float(lon)
    except (TypeError, ValueError):
        return None


# ============================================================================
# DIMENSIONS
# ============================================================================
# Each returns the points available for the dimension (0 when it was skipped)
# and adds earned points to the running result.

def _score_geo(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> Optional[float]:
    coords_a, coords_b = _coordinates(a), _coordinates(b)
    if not policy.geo_radius_m or coords_a is None or coords_b is None:
        return None
    distance = haversine_distance(*coords_a, *coords_b)
    if distance <= policy.geo_radius_m:
        points = max(0.0, policy.address_weight * (1 - distance / policy.geo_radius_m))
        result.add(points, f"Distanza geografica: {round(distance)}m")
    return policy.address_weight


def _score_fuzzy_address(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    addr_a = normalize_address(getattr(a, "address", None))
    addr_b = normalize_address(getattr(b, "address", None))
    if not addr_a or not addr_b:
        return 0
    # Word order is ignored: "Sarpi Paolo 10" and "Paolo Sarpi 10" are the same street
    similarity = fuzz.token_sort_ratio(addr_a, addr_b) / 100
    if similarity > policy.address_threshold:
        result.add(similarity * policy.address_weight, f"Indirizzo simile ({similarity * 100:.0f}%)")
    return policy.address_weight


def _score_street_words(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    source_words = street_words(getattr(a, "address", None))
    candidate_street, candidate_number = extract_street_and_number(getattr(b, "address", None))
    _, source_number = extract_street_and_number(getattr(a, "address", None))
    candidate_words = set(candidate_street.split())

    matching = [w for w in source_words if w in candidate_words]
    if matching and source_words:
        points = min(policy.address_weight, len(matching) / len(source_words) * policy.address_weight)
        result.add(points, f"Via: {', '.join(matching)}")

        # Civic number only counts on top of a street match
        if policy.civic_weight and source_number and source_number == candidate_number:
            result.add(policy.civic_weight, f"Civico {source_number}")
    return policy.address_weight + policy.civic_weight


def _score_price(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    price_a, price_b = getattr(a, "price", None), getattr(b, "price", None)
    if not policy.price_tiers or not price_a or not price_b:
        return 0
    basis = (price_a + price_b) / 2 if policy.price_basis == PRICE_VS_MEAN else price_a
    diff = abs(price_a - price_b) / basis
    for bound, points, label in policy.price_tiers:
        if diff < bound:
            result.add(points, label.format(diff=diff * 100, a=price_a, b=price_b))
            break
    return policy.price_weight


def _score_size(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    size_a, size_b = getattr(a, "size", None), getattr(b, "size", None)
    if not policy.size_tiers or not size_a or not size_b:
        return 0
    diff = abs(size_a - size_b)
    for bound, points, label in policy.size_tiers:
        if diff <= bound:
            result.add(points, label.format(diff=diff, a=size_a, b=size_b))
            break
    return policy.size_weight


def _score_floor(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    floor_a, floor_b = getattr(a, "floor", None), getattr(b, "floor", None)
    if not policy.floor_weight or floor_a is None or floor_b is None:
        return 0
    if str(floor_a).strip().lower() == str(floor_b).strip().lower():
        result.add(policy.floor_weight, f"Piano identico ({floor_a})")
    return policy.floor_weight


def _score_bedrooms(a: Any, b: Any, policy: ScoringPolicy, result: PairScore) -> float:
    beds_a, beds_b = getattr(a, "bedrooms", None), getattr(b, "bedrooms", None)
    if not policy.bedrooms_weight or not beds_a or not beds_b:
        return 0
    if beds_a == beds_b:
        result.add(policy.bedrooms_weight, f"Numero camere identico ({beds_a})")
    return policy.bedrooms_weight


# ============================================================================
# ENTRY POINT
# ============================================================================

def score_pair(a: Any, b: Any, policy: ScoringPolicy = DEDUP_POLICY) -> PairScore:
    """Similarity of ``a`` and ``b`` under ``policy``.

    For the cross-portal policy ``a`` is the source listing: price difference
    and street-word overlap are measured relative to it.
    """
    if policy.require_specific_address and (
        is_generic_address(getattr(a, "address", None)) or is_generic_address(getattr(b, "address", None))
    ):
        return PairScore(0.0, [GENERIC_ADDRESS_REASON])

    result = PairScore()
    available = 0.0

    geo_available = _score_geo(a, b, policy, result)
    if geo_available is not None:
        available += geo_available
    elif policy.address_mode == ADDRESS_FUZZY:
        available += _score_fuzzy_address(a, b, policy, result)
    else:
        available += _score_street_words(a, b, policy, result)

    available += _score_price(a, b, policy, result)
    available += _score_size(a, b, policy, result)
    available += _score_floor(a, b, policy, result)
    available += _score_bedrooms(a, b, policy, result)

    if policy.normalize_to_max:
        result.score = result.score / available * 100 if available > 0 else 0.0
    return result


def describe(score: PairScore) -> str:
    """One-line explanation, "Corrispondenza parziale" when nothing matched."""
    return ", ".join(score.reasons) or PARTIAL_MATCH_REASON
