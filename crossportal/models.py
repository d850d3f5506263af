"""Records exchanged between the extractor, the matcher and their callers."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional


# ============================================================================
# EXTRACTION
# ============================================================================

ADDRESS_PLACEHOLDER = "Indirizzo da verificare"


@dataclass
class ExtractedProperty:
    """A listing scraped from a portal page, normalized."""
    external_link: str
    portal_source: str
    address: str = ADDRESS_PLACEHOLDER
    city: str = ""
    price: Optional[int] = None
    size: Optional[int] = None
    description: str = ""

    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None
    has_web_contact: bool = False

    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    floor: Optional[str] = None
    image_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# DEDUPLICATION
# ============================================================================

@dataclass
class PropertyRecord:
    """A listing already known to the CRM."""
    id: int
    address: str = ""
    price: Optional[int] = None
    size: Optional[int] = None
    floor: Optional[str] = None
    bedrooms: Optional[int] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    external_link: Optional[str] = None
    portal_source: Optional[str] = None
    agency_name: Optional[str] = None
    owner_phone: Optional[str] = None
    image_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_extracted(cls, record_id: int, prop: ExtractedProperty) -> PropertyRecord:
        return cls(
            id=record_id,
            address=prop.address,
            price=prop.price,
            size=prop.size,
            floor=prop.floor,
            bedrooms=prop.bedrooms,
            description=prop.description,
            external_link=prop.external_link,
            portal_source=prop.portal_source,
            owner_phone=prop.owner_phone,
            image_urls=list(prop.image_urls),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PairScore:
    """Similarity of two listings on a 0-100 scale, with explanations."""
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add(self, points: float, reason: str) -> None:
        self.score += points
        if reason not in self.reasons:
            self.reasons.append(reason)


@dataclass
class PropertyCluster:
    """Listings judged to be the same physical unit."""
    properties: list[PropertyRecord]
    cluster_size: int
    is_multiagency: bool
    exclusivity_hint: bool
    match_score: float
    match_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeduplicationResult:
    total_properties: int
    clusters_found: int
    multiagency_properties: int
    exclusive_properties: int
    clusters: list[PropertyCluster] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ============================================================================
# CROSS-PORTAL SEARCH
# ============================================================================

CLASSIFICATION_PRIVATE = "privato"
CLASSIFICATION_SINGLE_AGENCY = "monocondiviso"
CLASSIFICATION_MULTI_AGENCY = "pluricondiviso"
CLASSIFICATION_PRIVATE_AND_AGENCY = "privato+agenzia"


@dataclass
class SourceListing:
    """The listing a cross-portal search starts from."""
    address: str
    price: Optional[int] = None
    size: Optional[int] = None
    portal_source: str = "Altro"
    url: Optional[str] = None

    @classmethod
    def from_extracted(cls, prop: ExtractedProperty) -> SourceListing:
        return cls(
            address=prop.address,
            price=prop.price,
            size=prop.size,
            portal_source=prop.portal_source,
            url=prop.external_link,
        )


@dataclass
class CrossPortalMatch:
    id: int
    table: str
    address: str
    price: Optional[int]
    size: Optional[int]
    portal_source: str
    external_link: Optional[str]
    match_score: float
    match_reason: str
    agency_name: Optional[str] = None
    owner_phone: Optional[str] = None


@dataclass
class CrossPortalSearchResult:
    source_property: SourceListing
    matching_listings: list[CrossPortalMatch]
    total_agencies: int
    unique_agencies: list[str]
    classification: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
