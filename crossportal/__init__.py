"""Listing extraction, cross-portal matching and duplicate clustering for Italian real-estate portals."""

from .clustering import DisjointSet, deduplicate_properties, find_property_clusters
from .config import Settings
from .cross_portal import CrossPortalSearch, classify_matches, search_cross_portal_listings
from .errors import ConfigurationError, CrossPortalError, ExtractionError
from .extractor import PortalExtractor
from .models import (
    CrossPortalMatch,
    CrossPortalSearchResult,
    DeduplicationResult,
    ExtractedProperty,
    PairScore,
    PropertyCluster,
    PropertyRecord,
    SourceListing,
)
from .portals import PortalAdapter, PortalRegistry, default_registry
from .scoring import CROSS_PORTAL_POLICY, DEDUP_POLICY, ScoringPolicy, score_pair
from .store import PropertyStore

__version__ = "0.1.0"
