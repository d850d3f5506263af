"""
Duplicate clustering of CRM listings.

Every pair of listings is scored with DEDUP_POLICY; pairs at or above
MATCH_THRESHOLD (or with matching photos, when an image comparator is
plugged in) are joined in a disjoint set, so matches chain transitively.
Single listings that advertise an exclusive mandate are reported as
one-listing clusters with the exclusivity hint set.
"""

from __future__ import annotations

import logging
from typing import Callable, Hashable, Iterable, Optional

from .models import DeduplicationResult, PropertyCluster, PropertyRecord
from .normalize import has_exclusivity_keyword
from .scoring import DEDUP_POLICY, ScoringPolicy, score_pair


logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 70
EXCLUSIVITY_REASON = 'Parola chiave "esclusiva" trovata nella descrizione'

ImageComparator = Callable[[PropertyRecord, PropertyRecord], bool]


def images_disabled(a: PropertyRecord, b: PropertyRecord) -> bool:
    """Default image comparator: photo similarity does not take part in matching."""
    return False


class DisjointSet:
    """Union-find over hashable keys, with path compression and union by size."""

    def __init__(self, keys: Iterable[Hashable] = ()):
        self._parent: dict[Hashable, Hashable] = {}
        self._size: dict[Hashable, int] = {}
        for key in keys:
            self.add(key)

    def add(self, key: Hashable) -> None:
        if key not in self._parent:
            self._parent[key] = key
            self._size[key] = 1

    def find(self, key: Hashable) -> Hashable:
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def union(self, a: Hashable, b: Hashable) -> Hashable:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]
        return root_a

    def groups(self) -> list[list[Hashable]]:
        """Members of each set, in insertion order of their first member."""
        by_root: dict[Hashable, list[Hashable]] = {}
        for key in self._parent:
            by_root.setdefault(self.find(key), []).append(key)
        return list(by_root.values())


def find_property_clusters(
    properties: list[PropertyRecord],
    policy: ScoringPolicy = DEDUP_POLICY,
    threshold: float = MATCH_THRESHOLD,
    image_comparator: Optional[ImageComparator] = None,
) -> list[PropertyCluster]:
    """Group listings that describe the same unit."""
    compare_images = image_comparator or images_disabled
    logger.info(f"Analysing {len(properties)} properties")

    by_id = {p.id: p for p in properties}
    sets = DisjointSet(by_id)

    for i in range(len(properties)):
        for j in range(i + 1, len(properties)):
            prop1, prop2 = properties[i], properties[j]
            if prop1.id == prop2.id:
                continue
            result = score_pair(prop1, prop2, policy)
            similar_images = compare_images(prop1, prop2)

            if result.score >= threshold or similar_images:
                logger.debug(
                    f"Match #{prop1.id} <-> #{prop2.id} "
                    f"(score: {result.score:.0f}%, images: {similar_images})"
                )
                sets.union(prop1.id, prop2.id)

    clusters: list[PropertyCluster] = []
    for ids in sets.groups():
        members = [by_id[pid] for pid in ids]
        if len(members) > 1:
            clusters.append(_build_cluster(members, policy))
        elif has_exclusivity_keyword(members[0].description):
            logger.debug(f"Property #{members[0].id} mentions exclusivity")
            clusters.append(PropertyCluster(
                properties=members,
                cluster_size=1,
                is_multiagency=False,
                exclusivity_hint=True,
                match_score=0.0,
                match_reasons=[EXCLUSIVITY_REASON],
            ))

    return clusters


def _build_cluster(members: list[PropertyRecord], policy: ScoringPolicy) -> PropertyCluster:
    # Only pairs inside the cluster are scored again
    total = 0.0
    pairs = 0
    reasons: list[str] = []
    for i in range(len(members)):
        for j in range(i + 1, len(members)):
            result = score_pair(members[i], members[j], policy)
            total += result.score
            pairs += 1
            reasons.extend(result.reasons)

    return PropertyCluster(
        properties=members,
        cluster_size=len(members),
        is_multiagency=True,
        # Listings shared by several agencies are never exclusive
        exclusivity_hint=False,
        match_score=total / pairs if pairs else 0.0,
        match_reasons=list(dict.fromkeys(reasons)),
    )


def deduplicate_properties(
    properties: list[PropertyRecord],
    policy: ScoringPolicy = DEDUP_POLICY,
    threshold: float = MATCH_THRESHOLD,
    image_comparator: Optional[ImageComparator] = None,
) -> DeduplicationResult:
    """Cluster the listings and count multi-agency and possibly exclusive ones."""
    clusters = find_property_clusters(properties, policy, threshold, image_comparator)

    multiagency = sum(c.cluster_size for c in clusters if c.is_multiagency)
    exclusive = sum(c.cluster_size for c in clusters if c.exclusivity_hint)

    logger.info(
        f"Found {len(clusters)} clusters, {multiagency} multi-agency properties, "
        f"{exclusive} possibly exclusive"
    )

    return DeduplicationResult(
        total_properties=len(properties),
        clusters_found=len(clusters),
        multiagency_properties=multiagency,
        exclusive_properties=exclusive,
        clusters=clusters,
    )
