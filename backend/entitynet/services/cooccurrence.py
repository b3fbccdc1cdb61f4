from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from entitynet.core.config import settings
from entitynet.models.mention import EntityMention

logger = logging.getLogger(__name__)

EdgeKey = Tuple[str, str]


@dataclass(frozen=True)
class NetworkEdge:
    source: str
    target: str
    weight: int
    shared_feature_ids: frozenset[int]

    @property
    def key(self) -> EdgeKey:
        return self.source, self.target

    @property
    def id(self) -> str:
        return f"{self.source}|{self.target}"

    def other(self, node_id: str) -> str:
        if node_id == self.source:
            return self.target
        if node_id == self.target:
            return self.source
        raise ValueError(f"'{node_id}' is not an endpoint of edge {self.id}")


@dataclass
class _PairAccumulator:
    weight: int = 0
    shared_feature_ids: set[int] = field(default_factory=set)


def canonical_pair(first: str, second: str) -> EdgeKey:
    """Order a pair lexicographically so each pair has exactly one key."""

    if first == second:
        raise ValueError("A co-occurrence pair needs two distinct entities")
    return (first, second) if first < second else (second, first)


def group_by_feature(mentions: Iterable[EntityMention]) -> Dict[int, set[str]]:
    groups: Dict[int, set[str]] = defaultdict(set)
    for mention in mentions:
        groups[mention.feature_id].add(mention.entity_name)
    return groups


def _accumulate(
    groups: Mapping[int, set[str]],
    *,
    max_group_size: int,
) -> Dict[EdgeKey, _PairAccumulator]:
    pairs: Dict[EdgeKey, _PairAccumulator] = defaultdict(_PairAccumulator)
    for feature_id, names in groups.items():
        if len(names) < 2:
            continue
        if len(names) > max_group_size:
            logger.warning(
                "[cooccurrence] feature %s has %d distinct entities (%d pairs)",
                feature_id,
                len(names),
                len(names) * (len(names) - 1) // 2,
            )
        for first, second in combinations(names, 2):
            accumulator = pairs[canonical_pair(first, second)]
            accumulator.weight += 1
            accumulator.shared_feature_ids.add(feature_id)
    return pairs


def compute_edges(
    mentions: Iterable[EntityMention],
    *,
    max_group_size: Optional[int] = None,
) -> List[NetworkEdge]:
    """Turn raw mentions into weighted co-occurrence edges.

    Mentions are grouped by ``feature_id``; every unordered pair of distinct
    entity names inside a group adds one to that pair's weight. Repeated
    mentions of the same entity inside one feature count once. The result is
    sorted by ``(source, target)`` and therefore independent of input order.
    """

    limit = max_group_size if max_group_size is not None else settings.cooccurrence_group_warn_size
    groups = group_by_feature(mentions)
    pairs = _accumulate(groups, max_group_size=limit)

    edges = [
        NetworkEdge(
            source=source,
            target=target,
            weight=accumulator.weight,
            shared_feature_ids=frozenset(accumulator.shared_feature_ids),
        )
        for (source, target), accumulator in sorted(pairs.items())
    ]
    logger.info(
        "[cooccurrence] %d features produced %d edges",
        len(groups),
        len(edges),
    )
    return edges


def weight_distribution(edges: Iterable[NetworkEdge]) -> Dict[str, int]:
    buckets = {"1": 0, "2-5": 0, "6+": 0}
    for edge in edges:
        if edge.weight <= 1:
            buckets["1"] += 1
        elif edge.weight <= 5:
            buckets["2-5"] += 1
        else:
            buckets["6+"] += 1
    return buckets
