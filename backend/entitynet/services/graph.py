from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from entitynet.core.config import NodeStyleSettings, settings
from entitynet.models.graph import (
    ConnectionsByType,
    EntityConnection,
    EntityStats,
    EntityType,
)
from entitynet.models.mention import EntityMention
from entitynet.services.cooccurrence import (
    EdgeKey,
    NetworkEdge,
    compute_edges,
    weight_distribution,
)
from entitynet.services.mentions import PageFetcher, fetch_all_mentions
from entitynet.services.normalization import display_label, normalize_entity_type

logger = logging.getLogger(__name__)


class NodeNotFoundError(LookupError):
    """Raised when the requested entity is not part of the graph."""


@dataclass(frozen=True)
class NetworkNode:
    id: str
    type: EntityType
    connection_count: int
    size: float
    color: str
    feature_ids: frozenset[int]
    mention_count: int


@dataclass
class _NodeAccumulator:
    raw_type: str
    feature_ids: set[int] = field(default_factory=set)
    mention_count: int = 0


@dataclass(frozen=True)
class BaseGraph:
    """Immutable arena of nodes and edges keyed by stable ids.

    ``nodes`` keeps first-seen order of entity names and ``edges`` keeps the
    canonical ``(source, target)`` order emitted by the calculator.
    """

    nodes: Mapping[str, NetworkNode]
    edges: Mapping[EdgeKey, NetworkEdge]
    adjacency: Mapping[str, Tuple[EdgeKey, ...]]

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def node(self, node_id: str) -> NetworkNode:
        try:
            return self.nodes[node_id]
        except KeyError as exc:
            raise NodeNotFoundError(f"Entity '{node_id}' is not in the graph") from exc

    def incident_edges(self, node_id: str) -> Tuple[EdgeKey, ...]:
        return self.adjacency.get(node_id, ())

    def neighbors(self, node_id: str) -> frozenset[str]:
        return frozenset(self.edges[key].other(node_id) for key in self.incident_edges(node_id))

    @property
    def max_connection_count(self) -> int:
        return max((node.connection_count for node in self.nodes.values()), default=0)


EMPTY_GRAPH = BaseGraph(nodes={}, edges={}, adjacency={})


def node_size(
    connection_count: int,
    max_connection_count: int,
    *,
    style: Optional[NodeStyleSettings] = None,
) -> float:
    """Scale a node radius linearly with its degree relative to the busiest node."""

    style = style or settings.node_style
    base, top = style.base_size, style.max_size
    if max_connection_count <= 0:
        return base
    size = base + (connection_count / max_connection_count) * (top - base)
    return max(base, min(top, size))


def node_color(entity_type: EntityType, *, style: Optional[NodeStyleSettings] = None) -> str:
    style = style or settings.node_style
    return style.palette.get(entity_type.value, style.default_color)


def _collect_nodes(mentions: Iterable[EntityMention]) -> Dict[str, _NodeAccumulator]:
    collected: Dict[str, _NodeAccumulator] = {}
    for mention in mentions:
        entry = collected.get(mention.entity_name)
        if entry is None:
            # First-seen raw type wins for the whole entity.
            entry = _NodeAccumulator(raw_type=mention.entity_type)
            collected[mention.entity_name] = entry
        entry.feature_ids.add(mention.feature_id)
        entry.mention_count += 1
    return collected


def build_graph(
    mentions: Sequence[EntityMention],
    edges: Sequence[NetworkEdge],
    *,
    style: Optional[NodeStyleSettings] = None,
) -> BaseGraph:
    """Derive the deduplicated node arena and edge index.

    ``connection_count`` is the number of distinct edges touching a node, not
    the sum of their weights.
    """

    if not mentions:
        return EMPTY_GRAPH

    collected = _collect_nodes(mentions)

    adjacency: Dict[str, List[EdgeKey]] = defaultdict(list)
    edge_index: Dict[EdgeKey, NetworkEdge] = {}
    for edge in edges:
        if edge.key in edge_index:
            continue
        if edge.source not in collected or edge.target not in collected:
            logger.warning("[graph] dropping edge %s with unknown endpoint", edge.id)
            continue
        edge_index[edge.key] = edge
        adjacency[edge.source].append(edge.key)
        adjacency[edge.target].append(edge.key)

    max_degree = max((len(keys) for keys in adjacency.values()), default=0)
    nodes: Dict[str, NetworkNode] = {}
    for name, entry in collected.items():
        entity_type = normalize_entity_type(entry.raw_type)
        degree = len(adjacency.get(name, ()))
        nodes[name] = NetworkNode(
            id=name,
            type=entity_type,
            connection_count=degree,
            size=node_size(degree, max_degree, style=style),
            color=node_color(entity_type, style=style),
            feature_ids=frozenset(entry.feature_ids),
            mention_count=entry.mention_count,
        )

    graph = BaseGraph(
        nodes=nodes,
        edges=edge_index,
        adjacency={name: tuple(keys) for name, keys in adjacency.items()},
    )
    logger.info(
        "[graph] built %d nodes and %d edges; types %s; degree buckets %s; weight buckets %s",
        graph.node_count,
        graph.edge_count,
        type_distribution(graph),
        degree_distribution(graph),
        weight_distribution(edge_index.values()),
    )
    return graph


def type_distribution(graph: BaseGraph) -> Dict[str, int]:
    counts = {display_label(entity_type): 0 for entity_type in EntityType}
    for node in graph.nodes.values():
        counts[display_label(node.type)] += 1
    return counts


def degree_distribution(graph: BaseGraph) -> Dict[str, int]:
    buckets = {"0": 0, "1-5": 0, "6-10": 0, "11+": 0}
    for node in graph.nodes.values():
        count = node.connection_count
        if count == 0:
            buckets["0"] += 1
        elif count <= 5:
            buckets["1-5"] += 1
        elif count <= 10:
            buckets["6-10"] += 1
        else:
            buckets["11+"] += 1
    return buckets


async def load_base_graph(
    *,
    fetch_page: Optional[PageFetcher] = None,
    batch_size: Optional[int] = None,
) -> BaseGraph:
    """Fetch all mentions and build the session's base graph.

    Large inputs compute edges in a worker thread; the calculator shares no
    state with the event loop.
    """

    mentions = await fetch_all_mentions(batch_size=batch_size, fetch_page=fetch_page)
    if len(mentions) > settings.cooccurrence_offload_threshold:
        edges = await asyncio.to_thread(compute_edges, mentions)
    else:
        edges = compute_edges(mentions)
    return build_graph(mentions, edges)


def top_connections(
    graph: BaseGraph,
    entity_name: str,
    *,
    limit: Optional[int] = None,
) -> ConnectionsByType:
    """Co-occurring entities of ``entity_name`` grouped by type, strongest first."""

    graph.node(entity_name)
    connections: List[EntityConnection] = []
    for key in graph.incident_edges(entity_name):
        edge = graph.edges[key]
        other = graph.nodes[edge.other(entity_name)]
        connections.append(
            EntityConnection(
                entity_name=other.id,
                entity_type=other.type,
                co_occurrence_count=edge.weight,
            )
        )
    connections.sort(key=lambda item: (-item.co_occurrence_count, item.entity_name))

    def _pick(entity_type: EntityType) -> List[EntityConnection]:
        selected = [item for item in connections if item.entity_type == entity_type]
        return selected[:limit] if limit is not None else selected

    return ConnectionsByType(
        entity_name=entity_name,
        people=_pick(EntityType.PERSON),
        locations=_pick(EntityType.LOCATION),
        organizations=_pick(EntityType.ORGANIZATION),
    )


def entity_stats(graph: BaseGraph, entity_name: str) -> EntityStats:
    node = graph.node(entity_name)
    return EntityStats(
        entity_name=node.id,
        entity_type=node.type,
        total_mentions=node.mention_count,
        unique_features=len(node.feature_ids),
        connection_count=node.connection_count,
    )
