from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from entitynet.models.session import FilterOptions
from entitynet.services.cooccurrence import EdgeKey, NetworkEdge
from entitynet.services.graph import BaseGraph, NetworkNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VisibleGraph:
    """Ids of the visible part of a base graph, in arena order."""

    node_ids: Tuple[str, ...]
    edge_keys: Tuple[EdgeKey, ...]

    @property
    def is_empty(self) -> bool:
        return not self.node_ids

    def contains(self, node_id: str) -> bool:
        return node_id in self.node_ids

    def nodes(self, graph: BaseGraph) -> List[NetworkNode]:
        return [graph.nodes[node_id] for node_id in self.node_ids]

    def edges(self, graph: BaseGraph) -> List[NetworkEdge]:
        return [graph.edges[key] for key in self.edge_keys]


def _selection_view(graph: BaseGraph, selection: frozenset[str]) -> VisibleGraph:
    selected = {name for name in selection if name in graph.nodes}
    visible_nodes = set(selected)
    edge_keys: List[EdgeKey] = []
    for key in graph.edges:
        source, target = key
        if source in selected or target in selected:
            edge_keys.append(key)
            visible_nodes.add(source)
            visible_nodes.add(target)
    node_ids = tuple(name for name in graph.nodes if name in visible_nodes)
    return VisibleGraph(node_ids=node_ids, edge_keys=tuple(edge_keys))


def _node_matches(node: NetworkNode, filters: FilterOptions, needle: str) -> bool:
    if needle and needle not in node.id.lower():
        return False
    if node.type not in filters.allowed_types:
        return False
    return node.connection_count >= filters.min_connections


def compute_visible(graph: BaseGraph, filters: FilterOptions) -> VisibleGraph:
    """Apply ``filters`` to ``graph`` without copying any node or edge.

    A non-empty explicit selection shows the selected entities, their direct
    neighbours and every link touching a selected entity, regardless of the
    other filters. Otherwise a node must match the search text, an allowed
    type and the minimum degree, and a link is visible only when both of its
    endpoints are.
    """

    if filters.explicit_selection:
        view = _selection_view(graph, filters.explicit_selection)
    else:
        needle = filters.search_text.lower()
        node_ids = tuple(
            node.id for node in graph.nodes.values() if _node_matches(node, filters, needle)
        )
        visible = frozenset(node_ids)
        edge_keys = tuple(
            key for key in graph.edges if key[0] in visible and key[1] in visible
        )
        view = VisibleGraph(node_ids=node_ids, edge_keys=edge_keys)

    logger.debug(
        "[visibility] %d/%d nodes and %d/%d links visible",
        len(view.node_ids),
        graph.node_count,
        len(view.edge_keys),
        graph.edge_count,
    )
    return view
