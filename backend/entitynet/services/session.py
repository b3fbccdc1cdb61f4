from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable, List, Optional
from uuid import uuid4

from entitynet.core.config import LayoutSettings, NodeStyleSettings, ViewportSettings, settings
from entitynet.models.graph import (
    ConnectionsByType,
    EntityStats,
    GraphEdge,
    GraphEdgeData,
    GraphMeta,
    GraphNode,
    GraphNodeData,
    GraphResponse,
    LayoutPhase,
    Point,
)
from entitynet.models.session import FilterOptions
from entitynet.services.graph import (
    BaseGraph,
    NodeNotFoundError,
    entity_stats,
    load_base_graph,
    top_connections,
)
from entitynet.services.interaction import InteractionController, InteractionState
from entitynet.services.layout import LayoutEngine
from entitynet.services.mentions import PageFetcher
from entitynet.services.state_cache import GraphState, GraphStateCache, Position, SnapshotTimer
from entitynet.services.visibility import VisibleGraph, compute_visible

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when a session id is unknown or has been evicted."""


class OriginalStateMissingError(LookupError):
    """Raised when restoring before the full graph has ever settled."""


class GraphSession:
    """One viewer of the entity network.

    Owns the read-only base graph, the active filters, the layout engine,
    the interaction controller and the state cache. Nothing here is shared
    between sessions. Callers that run operations concurrently serialize
    them on ``lock``.
    """

    def __init__(
        self,
        base_graph: BaseGraph,
        *,
        session_id: Optional[str] = None,
        filters: Optional[FilterOptions] = None,
        layout_params: Optional[LayoutSettings] = None,
        viewport: Optional[ViewportSettings] = None,
        style: Optional[NodeStyleSettings] = None,
        snapshot_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        self.lock = asyncio.Lock()
        self.base_graph = base_graph
        self.filters = filters or FilterOptions()
        params = layout_params or settings.layout
        self.engine = LayoutEngine(params)
        self.interaction = InteractionController(
            viewport=viewport,
            style=style,
            size=(params.width, params.height),
        )
        self.state_cache = GraphStateCache()
        interval = snapshot_interval if snapshot_interval is not None else settings.snapshot_interval_seconds
        self.timer = SnapshotTimer(interval, clock=clock)
        self.visible: VisibleGraph = compute_visible(base_graph, self.filters)
        self.engine.layout(base_graph, self.visible, None)
        self._after_layout_change()

    # Snapshots

    def _full_graph_settled(self) -> bool:
        return self.filters.is_identity and self.engine.phase == LayoutPhase.SETTLED

    def snapshot(self) -> GraphState:
        positions = self.engine.positions
        state = self.state_cache.save(
            positions,
            self.interaction.transform.k,
            self.interaction.view_center(),
            full_graph=self._full_graph_settled(),
        )
        self.timer.mark()
        return state

    def _after_layout_change(self) -> None:
        if self.engine.consume_settled():
            self.snapshot()

    def _periodic_save(self) -> None:
        # Periodic saves never become the original state.
        if self.timer.due():
            self.state_cache.save(
                self.engine.positions,
                self.interaction.transform.k,
                self.interaction.view_center(),
            )

    # Filters and layout

    def apply_filters(self, filters: FilterOptions) -> VisibleGraph:
        """Switch filters while keeping every already placed node where it is."""

        if self.engine.positions:
            self.snapshot()
        self.filters = filters
        self.visible = compute_visible(self.base_graph, filters)
        self.engine.layout(self.base_graph, self.visible, self.state_cache.restore())
        self.interaction.forget_hidden(self.visible.node_ids)
        self._after_layout_change()
        logger.info(
            "[session] %s filters %s -> %d nodes, %d links",
            self.session_id,
            filters.describe(),
            len(self.visible.node_ids),
            len(self.visible.edge_keys),
        )
        return self.visible

    def step(self, ticks: int = 1) -> bool:
        settled = self.engine.step(ticks)
        if self.engine.consume_settled():
            self.snapshot()
        else:
            self._periodic_save()
        return settled

    def settle(self) -> None:
        self.engine.settle()
        self._after_layout_change()

    def reset_layout(self) -> None:
        """Forget cached positions and lay the visible graph out from scratch."""

        self.state_cache.clear()
        self.engine.reset()
        self.interaction.reset_view()
        self.engine.layout(self.base_graph, self.visible, None)
        self._after_layout_change()
        logger.info("[session] %s layout reset", self.session_id)

    def restore_original(self) -> None:
        """Show the full graph exactly as it was first laid out."""

        original = self.state_cache.original()
        if original is None:
            raise OriginalStateMissingError("No original layout has been captured yet")
        self.state_cache.replace(original)
        self.filters = FilterOptions()
        self.visible = compute_visible(self.base_graph, self.filters)
        # Every original position was settled, so all of them are pinned again.
        self.engine.reset()
        self.engine.layout(self.base_graph, self.visible, original)
        self.interaction.apply_view(original.zoom, original.center)
        self.interaction.forget_hidden(self.visible.node_ids)
        self._after_layout_change()
        logger.info("[session] %s restored original layout", self.session_id)

    # Pointer input

    def _require_visible(self, node_id: str) -> None:
        self.base_graph.node(node_id)
        if not self.visible.contains(node_id):
            raise NodeNotFoundError(f"Entity '{node_id}' is hidden by the current filters")

    def drag(self, node_id: str, phase: str, x: Optional[float] = None, y: Optional[float] = None) -> Position:
        self._require_visible(node_id)
        if phase == "start":
            position = self.engine.begin_drag(node_id)
            self._periodic_save()
            return position
        if phase == "move":
            if x is None or y is None:
                raise ValueError("Drag move requires both x and y")
            position = self.engine.drag_to(node_id, x, y)
            self._periodic_save()
            return position
        if phase == "end":
            position = self.engine.end_drag(node_id, x, y)
            self.snapshot()
            return position
        raise ValueError(f"Unsupported drag phase '{phase}'")

    def hover(self, node_id: str) -> None:
        self._require_visible(node_id)
        self.interaction.hover(node_id)

    def unhover(self, node_id: Optional[str] = None) -> None:
        self.interaction.unhover(node_id)

    def click(self, node_id: str) -> InteractionState:
        self._require_visible(node_id)
        return self.interaction.click(node_id)

    def close_detail(self) -> InteractionState:
        return self.interaction.close_detail()

    def clear_highlight(self) -> InteractionState:
        return self.interaction.clear_highlight()

    def viewport(self, action: str, *, zoom: Optional[float] = None, dx: float = 0.0, dy: float = 0.0) -> None:
        if action == "zoom_in":
            self.interaction.zoom_in()
        elif action == "zoom_out":
            self.interaction.zoom_out()
        elif action == "reset":
            self.interaction.reset_view()
        elif action == "set_zoom":
            if zoom is None:
                raise ValueError("set_zoom requires a zoom value")
            self.interaction.zoom_to(zoom)
        elif action == "pan":
            self.interaction.pan(dx, dy)
        else:
            raise ValueError(f"Unsupported viewport action '{action}'")
        self._periodic_save()

    # Lookups

    def connections(self, entity_name: str, *, limit: Optional[int] = None) -> ConnectionsByType:
        return top_connections(self.base_graph, entity_name, limit=limit)

    def stats(self, entity_name: str) -> EntityStats:
        return entity_stats(self.base_graph, entity_name)

    # Rendering

    def render(self) -> GraphResponse:
        self._periodic_save()
        graph = self.base_graph
        visible_edges = self.visible.edges(graph)
        emphasis = self.interaction.emphasis(visible_edges)
        positions = self.engine.positions

        nodes: List[GraphNode] = []
        for node in self.visible.nodes(graph):
            x, y = positions[node.id]
            nodes.append(
                GraphNode(
                    data=GraphNodeData(
                        id=node.id,
                        label=node.id,
                        type=node.type,
                        connection_count=node.connection_count,
                        mention_count=node.mention_count,
                        size=node.size,
                        color=node.color,
                        feature_ids=sorted(node.feature_ids),
                        x=x,
                        y=y,
                        pinned=self.engine.is_pinned(node.id),
                        **self.interaction.node_style(node, emphasis),
                    )
                )
            )

        edges = [
            GraphEdge(
                data=GraphEdgeData(
                    id=edge.id,
                    source=edge.source,
                    target=edge.target,
                    weight=edge.weight,
                    shared_feature_ids=sorted(edge.shared_feature_ids),
                    **self.interaction.link_style(edge, emphasis),
                )
            )
            for edge in visible_edges
        ]

        transform = self.interaction.transform
        center = self.interaction.view_center()
        meta = GraphMeta(
            node_count=len(nodes),
            edge_count=len(edges),
            total_node_count=graph.node_count,
            total_edge_count=graph.edge_count,
            layout_phase=self.engine.phase,
            cached_positions=self.state_cache.cached_count,
            has_original_state=self.state_cache.has_original,
            zoom=transform.k,
            center=Point(x=center[0], y=center[1]),
            pan=Point(x=transform.x, y=transform.y),
            hover_id=self.interaction.hover_id,
            focus_id=emphasis.focal,
            detail_id=self.interaction.detail_id,
            interaction_state=self.interaction.state.value,
            filters=self.filters.describe(),
        )
        return GraphResponse(session_id=self.session_id, nodes=nodes, edges=edges, meta=meta)


class SessionStore:
    """In-process registry of live sessions, oldest evicted first."""

    def __init__(self, max_sessions: Optional[int] = None) -> None:
        self.max_sessions = max_sessions or settings.max_sessions
        self._sessions: "OrderedDict[str, GraphSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: GraphSession) -> GraphSession:
        self._sessions[session.session_id] = session
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.warning("[session] evicted session %s (limit %d)", evicted, self.max_sessions)
        return session

    def get(self, session_id: str) -> GraphSession:
        try:
            return self._sessions[session_id]
        except KeyError as exc:
            raise SessionNotFoundError(f"Session '{session_id}' not found") from exc

    def remove(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")

    def ids(self) -> List[str]:
        return list(self._sessions)


async def create_session(
    store: SessionStore,
    *,
    filters: Optional[FilterOptions] = None,
    fetch_page: Optional[PageFetcher] = None,
    batch_size: Optional[int] = None,
) -> GraphSession:
    """Fetch mentions, build the base graph and register a new session."""

    base_graph = await load_base_graph(fetch_page=fetch_page, batch_size=batch_size)
    # Initial placement and the first relaxation setup are CPU-bound.
    session = await asyncio.to_thread(GraphSession, base_graph, filters=filters)
    store.add(session)
    logger.info(
        "[session] created %s with %d nodes and %d edges",
        session.session_id,
        base_graph.node_count,
        base_graph.edge_count,
    )
    return session
