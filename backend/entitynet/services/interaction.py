from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from entitynet.core.config import NodeStyleSettings, ViewportSettings, settings
from entitynet.services.cooccurrence import NetworkEdge
from entitynet.services.graph import NetworkNode
from entitynet.services.state_cache import Position

logger = logging.getLogger(__name__)


class InteractionState(str, Enum):
    IDLE = "idle"
    HIGHLIGHTED = "highlighted"
    DETAIL_OPEN = "detail_open"

    def __str__(self) -> str:  # pragma: no cover - trivial behaviour
        return str(self.value)


@dataclass(frozen=True)
class Emphasis:
    focal: Optional[str] = None
    neighbors: frozenset[str] = frozenset()

    @property
    def active(self) -> bool:
        return self.focal is not None

    def includes(self, node_id: str) -> bool:
        return node_id == self.focal or node_id in self.neighbors

    def touches(self, edge: NetworkEdge) -> bool:
        return self.focal is not None and self.focal in (edge.source, edge.target)


NO_EMPHASIS = Emphasis()


@dataclass
class ZoomTransform:
    k: float = 1.0
    x: float = 0.0
    y: float = 0.0


class InteractionController:
    """Pointer-driven highlight state and the zoom/pan transform.

    Hover is tracked independently of the click state machine:

    * ``IDLE --click(n)--> HIGHLIGHTED(n)``
    * ``HIGHLIGHTED(n) --click(n)--> DETAIL_OPEN(n)``
    * ``HIGHLIGHTED(n) --click(m)--> HIGHLIGHTED(m)``
    * ``DETAIL_OPEN(n) --click(m)--> HIGHLIGHTED(m)``
    * ``DETAIL_OPEN --close--> IDLE`` and ``clear_highlight`` always goes to ``IDLE``.
    """

    def __init__(
        self,
        *,
        viewport: Optional[ViewportSettings] = None,
        style: Optional[NodeStyleSettings] = None,
        size: Optional[Tuple[float, float]] = None,
    ) -> None:
        self.viewport = viewport or settings.viewport
        self.style = style or settings.node_style
        self.size = size or (settings.layout.width, settings.layout.height)
        self.state = InteractionState.IDLE
        self.hover_id: Optional[str] = None
        self.highlight_id: Optional[str] = None
        self.detail_id: Optional[str] = None
        self.transform = ZoomTransform()

    # Hover

    def hover(self, node_id: str) -> None:
        self.hover_id = node_id

    def unhover(self, node_id: Optional[str] = None) -> None:
        if node_id is None or node_id == self.hover_id:
            self.hover_id = None

    # Click state machine

    def click(self, node_id: str) -> InteractionState:
        if self.state == InteractionState.HIGHLIGHTED and self.highlight_id == node_id:
            self.state = InteractionState.DETAIL_OPEN
            self.detail_id = node_id
            self.highlight_id = None
        else:
            self.state = InteractionState.HIGHLIGHTED
            self.highlight_id = node_id
            self.detail_id = None
        logger.debug("[interaction] click %s -> %s", node_id, self.state)
        return self.state

    def close_detail(self) -> InteractionState:
        if self.state == InteractionState.DETAIL_OPEN:
            self.state = InteractionState.IDLE
            self.detail_id = None
        return self.state

    def clear_highlight(self) -> InteractionState:
        self.state = InteractionState.IDLE
        self.highlight_id = None
        self.detail_id = None
        return self.state

    def forget_hidden(self, visible_ids: Iterable[str]) -> None:
        """Drop hover/highlight targets that the current filter hides."""

        visible = set(visible_ids)
        if self.hover_id is not None and self.hover_id not in visible:
            self.hover_id = None
        if self.highlight_id is not None and self.highlight_id not in visible:
            self.clear_highlight()

    # Emphasis

    @property
    def focal_id(self) -> Optional[str]:
        return self.highlight_id or self.hover_id

    def emphasis(self, edges: Iterable[NetworkEdge]) -> Emphasis:
        focal = self.focal_id
        if focal is None:
            return NO_EMPHASIS
        neighbors = set()
        for edge in edges:
            if edge.source == focal:
                neighbors.add(edge.target)
            elif edge.target == focal:
                neighbors.add(edge.source)
        return Emphasis(focal=focal, neighbors=frozenset(neighbors))

    @property
    def labels_by_zoom(self) -> bool:
        return self.transform.k > self.viewport.label_zoom_threshold

    def node_style(self, node: NetworkNode, emphasis: Emphasis) -> Dict[str, Any]:
        emphasized = emphasis.includes(node.id)
        palette = self.style.highlight_palette if emphasized else self.style.palette
        opacity = 1.0
        if emphasis.active and not emphasized:
            opacity = self.style.dimmed_opacity
        return {
            "fill": palette.get(node.type.value, self.style.default_color),
            "stroke_width": 4.0 if node.id == emphasis.focal else 2.0,
            "opacity": opacity,
            "show_label": emphasized or self.labels_by_zoom,
            "is_focus": node.id == emphasis.focal,
            "is_neighbor": node.id in emphasis.neighbors,
        }

    def link_style(self, edge: NetworkEdge, emphasis: Emphasis) -> Dict[str, Any]:
        if emphasis.touches(edge):
            return {
                "stroke": self.style.link_highlight_color,
                "stroke_width": 3.0,
                "stroke_opacity": 0.8,
                "highlighted": True,
            }
        return {
            "stroke": self.style.link_color,
            "stroke_width": 2.0,
            "stroke_opacity": 0.6,
            "highlighted": False,
        }

    # Zoom / pan

    def _clamp_zoom(self, value: float) -> float:
        return max(self.viewport.min_zoom, min(self.viewport.max_zoom, value))

    def zoom_to(self, k: float, anchor: Optional[Position] = None) -> ZoomTransform:
        """Scale around ``anchor`` (screen coordinates, default viewport middle)."""

        ax, ay = anchor if anchor is not None else (self.size[0] / 2.0, self.size[1] / 2.0)
        current = self.transform
        target = self._clamp_zoom(k)
        ratio = target / current.k
        self.transform = ZoomTransform(
            k=target,
            x=ax - (ax - current.x) * ratio,
            y=ay - (ay - current.y) * ratio,
        )
        return self.transform

    def zoom_in(self) -> ZoomTransform:
        return self.zoom_to(self.transform.k * self.viewport.zoom_step)

    def zoom_out(self) -> ZoomTransform:
        return self.zoom_to(self.transform.k / self.viewport.zoom_step)

    def pan(self, dx: float, dy: float) -> ZoomTransform:
        self.transform = ZoomTransform(
            k=self.transform.k,
            x=self.transform.x + dx,
            y=self.transform.y + dy,
        )
        return self.transform

    def reset_view(self) -> ZoomTransform:
        self.transform = ZoomTransform()
        return self.transform

    def view_center(self) -> Position:
        """Graph-space point shown at the middle of the viewport."""

        t = self.transform
        return ((self.size[0] / 2.0 - t.x) / t.k, (self.size[1] / 2.0 - t.y) / t.k)

    def apply_view(self, zoom: float, center: Position) -> ZoomTransform:
        """Restore a transform that shows ``center`` at the viewport middle."""

        k = self._clamp_zoom(zoom)
        self.transform = ZoomTransform(
            k=k,
            x=self.size[0] / 2.0 - center[0] * k,
            y=self.size[1] / 2.0 - center[1] * k,
        )
        return self.transform
