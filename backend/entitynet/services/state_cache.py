from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Position = Tuple[float, float]


@dataclass(frozen=True)
class GraphState:
    positions: Mapping[str, Position] = field(default_factory=dict)
    zoom: float = 1.0
    center: Position = (0.0, 0.0)

    def copy(self) -> "GraphState":
        return GraphState(positions=dict(self.positions), zoom=self.zoom, center=self.center)


class GraphStateCache:
    """Transient per-session snapshot of node positions and viewport.

    Each save merges into the previous snapshot, so nodes hidden by the
    current filter keep their last known coordinates. The first save taken
    while the whole graph was visible is kept apart as the original state.
    """

    def __init__(self) -> None:
        self._latest: Optional[GraphState] = None
        self._original: Optional[GraphState] = None
        self.save_count = 0

    def save(
        self,
        positions: Mapping[str, Position],
        zoom: float,
        center: Position,
        *,
        full_graph: bool = False,
    ) -> GraphState:
        merged: Dict[str, Position] = dict(self._latest.positions) if self._latest else {}
        merged.update(positions)
        self._latest = GraphState(positions=merged, zoom=zoom, center=center)
        if full_graph and self._original is None and positions:
            self._original = GraphState(positions=dict(positions), zoom=zoom, center=center)
            logger.info("[state] captured original layout of %d nodes", len(positions))
        self.save_count += 1
        return self._latest.copy()

    def restore(self) -> Optional[GraphState]:
        return self._latest.copy() if self._latest else None

    def original(self) -> Optional[GraphState]:
        return self._original.copy() if self._original else None

    @property
    def has_original(self) -> bool:
        return self._original is not None

    @property
    def cached_count(self) -> int:
        return len(self._latest.positions) if self._latest else 0

    def replace(self, state: GraphState) -> None:
        self._latest = state.copy()

    def clear(self) -> None:
        """Drop the latest snapshot; the original state survives."""

        self._latest = None


class SnapshotTimer:
    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last = clock()

    def due(self) -> bool:
        now = self._clock()
        if now - self._last >= self.interval_seconds:
            self._last = now
            return True
        return False

    def mark(self) -> None:
        self._last = self._clock()
