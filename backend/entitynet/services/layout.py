from __future__ import annotations

import logging
import math
import random
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from entitynet.core.config import LayoutSettings, settings
from entitynet.models.graph import LayoutPhase
from entitynet.services.graph import BaseGraph, NodeNotFoundError
from entitynet.services.state_cache import GraphState, Position
from entitynet.services.visibility import VisibleGraph

logger = logging.getLogger(__name__)

WeightedEdge = Tuple[str, str, float]

_GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


# Initial placement -------------------------------------------------------------


def circular_placement(
    node_ids: Sequence[str],
    *,
    center: Position,
    radius: float,
) -> Dict[str, Position]:
    count = len(node_ids)
    if count == 0:
        return {}
    if count == 1:
        return {node_ids[0]: center}
    cx, cy = center
    step = 2.0 * math.pi / count
    return {
        node_id: (
            cx + radius * math.cos(index * step - math.pi / 2.0),
            cy + radius * math.sin(index * step - math.pi / 2.0),
        )
        for index, node_id in enumerate(node_ids)
    }


def grid_placement(
    node_ids: Sequence[str],
    *,
    center: Position,
    spacing: float,
) -> Dict[str, Position]:
    count = len(node_ids)
    if count == 0:
        return {}
    columns = math.ceil(math.sqrt(count))
    rows = math.ceil(count / columns)
    origin_x = center[0] - (columns - 1) * spacing / 2.0
    origin_y = center[1] - (rows - 1) * spacing / 2.0
    return {
        node_id: (
            origin_x + (index % columns) * spacing,
            origin_y + (index // columns) * spacing,
        )
        for index, node_id in enumerate(node_ids)
    }


def spaced_random_placement(
    node_ids: Sequence[str],
    *,
    center: Position,
    width: float,
    height: float,
    min_distance: float,
    max_attempts: int,
    seed: int,
) -> Dict[str, Position]:
    """Rejection-sample positions that keep ``min_distance`` between nodes.

    The sampling area grows with the node count so the spacing stays
    satisfiable. After ``max_attempts`` failed candidates the last one is kept.
    Seeded, so the same ids in the same order always land in the same place.
    """

    count = len(node_ids)
    if count == 0:
        return {}
    rng = random.Random(seed)
    side = math.sqrt(count) * min_distance * 1.5
    span_x = max(width, side)
    span_y = max(height, side)
    left = center[0] - span_x / 2.0
    top = center[1] - span_y / 2.0

    cell = max(min_distance, 1e-6)
    buckets: Dict[Tuple[int, int], List[Position]] = {}
    placed: Dict[str, Position] = {}

    def _is_clear(candidate: Position) -> bool:
        bx, by = int(candidate[0] // cell), int(candidate[1] // cell)
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for other in buckets.get((bx + dx, by + dy), ()):
                    if math.dist(candidate, other) < min_distance:
                        return False
        return True

    for node_id in node_ids:
        candidate = (left + rng.random() * span_x, top + rng.random() * span_y)
        for _ in range(max(1, max_attempts) - 1):
            if _is_clear(candidate):
                break
            candidate = (left + rng.random() * span_x, top + rng.random() * span_y)
        placed[node_id] = candidate
        key = (int(candidate[0] // cell), int(candidate[1] // cell))
        buckets.setdefault(key, []).append(candidate)
    return placed


def placement_strategy(count: int, params: Optional[LayoutSettings] = None) -> str:
    params = params or settings.layout
    if count <= params.circular_max_nodes:
        return "circular"
    if count <= params.grid_max_nodes:
        return "grid"
    return "spaced_random"


def initial_placement(
    node_ids: Sequence[str],
    *,
    center: Optional[Position] = None,
    params: Optional[LayoutSettings] = None,
) -> Dict[str, Position]:
    """Deterministic starting positions chosen by node count."""

    params = params or settings.layout
    origin = center if center is not None else (params.width / 2.0, params.height / 2.0)
    strategy = placement_strategy(len(node_ids), params)
    if strategy == "circular":
        radius = min(params.width, params.height) * 0.35
        return circular_placement(node_ids, center=origin, radius=radius)
    if strategy == "grid":
        return grid_placement(node_ids, center=origin, spacing=params.grid_spacing)
    return spaced_random_placement(
        node_ids,
        center=origin,
        width=params.width,
        height=params.height,
        min_distance=params.random_min_distance,
        max_attempts=params.random_max_attempts,
        seed=params.seed,
    )


# Relaxation --------------------------------------------------------------------


# Rows per block in the pairwise terms; keeps each block at O(block * n) memory.
_PAIR_BLOCK = 512


class Simulation:
    """Bounded force simulation over a fixed set of bodies.

    Positions and velocities live in ``(n, 2)`` numpy arrays. Each
    :meth:`step` applies link springs, many-body repulsion and a centering
    pull to velocities, damps and integrates them, then resolves circle
    overlaps. Pinned bodies exert forces but never move. The run ends after
    ``max_steps`` ticks or once alpha or the kinetic energy drops below its
    threshold.
    """

    def __init__(
        self,
        positions: Mapping[str, Position],
        edges: Iterable[WeightedEdge],
        *,
        radii: Optional[Mapping[str, float]] = None,
        pinned: Iterable[str] = (),
        center: Optional[Position] = None,
        params: Optional[LayoutSettings] = None,
        max_steps: Optional[int] = None,
    ) -> None:
        self.params = params or settings.layout
        self.center = center if center is not None else (
            self.params.width / 2.0,
            self.params.height / 2.0,
        )
        pinned_ids = set(pinned)
        radii = radii or {}
        self._ids: List[str] = list(positions)
        self._index: Dict[str, int] = {node_id: index for index, node_id in enumerate(self._ids)}
        count = len(self._ids)

        self._pos = np.array(
            [(float(positions[node_id][0]), float(positions[node_id][1])) for node_id in self._ids],
            dtype=float,
        ).reshape(count, 2)
        self._vel = np.zeros((count, 2), dtype=float)
        self._radius = np.array(
            [float(radii.get(node_id, self.params.collision_margin)) for node_id in self._ids],
            dtype=float,
        )
        self._pinned = np.array([node_id in pinned_ids for node_id in self._ids], dtype=bool)

        edge_list = [edge for edge in edges if edge[0] in self._index and edge[1] in self._index]
        max_weight = max((edge[2] for edge in edge_list), default=1.0) or 1.0
        self._sources = np.array([self._index[edge[0]] for edge in edge_list], dtype=np.intp)
        self._targets = np.array([self._index[edge[1]] for edge in edge_list], dtype=np.intp)
        self._strengths = (
            self.params.link_strength * np.array([edge[2] for edge in edge_list], dtype=float) / max_weight
        )
        degree = np.bincount(
            np.concatenate([self._sources, self._targets]),
            minlength=count,
        ).astype(float)
        totals = degree[self._sources] + degree[self._targets]
        # Share of each link's pull taken by the target end.
        self._bias = np.divide(
            degree[self._sources],
            totals,
            out=np.full(len(edge_list), 0.5),
            where=totals > 0,
        )

        self.alpha = self.params.alpha
        self.steps_taken = 0
        self.max_steps = max_steps if max_steps is not None else self.params.max_steps
        self.kinetic_energy = 0.0
        self._done = not bool(np.any(~self._pinned))

    @property
    def done(self) -> bool:
        return self._done

    def positions(self) -> Dict[str, Position]:
        return {node_id: (x, y) for node_id, (x, y) in zip(self._ids, self._pos.tolist())}

    def set_position(self, node_id: str, position: Position, *, pinned: Optional[bool] = None) -> None:
        index = self._index[node_id]
        self._pos[index] = (float(position[0]), float(position[1]))
        self._vel[index] = 0.0
        if pinned is not None:
            self._pinned[index] = pinned

    def step(self) -> bool:
        """Advance one tick; returns ``True`` once the run is finished."""

        if self._done:
            return True
        params = self.params
        self.alpha += (0.0 - self.alpha) * params.alpha_decay
        self._apply_links()
        self._apply_charge()
        self._apply_center()

        free = ~self._pinned
        self._vel[self._pinned] = 0.0
        self._vel[free] *= 1.0 - params.velocity_decay
        self._pos[free] += self._vel[free]
        energy = float(np.sum(self._vel[free] ** 2))
        self._resolve_collisions()

        self.kinetic_energy = energy
        self.steps_taken += 1
        if (
            self.steps_taken >= self.max_steps
            or self.alpha < params.alpha_min
            or energy < params.energy_threshold
        ):
            self._done = True
        return self._done

    def run(self) -> Dict[str, Position]:
        while not self.step():
            pass
        return self.positions()

    def _apply_links(self) -> None:
        if not len(self._sources):
            return
        sources, targets = self._sources, self._targets
        delta = (self._pos[targets] + self._vel[targets]) - (self._pos[sources] + self._vel[sources])
        length = np.hypot(delta[:, 0], delta[:, 1])
        length[length == 0.0] = 1e-6
        factor = (length - self.params.link_distance) / length * self.alpha * self._strengths
        delta *= factor[:, None]

        pull = np.zeros_like(self._vel)
        np.add.at(pull, targets, -delta * self._bias[:, None])
        np.add.at(pull, sources, delta * (1.0 - self._bias)[:, None])
        pull[self._pinned] = 0.0
        self._vel += pull

    def _apply_charge(self) -> None:
        count = len(self._ids)
        if count < 2:
            return
        strength = self.params.charge_strength * self.alpha
        index = np.arange(count)
        force = np.zeros_like(self._pos)
        for start in range(0, count, _PAIR_BLOCK):
            stop = min(start + _PAIR_BLOCK, count)
            rows = index[start:stop, None]
            # delta[i, j] points from body i to body j.
            delta = self._pos[None, :, :] - self._pos[start:stop, None, :]
            coincident = (delta[..., 0] == 0.0) & (delta[..., 1] == 0.0) & (rows != index[None, :])
            if coincident.any():
                # Deterministic, antisymmetric nudge for coincident bodies.
                offset = index[None, :] - rows
                lower = np.minimum(index[None, :], rows)
                delta[..., 0] = np.where(coincident, 1e-3 * offset, delta[..., 0])
                delta[..., 1] = np.where(coincident, 1e-3 * np.sign(offset) * (lower + 1), delta[..., 1])
            distance_sq = np.maximum(np.einsum("ijk,ijk->ij", delta, delta), 1.0)
            force[start:stop] = strength * np.sum(delta / distance_sq[..., None], axis=1)
        force[self._pinned] = 0.0
        self._vel += force

    def _apply_center(self) -> None:
        free = ~self._pinned
        pull = self.params.center_strength * self.alpha
        self._vel[free] += (np.asarray(self.center, dtype=float) - self._pos[free]) * pull

    def _resolve_collisions(self) -> None:
        count = len(self._ids)
        if count < 2:
            return
        margin = self.params.collision_margin
        index = np.arange(count)
        shift = np.zeros_like(self._pos)
        for start in range(0, count, _PAIR_BLOCK):
            stop = min(start + _PAIR_BLOCK, count)
            rows = index[start:stop, None]
            delta = self._pos[None, :, :] - self._pos[start:stop, None, :]
            distance = np.hypot(delta[..., 0], delta[..., 1])
            min_gap = self._radius[start:stop, None] + self._radius[None, :] + margin
            pinned_row = self._pinned[start:stop, None]
            pinned_col = self._pinned[None, :]
            overlapping = (distance < min_gap) & (rows != index[None, :]) & ~(pinned_row & pinned_col)
            if not overlapping.any():
                continue
            coincident = overlapping & (distance == 0.0)
            if coincident.any():
                delta[..., 0] = np.where(coincident, 1e-3 * np.sign(index[None, :] - rows), delta[..., 0])
                delta[..., 1] = np.where(coincident, 0.0, delta[..., 1])
                distance = np.where(coincident, 1e-3, distance)
            safe = np.where(overlapping, distance, 1.0)
            overlap = np.where(overlapping, (min_gap - safe) / safe, 0.0)
            # A free body facing a pinned one takes the whole correction.
            share = np.where(pinned_row, 0.0, np.where(pinned_col, 1.0, 0.5))
            shift[start:stop] -= np.sum(delta * (overlap * share)[..., None], axis=1)
        self._pos += shift


def relax(
    positions: Mapping[str, Position],
    edges: Iterable[WeightedEdge],
    *,
    pinned: Iterable[str] = (),
    radii: Optional[Mapping[str, float]] = None,
    center: Optional[Position] = None,
    params: Optional[LayoutSettings] = None,
    steps: Optional[int] = None,
) -> Dict[str, Position]:
    """Run a bounded relaxation and return new positions.

    ``positions`` is not modified. Pinned ids come back with exactly the
    coordinates they went in with.
    """

    simulation = Simulation(
        positions,
        edges,
        radii=radii,
        pinned=pinned,
        center=center,
        params=params,
        max_steps=steps,
    )
    return simulation.run()


# Session engine ----------------------------------------------------------------


class LayoutEngine:
    """Positions for the visible part of one graph session.

    Phases run ``UNINITIALIZED -> INITIAL_PLACEMENT -> RELAXING -> SETTLED``.
    Once settled, later filter changes reuse cached coordinates and only place
    newcomers. Relaxation restarts after :meth:`reset`, on any filter change
    while still relaxing, or when fewer than ``relayout_cached_ratio`` of the
    visible nodes have an anchored position.

    A position is anchored once a relaxation settled it or a drag dropped it.
    Positions from an interrupted relaxation stay provisional: they seed the
    next run but are not pinned.
    """

    def __init__(self, params: Optional[LayoutSettings] = None) -> None:
        self.params = params or settings.layout
        self.center: Position = (self.params.width / 2.0, self.params.height / 2.0)
        self.phase = LayoutPhase.UNINITIALIZED
        self._positions: Dict[str, Position] = {}
        self._pinned: Set[str] = set()
        self._provisional: Set[str] = set()
        self._dragging: Optional[str] = None
        self._simulation: Optional[Simulation] = None
        self._settled_event = False

    # Accessors

    @property
    def positions(self) -> Dict[str, Position]:
        return dict(self._positions)

    def position(self, node_id: str) -> Position:
        try:
            return self._positions[node_id]
        except KeyError as exc:
            raise NodeNotFoundError(f"Entity '{node_id}' is not visible") from exc

    def is_pinned(self, node_id: str) -> bool:
        return node_id in self._pinned

    @property
    def dragging(self) -> Optional[str]:
        return self._dragging

    def consume_settled(self) -> bool:
        """True once after each transition into ``SETTLED``."""

        flag = self._settled_event
        self._settled_event = False
        return flag

    # Layout

    def reset(self) -> None:
        self.phase = LayoutPhase.UNINITIALIZED
        self._positions = {}
        self._pinned = set()
        self._provisional = set()
        self._dragging = None
        self._simulation = None
        self._settled_event = False

    def layout(
        self,
        graph: BaseGraph,
        visible: VisibleGraph,
        cached: Optional[GraphState] = None,
    ) -> Dict[str, Position]:
        """Give every visible node a position.

        Nodes with an anchored cached position keep it exactly and stay
        pinned. Provisional cached positions only seed the next relaxation.
        """

        cached_positions = dict(cached.positions) if cached else {}
        node_ids = list(visible.node_ids)
        hits = [node_id for node_id in node_ids if node_id in cached_positions]
        anchored = [node_id for node_id in hits if node_id not in self._provisional]
        newcomers = [node_id for node_id in node_ids if node_id not in cached_positions]

        needs_relayout = self.phase != LayoutPhase.SETTLED or (
            bool(node_ids)
            and len(anchored) < self.params.relayout_cached_ratio * len(node_ids)
        )

        positions: Dict[str, Position] = {node_id: cached_positions[node_id] for node_id in hits}
        self._dragging = None

        if needs_relayout:
            self.phase = LayoutPhase.INITIAL_PLACEMENT
            positions.update(initial_placement(newcomers, center=self.center, params=self.params))
            self._positions = positions
            self._pinned = set(anchored)
            # Hidden nodes left over from an interrupted run stay provisional.
            self._provisional = (self._provisional - set(node_ids)) | (set(node_ids) - self._pinned)
            self._start_relaxation(graph, visible)
            logger.info(
                "[layout] relaxing %d nodes (%d anchored, %d seeded, %d placed)",
                len(node_ids),
                len(anchored),
                len(hits) - len(anchored),
                len(newcomers),
            )
        else:
            positions.update(self._place_newcomers(graph, newcomers, positions))
            self._positions = positions
            self._simulation = None
            self._pinned = set(node_ids)
            self._provisional -= set(node_ids)
            logger.debug(
                "[layout] restored %d cached positions, placed %d newcomers",
                len(hits),
                len(newcomers),
            )
        return self.positions

    def _place_newcomers(
        self,
        graph: BaseGraph,
        newcomers: Sequence[str],
        anchored: Mapping[str, Position],
    ) -> Dict[str, Position]:
        placed: Dict[str, Position] = {}
        orphans: List[str] = []
        anchor_uses: Dict[str, int] = {}
        for node_id in newcomers:
            anchor = next(
                (
                    neighbor
                    for neighbor in sorted(graph.neighbors(node_id))
                    if neighbor in anchored
                ),
                None,
            )
            if anchor is None:
                orphans.append(node_id)
                continue
            uses = anchor_uses.get(anchor, 0)
            anchor_uses[anchor] = uses + 1
            angle = uses * _GOLDEN_ANGLE
            ax, ay = anchored[anchor]
            placed[node_id] = (
                ax + self.params.neighbor_offset * math.cos(angle),
                ay + self.params.neighbor_offset * math.sin(angle),
            )
        if orphans:
            placed.update(initial_placement(orphans, center=self.center, params=self.params))
        return placed

    def _start_relaxation(self, graph: BaseGraph, visible: VisibleGraph) -> None:
        edges = [(edge.source, edge.target, float(edge.weight)) for edge in visible.edges(graph)]
        radii = {node.id: node.size for node in visible.nodes(graph)}
        self._simulation = Simulation(
            self._positions,
            edges,
            radii=radii,
            pinned=self._pinned,
            center=self.center,
            params=self.params,
        )
        self.phase = LayoutPhase.RELAXING
        if self._simulation.done:
            self._settle_now()

    def step(self, ticks: int = 1) -> bool:
        """Advance the relaxation by ``ticks`` frames; ``True`` when settled."""

        if self.phase != LayoutPhase.RELAXING or self._simulation is None:
            return self.phase == LayoutPhase.SETTLED
        for _ in range(max(1, ticks)):
            finished = self._simulation.step()
            self._sync_from_simulation()
            if finished:
                self._settle_now()
                return True
        return False

    def settle(self) -> Dict[str, Position]:
        """Run the remaining relaxation to completion."""

        while self.phase == LayoutPhase.RELAXING:
            self.step()
        return self.positions

    def _sync_from_simulation(self) -> None:
        if self._simulation is None:
            return
        for node_id, position in self._simulation.positions().items():
            if node_id == self._dragging:
                continue
            self._positions[node_id] = position

    def _settle_now(self) -> None:
        self._sync_from_simulation()
        self._simulation = None
        self._pinned = set(self._positions)
        self._provisional -= self._pinned
        self.phase = LayoutPhase.SETTLED
        self._settled_event = True
        logger.info("[layout] settled %d nodes", len(self._positions))

    # Dragging

    def begin_drag(self, node_id: str) -> Position:
        position = self.position(node_id)
        self._dragging = node_id
        self._pinned.discard(node_id)
        if self._simulation is not None:
            self._simulation.set_position(node_id, position, pinned=True)
        return position

    def drag_to(self, node_id: str, x: float, y: float) -> Position:
        if self._dragging != node_id:
            self.begin_drag(node_id)
        position = (float(x), float(y))
        self._positions[node_id] = position
        if self._simulation is not None:
            self._simulation.set_position(node_id, position, pinned=True)
        return position

    def end_drag(self, node_id: str, x: Optional[float] = None, y: Optional[float] = None) -> Position:
        if x is not None and y is not None:
            self.drag_to(node_id, x, y)
        position = self.position(node_id)
        self._dragging = None
        self._pinned.add(node_id)
        self._provisional.discard(node_id)
        if self._simulation is not None:
            self._simulation.set_position(node_id, position, pinned=True)
        return position
