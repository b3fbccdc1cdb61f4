from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class EntityType(str, Enum):
    PERSON = "PERSON"
    LOCATION = "LOCATION"
    ORGANIZATION = "ORGANIZATION"

    def __str__(self) -> str:  # pragma: no cover - trivial behaviour
        return str(self.value)


class LayoutPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIAL_PLACEMENT = "initial_placement"
    RELAXING = "relaxing"
    SETTLED = "settled"

    def __str__(self) -> str:  # pragma: no cover - trivial behaviour
        return str(self.value)


class Point(BaseModel):
    x: float
    y: float


class GraphNodeData(BaseModel):
    id: str
    label: str
    type: EntityType
    connection_count: int
    mention_count: int
    size: float
    color: str
    feature_ids: List[int] = Field(default_factory=list)
    x: float
    y: float
    pinned: bool = True
    fill: str
    stroke_width: float = 2.0
    opacity: float = 1.0
    show_label: bool = False
    is_focus: bool = False
    is_neighbor: bool = False

    class Config:
        from_attributes = True


class GraphNode(BaseModel):
    data: GraphNodeData

    class Config:
        from_attributes = True


class GraphEdgeData(BaseModel):
    id: str
    source: str
    target: str
    weight: int
    shared_feature_ids: List[int] = Field(default_factory=list)
    stroke: str
    stroke_width: float
    stroke_opacity: float
    highlighted: bool = False

    class Config:
        from_attributes = True


class GraphEdge(BaseModel):
    data: GraphEdgeData

    class Config:
        from_attributes = True


class GraphMeta(BaseModel):
    node_count: int
    edge_count: int
    total_node_count: int
    total_edge_count: int
    layout_phase: LayoutPhase
    cached_positions: int = 0
    has_original_state: bool = False
    zoom: float = 1.0
    center: Point
    pan: Point
    hover_id: Optional[str] = None
    focus_id: Optional[str] = None
    detail_id: Optional[str] = None
    interaction_state: str = "idle"
    filters: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class GraphResponse(BaseModel):
    session_id: str
    nodes: List[GraphNode]
    edges: List[GraphEdge]
    meta: GraphMeta

    class Config:
        from_attributes = True


class EntityConnection(BaseModel):
    entity_name: str
    entity_type: EntityType
    co_occurrence_count: int


class ConnectionsByType(BaseModel):
    entity_name: str
    people: List[EntityConnection] = Field(default_factory=list)
    locations: List[EntityConnection] = Field(default_factory=list)
    organizations: List[EntityConnection] = Field(default_factory=list)


class EntityStats(BaseModel):
    entity_name: str
    entity_type: EntityType
    total_mentions: int
    unique_features: int
    connection_count: int
