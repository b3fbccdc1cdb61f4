from .graph import (
    ConnectionsByType,
    EntityConnection,
    EntityStats,
    EntityType,
    GraphEdge,
    GraphEdgeData,
    GraphMeta,
    GraphNode,
    GraphNodeData,
    GraphResponse,
    LayoutPhase,
    Point,
)
from .mention import EntityMention
from .session import DragRequest, FilterOptions, LayoutStepRequest, ViewportRequest

__all__ = [
    "ConnectionsByType",
    "DragRequest",
    "EntityConnection",
    "EntityMention",
    "EntityStats",
    "EntityType",
    "FilterOptions",
    "GraphEdge",
    "GraphEdgeData",
    "GraphMeta",
    "GraphNode",
    "GraphNodeData",
    "GraphResponse",
    "LayoutPhase",
    "LayoutStepRequest",
    "Point",
    "ViewportRequest",
]
