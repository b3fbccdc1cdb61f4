from __future__ import annotations

from typing import Any, FrozenSet, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from entitynet.models.graph import EntityType

ALL_ENTITY_TYPES: FrozenSet[EntityType] = frozenset(EntityType)


class FilterOptions(BaseModel):
    """Active filters of a graph session.

    ``explicit_selection`` takes precedence over every other field when it is
    non-empty; see ``entitynet.services.visibility``.
    """

    model_config = ConfigDict(frozen=True)

    search_text: str = ""
    allowed_types: FrozenSet[EntityType] = Field(default=ALL_ENTITY_TYPES)
    min_connections: int = Field(default=1, ge=1)
    explicit_selection: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("search_text", mode="before")
    @classmethod
    def _strip_search(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("allowed_types", mode="before")
    @classmethod
    def _parse_types(cls, value: Any) -> Any:
        if value is None:
            return ALL_ENTITY_TYPES
        if isinstance(value, str):
            value = [token for token in value.split(",")]
        parsed: set[EntityType] = set()
        for raw in value:
            if isinstance(raw, EntityType):
                parsed.add(raw)
                continue
            token = str(raw).strip().upper()
            if not token:
                continue
            try:
                parsed.add(EntityType(token))
            except ValueError as exc:
                raise ValueError(f"Unsupported entity type '{raw}'") from exc
        return frozenset(parsed)

    @field_validator("explicit_selection", mode="before")
    @classmethod
    def _parse_selection(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(item) for item in value if str(item).strip())

    @property
    def is_identity(self) -> bool:
        return (
            not self.search_text
            and self.allowed_types == ALL_ENTITY_TYPES
            and self.min_connections <= 1
            and not self.explicit_selection
        )

    def describe(self) -> dict[str, Any]:
        return {
            "search_text": self.search_text,
            "allowed_types": sorted(str(item) for item in self.allowed_types),
            "min_connections": self.min_connections,
            "explicit_selection": sorted(self.explicit_selection),
        }


class DragRequest(BaseModel):
    phase: Literal["start", "move", "end"]
    x: Optional[float] = None
    y: Optional[float] = None


class ViewportRequest(BaseModel):
    action: Literal["zoom_in", "zoom_out", "reset", "set_zoom", "pan"]
    zoom: Optional[float] = Field(default=None, gt=0)
    dx: float = 0.0
    dy: float = 0.0


class LayoutStepRequest(BaseModel):
    steps: int = Field(default=1, ge=1, le=500)
