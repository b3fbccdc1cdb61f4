from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class EntityMention(BaseModel):
    """One (entity, feature) association as stored upstream."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    entity_name: str
    entity_type: str = ""
    feature_id: int = Field(ge=0)
