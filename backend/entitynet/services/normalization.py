from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from entitynet.models.graph import EntityType

__all__ = [
    "normalize_entity_type",
    "display_label",
]

# Plural spellings used by the upstream feature store.
_EXACT_TYPE_MAP: Dict[str, EntityType] = {
    "PEOPLE": EntityType.PERSON,
    "LOCATIONS": EntityType.LOCATION,
    "ORGANIZATIONS": EntityType.ORGANIZATION,
}

# Checked in order; the first matching marker wins.
_SUBSTRING_RULES: Tuple[Tuple[EntityType, Tuple[str, ...]], ...] = (
    (EntityType.PERSON, ("PERSON", "PER")),
    (EntityType.LOCATION, ("LOCATION", "LOC", "PLACE")),
    (EntityType.ORGANIZATION, ("ORG", "COMPANY", "INSTITUTION")),
)

_DISPLAY_LABELS: Dict[EntityType, str] = {
    EntityType.PERSON: "People",
    EntityType.LOCATION: "Locations",
    EntityType.ORGANIZATION: "Organizations",
}

_DEFAULT_TYPE = EntityType.ORGANIZATION


def normalize_entity_type(raw: Optional[Any]) -> EntityType:
    """Map a free-text entity type onto :class:`EntityType`.

    The mapping is total: empty or unrecognised values fall back to
    ``ORGANIZATION``.
    """

    if raw is None:
        return _DEFAULT_TYPE
    if isinstance(raw, EntityType):
        return raw
    token = str(raw).strip().upper()
    if not token:
        return _DEFAULT_TYPE

    exact = _EXACT_TYPE_MAP.get(token)
    if exact is not None:
        return exact

    for entity_type, markers in _SUBSTRING_RULES:
        if any(marker in token for marker in markers):
            return entity_type

    return _DEFAULT_TYPE


def display_label(entity_type: EntityType) -> str:
    return _DISPLAY_LABELS[entity_type]
