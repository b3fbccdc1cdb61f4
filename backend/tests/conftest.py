from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

import pytest

from entitynet.core.config import LayoutSettings
from entitynet.models.mention import EntityMention
from entitynet.services.cooccurrence import compute_edges
from entitynet.services.graph import BaseGraph, build_graph


def mention(name: str, entity_type: str, feature_id: int) -> EntityMention:
    return EntityMention(entity_name=name, entity_type=entity_type, feature_id=feature_id)


def graph_from(mentions: Sequence[EntityMention]) -> BaseGraph:
    return build_graph(mentions, compute_edges(mentions))


class InMemoryMentionSource:
    """Serves mention rows page by page the way the Postgres reader does."""

    def __init__(self, rows: Sequence[Mapping[str, Any]], *, fail_at: int | None = None) -> None:
        self.rows: List[Dict[str, Any]] = [dict(row) for row in rows]
        self.fail_at = fail_at
        self.calls: List[tuple[int, int]] = []

    async def fetch_page(self, offset: int, limit: int) -> List[Dict[str, Any]]:
        self.calls.append((offset, limit))
        if self.fail_at is not None and offset >= self.fail_at:
            raise ConnectionError("connection reset by peer")
        return self.rows[offset : offset + limit]


@pytest.fixture
def scenario_a_mentions() -> List[EntityMention]:
    return [
        mention("X", "PERSON", 1),
        mention("Y", "LOCATION", 1),
        mention("X", "PERSON", 2),
        mention("Z", "ORG", 2),
    ]


@pytest.fixture
def scenario_a_graph(scenario_a_mentions: List[EntityMention]) -> BaseGraph:
    return graph_from(scenario_a_mentions)


@pytest.fixture
def newsroom_mentions() -> List[EntityMention]:
    """A small multi-feature corpus with a hub, a cluster and a loner."""

    return [
        mention("Alice Moreau", "PERSON", 10),
        mention("Paris", "GPE_LOCATION", 10),
        mention("Acme Corp", "ORGANIZATIONS", 10),
        mention("Alice Moreau", "PERSON", 11),
        mention("Paris", "LOCATIONS", 11),
        mention("Alice Moreau", "PEOPLE", 12),
        mention("Bob Ng", "PERSON", 12),
        mention("Lyon", "LOC", 12),
        mention("Bob Ng", "PERSON", 13),
        mention("Acme Corp", "COMPANY", 13),
        mention("Carla Diaz", "PERSON", 14),
        mention("Lyon", "PLACE", 14),
        mention("Hermit", "PERSON", 15),
    ]


@pytest.fixture
def newsroom_graph(newsroom_mentions: List[EntityMention]) -> BaseGraph:
    return graph_from(newsroom_mentions)


@pytest.fixture
def quick_layout() -> LayoutSettings:
    return LayoutSettings(max_steps=25)
