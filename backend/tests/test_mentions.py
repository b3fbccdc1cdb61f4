from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from conftest import InMemoryMentionSource
from entitynet.services import mentions as mentions_service
from entitynet.services.mentions import (
    SourceUnavailableError,
    fetch_all_mentions,
    fetch_mention_page,
)


class FakeAcquireContext:
    def __init__(self, conn: "FakeMentionConnection") -> None:
        self._conn = conn

    async def __aenter__(self) -> "FakeMentionConnection":
        return self._conn

    async def __aexit__(self, exc_type, exc, tb) -> bool:  # pragma: no cover - nothing to clean up
        return False


class FakePool:
    def __init__(self, conn: "FakeMentionConnection") -> None:
        self._conn = conn

    def acquire(self) -> FakeAcquireContext:
        return FakeAcquireContext(self._conn)


class FakeMentionConnection:
    def __init__(self, rows: List[Dict[str, Any]]) -> None:
        self.rows = rows
        self.queries: List[tuple[str, int, int]] = []

    async def fetch(self, query: str, limit: int, offset: int) -> List[Dict[str, Any]]:
        self.queries.append((query, limit, offset))
        return self.rows[offset : offset + limit]


def _rows(count: int) -> List[Dict[str, Any]]:
    return [
        {"entity_name": f"Entity {index}", "entity_type": "PERSON", "feature_id": index // 3}
        for index in range(count)
    ]


def test_fetch_mention_page_reads_configured_table(monkeypatch: pytest.MonkeyPatch) -> None:
    asyncio.run(_run_fetch_mention_page(monkeypatch))


async def _run_fetch_mention_page(monkeypatch: pytest.MonkeyPatch) -> None:
    conn = FakeMentionConnection(_rows(5))
    monkeypatch.setattr(mentions_service, "get_pool", lambda: FakePool(conn))
    monkeypatch.setattr(mentions_service.settings, "mention_table", "public.feature_entities")

    rows = await fetch_mention_page(2, 2)

    assert [row["entity_name"] for row in rows] == ["Entity 2", "Entity 3"]
    query, limit, offset = conn.queries[0]
    assert "FROM public.feature_entities" in query
    assert "ORDER BY id" in query
    assert (limit, offset) == (2, 2)


def test_fetch_mention_page_rejects_unsafe_table_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mentions_service.settings, "mention_table", "mentions; DROP TABLE x")
    with pytest.raises(ValueError):
        asyncio.run(fetch_mention_page(0, 10))


def test_fetch_all_mentions_stops_on_short_page() -> None:
    source = InMemoryMentionSource(_rows(7))

    mentions = asyncio.run(fetch_all_mentions(batch_size=3, fetch_page=source.fetch_page))

    assert len(mentions) == 7
    assert source.calls == [(0, 3), (3, 3), (6, 3)]
    assert mentions[0].entity_name == "Entity 0"
    assert mentions[-1].feature_id == 2


def test_fetch_all_mentions_requests_one_extra_page_when_exact_multiple() -> None:
    source = InMemoryMentionSource(_rows(6))

    mentions = asyncio.run(fetch_all_mentions(batch_size=3, fetch_page=source.fetch_page))

    assert len(mentions) == 6
    assert source.calls == [(0, 3), (3, 3), (6, 3)]


def test_fetch_all_mentions_with_empty_source_returns_nothing() -> None:
    source = InMemoryMentionSource([])

    assert asyncio.run(fetch_all_mentions(batch_size=10, fetch_page=source.fetch_page)) == []
    assert source.calls == [(0, 10)]


def test_fetch_all_mentions_aborts_on_page_failure() -> None:
    source = InMemoryMentionSource(_rows(10), fail_at=4)

    with pytest.raises(SourceUnavailableError) as exc:
        asyncio.run(fetch_all_mentions(batch_size=2, fetch_page=source.fetch_page))

    assert "offset 4" in str(exc.value)
    assert isinstance(exc.value.__cause__, ConnectionError)


def test_fetch_all_mentions_reports_missing_pool_as_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def no_pool() -> None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")

    monkeypatch.setattr(mentions_service, "get_pool", no_pool)

    with pytest.raises(SourceUnavailableError):
        asyncio.run(fetch_all_mentions(batch_size=5))


def test_fetch_all_mentions_skips_malformed_rows() -> None:
    rows = [
        {"entity_name": "Ada", "entity_type": "PERSON", "feature_id": 1},
        {"entity_name": "", "entity_type": "PERSON", "feature_id": 1},
        {"entity_name": "Oslo", "entity_type": None, "feature_id": "2"},
        {"entity_name": "Broken", "entity_type": "ORG", "feature_id": "n/a"},
        {"entity_name": "Negative", "entity_type": "ORG", "feature_id": -4},
    ]
    source = InMemoryMentionSource(rows)

    mentions = asyncio.run(fetch_all_mentions(batch_size=100, fetch_page=source.fetch_page))

    assert [(m.entity_name, m.entity_type, m.feature_id) for m in mentions] == [
        ("Ada", "PERSON", 1),
        ("Oslo", "", 2),
    ]


def test_fetch_all_mentions_rejects_non_positive_batch_size() -> None:
    source = InMemoryMentionSource(_rows(3))
    with pytest.raises(ValueError):
        asyncio.run(fetch_all_mentions(batch_size=0, fetch_page=source.fetch_page))
    assert source.calls == []
