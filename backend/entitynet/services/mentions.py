from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from entitynet.core.config import settings
from entitynet.db.pool import get_pool
from entitynet.models.mention import EntityMention

logger = logging.getLogger(__name__)

PageFetcher = Callable[[int, int], Awaitable[Sequence[Mapping[str, Any]]]]

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class SourceUnavailableError(RuntimeError):
    """Raised when a page of entity mentions cannot be read from the store."""


def _mention_query(table: str) -> str:
    if not _IDENTIFIER_PATTERN.match(table):
        raise ValueError(f"Invalid mention table name '{table}'")
    return (
        f"SELECT entity_name, entity_type, feature_id FROM {table} "
        "ORDER BY id LIMIT $1 OFFSET $2"
    )


async def fetch_mention_page(offset: int, limit: int) -> Sequence[Mapping[str, Any]]:
    """Read one page of mention rows ordered by row id."""

    query = _mention_query(settings.mention_table)
    pool = get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(query, limit, offset)
    return rows


def _coerce_mention(row: Mapping[str, Any]) -> Optional[EntityMention]:
    name = row.get("entity_name")
    if name is None or not str(name).strip():
        return None
    feature_id = row.get("feature_id")
    try:
        numeric = int(feature_id)
    except (TypeError, ValueError):
        return None
    if numeric < 0:
        return None
    raw_type = row.get("entity_type")
    return EntityMention(
        entity_name=str(name),
        entity_type="" if raw_type is None else str(raw_type),
        feature_id=numeric,
    )


async def fetch_all_mentions(
    *,
    batch_size: Optional[int] = None,
    fetch_page: Optional[PageFetcher] = None,
) -> List[EntityMention]:
    """Fetch every mention row, one page at a time.

    Pages are requested sequentially until one comes back shorter than
    ``batch_size``. A failing page aborts the whole fetch with
    :class:`SourceUnavailableError`; rows read before the failure are dropped.
    """

    size = batch_size if batch_size is not None else settings.mention_batch_size
    if size < 1:
        raise ValueError("batch_size must be at least 1")
    reader = fetch_page or fetch_mention_page

    mentions: List[EntityMention] = []
    skipped = 0
    offset = 0
    while True:
        logger.debug("[mentions] fetching rows %d-%d", offset, offset + size - 1)
        try:
            rows = await reader(offset, size)
        except SourceUnavailableError:
            raise
        except Exception as exc:
            logger.error("[mentions] page at offset %d failed: %s", offset, exc)
            raise SourceUnavailableError(
                f"Failed to fetch entity mentions at offset {offset}"
            ) from exc

        rows = list(rows or [])
        for row in rows:
            mention = _coerce_mention(row)
            if mention is None:
                skipped += 1
                continue
            mentions.append(mention)

        if len(rows) < size:
            break
        offset += size

    if skipped:
        logger.warning("[mentions] skipped %d malformed rows", skipped)
    logger.info("[mentions] fetched %d entity mentions", len(mentions))
    return mentions
