"""
Engagement Service

Read-only access to like counts within a round's engagement window.

Design:
- Only count-by-window semantics are needed: likes with
  start <= created_at < end
- SqlEngagementReader opens its own session per call so counts can be
  gathered concurrently without sharing a connection
- HttpEngagementReader talks to an external engagement store
- count_likes_for_posts bounds concurrency and wall-clock time; any failure
  surfaces as EngagementReadFailure so callers abort before writing
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import httpx
from sqlalchemy import select, func

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.exceptions import EngagementReadFailure
from competition_engine.orm.engagement import PostLike

logger = logging.getLogger(__name__)


class EngagementReader:
    """Interface for counting in-window likes on a post."""

    async def count_in_window(self, post_id: str, start: datetime, end: datetime) -> int:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class SqlEngagementReader(EngagementReader):
    """Counts rows of the local post_likes table."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def count_in_window(self, post_id: str, start: datetime, end: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(PostLike.id)).where(
                    PostLike.post_id == post_id,
                    PostLike.created_at >= start,
                    PostLike.created_at < end
                )
            )
            return int(result.scalar() or 0)


class HttpEngagementReader(EngagementReader):
    """
    Reads counts from an engagement service:

        GET {base_url}/posts/{post_id}/likes/count?from=<iso>&to=<iso>
        -> {"count": <int>}

    The post id is sent as a single percent-encoded path segment.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers=headers,
        )

    async def count_in_window(self, post_id: str, start: datetime, end: datetime) -> int:
        params = {"from": start.isoformat(), "to": end.isoformat()}
        try:
            response = await self._client.get(f"/posts/{quote(post_id, safe='')}/likes/count", params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Engagement lookup failed for post {post_id}: {str(e)}")
            raise EngagementReadFailure(f"Engagement lookup failed for post {post_id}", post_id=post_id) from e
        except ValueError as e:
            raise EngagementReadFailure(f"Malformed engagement response for post {post_id}", post_id=post_id) from e

        count = payload.get("count") if isinstance(payload, dict) else None
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise EngagementReadFailure(f"Malformed engagement response for post {post_id}", post_id=post_id)
        return count

    async def aclose(self) -> None:
        await self._client.aclose()


def build_engagement_reader(settings: EngineSettings, session_factory) -> EngagementReader:
    """HTTP reader when an engagement service is configured, local table otherwise."""
    if settings.engagement_service_url:
        return HttpEngagementReader(
            settings.engagement_service_url,
            timeout_seconds=settings.engagement_timeout_seconds,
        )
    return SqlEngagementReader(session_factory)


async def count_likes_for_posts(
    reader: EngagementReader,
    post_ids: Iterable[str],
    start: datetime,
    end: datetime,
    timeout_seconds: float = 5.0,
    max_concurrency: int = 10
) -> Dict[str, int]:
    """
    Count in-window likes for many posts at once.

    Returns {post_id: likes}. Raises EngagementReadFailure if any single
    lookup fails or the whole batch exceeds timeout_seconds.
    """
    unique_ids = list(dict.fromkeys(post_ids))
    if not unique_ids:
        return {}

    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _count(post_id: str) -> int:
        async with semaphore:
            return await reader.count_in_window(post_id, start, end)

    try:
        counts = await asyncio.wait_for(
            asyncio.gather(*(_count(post_id) for post_id in unique_ids)),
            timeout=timeout_seconds
        )
    except asyncio.TimeoutError as e:
        logger.error(
            f"[ENGAGEMENT] timeout after {timeout_seconds}s counting {len(unique_ids)} posts"
        )
        raise EngagementReadFailure(
            f"Engagement counting exceeded {timeout_seconds} seconds"
        ) from e
    except EngagementReadFailure:
        raise
    except Exception as e:
        logger.error(f"[ENGAGEMENT] lookup failed: {type(e).__name__}: {str(e)}")
        raise EngagementReadFailure(f"Engagement lookup failed: {str(e)}") from e

    return dict(zip(unique_ids, counts))
