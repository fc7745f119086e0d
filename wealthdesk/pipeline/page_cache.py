"""Redis-backed cache of rendered proposal pages.

Key format: ``page:{proposal_id}:{page_number}`` holding PageContent JSON
with a TTL. Placeholders are never cached.
"""

from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError

from wealthdesk.config import settings
from wealthdesk.models.enums import ProposalPage
from wealthdesk.schemas.proposal import PageContent

logger = logging.getLogger(__name__)


def page_key(proposal_id: uuid.UUID, page_number: int) -> str:
    return f"page:{proposal_id}:{int(page_number)}"


class PageCache:
    """Get/set/invalidate rendered pages for a proposal."""

    def __init__(self, redis: aioredis.Redis, ttl: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl or settings.renderer.page_cache_ttl

    async def get(self, proposal_id: uuid.UUID, page_number: int) -> PageContent | None:
        raw = await self._redis.get(page_key(proposal_id, page_number))
        if raw is None:
            return None
        try:
            return PageContent.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Dropping corrupt cached page %s", page_key(proposal_id, page_number))
            await self._redis.delete(page_key(proposal_id, page_number))
            return None

    async def set(self, page: PageContent) -> None:
        if page.is_placeholder:
            return
        await self._redis.set(
            page_key(page.proposal_id, page.page_number),
            page.model_dump_json(),
            ex=self._ttl,
        )

    async def invalidate(self, proposal_id: uuid.UUID, page_number: int | None = None) -> None:
        """Drop one cached page, or every page of the proposal."""
        if page_number is not None:
            keys = [page_key(proposal_id, page_number)]
        else:
            keys = [page_key(proposal_id, page) for page in ProposalPage]
        await self._redis.delete(*keys)
        logger.debug("Invalidated cached page(s) %s", keys)
