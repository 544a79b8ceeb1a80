"""Free-text recommendations resolved into stored content."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import RecommendationLog
from ..models import ContentType, ContentValidationError, ContentView
from .content import ContentService
from .gemini import GeminiClient

logger = logging.getLogger(__name__)


class RecommendationService:
    """Asks Gemini for titles, then resolves each one through a content search."""

    def __init__(
        self,
        gemini_client: GeminiClient,
        content_service: ContentService,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._gemini = gemini_client
        self._content = content_service
        self._session_factory = session_factory

    async def recommend(
        self, description: str, content_type: ContentType
    ) -> list[ContentView]:
        cleaned = (description or "").strip()
        if not cleaned:
            raise ContentValidationError("A description is required")

        titles = await self._gemini.recommend_titles(cleaned, content_type)
        results: list[ContentView] = []
        seen: set[int] = set()
        for title in titles:
            found = await self._content.search_content(content_type, title)
            if not found:
                logger.debug("No %s match found for %r", content_type.value, title)
                continue
            match = found[0]
            if match.id in seen:
                continue
            seen.add(match.id)
            results.append(match)

        async with self._session_factory() as session:
            session.add(
                RecommendationLog(
                    content_type=content_type,
                    input_description=cleaned,
                    recommended_titles=", ".join(titles),
                )
            )
            await session.commit()

        logger.info(
            "Resolved %s of %s recommended %s titles",
            len(results),
            len(titles),
            content_type.value,
        )
        return results
