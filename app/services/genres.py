"""Genre cache: provider genre catalogs stored per content type."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import GenreRecord
from ..models import ContentType, GenreItem, UnknownGenreError
from .fetch_log import FetchLedger, genres_key
from .providers import ProviderRegistry

logger = logging.getLogger(__name__)


class GenreService:
    """Keeps the genre table in sync with each provider's genre catalog.

    Genres are insert-only: a name change upstream is not reflected once the
    genre has been stored.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        ledger: FetchLedger,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._providers = providers
        self._ledger = ledger
        self._session_factory = session_factory

    async def fetch_and_cache(self, content_type: ContentType) -> int:
        """Store genres not yet known for the type; return how many were added."""

        key = genres_key(content_type)
        async with self._ledger.lock(key):
            async with self._session_factory() as session:
                now = self._ledger.now()
                if await self._ledger.is_fresh(session, key, now):
                    return 0

                provider = self._providers.for_type(content_type)
                genres = await provider.fetch_genres(content_type)
                if not genres:
                    logger.warning(
                        "No %s genres returned by provider; retrying on the next refresh",
                        content_type.value,
                    )
                    return 0

                existing = await self._existing_ids(
                    session, (genre.external_id for genre in genres), content_type
                )
                to_save: list[GenreRecord] = []
                for genre in genres:
                    if genre.external_id in existing:
                        continue
                    existing.add(genre.external_id)
                    to_save.append(
                        GenreRecord(
                            external_id=genre.external_id,
                            content_type=content_type,
                            name=genre.name,
                        )
                    )
                session.add_all(to_save)
                await self._ledger.mark_fetched(session, key, now)
                await session.commit()

        logger.info("Cached %s new %s genres", len(to_save), content_type.value)
        return len(to_save)

    async def resolve(
        self,
        session: AsyncSession,
        genre_ids: Iterable[int],
        content_type: ContentType,
    ) -> list[GenreRecord]:
        """Return the genres for ``genre_ids`` or raise on the first unknown id."""

        ids = list(dict.fromkeys(genre_ids))
        if not ids:
            return []
        by_id = await self._load(session, ids, content_type)
        resolved: list[GenreRecord] = []
        for genre_id in ids:
            genre = by_id.get(genre_id)
            if genre is None:
                raise UnknownGenreError(genre_id, content_type)
            resolved.append(genre)
        return resolved

    async def name_map(
        self,
        session: AsyncSession,
        genre_ids: Iterable[int],
        content_type: ContentType,
    ) -> dict[int, str]:
        ids = list(dict.fromkeys(genre_ids))
        if not ids:
            return {}
        by_id = await self._load(session, ids, content_type)
        return {genre_id: genre.name for genre_id, genre in by_id.items()}

    async def list_genres(self, content_type: ContentType) -> list[GenreItem]:
        async with self._session_factory() as session:
            stmt = (
                select(GenreRecord)
                .where(GenreRecord.content_type == content_type)
                .order_by(GenreRecord.name)
            )
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [
            GenreItem(
                external_id=record.external_id,
                content_type=record.content_type,
                name=record.name,
            )
            for record in records
        ]

    @staticmethod
    async def _load(
        session: AsyncSession, ids: list[int], content_type: ContentType
    ) -> dict[int, GenreRecord]:
        stmt = select(GenreRecord).where(
            GenreRecord.content_type == content_type,
            GenreRecord.external_id.in_(ids),
        )
        result = await session.execute(stmt)
        return {record.external_id: record for record in result.scalars().all()}

    async def _existing_ids(
        self,
        session: AsyncSession,
        genre_ids: Iterable[int],
        content_type: ContentType,
    ) -> set[int]:
        by_id = await self._load(session, list(dict.fromkeys(genre_ids)), content_type)
        return set(by_id)
