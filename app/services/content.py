"""Content reconciliation: TTL-gated provider refreshes merged into the store."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import ContentRecord
from ..models import (
    ContentDetailsView,
    ContentItem,
    ContentLabel,
    ContentType,
    ContentValidationError,
    ContentView,
    TrailerInfo,
)
from .fetch_log import FetchLedger, details_key, discover_key, trending_key
from .genres import GenreService
from .providers import ProviderRegistry
from .store import ContentStore

logger = logging.getLogger(__name__)


class ContentService:
    """Serves cached content and refreshes it from providers when stale.

    Provider calls for one fetch key run under that key's ledger lock, so
    concurrent callers of a stale key wait for the first refresh and then
    read its result. Every merge into the store (existence check, inserts,
    updates and the ledger stamp) happens under a single write lock and is
    committed once, keeping (external_id, type) unique across patterns.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        genres: GenreService,
        ledger: FetchLedger,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._providers = providers
        self._genres = genres
        self._ledger = ledger
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    async def get_content(self, content_id: int) -> ContentView | None:
        async with self._session_factory() as session:
            record = await ContentStore(session).get(content_id)
            if record is None:
                return None
            return (await self._to_views(session, [record]))[0]

    async def get_content_by_external_id(
        self, external_id: str, content_type: ContentType
    ) -> ContentView | None:
        """Return stored content, fetching and storing it from the provider on a miss."""

        async with self._session_factory() as session:
            record = await ContentStore(session).find(external_id, content_type)
            if record is not None:
                return (await self._to_views(session, [record]))[0]

        async with self._ledger.lock(details_key(content_type, external_id)):
            provider = self._providers.for_type(content_type)
            async with self._session_factory() as session:
                record = await ContentStore(session).find(external_id, content_type)
                if record is None:
                    item = await provider.fetch_details(external_id, content_type)
                    if item is None:
                        return None
                    record = await self._insert_single(item)
                return (await self._to_views(session, [record]))[0]

    async def get_content_by_type(self, content_type: ContentType) -> list[ContentView]:
        """Catalog fetch; always returns every stored record of the type."""

        key = discover_key(content_type)
        if not await self._is_fresh(key):
            async with self._ledger.lock(key):
                if not await self._is_fresh(key):
                    await self._refresh_catalog(content_type, key)

        async with self._session_factory() as session:
            records = await ContentStore(session).list_by_type(content_type)
            return await self._to_views(session, records)

    async def get_trending_content(
        self, content_type: ContentType
    ) -> list[ContentView]:
        key = trending_key(content_type)
        if not await self._is_fresh(key):
            async with self._ledger.lock(key):
                if not await self._is_fresh(key):
                    await self._refresh_trending(content_type, key)

        async with self._session_factory() as session:
            records = await ContentStore(session).list_by_type(
                content_type, ContentLabel.TRENDING
            )
            return await self._to_views(session, records)

    async def get_content_details(
        self, external_id: str, content_type: ContentType
    ) -> ContentDetailsView | None:
        """Return the detail view, refreshing images, trailer and recommendations when stale."""

        key = details_key(content_type, external_id)
        cached = await self._cached_details(key, external_id, content_type)
        if cached is not None:
            return cached

        async with self._ledger.lock(key):
            cached = await self._cached_details(key, external_id, content_type)
            if cached is not None:
                return cached
            return await self._refresh_details(key, external_id, content_type)

    async def search_content(
        self, content_type: ContentType, query: str
    ) -> list[ContentView]:
        """Live provider search; hits are merged unless their external id is known for any type."""

        cleaned = (query or "").strip()
        if not cleaned:
            raise ContentValidationError("A search query is required")

        provider = self._providers.for_type(content_type)
        items = await provider.search(cleaned, content_type)
        if not items:
            return []
        await self._ensure_genres(items)

        async with self._write_lock, self._session_factory() as session:
            store = ContentStore(session)
            new_items = await self._unseen(store, items, any_type=True)
            records = await self._build_records(session, new_items)
            store.add_all(records)
            await session.commit()

        if records:
            logger.info(
                "Stored %s new titles from %s search %r",
                len(records),
                content_type.value,
                cleaned,
            )

        search_ids = [item.external_id for item in items]
        async with self._session_factory() as session:
            matches = await ContentStore(session).find_by_external_ids(
                search_ids, content_type
            )
            order = {external_id: index for index, external_id in enumerate(search_ids)}
            matches.sort(key=lambda record: order.get(record.external_id, len(order)))
            return await self._to_views(session, matches)

    async def fetch_and_cache_genres(self, content_type: ContentType) -> None:
        await self._genres.fetch_and_cache(content_type)

    async def _refresh_catalog(self, content_type: ContentType, key: str) -> None:
        now = self._ledger.now()
        logger.info("Refreshing %s catalog", content_type.value)
        items = await self._providers.for_type(content_type).fetch_catalog(content_type)
        await self._ensure_genres(items)

        async with self._write_lock, self._session_factory() as session:
            store = ContentStore(session)
            new_items = await self._unseen(store, items)
            records = await self._build_records(session, new_items)
            store.add_all(records)
            await self._ledger.mark_fetched(session, key, now)
            await session.commit()

        logger.info(
            "Catalog refresh for %s stored %s of %s fetched titles",
            content_type.value,
            len(records),
            len(items),
        )

    async def _refresh_trending(self, content_type: ContentType, key: str) -> None:
        now = self._ledger.now()
        logger.info("Refreshing %s trending titles", content_type.value)
        items = await self._providers.for_type(content_type).fetch_trending(
            content_type
        )
        await self._ensure_genres(items)

        async with self._write_lock, self._session_factory() as session:
            store = ContentStore(session)
            existing = {
                record.external_id: record
                for record in await store.find_by_external_ids(
                    (item.external_id for item in items), content_type
                )
            }
            created: list[ContentRecord] = []
            updated = 0
            seen: set[str] = set()
            for item in items:
                if item.external_id in seen:
                    continue
                seen.add(item.external_id)
                record = existing.get(item.external_id)
                if record is not None:
                    await self._apply_update(session, record, item)
                    updated += 1
                else:
                    created.append(await self._build_record(session, item))
            store.add_all(created)
            await self._ledger.mark_fetched(session, key, now)
            await session.commit()

        logger.info(
            "Trending refresh for %s updated %s and created %s titles",
            content_type.value,
            updated,
            len(created),
        )

    async def _cached_details(
        self, key: str, external_id: str, content_type: ContentType
    ) -> ContentDetailsView | None:
        async with self._session_factory() as session:
            if not await self._ledger.is_fresh(session, key):
                return None
            record = await ContentStore(session).find(external_id, content_type)
            if record is None:
                return None
            return await self._details_view(session, record)

    async def _refresh_details(
        self, key: str, external_id: str, content_type: ContentType
    ) -> ContentDetailsView | None:
        now = self._ledger.now()
        provider = self._providers.for_type(content_type)

        async with self._session_factory() as session:
            record = await ContentStore(session).find(external_id, content_type)
            base_item: ContentItem | None = None
            if record is None:
                base_item = await provider.fetch_details(external_id, content_type)
                if base_item is None:
                    logger.info(
                        "No %s content found upstream for %s",
                        content_type.value,
                        external_id,
                    )
                    return None

        logger.info("Refreshing details for %s %s", content_type.value, external_id)
        images = await provider.fetch_images(external_id, content_type)
        trailer: TrailerInfo | None = None
        if not provider.inline_trailer:
            trailer = await provider.fetch_trailer(external_id, content_type)
        recommendations = await provider.fetch_recommendations(
            external_id, content_type
        )
        recommendations = [
            item for item in recommendations if item.external_id != external_id
        ]
        await self._ensure_genres(
            recommendations if base_item is None else [base_item, *recommendations]
        )

        async with self._write_lock, self._session_factory() as session:
            store = ContentStore(session)
            record = await store.find(external_id, content_type)
            if record is None:
                if base_item is None:
                    base_item = await provider.fetch_details(external_id, content_type)
                    if base_item is None:
                        return None
                record = await self._build_record(session, base_item)
                store.add(record)
                await session.flush()

            new_items = await self._unseen(store, recommendations)
            store.add_all(await self._build_records(session, new_items))

            if images:
                record.image_urls = images
            if trailer is not None:
                record.trailer_url = trailer.url
                record.trailer_id = trailer.id
            record.recommended_content_ids = self._merge_ids(
                record.recommended_content_ids,
                (item.external_id for item in recommendations),
            )
            await self._ledger.mark_fetched(session, key, now)
            await session.commit()

            logger.info(
                "Details refresh for %s %s stored %s recommended titles",
                content_type.value,
                external_id,
                len(new_items),
            )
            return await self._details_view(session, record)

    async def _insert_single(self, item: ContentItem) -> ContentRecord:
        await self._ensure_genres([item])
        async with self._write_lock, self._session_factory() as session:
            store = ContentStore(session)
            record = await store.find(item.external_id, item.type)
            if record is None:
                record = await self._build_record(session, item)
                store.add(record)
                await session.commit()
            return record

    async def _ensure_genres(self, items: Iterable[ContentItem]) -> None:
        """Retry genre caching for the item types; a no-op while their genre key is fresh."""

        for content_type in dict.fromkeys(item.type for item in items):
            await self._genres.fetch_and_cache(content_type)

    async def _is_fresh(self, key: str) -> bool:
        async with self._session_factory() as session:
            return await self._ledger.is_fresh(session, key)

    async def _unseen(
        self,
        store: ContentStore,
        items: Sequence[ContentItem],
        *,
        any_type: bool = False,
    ) -> list[ContentItem]:
        """Return items not yet stored, keeping the first of any in-batch duplicates.

        ``any_type`` matches on external id alone, ignoring the content type.
        """

        if not items:
            return []
        existing = await store.existing_keys(item.external_id for item in items)
        if any_type:
            seen: set[object] = {external_id for external_id, _ in existing}
        else:
            seen = set(existing)

        unseen: list[ContentItem] = []
        for item in items:
            marker = item.external_id if any_type else (item.external_id, item.type)
            if marker in seen:
                continue
            seen.add(marker)
            unseen.append(item)
        return unseen

    async def _build_records(
        self, session: AsyncSession, items: Iterable[ContentItem]
    ) -> list[ContentRecord]:
        return [await self._build_record(session, item) for item in items]

    async def _build_record(
        self, session: AsyncSession, item: ContentItem
    ) -> ContentRecord:
        """Create a record for ``item``; unknown genre ids raise before anything is stored."""

        genres = await self._genres.resolve(session, item.genre_ids, item.type)
        return ContentRecord(
            external_id=item.external_id,
            content_type=item.type,
            label=item.label,
            title=item.title,
            description=item.description,
            poster_url=item.poster_url,
            backdrop_url=item.backdrop_url,
            trailer_url=item.trailer_url,
            trailer_id=item.trailer_id,
            release_date=item.release_date,
            cast_list=item.cast_list,
            rating=item.rating,
            genre_ids=[genre.external_id for genre in genres],
            image_urls=list(item.image_urls),
            recommended_content_ids=self._merge_ids([], item.recommended_content_ids),
        )

    async def _apply_update(
        self, session: AsyncSession, record: ContentRecord, item: ContentItem
    ) -> None:
        """Overwrite listing fields in place; keep detail fields the item lacks."""

        genres = await self._genres.resolve(session, item.genre_ids, item.type)
        record.label = item.label
        record.title = item.title
        record.description = item.description
        record.poster_url = item.poster_url
        record.backdrop_url = item.backdrop_url
        record.release_date = item.release_date
        record.rating = item.rating
        record.genre_ids = [genre.external_id for genre in genres]
        if item.cast_list:
            record.cast_list = item.cast_list
        if item.trailer_url:
            record.trailer_url = item.trailer_url
            record.trailer_id = item.trailer_id
        if item.image_urls:
            record.image_urls = list(item.image_urls)
        record.recommended_content_ids = self._merge_ids(
            record.recommended_content_ids, item.recommended_content_ids
        )

    @staticmethod
    def _merge_ids(current: Iterable[str] | None, extra: Iterable[str]) -> list[str]:
        return list(dict.fromkeys([*(current or []), *extra]))

    async def _details_view(
        self, session: AsyncSession, record: ContentRecord
    ) -> ContentDetailsView:
        recommended_ids = list(record.recommended_content_ids or [])
        recommended = await ContentStore(session).find_by_external_ids(
            recommended_ids, record.content_type
        )
        order = {external_id: index for index, external_id in enumerate(recommended_ids)}
        recommended.sort(key=lambda entry: order.get(entry.external_id, len(order)))

        views = await self._to_views(session, [record, *recommended])
        base = views[0]
        return ContentDetailsView(
            **base.model_dump(), recommended_content=views[1:]
        )

    async def _to_views(
        self, session: AsyncSession, records: Sequence[ContentRecord]
    ) -> list[ContentView]:
        ids_by_type: dict[ContentType, set[int]] = defaultdict(set)
        for record in records:
            ids_by_type[record.content_type].update(record.genre_ids or [])
        names: dict[ContentType, dict[int, str]] = {}
        for content_type, genre_ids in ids_by_type.items():
            names[content_type] = await self._genres.name_map(
                session, genre_ids, content_type
            )

        views: list[ContentView] = []
        for record in records:
            type_names = names.get(record.content_type, {})
            views.append(
                ContentView(
                    id=record.id,
                    external_id=record.external_id,
                    type=record.content_type,
                    label=record.label,
                    title=record.title,
                    description=record.description,
                    genre_names=[
                        type_names[genre_id]
                        for genre_id in record.genre_ids or []
                        if genre_id in type_names
                    ],
                    poster_url=record.poster_url,
                    backdrop_url=record.backdrop_url,
                    trailer_url=record.trailer_url,
                    trailer_id=record.trailer_id,
                    release_date=record.release_date,
                    cast_list=record.cast_list,
                    rating=record.rating,
                    image_urls=list(record.image_urls or []),
                    recommended_content_ids=list(record.recommended_content_ids or []),
                )
            )
        return views
