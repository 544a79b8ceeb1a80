"""Behaviour of the cached content service against stub providers."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

import pytest
from sqlalchemy import func, select

from app.database import Database
from app.db_models import ContentRecord, FetchLogEntry
from app.models import (
    ContentItem,
    ContentLabel,
    ContentType,
    ContentValidationError,
    GenreItem,
    TrailerInfo,
    UnknownGenreError,
)
from app.services.content import ContentService
from app.services.fetch_log import FetchLedger
from app.services.genres import GenreService
from app.services.providers import ProviderRegistry

GENRES = {
    ContentType.MOVIE: [(28, "Action"), (878, "Science Fiction")],
    ContentType.SERIES: [(18, "Drama")],
    ContentType.ANIME: [(1, "Action"), (2, "Adventure")],
}


def make_item(
    external_id: str,
    content_type: ContentType = ContentType.MOVIE,
    *,
    label: ContentLabel = ContentLabel.CONTENT,
    **overrides: Any,
) -> ContentItem:
    data: dict[str, Any] = {
        "external_id": external_id,
        "type": content_type,
        "label": label,
        "title": f"Title {external_id}",
        "description": "Overview",
        "poster_url": f"https://img.example/{external_id}.jpg",
        "rating": 7.5,
        "genre_ids": [GENRES[content_type][0][0]],
    }
    data.update(overrides)
    return ContentItem(**data)


class StubProvider:
    """Provider stub returning canned data and counting every call."""

    def __init__(self, *, inline_trailer: bool = False) -> None:
        self.inline_trailer = inline_trailer
        self.calls: Counter[str] = Counter()
        self.catalog: list[ContentItem] = []
        self.trending: list[ContentItem] = []
        self.search_results: list[ContentItem] = []
        self.details: dict[str, ContentItem] = {}
        self.images: list[str] = []
        self.trailer: TrailerInfo | None = None
        self.recommendations: list[ContentItem] = []
        self.genre_failures = 0

    async def fetch_catalog(self, content_type: ContentType) -> list[ContentItem]:
        self.calls["catalog"] += 1
        await asyncio.sleep(0)
        return list(self.catalog)

    async def fetch_trending(self, content_type: ContentType) -> list[ContentItem]:
        self.calls["trending"] += 1
        await asyncio.sleep(0)
        return list(self.trending)

    async def search(self, query: str, content_type: ContentType) -> list[ContentItem]:
        self.calls["search"] += 1
        return list(self.search_results)

    async def fetch_details(
        self, external_id: str, content_type: ContentType
    ) -> ContentItem | None:
        self.calls["details"] += 1
        return self.details.get(external_id)

    async def fetch_genres(self, content_type: ContentType) -> list[GenreItem]:
        self.calls["genres"] += 1
        if self.genre_failures:
            self.genre_failures -= 1
            return []
        return [
            GenreItem(external_id=genre_id, content_type=content_type, name=name)
            for genre_id, name in GENRES[content_type]
        ]

    async def fetch_images(
        self, external_id: str, content_type: ContentType
    ) -> list[str]:
        self.calls["images"] += 1
        return list(self.images)

    async def fetch_trailer(
        self, external_id: str, content_type: ContentType
    ) -> TrailerInfo | None:
        self.calls["trailer"] += 1
        return self.trailer

    async def fetch_recommendations(
        self, external_id: str, content_type: ContentType
    ) -> list[ContentItem]:
        self.calls["recommendations"] += 1
        return list(self.recommendations)


Scenario = Callable[[ContentService, Database], Awaitable[Any]]


def run_scenario(
    tmp_path,
    scenario: Scenario,
    tmdb: StubProvider,
    jikan: StubProvider | None = None,
    *,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> Any:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'content.db'}")
    registry = ProviderRegistry.from_clients(tmdb, jikan or StubProvider(inline_trailer=True))
    ledger = FetchLedger(timedelta(hours=12), clock=clock)
    genres = GenreService(registry, ledger, database.session_factory)
    service = ContentService(registry, genres, ledger, database.session_factory)

    async def runner() -> Any:
        await database.create_all()
        try:
            for content_type in ContentType:
                await service.fetch_and_cache_genres(content_type)
            return await scenario(service, database)
        finally:
            await database.dispose()

    return asyncio.run(runner())


async def count_contents(database: Database) -> int:
    async with database.session_factory() as session:
        result = await session.execute(select(func.count(ContentRecord.id)))
        return int(result.scalar_one())


def test_catalog_is_fetched_once_within_ttl(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item("603"), make_item("604"), make_item("603")]

    async def scenario(service: ContentService, database: Database):
        first = await service.get_content_by_type(ContentType.MOVIE)
        second = await service.get_content_by_type(ContentType.MOVIE)
        return first, second, await count_contents(database)

    first, second, stored = run_scenario(tmp_path, scenario, tmdb)

    assert tmdb.calls["catalog"] == 1
    assert [view.external_id for view in first] == ["603", "604"]
    assert [view.id for view in second] == [view.id for view in first]
    assert first[0].genre_names == ["Action"]
    assert stored == 2


def test_catalog_returns_every_stored_title_of_the_type(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item("603")]
    tmdb.search_results = [make_item("700"), make_item("800", ContentType.SERIES)]

    async def scenario(service: ContentService, database: Database):
        await service.search_content(ContentType.MOVIE, "anything")
        return await service.get_content_by_type(ContentType.MOVIE)

    views = run_scenario(tmp_path, scenario, tmdb)

    assert [view.external_id for view in views] == ["700", "603"]
    assert all(view.type is ContentType.MOVIE for view in views)


def test_concurrent_catalog_requests_share_one_refresh(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item(str(index)) for index in range(5)]

    async def scenario(service: ContentService, database: Database):
        results = await asyncio.gather(
            *(service.get_content_by_type(ContentType.MOVIE) for _ in range(5))
        )
        return results, await count_contents(database)

    results, stored = run_scenario(tmp_path, scenario, tmdb)

    assert tmdb.calls["catalog"] == 1
    assert stored == 5
    assert all(len(result) == 5 for result in results)


def test_unknown_genre_aborts_without_persisting(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item("1"), make_item("2", genre_ids=[999])]

    async def scenario(service: ContentService, database: Database):
        with pytest.raises(UnknownGenreError):
            await service.get_content_by_type(ContentType.MOVIE)
        async with database.session_factory() as session:
            entry = await session.get(FetchLogEntry, "DISCOVER_MOVIE")
        return await count_contents(database), entry

    stored, entry = run_scenario(tmp_path, scenario, tmdb)

    assert stored == 0
    assert entry is None


def test_trending_updates_existing_rows_in_place(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item("603", cast_list="Keanu Reeves")]
    tmdb.trending = [
        make_item("603", label=ContentLabel.TRENDING, title="The Matrix", rating=9.0),
        make_item("605", label=ContentLabel.TRENDING),
    ]

    async def scenario(service: ContentService, database: Database):
        catalog = await service.get_content_by_type(ContentType.MOVIE)
        trending = await service.get_trending_content(ContentType.MOVIE)
        again = await service.get_trending_content(ContentType.MOVIE)
        return catalog, trending, again, await count_contents(database)

    catalog, trending, again, stored = run_scenario(tmp_path, scenario, tmdb)

    assert tmdb.calls["trending"] == 1
    assert stored == 2
    by_id = {view.external_id: view for view in trending}
    assert by_id["603"].id == catalog[0].id
    assert by_id["603"].label is ContentLabel.TRENDING
    assert by_id["603"].title == "The Matrix"
    assert by_id["603"].rating == 9.0
    assert by_id["603"].cast_list == "Keanu Reeves"
    assert [view.external_id for view in again] == [view.external_id for view in trending]


def test_details_enrich_and_cache_recommendations(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.details = {"603": make_item("603", title="The Matrix")}
    tmdb.images = ["https://img.example/a.jpg", "https://img.example/b.jpg"]
    tmdb.trailer = TrailerInfo(url="https://www.youtube.com/watch?v=x", id="x")
    tmdb.recommendations = [make_item("604"), make_item("603"), make_item("605")]

    async def scenario(service: ContentService, database: Database):
        first = await service.get_content_details("603", ContentType.MOVIE)
        second = await service.get_content_details("603", ContentType.MOVIE)
        return first, second, await count_contents(database)

    first, second, stored = run_scenario(tmp_path, scenario, tmdb)

    assert first is not None and second is not None
    assert first.title == "The Matrix"
    assert first.image_urls == tmdb.images
    assert first.trailer_id == "x"
    assert first.recommended_content_ids == ["604", "605"]
    assert [view.external_id for view in first.recommended_content] == ["604", "605"]
    assert stored == 3
    assert second.model_dump() == first.model_dump()
    assert tmdb.calls == Counter(
        {"genres": 2, "details": 1, "images": 1, "trailer": 1, "recommendations": 1}
    )


def test_details_skip_trailer_lookup_for_inline_trailers(tmp_path) -> None:
    tmdb = StubProvider()
    jikan = StubProvider(inline_trailer=True)
    jikan.details = {
        "1": make_item(
            "1",
            ContentType.ANIME,
            trailer_url="https://www.youtube.com/watch?v=bebop",
            trailer_id="bebop",
        )
    }
    jikan.images = []

    async def scenario(service: ContentService, database: Database):
        return await service.get_content_details("1", ContentType.ANIME)

    details = run_scenario(tmp_path, scenario, tmdb, jikan)

    assert details is not None
    assert details.trailer_id == "bebop"
    assert details.image_urls == []
    assert jikan.calls["trailer"] == 0
    assert jikan.calls["images"] == 1


def test_details_for_unknown_title_return_none(tmp_path) -> None:
    tmdb = StubProvider()

    async def scenario(service: ContentService, database: Database):
        return await service.get_content_details("42", ContentType.MOVIE)

    assert run_scenario(tmp_path, scenario, tmdb) is None
    assert tmdb.calls["images"] == 0


def test_search_skips_ids_known_under_another_type(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.catalog = [make_item("20")]
    jikan = StubProvider(inline_trailer=True)
    jikan.search_results = [
        make_item("20", ContentType.ANIME, title="Naruto"),
        make_item("1735", ContentType.ANIME, title="Naruto: Shippuden"),
        make_item("1735", ContentType.ANIME, title="Naruto: Shippuden"),
    ]

    async def scenario(service: ContentService, database: Database):
        await service.get_content_by_type(ContentType.MOVIE)
        results = await service.search_content(ContentType.ANIME, "naruto")
        return results, await count_contents(database)

    results, stored = run_scenario(tmp_path, scenario, tmdb, jikan)

    assert [(view.external_id, view.type) for view in results] == [
        ("1735", ContentType.ANIME)
    ]
    assert stored == 2


def test_search_requires_a_query(tmp_path) -> None:
    tmdb = StubProvider()

    async def scenario(service: ContentService, database: Database):
        with pytest.raises(ContentValidationError):
            await service.search_content(ContentType.MOVIE, "   ")

    run_scenario(tmp_path, scenario, tmdb)
    assert tmdb.calls["search"] == 0


def test_lookup_by_external_id_fetches_once(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.details = {"603": make_item("603", title="The Matrix")}

    async def scenario(service: ContentService, database: Database):
        first = await service.get_content_by_external_id("603", ContentType.MOVIE)
        second = await service.get_content_by_external_id("603", ContentType.MOVIE)
        missing = await service.get_content_by_external_id("404", ContentType.MOVIE)
        by_id = await service.get_content(first.id)
        return first, second, missing, by_id

    first, second, missing, by_id = run_scenario(tmp_path, scenario, tmdb)

    assert first.title == "The Matrix"
    assert second.id == first.id
    assert missing is None
    assert by_id is not None and by_id.external_id == "603"
    assert tmdb.calls["details"] == 2


class FakeClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


def test_failed_startup_genre_fetch_is_retried_on_refresh(tmp_path) -> None:
    tmdb = StubProvider()
    # MOVIE and SERIES startup fetches both come back empty.
    tmdb.genre_failures = 2
    tmdb.catalog = [make_item("603")]

    async def scenario(service: ContentService, database: Database):
        views = await service.get_content_by_type(ContentType.MOVIE)
        genre_calls = tmdb.calls["genres"]
        await service.get_content_by_type(ContentType.MOVIE)
        return views, genre_calls

    views, genre_calls = run_scenario(tmp_path, scenario, tmdb)

    assert [view.external_id for view in views] == ["603"]
    assert views[0].genre_names == ["Action"]
    assert genre_calls == 3
    assert tmdb.calls["genres"] == 3
    assert tmdb.calls["catalog"] == 1


def test_genuinely_unknown_genre_still_fails_after_genre_retry(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.genre_failures = 2
    tmdb.catalog = [make_item("603", genre_ids=[999])]

    async def scenario(service: ContentService, database: Database):
        with pytest.raises(UnknownGenreError):
            await service.get_content_by_type(ContentType.MOVIE)
        return await count_contents(database)

    assert run_scenario(tmp_path, scenario, tmdb) == 0


def test_stale_catalog_refresh_adds_only_new_titles(tmp_path) -> None:
    clock = FakeClock()
    tmdb = StubProvider()
    tmdb.catalog = [make_item("1"), make_item("2"), make_item("3")]

    async def scenario(service: ContentService, database: Database):
        await service.get_content_by_type(ContentType.MOVIE)
        clock.advance(hours=13)
        tmdb.catalog = [make_item("2"), make_item("3"), make_item("4")]
        views = await service.get_content_by_type(ContentType.MOVIE)
        return views, await count_contents(database)

    views, stored = run_scenario(tmp_path, scenario, tmdb, clock=clock)

    assert tmdb.calls["catalog"] == 2
    assert [view.external_id for view in views] == ["1", "2", "3", "4"]
    assert stored == 4


def test_stale_trending_is_refetched(tmp_path) -> None:
    clock = FakeClock()
    tmdb = StubProvider()
    tmdb.trending = [make_item("7", label=ContentLabel.TRENDING)]

    async def scenario(service: ContentService, database: Database):
        await service.get_trending_content(ContentType.MOVIE)
        clock.advance(hours=11)
        await service.get_trending_content(ContentType.MOVIE)
        clock.advance(hours=2)
        tmdb.trending = [make_item("7", label=ContentLabel.TRENDING, rating=9.9)]
        return await service.get_trending_content(ContentType.MOVIE)

    views = run_scenario(tmp_path, scenario, tmdb, clock=clock)

    assert tmdb.calls["trending"] == 2
    assert [(view.external_id, view.rating) for view in views] == [("7", 9.9)]


def test_stale_details_append_distinct_recommendations(tmp_path) -> None:
    clock = FakeClock()
    tmdb = StubProvider()
    tmdb.details = {"603": make_item("603")}
    tmdb.recommendations = [make_item("2"), make_item("3")]

    async def scenario(service: ContentService, database: Database):
        first = await service.get_content_details("603", ContentType.MOVIE)
        clock.advance(hours=13)
        tmdb.recommendations = [make_item("3"), make_item("5")]
        second = await service.get_content_details("603", ContentType.MOVIE)
        return first, second, await count_contents(database)

    first, second, stored = run_scenario(tmp_path, scenario, tmdb, clock=clock)

    assert first.recommended_content_ids == ["2", "3"]
    assert second.recommended_content_ids == ["2", "3", "5"]
    assert [view.external_id for view in second.recommended_content] == ["2", "3", "5"]
    assert stored == 4
    assert tmdb.calls["details"] == 1
    assert tmdb.calls["recommendations"] == 2


def test_search_always_queries_the_provider(tmp_path) -> None:
    tmdb = StubProvider()
    tmdb.search_results = [make_item("603")]

    async def scenario(service: ContentService, database: Database):
        first = await service.search_content(ContentType.MOVIE, "matrix")
        second = await service.search_content(ContentType.MOVIE, "matrix")
        return first, second, await count_contents(database)

    first, second, stored = run_scenario(tmp_path, scenario, tmdb)

    assert tmdb.calls["search"] == 2
    assert [view.id for view in second] == [view.id for view in first]
    assert stored == 1


def test_detail_locks_are_released_after_lookups(tmp_path) -> None:
    tmdb = StubProvider()

    async def scenario(service: ContentService, database: Database):
        for index in range(50):
            details = await service.get_content_details(f"missing{index}", ContentType.MOVIE)
            lookup = await service.get_content_by_external_id(
                f"gone{index}", ContentType.MOVIE
            )
            assert details is None and lookup is None
        await asyncio.gather(
            *(service.get_content_details("missing", ContentType.MOVIE) for _ in range(5))
        )
        return service._ledger.active_locks

    assert run_scenario(tmp_path, scenario, tmdb) == 0
