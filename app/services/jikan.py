"""Client for the Jikan (MyAnimeList) API, covering anime."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ContentItem, ContentLabel, ContentType, GenreItem, TrailerInfo

logger = logging.getLogger(__name__)

IMAGE_LIMIT = 10
RECOMMENDATION_LIMIT = 4

Sleeper = Callable[[float], Awaitable[None]]


class JikanClient:
    """Adapter translating Jikan payloads into content items.

    Jikan enforces a strict per-second quota, so the per-item recommendation
    backfill waits ``request_delay`` seconds before every lookup.
    """

    inline_trailer = True

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._request_delay = settings.jikan_request_delay
        self._sleep = sleep

    async def fetch_catalog(self, content_type: ContentType) -> list[ContentItem]:
        payload = await self._get("/top/anime")
        return self._listing(payload, ContentLabel.CONTENT)

    async def fetch_trending(self, content_type: ContentType) -> list[ContentItem]:
        payload = await self._get("/top/anime", {"filter": "airing"})
        return self._listing(payload, ContentLabel.TRENDING)

    async def search(self, query: str, content_type: ContentType) -> list[ContentItem]:
        payload = await self._get("/anime", {"q": query})
        return self._listing(payload, ContentLabel.CONTENT)

    async def fetch_details(
        self, external_id: str, content_type: ContentType
    ) -> ContentItem | None:
        payload = await self._get(f"/anime/{external_id}")
        if payload is None:
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        return self._item_from_anime(data, ContentLabel.CONTENT, external_id=external_id)

    async def fetch_genres(self, content_type: ContentType) -> list[GenreItem]:
        payload = await self._get("/genres/anime")
        if payload is None:
            return []
        genres: list[GenreItem] = []
        seen: set[int] = set()
        for entry in payload.get("data") or []:
            if not isinstance(entry, dict):
                continue
            try:
                genre = GenreItem(
                    external_id=entry.get("mal_id"),
                    content_type=ContentType.ANIME,
                    name=entry.get("name"),
                )
            except ValidationError:
                continue
            if genre.external_id in seen:
                continue
            seen.add(genre.external_id)
            genres.append(genre)
        return genres

    async def fetch_images(
        self, external_id: str, content_type: ContentType
    ) -> list[str]:
        payload = await self._get(f"/anime/{external_id}/pictures")
        if payload is None:
            return []
        urls: list[str] = []
        for picture in (payload.get("data") or [])[:IMAGE_LIMIT]:
            if not isinstance(picture, dict):
                continue
            url = (picture.get("jpg") or {}).get("large_image_url")
            if url:
                urls.append(url)
        return urls

    async def fetch_trailer(
        self, external_id: str, content_type: ContentType
    ) -> TrailerInfo | None:
        """Trailers are part of the detail payload for anime."""

        details = await self.fetch_details(external_id, content_type)
        if details is None or not details.trailer_url:
            return None
        return TrailerInfo(url=details.trailer_url, id=details.trailer_id or "")

    async def fetch_recommendations(
        self, external_id: str, content_type: ContentType
    ) -> list[ContentItem]:
        """Return recommended anime, back-filling each entry's full details."""

        payload = await self._get(f"/anime/{external_id}/recommendations")
        if payload is None:
            return []

        items: list[ContentItem] = []
        for recommendation in (payload.get("data") or [])[:RECOMMENDATION_LIMIT]:
            if not isinstance(recommendation, dict):
                continue
            mal_id = (recommendation.get("entry") or {}).get("mal_id")
            if mal_id is None:
                continue
            await self._sleep(self._request_delay)
            item = await self.fetch_details(str(mal_id), ContentType.ANIME)
            if item is None or not self._is_recommendable(item):
                logger.debug("Skipping incomplete anime recommendation %s", mal_id)
                continue
            items.append(item)
        return items

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        response: httpx.Response | None = None
        max_attempts = 2
        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response else None
                if status == 429 and attempt < max_attempts:
                    await self._sleep(max(self._request_delay, 1.0))
                    continue
                logger.warning("Jikan request to %s failed: %s", path, exc)
                return None
            except httpx.HTTPError as exc:
                logger.warning("Jikan request to %s failed: %s", path, exc)
                return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Jikan returned invalid JSON for %s", path)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def _listing(
        self, payload: dict[str, Any] | None, label: ContentLabel
    ) -> list[ContentItem]:
        if payload is None:
            return []
        items: list[ContentItem] = []
        for anime in payload.get("data") or []:
            if not isinstance(anime, dict):
                continue
            poster = ((anime.get("images") or {}).get("jpg") or {}).get("image_url")
            if not (anime.get("title") and poster and anime.get("synopsis")):
                continue
            item = self._item_from_anime(anime, label)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _item_from_anime(
        anime: dict[str, Any],
        label: ContentLabel,
        *,
        external_id: str | None = None,
    ) -> ContentItem | None:
        jpg = (anime.get("images") or {}).get("jpg") or {}
        trailer = anime.get("trailer") or {}
        genres = anime.get("genres") or []
        data = {
            "external_id": external_id or anime.get("mal_id"),
            "type": ContentType.ANIME,
            "label": label,
            "title": anime.get("title"),
            "description": anime.get("synopsis"),
            "poster_url": jpg.get("image_url"),
            "backdrop_url": jpg.get("large_image_url"),
            "trailer_url": trailer.get("url"),
            "trailer_id": trailer.get("youtube_id"),
            "release_date": (anime.get("aired") or {}).get("from"),
            "cast_list": "",
            "rating": anime.get("score"),
            "genre_ids": [
                genre["mal_id"]
                for genre in genres
                if isinstance(genre, dict) and genre.get("mal_id") is not None
            ],
        }
        try:
            return ContentItem.model_validate(data)
        except ValidationError as exc:
            logger.debug("Skipping malformed Jikan entry %s: %s", data["external_id"], exc)
            return None

    @staticmethod
    def _is_recommendable(item: ContentItem) -> bool:
        return bool(
            item.title
            and item.poster_url
            and item.description
            and item.rating is not None
            and item.rating > 0
        )
