"""Client for The Movie Database (TMDB), covering movies and series."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import ContentItem, ContentLabel, ContentType, GenreItem, TrailerInfo
from ..utils import build_image_url, youtube_watch_url

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
ORIGINAL_BASE_URL = "https://image.tmdb.org/t/p/original"

IMAGE_LIMIT = 10
RECOMMENDATION_LIMIT = 10
CAST_LIMIT = 5


class TMDBClient:
    """Adapter translating TMDB payloads into content items."""

    inline_trailer = False

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def fetch_catalog(self, content_type: ContentType) -> list[ContentItem]:
        """Return the most popular titles for the type."""

        payload = await self._get(
            f"/discover/{content_type.tmdb_media_type}",
            {"sort_by": "popularity.desc"},
        )
        return self._listing(payload, content_type, ContentLabel.CONTENT)

    async def fetch_trending(self, content_type: ContentType) -> list[ContentItem]:
        """Return this week's trending titles for the type."""

        payload = await self._get(f"/trending/{content_type.tmdb_media_type}/week")
        return self._listing(payload, content_type, ContentLabel.TRENDING)

    async def search(self, query: str, content_type: ContentType) -> list[ContentItem]:
        """Search movies and series at once; the type comes from each hit."""

        payload = await self._get("/search/multi", {"query": query})
        if payload is None:
            return []
        items: list[ContentItem] = []
        for result in payload.get("results") or []:
            if not isinstance(result, dict):
                continue
            media_type = result.get("media_type")
            if media_type == "movie":
                result_type = ContentType.MOVIE
            elif media_type == "tv":
                result_type = ContentType.SERIES
            else:
                continue
            if not self._is_complete(result):
                continue
            item = self._item_from_result(result, result_type, ContentLabel.CONTENT)
            if item is not None:
                items.append(item)
        return items

    async def fetch_details(
        self, external_id: str, content_type: ContentType
    ) -> ContentItem | None:
        payload = await self._get(
            f"/{content_type.tmdb_media_type}/{external_id}",
            {"append_to_response": "videos,credits"},
        )
        if payload is None:
            return None

        genres = payload.get("genres") or []
        trailer = self._select_trailer((payload.get("videos") or {}).get("results"))
        cast = (payload.get("credits") or {}).get("cast") or []
        cast_names = [
            str(member.get("name"))
            for member in cast[:CAST_LIMIT]
            if isinstance(member, dict) and member.get("name")
        ]
        data = {
            "external_id": external_id,
            "type": content_type,
            "label": ContentLabel.CONTENT,
            "title": payload.get("title") or payload.get("name"),
            "description": payload.get("overview"),
            "poster_url": build_image_url(payload.get("poster_path"), POSTER_BASE_URL),
            "backdrop_url": build_image_url(
                payload.get("backdrop_path"), ORIGINAL_BASE_URL
            ),
            "trailer_url": trailer.url if trailer else None,
            "trailer_id": trailer.id if trailer else None,
            "release_date": payload.get("release_date")
            or payload.get("first_air_date"),
            "cast_list": ", ".join(cast_names),
            "rating": payload.get("vote_average"),
            "genre_ids": [
                genre["id"]
                for genre in genres
                if isinstance(genre, dict) and genre.get("id") is not None
            ],
        }
        try:
            return ContentItem.model_validate(data)
        except ValidationError as exc:
            logger.warning("TMDB details for %s were unusable: %s", external_id, exc)
            return None

    async def fetch_genres(self, content_type: ContentType) -> list[GenreItem]:
        payload = await self._get(
            f"/genre/{content_type.tmdb_media_type}/list", {"language": "en"}
        )
        if payload is None:
            return []
        genres: list[GenreItem] = []
        for entry in payload.get("genres") or []:
            if not isinstance(entry, dict):
                continue
            try:
                genres.append(
                    GenreItem(
                        external_id=entry.get("id"),
                        content_type=content_type,
                        name=entry.get("name"),
                    )
                )
            except ValidationError:
                continue
        return genres

    async def fetch_images(
        self, external_id: str, content_type: ContentType
    ) -> list[str]:
        payload = await self._get(
            f"/{content_type.tmdb_media_type}/{external_id}/images"
        )
        if payload is None:
            return []
        urls: list[str] = []
        for image in (payload.get("backdrops") or [])[:IMAGE_LIMIT]:
            if not isinstance(image, dict):
                continue
            url = build_image_url(image.get("file_path"), ORIGINAL_BASE_URL)
            if url:
                urls.append(url)
        return urls

    async def fetch_trailer(
        self, external_id: str, content_type: ContentType
    ) -> TrailerInfo | None:
        payload = await self._get(
            f"/{content_type.tmdb_media_type}/{external_id}/videos"
        )
        if payload is None:
            return None
        return self._select_trailer(payload.get("results"))

    async def fetch_recommendations(
        self, external_id: str, content_type: ContentType
    ) -> list[ContentItem]:
        """Recommendations carry enough detail inline; no per-item lookups."""

        payload = await self._get(
            f"/{content_type.tmdb_media_type}/{external_id}/recommendations"
        )
        if payload is None:
            return []
        items: list[ContentItem] = []
        for result in (payload.get("results") or [])[:RECOMMENDATION_LIMIT]:
            if not isinstance(result, dict):
                continue
            item = self._item_from_result(result, content_type, ContentLabel.CONTENT)
            if item is not None:
                items.append(item)
        return items

    async def _get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        if not self._settings.tmdb_api_key:
            logger.info("TMDB API key missing, skipping request to %s", path)
            return None
        query = {"api_key": self._settings.tmdb_api_key, **(params or {})}
        try:
            response = await self._client.get(path, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s returned %s: %s",
                path,
                response.status_code,
                response.text,
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("TMDB returned invalid JSON for %s", path)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def _listing(
        self,
        payload: dict[str, Any] | None,
        content_type: ContentType,
        label: ContentLabel,
    ) -> list[ContentItem]:
        if payload is None:
            return []
        items: list[ContentItem] = []
        for result in payload.get("results") or []:
            if not isinstance(result, dict) or not self._is_complete(result):
                continue
            item = self._item_from_result(result, content_type, label)
            if item is not None:
                items.append(item)
        return items

    @staticmethod
    def _is_complete(result: dict[str, Any]) -> bool:
        title = result.get("title") or result.get("name")
        return bool(title and result.get("poster_path") and result.get("overview"))

    @staticmethod
    def _item_from_result(
        result: dict[str, Any], content_type: ContentType, label: ContentLabel
    ) -> ContentItem | None:
        data = {
            "external_id": result.get("id"),
            "type": content_type,
            "label": label,
            "title": result.get("title") or result.get("name"),
            "description": result.get("overview"),
            "poster_url": build_image_url(result.get("poster_path"), POSTER_BASE_URL),
            "backdrop_url": build_image_url(
                result.get("backdrop_path"), ORIGINAL_BASE_URL
            ),
            "release_date": result.get("release_date")
            or result.get("first_air_date"),
            "rating": result.get("vote_average"),
            "genre_ids": result.get("genre_ids") or [],
        }
        try:
            return ContentItem.model_validate(data)
        except ValidationError as exc:
            logger.debug("Skipping malformed TMDB result %s: %s", result.get("id"), exc)
            return None

    @staticmethod
    def _select_trailer(videos: Any) -> TrailerInfo | None:
        if not isinstance(videos, list):
            return None
        for video in videos:
            if not isinstance(video, dict):
                continue
            key = video.get("key")
            if video.get("type") == "Trailer" and video.get("site") == "YouTube" and key:
                return TrailerInfo(url=youtube_watch_url(key), id=str(key))
        return None
