"""Provider capability interface and per content type dispatch."""

from __future__ import annotations

from typing import Mapping, Protocol

from ..models import ContentItem, ContentType, GenreItem, TrailerInfo


class ContentProvider(Protocol):
    """Capabilities every metadata provider adapter exposes.

    Implementations never raise for transport or payload problems; they
    return an empty list or ``None`` instead.
    """

    # True when detail payloads already carry the trailer, so no dedicated
    # trailer lookup is needed during enrichment.
    inline_trailer: bool

    async def fetch_catalog(self, content_type: ContentType) -> list[ContentItem]: ...

    async def fetch_trending(self, content_type: ContentType) -> list[ContentItem]: ...

    async def search(self, query: str, content_type: ContentType) -> list[ContentItem]: ...

    async def fetch_details(
        self, external_id: str, content_type: ContentType
    ) -> ContentItem | None: ...

    async def fetch_genres(self, content_type: ContentType) -> list[GenreItem]: ...

    async def fetch_images(
        self, external_id: str, content_type: ContentType
    ) -> list[str]: ...

    async def fetch_trailer(
        self, external_id: str, content_type: ContentType
    ) -> TrailerInfo | None: ...

    async def fetch_recommendations(
        self, external_id: str, content_type: ContentType
    ) -> list[ContentItem]: ...


class ProviderRegistry:
    """Maps each content type to the provider responsible for it."""

    def __init__(self, providers: Mapping[ContentType, ContentProvider]):
        missing = [member.value for member in ContentType if member not in providers]
        if missing:
            raise ValueError(f"No provider configured for: {', '.join(missing)}")
        self._providers = dict(providers)

    @classmethod
    def from_clients(
        cls, tmdb: ContentProvider, jikan: ContentProvider
    ) -> "ProviderRegistry":
        return cls(
            {
                ContentType.MOVIE: tmdb,
                ContentType.SERIES: tmdb,
                ContentType.ANIME: jikan,
            }
        )

    def for_type(self, content_type: ContentType) -> ContentProvider:
        return self._providers[content_type]
