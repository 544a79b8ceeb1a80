"""Pydantic models describing provider payloads and content views."""

from __future__ import annotations

from datetime import date
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import parse_date


class ContentValidationError(ValueError):
    """Raised when a request or record cannot be turned into valid content."""


class UnknownGenreError(ContentValidationError):
    """Raised when a content record references a genre missing from the cache."""

    def __init__(self, genre_id: int, content_type: "ContentType"):
        super().__init__(f"Genre not found: {genre_id} ({content_type.value})")
        self.genre_id = genre_id
        self.content_type = content_type


class ContentType(str, Enum):
    MOVIE = "MOVIE"
    SERIES = "SERIES"
    ANIME = "ANIME"

    @classmethod
    def parse(cls, value: object) -> "ContentType":
        """Return the member matching ``value`` case-insensitively."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            candidate = value.strip().upper()
            for member in cls:
                if member.value == candidate:
                    return member
        raise ContentValidationError(f"Invalid content type: {value}")

    @property
    def tmdb_media_type(self) -> str:
        """Path segment TMDB uses for this type."""

        return "tv" if self is ContentType.SERIES else "movie"


class ContentLabel(str, Enum):
    CONTENT = "CONTENT"
    TRENDING = "TRENDING"


class ContentItem(BaseModel):
    """Normalized content entry produced by a provider adapter."""

    external_id: str
    type: ContentType
    label: ContentLabel = ContentLabel.CONTENT
    title: str
    description: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    trailer_url: str | None = None
    trailer_id: str | None = None
    release_date: date | None = None
    cast_list: str | None = None
    rating: float | None = None
    genre_ids: list[int] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    recommended_content_ids: list[str] = Field(default_factory=list)

    @field_validator("external_id", mode="before")
    @classmethod
    def _coerce_external_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("release_date", mode="before")
    @classmethod
    def _parse_release_date(cls, value: object) -> object:
        if value is None or isinstance(value, date):
            return value
        return parse_date(value)


class GenreItem(BaseModel):
    """Genre entry from a provider's genre catalog."""

    external_id: int
    content_type: ContentType
    name: str


class TrailerInfo(BaseModel):
    url: str
    id: str


class ContentView(BaseModel):
    """Unified content representation returned to callers."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    external_id: str
    type: ContentType
    label: ContentLabel
    title: str | None = None
    description: str | None = None
    genre_names: list[str] = Field(default_factory=list)
    poster_url: str | None = None
    backdrop_url: str | None = None
    trailer_url: str | None = None
    trailer_id: str | None = None
    release_date: date | None = None
    cast_list: str | None = None
    rating: float | None = None
    image_urls: list[str] = Field(default_factory=list)
    recommended_content_ids: list[str] = Field(default_factory=list)


class ContentDetailsView(ContentView):
    """Content view extended with the resolved recommended content."""

    recommended_content: list[ContentView] = Field(default_factory=list)


class RecommendationRequest(BaseModel):
    """Free-text recommendation request."""

    description: str
    content_type: ContentType = Field(
        validation_alias=AliasChoices("contentType", "content_type", "type")
    )

    @field_validator("content_type", mode="before")
    @classmethod
    def _parse_content_type(cls, value: object) -> ContentType:
        return ContentType.parse(value)

    @field_validator("description")
    @classmethod
    def _require_description(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A description is required")
        return stripped
