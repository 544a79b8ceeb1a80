"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    Float,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .models import ContentLabel, ContentType


class ContentRecord(Base):
    """Cached, normalized metadata for one movie, series or anime title."""

    __tablename__ = "contents"
    __table_args__ = (
        UniqueConstraint("external_id", "content_type", name="uq_content_external"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), index=True)
    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, native_enum=False, length=16)
    )
    label: Mapped[ContentLabel] = mapped_column(
        Enum(ContentLabel, native_enum=False, length=16),
        default=ContentLabel.CONTENT,
    )
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    backdrop_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    trailer_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    trailer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cast_list: Mapped[str | None] = mapped_column(Text, nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    genre_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    image_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    recommended_content_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class GenreRecord(Base):
    """Provider genre cached per content type."""

    __tablename__ = "genres"
    __table_args__ = (
        UniqueConstraint("external_id", "content_type", name="uq_genre_external"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[int] = mapped_column(Integer)
    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, native_enum=False, length=16)
    )
    name: Mapped[str] = mapped_column(String(120))


class FetchLogEntry(Base):
    """Timestamp of the last upstream fetch for a logical fetch key."""

    __tablename__ = "fetch_log"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    last_fetched_at: Mapped[datetime] = mapped_column(DateTime)


class RecommendationLog(Base):
    """Record of a free-text recommendation request and the titles produced."""

    __tablename__ = "recommendation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, native_enum=False, length=16)
    )
    input_description: Mapped[str] = mapped_column(Text)
    recommended_titles: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
