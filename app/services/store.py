"""Session-scoped access to the content table."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db_models import ContentRecord
from ..models import ContentLabel, ContentType


class ContentStore:
    """Lookups and inserts for content records.

    Every lookup goes through the (external_id, content_type) unique index or
    the external_id index rather than scanning the table.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, content_id: int) -> ContentRecord | None:
        return await self._session.get(ContentRecord, content_id)

    async def find(
        self, external_id: str, content_type: ContentType
    ) -> ContentRecord | None:
        stmt = select(ContentRecord).where(
            ContentRecord.external_id == external_id,
            ContentRecord.content_type == content_type,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_external_ids(
        self,
        external_ids: Iterable[str],
        content_type: ContentType | None = None,
    ) -> list[ContentRecord]:
        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return []
        stmt = select(ContentRecord).where(ContentRecord.external_id.in_(ids))
        if content_type is not None:
            stmt = stmt.where(ContentRecord.content_type == content_type)
        result = await self._session.execute(stmt.order_by(ContentRecord.id))
        return list(result.scalars().all())

    async def list_by_type(
        self, content_type: ContentType, label: ContentLabel | None = None
    ) -> list[ContentRecord]:
        stmt = select(ContentRecord).where(ContentRecord.content_type == content_type)
        if label is not None:
            stmt = stmt.where(ContentRecord.label == label)
        result = await self._session.execute(stmt.order_by(ContentRecord.id))
        return list(result.scalars().all())

    async def existing_keys(
        self, external_ids: Iterable[str]
    ) -> set[tuple[str, ContentType]]:
        """Return the stored (external_id, content_type) pairs among ``external_ids``."""

        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return set()
        stmt = select(ContentRecord.external_id, ContentRecord.content_type).where(
            ContentRecord.external_id.in_(ids)
        )
        result = await self._session.execute(stmt)
        return {(row[0], row[1]) for row in result.all()}

    def add(self, record: ContentRecord) -> None:
        self._session.add(record)

    def add_all(self, records: Iterable[ContentRecord]) -> None:
        self._session.add_all(list(records))
