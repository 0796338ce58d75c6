"""Section and permission catalog management."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from authcore.models.role import Permission, Section

CatalogModel = TypeVar("CatalogModel", Section, Permission)
ItemT = TypeVar("ItemT")


class CatalogServiceError(Exception):
    """Raised for catalog management failures."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True)
class Page(Generic[ItemT]):
    """One page of a listing."""

    total: int
    limit: int
    offset: int
    data: list[ItemT]


def like_pattern(search: str) -> str:
    """Build a contains-pattern with LIKE wildcards escaped."""
    escaped = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CatalogService(Generic[CatalogModel]):
    """CRUD over a named catalog table such as sections or permissions."""

    def __init__(self, model: type[CatalogModel], name_field: str, label: str) -> None:
        self._model = model
        self._name_field = name_field
        self._label = label

    async def create(self, db_session: AsyncSession, name: str) -> CatalogModel:
        """Insert a new entry, or bring back a soft-deleted one with the same name."""
        normalized = name.strip()
        result = await db_session.execute(
            select(self._model).where(self._name_column() == normalized).with_for_update()
        )
        item = result.scalar_one_or_none()
        if item is not None and item.deleted_at is None:
            raise CatalogServiceError(f"{self._label} already exists.", "already_exists", 409)
        if item is None:
            item = self._model(**{self._name_field: normalized})
            db_session.add(item)
        else:
            item.deleted_at = None
        await self._commit(db_session, item)
        return item

    async def list_items(
        self,
        db_session: AsyncSession,
        limit: int = 10,
        offset: int = 0,
        search: str | None = None,
    ) -> Page[CatalogModel]:
        """List live entries ordered by creation time."""
        filters = [self._model.deleted_at.is_(None)]
        if search:
            filters.append(self._name_column().ilike(like_pattern(search), escape="\\"))
        total = await db_session.scalar(
            select(func.count()).select_from(self._model).where(*filters)
        )
        result = await db_session.execute(
            select(self._model)
            .where(*filters)
            .order_by(self._model.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return Page(
            total=int(total or 0),
            limit=limit,
            offset=offset,
            data=list(result.scalars().all()),
        )

    async def get(self, db_session: AsyncSession, item_id: UUID) -> CatalogModel:
        """Fetch a live entry or raise not found."""
        result = await db_session.execute(
            select(self._model).where(self._model.id == item_id, self._model.deleted_at.is_(None))
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise CatalogServiceError(f"{self._label} not found.", "not_found", 404)
        return item

    async def get_by_name(self, db_session: AsyncSession, name: str) -> CatalogModel | None:
        result = await db_session.execute(
            select(self._model).where(self._name_column() == name, self._model.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def rename(self, db_session: AsyncSession, item_id: UUID, name: str) -> CatalogModel:
        """Rename an entry, refusing names held by another entry."""
        item = await self.get(db_session=db_session, item_id=item_id)
        normalized = name.strip()
        clash = await self.get_by_name(db_session=db_session, name=normalized)
        if clash is not None and clash.id != item.id:
            raise CatalogServiceError(f"{self._label} already exists.", "already_exists", 409)
        setattr(item, self._name_field, normalized)
        await self._commit(db_session, item)
        return item

    async def remove(self, db_session: AsyncSession, item_id: UUID) -> None:
        """Soft-delete an entry."""
        item = await self.get(db_session=db_session, item_id=item_id)
        item.deleted_at = datetime.now(UTC)
        await self._commit(db_session)

    def _name_column(self) -> InstrumentedAttribute[str]:
        return getattr(self._model, self._name_field)

    async def _commit(self, db_session: AsyncSession, item: CatalogModel | None = None) -> None:
        try:
            await db_session.flush()
            await db_session.commit()
            if item is not None:
                await db_session.refresh(item)
        except IntegrityError as exc:
            await db_session.rollback()
            raise CatalogServiceError(
                f"{self._label} already exists.", "already_exists", 409
            ) from exc
        except Exception:
            await db_session.rollback()
            raise


@lru_cache
def get_section_service() -> CatalogService[Section]:
    """Create and cache the section catalog service."""
    return CatalogService(Section, name_field="section_name", label="Section")


@lru_cache
def get_permission_service() -> CatalogService[Permission]:
    """Create and cache the permission catalog service."""
    return CatalogService(Permission, name_field="permission_name", label="Permission")
