from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import String, cast, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.workspace_db import Folder, Page, PageLink, TrashItem
from server.src.modules.workspace_service import UNSET, is_set


class FolderStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, folder_id: str | None) -> Folder | None:
        clean_id = str(folder_id or "").strip()
        if not clean_id:
            return None
        return await self.session.get(Folder, clean_id)

    async def parent_of(self, folder_id: str) -> tuple[bool, str | None]:
        """Return ``(exists, parent_id)`` without loading the whole row."""
        row = (await self.session.execute(select(Folder.parent_id).where(Folder.id == folder_id))).first()
        if row is None:
            return False, None
        return True, row[0]

    async def list_by_owner(self, owner_id: str) -> list[Folder]:
        stmt = (
            select(Folder)
            .where(Folder.owner_id == owner_id)
            .order_by(Folder.position.asc(), Folder.name.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def children(self, folder_ids: Iterable[str]) -> list[Folder]:
        ids = [fid for fid in folder_ids if fid]
        if not ids:
            return []
        stmt = (
            select(Folder)
            .where(Folder.parent_id.in_(ids))
            .order_by(Folder.position.asc(), Folder.name.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def create(self, **values: Any) -> Folder:
        folder = Folder(**values)
        self.session.add(folder)
        await self.session.flush()
        return folder

    async def update(self, folder: Folder, **values: Any) -> Folder:
        for field, value in values.items():
            if is_set(value):
                setattr(folder, field, value)
        await self.session.flush()
        return folder

    async def delete(self, folder_id: str) -> bool:
        result = await self.session.execute(delete(Folder).where(Folder.id == folder_id))
        return bool(result.rowcount)


class PageStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, page_id: str | None) -> Page | None:
        clean_id = str(page_id or "").strip()
        if not clean_id:
            return None
        return await self.session.get(Page, clean_id)

    async def owned_exists(self, page_id: str, owner_id: str) -> bool:
        stmt = select(Page.id).where(Page.id == page_id, Page.owner_id == owner_id)
        return (await self.session.execute(stmt)).first() is not None

    async def get_by_slug(self, slug: str) -> Page | None:
        stmt = select(Page).where(Page.slug == slug, Page.is_published.is_(True))
        return (await self.session.execute(stmt)).scalars().first()

    async def slug_exists(self, slug: str, exclude_id: str = "") -> bool:
        stmt = select(Page.id).where(Page.slug == str(slug or "").strip())
        clean_exclude = str(exclude_id or "").strip()
        if clean_exclude:
            stmt = stmt.where(Page.id != clean_exclude)
        return (await self.session.execute(stmt.limit(1))).first() is not None

    @staticmethod
    def _search_filter(search: str):
        term = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        return or_(
            func.lower(Page.title).like(pattern, escape="\\"),
            func.lower(cast(Page.content, String)).like(pattern, escape="\\"),
        )

    async def list_by_owner(
        self,
        owner_id: str,
        *,
        folder_id: Any = UNSET,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[Page]:
        stmt = select(Page).where(Page.owner_id == owner_id)
        if is_set(folder_id):
            stmt = stmt.where(Page.folder_id.is_(None) if folder_id is None else Page.folder_id == folder_id)
        if search and search.strip():
            stmt = stmt.where(self._search_filter(search))
        stmt = stmt.order_by(Page.updated_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_in_folders(self, owner_id: str, folder_ids: Iterable[str]) -> list[Page]:
        ids = [fid for fid in folder_ids if fid]
        if not ids:
            return []
        stmt = (
            select(Page)
            .where(Page.owner_id == owner_id, Page.folder_id.in_(ids))
            .order_by(Page.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_published(self, *, search: str | None = None, limit: int | None = None) -> list[Page]:
        stmt = select(Page).where(Page.is_published.is_(True))
        if search and search.strip():
            stmt = stmt.where(self._search_filter(search))
        stmt = stmt.order_by(Page.published_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list((await self.session.execute(stmt)).scalars().all())

    async def summaries(self, page_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        clean_ids = sorted({str(pid).strip() for pid in page_ids if str(pid or "").strip()})
        if not clean_ids:
            return {}
        rows = await self.session.execute(select(Page.id, Page.title, Page.slug).where(Page.id.in_(clean_ids)))
        return {str(pid): {"id": str(pid), "title": title, "slug": slug} for pid, title, slug in rows.all()}

    async def create(self, **values: Any) -> Page:
        page = Page(**values)
        self.session.add(page)
        await self.session.flush()
        return page

    async def update(self, page: Page, **values: Any) -> Page:
        for field, value in values.items():
            if is_set(value):
                setattr(page, field, value)
        await self.session.flush()
        return page

    async def delete(self, page_id: str) -> bool:
        result = await self.session.execute(delete(Page).where(Page.id == page_id))
        return bool(result.rowcount)


class LinkStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, from_page_id: str, to_page_id: str) -> PageLink | None:
        stmt = select(PageLink).where(
            PageLink.from_page_id == from_page_id,
            PageLink.to_page_id == to_page_id,
        )
        return (await self.session.execute(stmt)).scalars().first()

    async def outgoing(self, page_id: str) -> list[PageLink]:
        stmt = (
            select(PageLink)
            .where(PageLink.from_page_id == page_id)
            .order_by(PageLink.created_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def incoming(self, page_id: str) -> list[PageLink]:
        stmt = (
            select(PageLink)
            .where(PageLink.to_page_id == page_id)
            .order_by(PageLink.created_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def touching(self, page_ids: Iterable[str]) -> list[PageLink]:
        ids = [pid for pid in page_ids if pid]
        if not ids:
            return []
        stmt = (
            select(PageLink)
            .where(or_(PageLink.from_page_id.in_(ids), PageLink.to_page_id.in_(ids)))
            .order_by(PageLink.created_at.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def create(self, from_page_id: str, to_page_id: str, **values: Any) -> PageLink:
        existing = await self.find(from_page_id, to_page_id)
        if existing:
            return existing
        link = PageLink(from_page_id=from_page_id, to_page_id=to_page_id, **values)
        self.session.add(link)
        await self.session.flush()
        return link

    async def delete_between(self, from_page_id: str, to_page_id: str) -> int:
        result = await self.session.execute(
            delete(PageLink).where(
                PageLink.from_page_id == from_page_id,
                PageLink.to_page_id == to_page_id,
            )
        )
        return int(result.rowcount or 0)

    async def delete_touching(self, page_ids: Iterable[str]) -> int:
        ids = [pid for pid in page_ids if pid]
        if not ids:
            return 0
        result = await self.session.execute(
            delete(PageLink).where(or_(PageLink.from_page_id.in_(ids), PageLink.to_page_id.in_(ids)))
        )
        return int(result.rowcount or 0)


class TrashStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, item_id: str | None) -> TrashItem | None:
        clean_id = str(item_id or "").strip()
        if not clean_id:
            return None
        return await self.session.get(TrashItem, clean_id)

    async def list_by_owner(self, owner_id: str) -> list[TrashItem]:
        stmt = (
            select(TrashItem)
            .where(TrashItem.owner_id == owner_id)
            .order_by(TrashItem.deleted_at.desc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def create(self, **values: Any) -> TrashItem:
        item = TrashItem(**values)
        self.session.add(item)
        await self.session.flush()
        return item

    async def delete(self, item_id: str) -> bool:
        result = await self.session.execute(delete(TrashItem).where(TrashItem.id == item_id))
        return bool(result.rowcount)

    async def delete_by_owner(self, owner_id: str) -> int:
        result = await self.session.execute(delete(TrashItem).where(TrashItem.owner_id == owner_id))
        return int(result.rowcount or 0)
