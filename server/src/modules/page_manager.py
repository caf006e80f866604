from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.link_graph import LinkGraphManager
from server.src.modules.workspace_config import get_workspace_settings
from server.src.modules.workspace_db import Page, empty_doc, transaction, utc_now
from server.src.modules.workspace_errors import NotFoundOrForbidden, SlugTaken
from server.src.modules.workspace_repo import FolderStore, PageStore
from server.src.modules.workspace_service import (
    UNSET,
    extract_page_references,
    is_set,
    normalize_slug,
    require_text,
    resolve_slug,
    sanitize_doc,
)

logger = logging.getLogger(__name__)


class PageManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.pages = PageStore(session)
        self.folders = FolderStore(session)
        self.graph = LinkGraphManager(session)

    async def get(self, page_id: str, viewer_id: str | None = None) -> Page:
        """Owners always see their pages; everyone else only sees published ones."""
        page = await self.pages.get(page_id)
        if not page:
            raise NotFoundOrForbidden("page", page_id)
        if page.owner_id != viewer_id and not page.is_published:
            raise NotFoundOrForbidden("page", page_id)
        return page

    async def get_owned(self, page_id: str, owner_id: str) -> Page:
        page = await self.pages.get(page_id)
        if not page or page.owner_id != owner_id:
            raise NotFoundOrForbidden("page", page_id)
        return page

    async def get_by_slug(self, slug: str) -> Page:
        clean = normalize_slug(slug)
        page = await self.pages.get_by_slug(clean) if clean else None
        if not page:
            raise NotFoundOrForbidden("page", slug)
        return page

    async def list(self, owner_id: str, *, folder_id: Any = UNSET, search: str | None = None) -> list[Page]:
        logger.debug("listing pages owner=%s folder=%s search=%s", owner_id, folder_id, search)
        return await self.pages.list_by_owner(
            owner_id,
            folder_id=folder_id,
            search=search,
            limit=get_workspace_settings().list_limit,
        )

    async def list_published(self, search: str | None = None) -> list[Page]:
        return await self.pages.list_published(search=search, limit=get_workspace_settings().list_limit)

    async def _require_folder(self, folder_id: str, owner_id: str) -> None:
        folder = await self.folders.get(folder_id)
        if not folder or folder.owner_id != owner_id:
            raise NotFoundOrForbidden("folder", folder_id)

    async def create(
        self,
        owner_id: str,
        title: str,
        content: Any = None,
        folder_id: str | None = None,
    ) -> Page:
        clean_title = require_text(title, "title")
        doc = sanitize_doc(content) if content is not None else empty_doc()
        async with transaction(self.session, "page creation"):
            if folder_id:
                await self._require_folder(folder_id, owner_id)
            page = await self.pages.create(
                owner_id=owner_id,
                title=clean_title,
                content=doc,
                folder_id=folder_id or None,
                is_published=False,
                slug=None,
                published_at=None,
            )
            await self.graph.sync_targets(page.id, owner_id, extract_page_references(doc))
        logger.info("page created id=%s owner=%s", page.id, owner_id)
        return page

    async def update(
        self,
        page_id: str,
        owner_id: str,
        *,
        title: Any = UNSET,
        content: Any = UNSET,
        folder_id: Any = UNSET,
    ) -> Page:
        clean_title = require_text(title, "title") if is_set(title) else UNSET
        doc = sanitize_doc(content) if is_set(content) else UNSET
        async with transaction(self.session, "page update"):
            page = await self.get_owned(page_id, owner_id)
            if is_set(folder_id) and folder_id is not None:
                await self._require_folder(folder_id, owner_id)
            await self.pages.update(page, title=clean_title, content=doc, folder_id=folder_id)
            if is_set(doc):
                await self.graph.sync_targets(page.id, owner_id, extract_page_references(doc))
        logger.info("page updated id=%s owner=%s", page_id, owner_id)
        return page

    async def move(self, page_id: str, owner_id: str, folder_id: str | None) -> Page:
        return await self.update(page_id, owner_id, folder_id=folder_id or None)

    async def publish(self, page_id: str, owner_id: str, slug: str | None = None) -> Page:
        async with transaction(self.session, "page publish"):
            page = await self.get_owned(page_id, owner_id)
            clean_slug = resolve_slug(slug, page.title)
            if await self.pages.slug_exists(clean_slug, exclude_id=page.id):
                raise SlugTaken(clean_slug)
            try:
                await self.pages.update(page, is_published=True, slug=clean_slug, published_at=utc_now())
            except IntegrityError as exc:
                if "slug" in str(getattr(exc, "orig", exc)).lower():
                    raise SlugTaken(clean_slug) from exc
                raise
        logger.info("page published id=%s owner=%s slug=%s", page_id, owner_id, clean_slug)
        return page

    async def unpublish(self, page_id: str, owner_id: str) -> Page:
        async with transaction(self.session, "page unpublish"):
            page = await self.get_owned(page_id, owner_id)
            # slug stays reserved so republishing keeps the same public address
            await self.pages.update(page, is_published=False, published_at=None)
        logger.info("page unpublished id=%s owner=%s", page_id, owner_id)
        return page
