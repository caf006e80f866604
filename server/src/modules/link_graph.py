from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.workspace_db import Page, PageLink, transaction
from server.src.modules.workspace_errors import NotFoundOrForbidden, SelfReferentialLink
from server.src.modules.workspace_repo import LinkStore, PageStore
from server.src.modules.workspace_service import extract_page_references

logger = logging.getLogger(__name__)


class LinkGraphManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.links = LinkStore(session)
        self.pages = PageStore(session)

    @staticmethod
    def extract_references(content: Any) -> set[str]:
        return extract_page_references(content)

    async def _owned_page(self, page_id: str, owner_id: str, label: str = "page") -> Page:
        page = await self.pages.get(page_id)
        if not page or page.owner_id != owner_id:
            raise NotFoundOrForbidden(label, page_id)
        return page

    async def _describe(self, links: list[PageLink], other_end: str) -> list[dict[str, Any]]:
        refs = await self.pages.summaries(getattr(link, other_end) for link in links)
        key = "to_page" if other_end == "to_page_id" else "from_page"
        rows = []
        for link in links:
            row = {
                "id": link.id,
                "from_page_id": link.from_page_id,
                "to_page_id": link.to_page_id,
                "created_at": link.created_at,
            }
            ref = refs.get(getattr(link, other_end))
            if ref:
                row[key] = ref
            rows.append(row)
        return rows

    async def page_links(self, page_id: str, owner_id: str) -> dict[str, list[dict[str, Any]]]:
        await self._owned_page(page_id, owner_id)
        outgoing = await self.links.outgoing(page_id)
        incoming = await self.links.incoming(page_id)
        return {
            "outgoing": await self._describe(outgoing, "to_page_id"),
            "incoming": await self._describe(incoming, "from_page_id"),
        }

    async def backlinks(self, page_id: str, owner_id: str) -> list[dict[str, Any]]:
        await self._owned_page(page_id, owner_id)
        return await self._describe(await self.links.incoming(page_id), "from_page_id")

    async def create_link(self, from_page_id: str, to_page_id: str, owner_id: str) -> PageLink:
        async with transaction(self.session, "link creation"):
            await self._owned_page(from_page_id, owner_id, "source page")
            await self._owned_page(to_page_id, owner_id, "target page")
            if from_page_id == to_page_id:
                raise SelfReferentialLink(from_page_id)
            link = await self.links.create(from_page_id, to_page_id)
        logger.info("page link created id=%s from=%s to=%s", link.id, from_page_id, to_page_id)
        return link

    async def delete_link(self, from_page_id: str, to_page_id: str, owner_id: str) -> bool:
        async with transaction(self.session, "link deletion"):
            await self._owned_page(from_page_id, owner_id, "source page")
            if from_page_id == to_page_id:
                raise SelfReferentialLink(from_page_id)
            removed = await self.links.delete_between(from_page_id, to_page_id)
        logger.info("page link deleted from=%s to=%s removed=%s", from_page_id, to_page_id, removed)
        return bool(removed)

    async def reconcile(self, page_id: str, owner_id: str, desired_target_ids: Iterable[str]) -> set[str]:
        async with transaction(self.session, "link reconciliation"):
            return await self.sync_targets(page_id, owner_id, desired_target_ids)

    async def sync_targets(self, page_id: str, owner_id: str, desired_target_ids: Iterable[str]) -> set[str]:
        """Make the outgoing edge set of ``page_id`` match ``desired_target_ids``.

        Runs inside the caller's transaction. Targets that are missing, foreign or
        equal to the page itself stay unrealized; a failed insert is logged and
        skipped.
        """
        await self._owned_page(page_id, owner_id)
        desired = {str(t).strip() for t in desired_target_ids if str(t or "").strip()}
        current = {link.to_page_id for link in await self.links.outgoing(page_id)}

        for stale in current - desired:
            await self.links.delete_between(page_id, stale)

        realized = current & desired
        for target_id in sorted(desired - current):
            if target_id == page_id:
                continue
            target = await self.pages.get(target_id)
            if not target or target.owner_id != owner_id:
                logger.debug("unrealized link from=%s to=%s", page_id, target_id)
                continue
            try:
                async with self.session.begin_nested():
                    await self.links.create(page_id, target_id)
            except SQLAlchemyError as exc:
                logger.warning("failed to create page link from=%s to=%s: %s", page_id, target_id, exc)
                continue
            realized.add(target_id)

        logger.info("page links reconciled page=%s links=%s", page_id, len(realized))
        return realized
