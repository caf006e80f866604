from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.folder_hierarchy import FolderHierarchyManager, deepest_first, parent_first
from server.src.modules.logging_helpers import write_audit
from server.src.modules.trash_snapshot import (
    FolderSnapshot,
    FolderTrashPayload,
    LinkSnapshot,
    PageSnapshot,
    PageTrashPayload,
    dump_payload,
    load_payload,
)
from server.src.modules.workspace_db import TrashItem, transaction, utc_now
from server.src.modules.workspace_errors import NotFoundOrForbidden
from server.src.modules.workspace_repo import FolderStore, LinkStore, PageStore, TrashStore

logger = logging.getLogger(__name__)


@dataclass
class FolderDeletion:
    folder_id: str
    trash_item_id: str
    subfolder_count: int
    page_count: int
    link_count: int


@dataclass
class RestoreReport:
    kind: str
    item_id: str
    folders_restored: int = 0
    folders_skipped: int = 0
    pages_restored: int = 0
    pages_skipped: int = 0
    links_restored: int = 0
    links_skipped: int = 0
    unpublished_pages: list[str] = field(default_factory=list)
    reparented: list[str] = field(default_factory=list)


class TrashEngine:
    """Moves pages and folder subtrees into the bin and replays them back out.

    Deletion writes the snapshot and removes the live rows in one transaction.
    Restore inserts the snapshot rows best-effort: each subfolder, page and link
    gets its own savepoint, so one bad row is logged and skipped while everything
    else recovered so far is kept.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.hierarchy = FolderHierarchyManager(session)
        self.folders = FolderStore(session)
        self.pages = PageStore(session)
        self.links = LinkStore(session)
        self.trash = TrashStore(session)

    async def list_items(self, owner_id: str) -> list[TrashItem]:
        logger.debug("listing bin items owner=%s", owner_id)
        return await self.trash.list_by_owner(owner_id)

    async def get_item(self, item_id: str, owner_id: str) -> TrashItem:
        item = await self.trash.get(item_id)
        if not item or item.owner_id != owner_id:
            raise NotFoundOrForbidden("bin item", item_id)
        return item

    # -- deletion -------------------------------------------------------------

    async def delete_page(self, page_id: str, owner_id: str) -> bool:
        async with transaction(self.session, "page deletion"):
            page = await self.pages.get(page_id)
            if not page or page.owner_id != owner_id:
                raise NotFoundOrForbidden("page", page_id)
            outgoing = await self.links.outgoing(page.id)
            payload = PageTrashPayload(
                page=PageSnapshot.from_row(page),
                links=[LinkSnapshot.from_row(link) for link in outgoing],
            )
            item = await self.trash.create(
                owner_id=owner_id,
                item_type=payload.kind,
                item_id=page.id,
                item_name=page.title,
                schema_version=payload.version,
                payload=dump_payload(payload),
                deleted_at=utc_now(),
            )
            await self.links.delete_touching([page.id])
            if not await self.pages.delete(page.id):
                # someone else removed it first; drop our snapshot with the rest
                raise NotFoundOrForbidden("page", page_id)
            write_audit(self.session, "page.trash", owner_id, page_id, {"bin_item_id": item.id, "links": len(outgoing)})
        logger.info("page moved to bin id=%s owner=%s", page_id, owner_id)
        return True

    async def delete_folder(self, folder_id: str, owner_id: str) -> FolderDeletion:
        async with transaction(self.session, "folder deletion"):
            folder = await self.hierarchy.get(folder_id, owner_id)
            subtree = await self.hierarchy.collect_subtree(folder.id, owner_id)
            folder_ids = [folder.id, *(sub.id for sub in subtree)]
            pages = await self.pages.list_in_folders(owner_id, folder_ids)
            page_ids = [page.id for page in pages]
            links = list({link.id: link for link in await self.links.touching(page_ids)}.values())

            payload = FolderTrashPayload(
                folder=FolderSnapshot.from_row(folder),
                subfolders=[FolderSnapshot.from_row(sub) for sub in subtree],
                pages=[PageSnapshot.from_row(page) for page in pages],
                all_page_links=[LinkSnapshot.from_row(link) for link in links],
            )
            item = await self.trash.create(
                owner_id=owner_id,
                item_type=payload.kind,
                item_id=folder.id,
                item_name=folder.name,
                schema_version=payload.version,
                payload=dump_payload(payload),
                deleted_at=utc_now(),
            )

            await self.links.delete_touching(page_ids)
            for page_id in page_ids:
                await self.pages.delete(page_id)
            await self.hierarchy.delete_rows(sub.id for sub in deepest_first(subtree))
            if not await self.folders.delete(folder.id):
                raise NotFoundOrForbidden("folder", folder_id)

            result = FolderDeletion(
                folder_id=folder_id,
                trash_item_id=item.id,
                subfolder_count=len(subtree),
                page_count=len(pages),
                link_count=len(links),
            )
            write_audit(
                self.session,
                "folder.trash",
                owner_id,
                folder_id,
                {
                    "bin_item_id": item.id,
                    "subfolders": result.subfolder_count,
                    "pages": result.page_count,
                    "links": result.link_count,
                },
            )
        logger.info(
            "folder moved to bin id=%s owner=%s subfolders=%s pages=%s",
            folder_id,
            owner_id,
            result.subfolder_count,
            result.page_count,
        )
        return result

    # -- restore --------------------------------------------------------------

    async def restore(self, item_id: str, owner_id: str) -> RestoreReport:
        async with transaction(self.session, "bin restore"):
            item = await self.get_item(item_id, owner_id)
            payload = load_payload(item.item_type, item.payload)
            if isinstance(payload, PageTrashPayload):
                report = await self._restore_page(payload, owner_id)
            else:
                report = await self._restore_folder(payload, owner_id)
            await self.trash.delete(item.id)
            write_audit(
                self.session,
                f"{report.kind}.restore",
                owner_id,
                report.item_id,
                {
                    "bin_item_id": item_id,
                    "folders": report.folders_restored,
                    "pages": report.pages_restored,
                    "links": report.links_restored,
                    "skipped": report.folders_skipped + report.pages_skipped + report.links_skipped,
                },
            )
        logger.info("bin item restored id=%s kind=%s owner=%s", item_id, report.kind, owner_id)
        return report

    async def _live_folder(self, folder_id: str | None, owner_id: str) -> bool:
        if not folder_id:
            return False
        folder = await self.folders.get(folder_id)
        return bool(folder and folder.owner_id == owner_id)

    async def _page_values(self, snapshot: PageSnapshot, owner_id: str, report: RestoreReport) -> dict:
        values = snapshot.row_values()
        if values["slug"] and await self.pages.slug_exists(values["slug"], exclude_id=snapshot.id):
            logger.warning("slug conflict on restore, page unpublished page=%s slug=%s", snapshot.id, values["slug"])
            values.update(slug=None, is_published=False, published_at=None)
            report.unpublished_pages.append(snapshot.id)
        if values["folder_id"] and not await self._live_folder(values["folder_id"], owner_id):
            values["folder_id"] = None
            report.reparented.append(snapshot.id)
        return values

    async def _restore_link(self, link: LinkSnapshot, report: RestoreReport) -> None:
        try:
            async with self.session.begin_nested():
                await self.links.create(
                    link.from_page_id,
                    link.to_page_id,
                    id=link.id,
                    created_at=link.created_at,
                )
        except SQLAlchemyError as exc:
            logger.warning("failed to restore page link id=%s: %s", link.id, exc)
            report.links_skipped += 1
            return
        report.links_restored += 1

    async def _restore_page(self, payload: PageTrashPayload, owner_id: str) -> RestoreReport:
        snapshot = payload.page
        report = RestoreReport(kind="page", item_id=snapshot.id)
        values = await self._page_values(snapshot, owner_id, report)
        await self.pages.create(**values)
        report.pages_restored = 1

        for link in payload.links:
            if link.to_page_id == snapshot.id or not await self.pages.owned_exists(link.to_page_id, owner_id):
                report.links_skipped += 1
                continue
            await self._restore_link(link, report)
        return report

    async def _restore_folder(self, payload: FolderTrashPayload, owner_id: str) -> RestoreReport:
        root = payload.folder
        report = RestoreReport(kind="folder", item_id=root.id)

        root_values = root.row_values()
        if root_values["parent_id"] and not await self._live_folder(root_values["parent_id"], owner_id):
            root_values["parent_id"] = None
            report.reparented.append(root.id)
        await self.folders.create(**root_values)
        report.folders_restored = 1

        for sub in parent_first(payload.subfolders):
            values = sub.row_values()
            if values["parent_id"] and not await self._live_folder(values["parent_id"], owner_id):
                values["parent_id"] = None
                report.reparented.append(sub.id)
            try:
                async with self.session.begin_nested():
                    await self.folders.create(**values)
            except SQLAlchemyError as exc:
                logger.warning("failed to restore subfolder id=%s: %s", sub.id, exc)
                report.folders_skipped += 1
                continue
            report.folders_restored += 1

        skipped_pages: set[str] = set()
        for page in payload.pages:
            try:
                values = await self._page_values(page, owner_id, report)
                async with self.session.begin_nested():
                    await self.pages.create(**values)
            except SQLAlchemyError as exc:
                logger.warning("failed to restore page id=%s: %s", page.id, exc)
                report.pages_skipped += 1
                skipped_pages.add(page.id)
                continue
            report.pages_restored += 1

        for link in payload.all_page_links:
            if not await self._restorable_link(link, owner_id, skipped_pages):
                report.links_skipped += 1
                continue
            await self._restore_link(link, report)
        return report

    async def _restorable_link(self, link: LinkSnapshot, owner_id: str, skipped_pages: set[str]) -> bool:
        for page_id in (link.from_page_id, link.to_page_id):
            if page_id in skipped_pages or not await self.pages.owned_exists(page_id, owner_id):
                return False
        return True

    # -- purge ----------------------------------------------------------------

    async def permanently_delete(self, item_id: str, owner_id: str) -> bool:
        """Drop a bin item without restoring it.

        Returns False for missing items and for items owned by someone else alike.
        """
        async with transaction(self.session, "bin item deletion"):
            item = await self.trash.get(item_id)
            if not item or item.owner_id != owner_id:
                logger.warning("bin item not found or access denied id=%s owner=%s", item_id, owner_id)
                return False
            deleted = await self.trash.delete(item.id)
            if deleted:
                write_audit(self.session, f"{item.item_type}.purge", owner_id, item.item_id, {"bin_item_id": item_id})
        logger.info("bin item permanently deleted id=%s", item_id)
        return deleted

    async def empty_bin(self, owner_id: str) -> int:
        async with transaction(self.session, "bin emptying"):
            count = await self.trash.delete_by_owner(owner_id)
            write_audit(self.session, "bin.empty", owner_id, owner_id, {"items": count})
        logger.info("bin emptied owner=%s items=%s", owner_id, count)
        return count
