import pytest
from sqlalchemy import select

from server.src.modules.folder_hierarchy import FolderHierarchyManager
from server.src.modules.page_manager import PageManager
from server.src.modules.trash_engine import TrashEngine
from server.src.modules.workspace_db import AsyncSessionLocal, AuditLog, Folder, Page, PageLink
from server.src.modules.workspace_errors import NotFoundOrForbidden, StoreError
from server.src.modules.workspace_repo import FolderStore, PageStore
from tests.conftest import workspace_session
from tests.helpers import doc_with_links

OWNER = "owner-1"


async def _folder_tree(session):
    """A -> B -> C with one page in each folder and links between the pages."""
    folders = FolderHierarchyManager(session)
    pages = PageManager(session)
    a = (await folders.create(OWNER, "A")).id
    b = (await folders.create(OWNER, "B", a)).id
    c = (await folders.create(OWNER, "C", b)).id
    pc = (await pages.create(OWNER, "In C", folder_id=c)).id
    pb = (await pages.create(OWNER, "In B", content=doc_with_links(pc), folder_id=b)).id
    pa = (await pages.create(OWNER, "In A", content=doc_with_links(pb, pc), folder_id=a)).id
    return {"a": a, "b": b, "c": c, "pa": pa, "pb": pb, "pc": pc}


async def _audit_actions(session) -> list[str]:
    rows = await session.execute(select(AuditLog.action).order_by(AuditLog.ts))
    return [action for (action,) in rows.all()]


@pytest.mark.asyncio
async def test_page_round_trip_through_bin():
    async with workspace_session() as session:
        folder_id = (await FolderHierarchyManager(session).create(OWNER, "Home")).id
        pages = PageManager(session)
        kept = (await pages.create(OWNER, "Kept target")).id
        doomed = (await pages.create(OWNER, "Doomed target")).id
        content = doc_with_links(kept, doomed)
        source = (await pages.create(OWNER, "Source", content=content, folder_id=folder_id)).id
        link_ids = {link.to_page_id: link.id for link in await pages.graph.links.outgoing(source)}

        engine = TrashEngine(session)
        assert await engine.delete_page(source, OWNER) is True
        assert not await PageStore(session).owned_exists(source, OWNER)
        assert await pages.graph.links.touching([source]) == []

        await engine.delete_page(doomed, OWNER)
        item = next(i for i in await engine.list_items(OWNER) if i.item_id == source)
        assert item.item_type == "page"
        assert item.item_name == "Source"

        report = await engine.restore(item.id, OWNER)
        assert report.kind == "page"
        assert report.pages_restored == 1
        assert report.links_restored == 1
        assert report.links_skipped == 1

        restored = await pages.get_owned(source, OWNER)
        assert restored.title == "Source"
        assert restored.content == content
        assert restored.folder_id == folder_id
        outgoing = await pages.graph.links.outgoing(source)
        assert [(link.to_page_id, link.id) for link in outgoing] == [(kept, link_ids[kept])]
        assert {i.item_id for i in await engine.list_items(OWNER)} == {doomed}
        assert await _audit_actions(session) == ["page.trash", "page.trash", "page.restore"]


@pytest.mark.asyncio
async def test_folder_round_trip_keeps_ids():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)

        deletion = await engine.delete_folder(ids["a"], OWNER)
        assert deletion.subfolder_count == 2
        assert deletion.page_count == 3
        assert deletion.link_count == 3
        assert await FolderHierarchyManager(session).list(OWNER) == []
        assert await PageManager(session).list(OWNER) == []

        report = await engine.restore(deletion.trash_item_id, OWNER)
        assert (report.folders_restored, report.pages_restored, report.links_restored) == (3, 3, 3)
        assert report.reparented == []

        folders = {f.id: f.parent_id for f in await FolderHierarchyManager(session).list(OWNER)}
        assert folders == {ids["a"]: None, ids["b"]: ids["a"], ids["c"]: ids["b"]}
        pages = {p.id: p.folder_id for p in await PageManager(session).list(OWNER)}
        assert pages == {ids["pa"]: ids["a"], ids["pb"]: ids["b"], ids["pc"]: ids["c"]}
        assert await engine.list_items(OWNER) == []


@pytest.mark.asyncio
async def test_deleting_subfolder_then_parent_restores_independently():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)
        inner = await engine.delete_folder(ids["b"], OWNER)
        outer = await engine.delete_folder(ids["a"], OWNER)
        assert outer.subfolder_count == 0

        # B's parent is still in the bin, so B comes back at the root
        report = await engine.restore(inner.trash_item_id, OWNER)
        assert report.reparented == [ids["b"]]
        folders = {f.id: f.parent_id for f in await FolderHierarchyManager(session).list(OWNER)}
        assert folders == {ids["b"]: None, ids["c"]: ids["b"]}


@pytest.mark.asyncio
async def test_restore_unpublishes_on_slug_conflict():
    async with workspace_session() as session:
        pages = PageManager(session)
        original = (await pages.create(OWNER, "Launch")).id
        await pages.publish(original, OWNER, "launch")
        engine = TrashEngine(session)
        await engine.delete_page(original, OWNER)

        squatter = (await pages.create("owner-2", "Launch too")).id
        await pages.publish(squatter, "owner-2", "launch")

        (item,) = await engine.list_items(OWNER)
        report = await engine.restore(item.id, OWNER)
        assert report.unpublished_pages == [original]
        restored = await pages.get_owned(original, OWNER)
        assert restored.is_published is False
        assert restored.slug is None
        assert (await pages.get_by_slug("launch")).id == squatter


@pytest.mark.asyncio
async def test_restore_moves_page_to_root_when_folder_is_gone():
    async with workspace_session() as session:
        folder_id = (await FolderHierarchyManager(session).create(OWNER, "Temporary")).id
        page_id = (await PageManager(session).create(OWNER, "Filed", folder_id=folder_id)).id
        engine = TrashEngine(session)
        await engine.delete_page(page_id, OWNER)
        folder_item = await engine.delete_folder(folder_id, OWNER)
        await engine.permanently_delete(folder_item.trash_item_id, OWNER)

        (item,) = await engine.list_items(OWNER)
        report = await engine.restore(item.id, OWNER)
        assert report.reparented == [page_id]
        assert (await PageManager(session).get_owned(page_id, OWNER)).folder_id is None


@pytest.mark.asyncio
async def test_folder_restore_skips_rows_that_cannot_be_inserted():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)
        deletion = await engine.delete_folder(ids["c"], OWNER)

        async with AsyncSessionLocal() as other:
            other.add(Page(id=ids["pc"], owner_id="owner-2", title="Squatter", content={"type": "doc", "content": []}))
            await other.commit()

        report = await engine.restore(deletion.trash_item_id, OWNER)
        assert report.folders_restored == 1
        assert report.pages_restored == 0
        assert report.pages_skipped == 1
        assert await FolderStore(session).get(ids["c"]) is not None
        assert (report.links_restored, report.links_skipped) == (0, 2)
        rows = await session.execute(select(PageLink.from_page_id).where(PageLink.to_page_id == ids["pc"]))
        assert rows.all() == []


@pytest.mark.asyncio
async def test_page_restore_skips_links_to_foreign_pages():
    async with workspace_session() as session:
        pages = PageManager(session)
        target = (await pages.create(OWNER, "Target")).id
        source = (await pages.create(OWNER, "Source", content=doc_with_links(target))).id
        engine = TrashEngine(session)
        await engine.delete_page(source, OWNER)
        await engine.delete_page(target, OWNER)
        source_item = next(i for i in await engine.list_items(OWNER) if i.item_id == source)
        source_item_id = source_item.id

        async with AsyncSessionLocal() as other:
            other.add(Page(id=target, owner_id="owner-2", title="Squatter", content={"type": "doc", "content": []}))
            await other.commit()

        report = await engine.restore(source_item_id, OWNER)
        assert (report.links_restored, report.links_skipped) == (0, 1)
        assert await pages.graph.links.outgoing(source) == []


@pytest.mark.asyncio
async def test_folder_restore_unpublishes_pages_on_slug_conflict():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        pages = PageManager(session)
        await pages.publish(ids["pc"], OWNER, "in-c")
        engine = TrashEngine(session)
        deletion = await engine.delete_folder(ids["c"], OWNER)

        squatter = (await pages.create("owner-2", "Also in C")).id
        await pages.publish(squatter, "owner-2", "in-c")

        report = await engine.restore(deletion.trash_item_id, OWNER)
        assert report.unpublished_pages == [ids["pc"]]
        assert report.pages_restored == 1
        restored = await pages.get_owned(ids["pc"], OWNER)
        assert restored.folder_id == ids["c"]
        assert restored.is_published is False
        assert restored.slug is None
        assert (await pages.get_by_slug("in-c")).id == squatter


@pytest.mark.asyncio
async def test_folder_restore_reparents_children_of_skipped_subfolder():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)
        deletion = await engine.delete_folder(ids["a"], OWNER)

        async with AsyncSessionLocal() as other:
            other.add(Folder(id=ids["b"], owner_id="owner-2", name="Squatter", position=0))
            await other.commit()

        report = await engine.restore(deletion.trash_item_id, OWNER)
        assert (report.folders_restored, report.folders_skipped) == (2, 1)
        assert report.reparented == [ids["c"], ids["pb"]]
        assert report.pages_restored == 3
        assert report.links_restored == 3

        folders = {f.id: f.parent_id for f in await FolderHierarchyManager(session).list(OWNER)}
        assert folders == {ids["a"]: None, ids["c"]: None}
        pages = {p.id: p.folder_id for p in await PageManager(session).list(OWNER)}
        assert pages == {ids["pa"]: ids["a"], ids["pb"]: None, ids["pc"]: ids["c"]}


@pytest.mark.asyncio
async def test_folder_restore_skips_links_with_a_missing_endpoint():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)
        deletion = await engine.delete_folder(ids["c"], OWNER)
        await engine.delete_page(ids["pb"], OWNER)

        report = await engine.restore(deletion.trash_item_id, OWNER)
        assert report.pages_restored == 1
        assert (report.links_restored, report.links_skipped) == (1, 1)
        rows = await session.execute(select(PageLink.from_page_id).where(PageLink.to_page_id == ids["pc"]))
        assert [from_id for (from_id,) in rows.all()] == [ids["pa"]]



@pytest.mark.asyncio
async def test_failed_root_insert_keeps_bin_item():
    async with workspace_session() as session:
        ids = await _folder_tree(session)
        engine = TrashEngine(session)
        deletion = await engine.delete_folder(ids["c"], OWNER)
        item_id = deletion.trash_item_id

        async with AsyncSessionLocal() as other:
            other.add(Folder(id=ids["c"], owner_id=OWNER, name="Squatter", position=0))
            await other.commit()

        with pytest.raises(StoreError):
            await engine.restore(item_id, OWNER)
        assert (await engine.get_item(item_id, OWNER)).item_id == ids["c"]
        assert not await PageStore(session).owned_exists(ids["pc"], OWNER)


@pytest.mark.asyncio
async def test_losing_delete_rolls_back_its_snapshot(monkeypatch):
    async with workspace_session() as session:
        pages = PageManager(session)
        target = (await pages.create(OWNER, "Target")).id
        source = (await pages.create(OWNER, "Source", content=doc_with_links(target))).id

        async def already_gone(self, page_id):
            return False

        monkeypatch.setattr(PageStore, "delete", already_gone)
        engine = TrashEngine(session)
        with pytest.raises(NotFoundOrForbidden):
            await engine.delete_page(source, OWNER)
        monkeypatch.undo()

        assert await engine.list_items(OWNER) == []
        assert [link.to_page_id for link in await pages.graph.links.outgoing(source)] == [target]
        assert await _audit_actions(session) == []


@pytest.mark.asyncio
async def test_losing_folder_delete_rolls_back(monkeypatch):
    async with workspace_session() as session:
        ids = await _folder_tree(session)

        async def already_gone(self, folder_id):
            return False

        monkeypatch.setattr(FolderStore, "delete", already_gone)
        engine = TrashEngine(session)
        with pytest.raises(NotFoundOrForbidden):
            await engine.delete_folder(ids["a"], OWNER)
        monkeypatch.undo()

        assert await engine.list_items(OWNER) == []
        assert len(await PageManager(session).list(OWNER)) == 3


@pytest.mark.asyncio
async def test_foreign_items_are_invisible():
    async with workspace_session() as session:
        page_id = (await PageManager(session).create(OWNER, "Mine")).id
        engine = TrashEngine(session)
        with pytest.raises(NotFoundOrForbidden):
            await engine.delete_page(page_id, "owner-2")
        await engine.delete_page(page_id, OWNER)
        (item,) = await engine.list_items(OWNER)
        item_id = item.id

        with pytest.raises(NotFoundOrForbidden):
            await engine.restore(item_id, "owner-2")
        assert await engine.permanently_delete(item_id, "owner-2") is False
        assert await engine.permanently_delete("missing", OWNER) is False
        assert await engine.permanently_delete(item_id, OWNER) is True
        assert await engine.list_items(OWNER) == []


@pytest.mark.asyncio
async def test_empty_bin_only_touches_own_items():
    async with workspace_session() as session:
        pages = PageManager(session)
        engine = TrashEngine(session)
        for title in ("One", "Two", "Three"):
            await engine.delete_page((await pages.create(OWNER, title)).id, OWNER)
        await engine.delete_page((await pages.create("owner-2", "Theirs")).id, "owner-2")

        assert await engine.empty_bin(OWNER) == 3
        assert await engine.list_items(OWNER) == []
        assert len(await engine.list_items("owner-2")) == 1
        assert await engine.empty_bin(OWNER) == 0
