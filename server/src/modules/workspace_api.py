import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.folder_hierarchy import FolderHierarchyManager
from server.src.modules.link_graph import LinkGraphManager
from server.src.modules.page_manager import PageManager
from server.src.modules.trash_engine import TrashEngine
from server.src.modules.workspace_auth import optional_viewer, require_owner
from server.src.modules.workspace_db import Folder, Page, PageLink, TrashItem, db_error_detail, get_session
from server.src.modules.workspace_errors import WorkspaceError
from server.src.modules.workspace_service import UNSET

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/api",
    tags=["workspace"],
)


class FolderCreatePayload(BaseModel):
    name: str
    parent_id: str | None = None


class FolderUpdatePayload(BaseModel):
    name: str | None = None
    parent_id: str | None = None
    position: int | None = None


class FolderMovePayload(BaseModel):
    parent_id: str | None = None


class PageCreatePayload(BaseModel):
    title: str
    content: Any = None
    folder_id: str | None = None


class PageUpdatePayload(BaseModel):
    title: str | None = None
    content: Any = None
    folder_id: str | None = None


class PageMovePayload(BaseModel):
    folder_id: str | None = None


class PublishPayload(BaseModel):
    slug: str | None = None


class LinkPayload(BaseModel):
    to_page_id: str


class FolderOut(BaseModel):
    id: str
    parent_id: str | None
    name: str
    position: int
    created_at: str
    updated_at: str


class PageOut(BaseModel):
    id: str
    folder_id: str | None
    title: str
    content: Any
    is_published: bool
    slug: str | None
    published_at: str | None
    created_at: str
    updated_at: str


class PublicPageOut(BaseModel):
    id: str
    title: str
    content: Any
    slug: str | None
    published_at: str | None
    updated_at: str


class LinkOut(BaseModel):
    id: str
    from_page_id: str
    to_page_id: str
    created_at: str
    to_page: dict[str, Any] | None = None
    from_page: dict[str, Any] | None = None


class PageLinksOut(BaseModel):
    outgoing: list[LinkOut]
    incoming: list[LinkOut]


class BinItemOut(BaseModel):
    id: str
    item_type: str
    item_id: str
    item_name: str
    schema_version: int
    deleted_at: str


class FolderDeletionOut(BaseModel):
    folder_id: str
    bin_item_id: str
    subfolders: int
    pages: int
    links: int


class RestoreOut(BaseModel):
    kind: str
    item_id: str
    folders_restored: int
    folders_skipped: int
    pages_restored: int
    pages_skipped: int
    links_restored: int
    links_skipped: int
    unpublished_pages: list[str]
    reparented: list[str]


@contextmanager
def _workspace_errors() -> Iterator[None]:
    try:
        yield
    except WorkspaceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _folder_to_dict(folder: Folder) -> FolderOut:
    return FolderOut(
        id=folder.id,
        parent_id=folder.parent_id,
        name=folder.name,
        position=folder.position or 0,
        created_at=_iso(folder.created_at) or "",
        updated_at=_iso(folder.updated_at) or "",
    )


def _page_to_dict(page: Page) -> PageOut:
    return PageOut(
        id=page.id,
        folder_id=page.folder_id,
        title=page.title,
        content=page.content,
        is_published=bool(page.is_published),
        slug=page.slug,
        published_at=_iso(page.published_at),
        created_at=_iso(page.created_at) or "",
        updated_at=_iso(page.updated_at) or "",
    )


def _public_page_to_dict(page: Page) -> PublicPageOut:
    return PublicPageOut(
        id=page.id,
        title=page.title,
        content=page.content,
        slug=page.slug,
        published_at=_iso(page.published_at),
        updated_at=_iso(page.updated_at) or "",
    )


def _link_to_dict(link: PageLink | dict[str, Any]) -> LinkOut:
    if isinstance(link, PageLink):
        link = {
            "id": link.id,
            "from_page_id": link.from_page_id,
            "to_page_id": link.to_page_id,
            "created_at": link.created_at,
        }
    return LinkOut(**{**link, "created_at": _iso(link["created_at"]) or ""})


def _bin_item_to_dict(item: TrashItem) -> BinItemOut:
    return BinItemOut(
        id=item.id,
        item_type=item.item_type,
        item_id=item.item_id,
        item_name=item.item_name or "",
        schema_version=item.schema_version,
        deleted_at=_iso(item.deleted_at) or "",
    )


def _changes(payload: BaseModel, *fields: str) -> dict[str, Any]:
    """Only the fields the caller actually sent; omitted ones stay UNSET."""
    sent = payload.model_fields_set
    return {name: getattr(payload, name) if name in sent else UNSET for name in fields}


# -- folders ------------------------------------------------------------------


@router.get("/folders", response_model=list[FolderOut])
async def list_folders(
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    folders = await FolderHierarchyManager(session).list(owner_id)
    return [_folder_to_dict(folder) for folder in folders]


@router.get("/folders/{folder_id}", response_model=FolderOut)
async def get_folder(
    folder_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        folder = await FolderHierarchyManager(session).get(folder_id, owner_id)
    return _folder_to_dict(folder)


@router.post("/folders", response_model=FolderOut, status_code=201)
async def create_folder(
    payload: FolderCreatePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        folder = await FolderHierarchyManager(session).create(owner_id, payload.name, payload.parent_id)
    return _folder_to_dict(folder)


@router.patch("/folders/{folder_id}", response_model=FolderOut)
async def update_folder(
    folder_id: str,
    payload: FolderUpdatePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        folder = await FolderHierarchyManager(session).update(
            folder_id,
            owner_id,
            **_changes(payload, "name", "parent_id", "position"),
        )
    return _folder_to_dict(folder)


@router.post("/folders/{folder_id}/move", response_model=FolderOut)
async def move_folder(
    folder_id: str,
    payload: FolderMovePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        folder = await FolderHierarchyManager(session).move(folder_id, owner_id, payload.parent_id)
    return _folder_to_dict(folder)


@router.delete("/folders/{folder_id}", response_model=FolderDeletionOut)
async def delete_folder(
    folder_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        result = await TrashEngine(session).delete_folder(folder_id, owner_id)
    return FolderDeletionOut(
        folder_id=result.folder_id,
        bin_item_id=result.trash_item_id,
        subfolders=result.subfolder_count,
        pages=result.page_count,
        links=result.link_count,
    )


# -- pages --------------------------------------------------------------------


@router.get("/pages", response_model=list[PageOut])
async def list_pages(
    folder_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    # "root" selects pages outside any folder; no value lists everything
    if folder_id == "root":
        folder_filter: Any = None
    else:
        folder_filter = folder_id or UNSET
    pages = await PageManager(session).list(owner_id, folder_id=folder_filter, search=search)
    return [_page_to_dict(page) for page in pages]


@router.get("/pages/{page_id}", response_model=PageOut)
async def get_page(
    page_id: str,
    session: AsyncSession = Depends(get_session),
    viewer_id: str | None = Depends(optional_viewer),
):
    with _workspace_errors():
        page = await PageManager(session).get(page_id, viewer_id)
    return _page_to_dict(page)


@router.post("/pages", response_model=PageOut, status_code=201)
async def create_page(
    payload: PageCreatePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        page = await PageManager(session).create(owner_id, payload.title, payload.content, payload.folder_id)
    return _page_to_dict(page)


@router.patch("/pages/{page_id}", response_model=PageOut)
async def update_page(
    page_id: str,
    payload: PageUpdatePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        page = await PageManager(session).update(
            page_id,
            owner_id,
            **_changes(payload, "title", "content", "folder_id"),
        )
    return _page_to_dict(page)


@router.post("/pages/{page_id}/move", response_model=PageOut)
async def move_page(
    page_id: str,
    payload: PageMovePayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        page = await PageManager(session).move(page_id, owner_id, payload.folder_id)
    return _page_to_dict(page)


@router.delete("/pages/{page_id}")
async def delete_page(
    page_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        await TrashEngine(session).delete_page(page_id, owner_id)
    return {"status": "success", "id": page_id}


@router.post("/pages/{page_id}/publish", response_model=PageOut)
async def publish_page(
    page_id: str,
    payload: PublishPayload | None = None,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    slug = payload.slug if payload else None
    with _workspace_errors():
        page = await PageManager(session).publish(page_id, owner_id, slug)
    return _page_to_dict(page)


@router.post("/pages/{page_id}/unpublish", response_model=PageOut)
async def unpublish_page(
    page_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        page = await PageManager(session).unpublish(page_id, owner_id)
    return _page_to_dict(page)


@router.get("/pages/{page_id}/links", response_model=PageLinksOut)
async def get_page_links(
    page_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        links = await LinkGraphManager(session).page_links(page_id, owner_id)
    return PageLinksOut(
        outgoing=[_link_to_dict(link) for link in links["outgoing"]],
        incoming=[_link_to_dict(link) for link in links["incoming"]],
    )


@router.get("/pages/{page_id}/backlinks", response_model=list[LinkOut])
async def get_backlinks(
    page_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        links = await LinkGraphManager(session).backlinks(page_id, owner_id)
    return [_link_to_dict(link) for link in links]


@router.post("/pages/{page_id}/links", response_model=LinkOut, status_code=201)
async def create_page_link(
    page_id: str,
    payload: LinkPayload,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        link = await LinkGraphManager(session).create_link(page_id, payload.to_page_id, owner_id)
    return _link_to_dict(link)


@router.delete("/pages/{page_id}/links/{target_id}")
async def delete_page_link(
    page_id: str,
    target_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        removed = await LinkGraphManager(session).delete_link(page_id, target_id, owner_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Link not found")
    return {"status": "success"}


# -- bin ----------------------------------------------------------------------


@router.get("/bin", response_model=list[BinItemOut])
async def list_bin(
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    items = await TrashEngine(session).list_items(owner_id)
    return [_bin_item_to_dict(item) for item in items]


@router.post("/bin/{item_id}/restore", response_model=RestoreOut)
async def restore_bin_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        report = await TrashEngine(session).restore(item_id, owner_id)
    return RestoreOut(**vars(report))


@router.delete("/bin/{item_id}")
async def delete_bin_item(
    item_id: str,
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        deleted = await TrashEngine(session).permanently_delete(item_id, owner_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bin item not found")
    return {"status": "success"}


@router.delete("/bin")
async def empty_bin(
    session: AsyncSession = Depends(get_session),
    owner_id: str = Depends(require_owner),
):
    with _workspace_errors():
        count = await TrashEngine(session).empty_bin(owner_id)
    return {"status": "success", "deleted": count}


# -- public -------------------------------------------------------------------


@router.get("/public/pages", response_model=list[PublicPageOut])
async def list_public_pages(
    search: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
):
    pages = await PageManager(session).list_published(search)
    return [_public_page_to_dict(page) for page in pages]


@router.get("/public/pages/{slug}", response_model=PublicPageOut)
async def get_public_page(
    slug: str,
    session: AsyncSession = Depends(get_session),
):
    with _workspace_errors():
        page = await PageManager(session).get_by_slug(slug)
    return _public_page_to_dict(page)


@router.get("/health")
async def health(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.exception("workspace health check failed")
        raise HTTPException(status_code=503, detail=db_error_detail(exc, "health check"))
    return {"status": "ok"}
