"""Versioned snapshot payloads stored on bin items.

A payload is a tagged variant: ``kind`` selects the page or folder shape and
``version`` records the schema it was written with. Field names travel in
camelCase (``allPageLinks``, ``folderId``) and are accepted in snake_case too,
which also lets payloads written before tagging existed load as version 1.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from server.src.modules.workspace_db import Folder, Page, PageLink
from server.src.modules.workspace_errors import ValidationError

SNAPSHOT_VERSION = 1


class _Snapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FolderSnapshot(_Snapshot):
    id: str
    owner_id: str = Field(alias="userId")
    parent_id: str | None = None
    name: str
    position: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, folder: Folder) -> "FolderSnapshot":
        return cls(
            id=folder.id,
            owner_id=folder.owner_id,
            parent_id=folder.parent_id,
            name=folder.name,
            position=folder.position or 0,
            created_at=folder.created_at,
            updated_at=folder.updated_at,
        )

    def row_values(self) -> dict[str, Any]:
        return self.model_dump(by_alias=False)


class PageSnapshot(_Snapshot):
    id: str
    owner_id: str = Field(alias="userId")
    folder_id: str | None = None
    title: str
    content: Any = Field(default_factory=lambda: {"type": "doc", "content": []})
    is_published: bool = False
    slug: str | None = None
    published_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, page: Page) -> "PageSnapshot":
        return cls(
            id=page.id,
            owner_id=page.owner_id,
            folder_id=page.folder_id,
            title=page.title,
            content=page.content,
            is_published=bool(page.is_published),
            slug=page.slug,
            published_at=page.published_at,
            created_at=page.created_at,
            updated_at=page.updated_at,
        )

    def row_values(self) -> dict[str, Any]:
        return self.model_dump(by_alias=False)


class LinkSnapshot(_Snapshot):
    id: str
    from_page_id: str
    to_page_id: str
    created_at: datetime

    @classmethod
    def from_row(cls, link: PageLink) -> "LinkSnapshot":
        return cls(
            id=link.id,
            from_page_id=link.from_page_id,
            to_page_id=link.to_page_id,
            created_at=link.created_at,
        )


class PageTrashPayload(_Snapshot):
    kind: Literal["page"] = "page"
    version: int = SNAPSHOT_VERSION
    page: PageSnapshot
    links: list[LinkSnapshot] = Field(default_factory=list)


class FolderTrashPayload(_Snapshot):
    kind: Literal["folder"] = "folder"
    version: int = SNAPSHOT_VERSION
    folder: FolderSnapshot
    subfolders: list[FolderSnapshot] = Field(default_factory=list)
    pages: list[PageSnapshot] = Field(default_factory=list)
    all_page_links: list[LinkSnapshot] = Field(default_factory=list)


TrashPayload = Annotated[Union[PageTrashPayload, FolderTrashPayload], Field(discriminator="kind")]
_payload_adapter: TypeAdapter[PageTrashPayload | FolderTrashPayload] = TypeAdapter(TrashPayload)


def dump_payload(payload: PageTrashPayload | FolderTrashPayload) -> dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True)


def load_payload(item_type: str, raw: Any) -> PageTrashPayload | FolderTrashPayload:
    """Parse a stored payload, filling in tags that untagged payloads lack."""
    if not isinstance(raw, dict):
        raise ValidationError("Bin item payload is not an object")
    data = dict(raw)
    data.setdefault("kind", item_type)
    data.setdefault("version", 1)
    if data["kind"] != item_type:
        raise ValidationError(f"Bin item payload kind {data['kind']!r} does not match {item_type!r}")
    try:
        version = int(data["version"])
    except (TypeError, ValueError):
        raise ValidationError("Bin item payload version is not a number")
    if version > SNAPSHOT_VERSION:
        raise ValidationError(f"Bin item payload version {version} is newer than supported ({SNAPSHOT_VERSION})")
    try:
        return _payload_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Bin item payload is malformed: {exc.error_count()} error(s)") from exc
