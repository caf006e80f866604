from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from server.src.modules.workspace_config import get_workspace_settings
from server.src.modules.workspace_db import Folder, transaction
from server.src.modules.workspace_errors import CircularReference, NotFoundOrForbidden
from server.src.modules.workspace_repo import FolderStore
from server.src.modules.workspace_service import UNSET, is_set, require_text

logger = logging.getLogger(__name__)


def _folder_id(folder: Any) -> str:
    return folder.id


def _parent_id(folder: Any) -> str | None:
    return folder.parent_id


def deepest_first(folders: Iterable[Any]) -> list[Any]:
    """Order folders so every folder comes before its parent within the set.

    Works on rows and snapshots alike. Depth is measured only along parents that
    are themselves in the set; a corrupt cycle stops the count instead of looping.
    """
    items = list(folders)
    by_id = {_folder_id(f): f for f in items}
    depth: dict[str, int] = {}
    for folder in items:
        hops = 0
        seen = {_folder_id(folder)}
        current = _parent_id(folder)
        while current in by_id and current not in seen:
            seen.add(current)
            hops += 1
            current = _parent_id(by_id[current])
        depth[_folder_id(folder)] = hops
    return sorted(items, key=lambda f: depth[_folder_id(f)], reverse=True)


def parent_first(folders: Iterable[Any]) -> list[Any]:
    """Order folders so every folder follows its recorded parent within the set."""
    items = list(folders)
    by_id = {_folder_id(f): f for f in items}
    result: list[Any] = []
    placed: set[str] = set()
    for folder in items:
        chain: list[Any] = []
        seen: set[str] = set()
        current = folder
        while current is not None and _folder_id(current) not in placed and _folder_id(current) not in seen:
            seen.add(_folder_id(current))
            chain.append(current)
            current = by_id.get(_parent_id(current)) if _parent_id(current) else None
        for pending in reversed(chain):
            placed.add(_folder_id(pending))
            result.append(pending)
    return result


class FolderHierarchyManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.folders = FolderStore(session)

    async def get(self, folder_id: str, owner_id: str) -> Folder:
        folder = await self.folders.get(folder_id)
        if not folder or folder.owner_id != owner_id:
            raise NotFoundOrForbidden("folder", folder_id)
        return folder

    async def list(self, owner_id: str) -> list[Folder]:
        logger.debug("listing folders owner=%s", owner_id)
        return await self.folders.list_by_owner(owner_id)

    async def _require_parent(self, parent_id: str, owner_id: str) -> Folder:
        parent = await self.folders.get(parent_id)
        if not parent or parent.owner_id != owner_id:
            raise NotFoundOrForbidden("parent folder", parent_id)
        return parent

    async def create(self, owner_id: str, name: str, parent_id: str | None = None) -> Folder:
        clean_name = require_text(name, "name")
        async with transaction(self.session, "folder creation"):
            if parent_id:
                await self._require_parent(parent_id, owner_id)
            folder = await self.folders.create(
                owner_id=owner_id,
                name=clean_name,
                parent_id=parent_id or None,
                position=0,
            )
        logger.info("folder created id=%s owner=%s parent=%s", folder.id, owner_id, folder.parent_id)
        return folder

    async def update(
        self,
        folder_id: str,
        owner_id: str,
        *,
        name: Any = UNSET,
        parent_id: Any = UNSET,
        position: Any = UNSET,
    ) -> Folder:
        async with transaction(self.session, "folder update"):
            folder = await self.get(folder_id, owner_id)
            if is_set(parent_id) and parent_id is not None:
                if await self.has_circular_reference(folder.id, parent_id):
                    raise CircularReference(folder.id, parent_id)
                await self._require_parent(parent_id, owner_id)
            await self.folders.update(
                folder,
                name=require_text(name, "name") if is_set(name) else UNSET,
                parent_id=parent_id,
                position=int(position) if is_set(position) and position is not None else UNSET,
            )
        logger.info("folder updated id=%s owner=%s", folder_id, owner_id)
        return folder

    async def move(self, folder_id: str, owner_id: str, new_parent_id: str | None) -> Folder:
        return await self.update(folder_id, owner_id, parent_id=new_parent_id or None)

    async def has_circular_reference(self, folder_id: str, candidate_parent_id: str | None) -> bool:
        """True when ``candidate_parent_id`` is ``folder_id`` or one of its descendants.

        Walks upward from the candidate. Revisiting an id or exceeding the configured
        depth also counts as circular, so a pre-existing corrupt cycle cannot hang us.
        """
        max_hops = get_workspace_settings().max_folder_depth
        visited: set[str] = set()
        current = candidate_parent_id
        while current:
            if current == folder_id or current in visited:
                return True
            if len(visited) >= max_hops:
                logger.warning("ancestor walk exceeded %s hops from folder=%s", max_hops, candidate_parent_id)
                return True
            visited.add(current)
            exists, current = await self.folders.parent_of(current)
            if not exists:
                return False
        return False

    async def collect_subtree(self, folder_id: str, owner_id: str) -> list[Folder]:
        """Every descendant of ``folder_id`` owned by ``owner_id``, parents before children."""
        result: list[Folder] = []
        visited: set[str] = {folder_id}
        frontier = [folder_id]
        while frontier:
            next_frontier: list[str] = []
            for child in await self.folders.children(frontier):
                if child.id in visited:
                    continue
                if child.owner_id != owner_id:
                    logger.warning("skipping foreign folder=%s under owner=%s", child.id, owner_id)
                    continue
                visited.add(child.id)
                result.append(child)
                next_frontier.append(child.id)
            frontier = next_frontier
        return result

    async def delete_rows(self, folder_ids: Iterable[str]) -> int:
        removed = 0
        for fid in folder_ids:
            if await self.folders.delete(fid):
                removed += 1
        return removed
