"""Domain errors raised by the workspace core.

Every error carries the HTTP status the API layer answers with, so routers
only need a single translation point.
"""

from __future__ import annotations


class WorkspaceError(Exception):
    """Base class for workspace domain failures."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundOrForbidden(WorkspaceError):
    """The entity is absent or belongs to someone else.

    Both cases share one error so callers cannot probe for foreign ids.
    """

    status_code = 404

    def __init__(self, entity: str, entity_id: str | None = None):
        super().__init__(f"{entity.capitalize()} not found")
        self.entity = entity
        self.entity_id = entity_id


class CircularReference(WorkspaceError):
    status_code = 409

    def __init__(self, folder_id: str, parent_id: str):
        super().__init__("Circular reference detected: folder cannot be its own ancestor")
        self.folder_id = folder_id
        self.parent_id = parent_id


class SlugTaken(WorkspaceError):
    status_code = 409

    def __init__(self, slug: str):
        super().__init__("Slug already exists")
        self.slug = slug


class SelfReferentialLink(WorkspaceError):
    status_code = 400

    def __init__(self, page_id: str):
        super().__init__("Cannot create self-referential link")
        self.page_id = page_id


class ValidationError(WorkspaceError):
    status_code = 400


class StoreError(WorkspaceError):
    """Storage failure that is not part of the domain taxonomy."""

    status_code = 500
