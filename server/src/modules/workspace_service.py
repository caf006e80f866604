from __future__ import annotations

import json
import re
from typing import Any, Iterator

from server.src.modules.workspace_config import get_workspace_settings
from server.src.modules.workspace_errors import ValidationError


SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_SLUG_LENGTH = 255
PAGE_REFERENCE_TYPE = "pageLink"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Distinguishes "field omitted" from an explicit None (move to root, clear folder).
UNSET: Any = _Unset()


def is_set(value: Any) -> bool:
    return value is not UNSET


def normalize_slug(value: str | None) -> str:
    slug = (value or "").strip().lower()
    if not slug:
        return ""
    slug = re.sub(r"[^a-z0-9-]+", "-", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug


def validate_slug(value: str | None) -> str:
    slug = normalize_slug(value)
    if not slug or not SLUG_RE.match(slug):
        raise ValidationError("Slug is required for publishing")
    if len(slug) > MAX_SLUG_LENGTH:
        raise ValidationError(f"Slug must be at most {MAX_SLUG_LENGTH} characters")
    return slug


def resolve_slug(raw_slug: str | None, title: str) -> str:
    return validate_slug(raw_slug or title)


def require_text(value: Any, field: str, limit: int = 255) -> str:
    clean = str(value or "").strip()
    if not clean:
        raise ValidationError(f"{field.capitalize()} is required")
    if len(clean) > limit:
        raise ValidationError(f"{field.capitalize()} must be at most {limit} characters")
    return clean


def sanitize_doc(doc: Any) -> Any:
    if not isinstance(doc, (dict, list)):
        raise ValidationError("content must be a JSON object or array")
    payload = json.dumps(doc, ensure_ascii=False, default=str)
    if len(payload.encode("utf-8")) > get_workspace_settings().max_doc_bytes:
        raise ValidationError("content is too large")
    return doc


def _iter_nodes(doc: Any) -> Iterator[dict[str, Any]]:
    stack: list[Any] = [doc]
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            stack.extend(reversed(node))
            continue
        if not isinstance(node, dict):
            continue
        yield node
        marks = node.get("marks")
        if isinstance(marks, list):
            stack.extend(reversed(marks))
        content = node.get("content")
        if isinstance(content, list):
            stack.extend(reversed(content))


def extract_page_references(doc: Any) -> set[str]:
    """Return the ids of every page referenced by a ``pageLink`` node or mark."""
    found: set[str] = set()
    for node in _iter_nodes(doc):
        if node.get("type") != PAGE_REFERENCE_TYPE:
            continue
        attrs = node.get("attrs")
        if not isinstance(attrs, dict):
            continue
        target = str(attrs.get("pageId") or "").strip()
        if target:
            found.add(target)
    return found
