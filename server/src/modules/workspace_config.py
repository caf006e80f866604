import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from settings import settings


def _truthy(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    raw = str(value).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _bounded_int(raw: str | None, fallback: int, minimum: int) -> int:
    try:
        return max(minimum, int(str(raw if raw is not None else fallback).strip()))
    except ValueError:
        return fallback


@dataclass(frozen=True)
class WorkspaceSettings:
    require_auth: bool
    max_doc_bytes: int
    max_folder_depth: int
    list_limit: int
    jwt_public_key: str | None = None
    jwt_algorithms: tuple[str, ...] = ("RS256",)
    jwt_audience: str | None = None
    jwt_issuer: str | None = None


def _load_jwt_public_key() -> str | None:
    """PEM from JWT_PUBLIC_KEY_PATH, else JWT_PUBLIC_KEY with literal ``\\n`` unescaped."""
    path = str(os.getenv("JWT_PUBLIC_KEY_PATH") or "").strip()
    if path:
        key_file = Path(path)
        if key_file.is_file():
            return key_file.read_text(encoding="utf-8")
    inline = str(os.getenv("JWT_PUBLIC_KEY") or "").strip()
    return inline.replace("\\n", "\n") if inline else None


def _optional(name: str) -> str | None:
    return str(os.getenv(name) or "").strip() or None


@lru_cache
def get_workspace_settings() -> WorkspaceSettings:
    algorithms = [alg.strip() for alg in (os.getenv("JWT_ALGORITHMS") or "RS256").split(",") if alg.strip()]
    return WorkspaceSettings(
        require_auth=_truthy(os.getenv("WORKSPACE_REQUIRE_AUTH"), default=True),
        max_doc_bytes=_bounded_int(os.getenv("WORKSPACE_MAX_DOC_BYTES"), 500000, 1000),
        max_folder_depth=_bounded_int(os.getenv("WORKSPACE_MAX_FOLDER_DEPTH"), 256, 1),
        list_limit=_bounded_int(os.getenv("WORKSPACE_LIST_LIMIT"), 200, 1),
        jwt_public_key=_load_jwt_public_key(),
        jwt_algorithms=tuple(algorithms),
        jwt_audience=_optional("JWT_AUDIENCE"),
        jwt_issuer=_optional("JWT_ISSUER"),
    )


@dataclass(frozen=True)
class WorkspaceEnvValidation:
    errors: tuple[str, ...]
    warnings: tuple[str, ...]


def validate_workspace_environment() -> WorkspaceEnvValidation:
    cfg = get_workspace_settings()
    errors: list[str] = []
    warnings: list[str] = []
    url = str(settings.database_url or "").strip()
    if not url:
        errors.append("DATABASE_URL cannot be empty.")
    elif url.startswith("postgresql://"):
        warnings.append("DATABASE_URL has no async driver; postgresql+asyncpg will be used.")
    elif url.startswith("sqlite") and "aiosqlite" not in url:
        errors.append("SQLite DATABASE_URL must use the sqlite+aiosqlite driver.")
    if not cfg.require_auth:
        warnings.append(
            "WORKSPACE_REQUIRE_AUTH is false; callers without a token act as the shared 'anonymous' owner on every route."
        )
    elif not cfg.jwt_public_key:
        warnings.append("JWT_PUBLIC_KEY is not configured; bearer tokens cannot be verified and owned routes answer 401.")
    if os.getenv("JWT_PUBLIC_KEY_PATH") and not Path(os.environ["JWT_PUBLIC_KEY_PATH"]).is_file():
        errors.append("JWT_PUBLIC_KEY_PATH does not point to a readable file.")
    if cfg.max_folder_depth < 8:
        warnings.append("WORKSPACE_MAX_FOLDER_DEPTH is very low; deep folder moves will be refused as circular.")
    return WorkspaceEnvValidation(errors=tuple(errors), warnings=tuple(warnings))
