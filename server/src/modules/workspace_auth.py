from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Request
from jose import JWTError, jwt

from server.src.modules.workspace_config import get_workspace_settings

logger = logging.getLogger(__name__)

ANONYMOUS_OWNER = "anonymous"

# token -> owner id for in-process callers (tests, scripts); everything else presents a signed JWT
SESSIONS: dict[str, str] = {}


def make_token() -> str:
    return secrets.token_hex(16)


def register_session(owner_id: str, token: str | None = None) -> str:
    clean_owner = str(owner_id or "").strip()
    if not clean_owner:
        raise ValueError("owner id is required")
    token = token or make_token()
    SESSIONS[token] = clean_owner
    return token


def get_auth_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return None


def verify_token(token: str) -> Optional[str]:
    """Return the ``sub`` claim of a valid JWT, or None when it cannot be verified."""
    cfg = get_workspace_settings()
    if not token or not cfg.jwt_public_key:
        return None
    try:
        claims = jwt.decode(
            token,
            cfg.jwt_public_key,
            algorithms=list(cfg.jwt_algorithms),
            audience=cfg.jwt_audience,
            issuer=cfg.jwt_issuer,
            options={"verify_aud": cfg.jwt_audience is not None},
        )
    except JWTError as exc:
        logger.info("rejected bearer token: %s", exc)
        return None
    subject = str(claims.get("sub") or "").strip()
    return subject or None


def get_session_owner(token: str) -> Optional[str]:
    if not token:
        return None
    return SESSIONS.get(token) or verify_token(token)


def require_owner(request: Request) -> str:
    token = get_auth_token(request) or ""
    owner_id = get_session_owner(token)
    if owner_id:
        return owner_id
    if token:
        raise HTTPException(status_code=401, detail="Invalid token")
    if get_workspace_settings().require_auth:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return ANONYMOUS_OWNER


def optional_viewer(request: Request) -> Optional[str]:
    token = get_auth_token(request) or ""
    owner_id = get_session_owner(token)
    if owner_id:
        return owner_id
    if not token and not get_workspace_settings().require_auth:
        return ANONYMOUS_OWNER
    return None
