import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

_DB_PATH = Path(tempfile.mkdtemp(prefix="workspace-tests-")) / "workspace.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ.setdefault("CORS_ORIGINS", "http://localhost")
os.environ.setdefault("WORKSPACE_REQUIRE_AUTH", "true")

from main import app
from server.src.modules.workspace_auth import SESSIONS
from server.src.modules.workspace_config import get_workspace_settings
from server.src.modules.workspace_db import AsyncSessionLocal, Base, create_tables, engine


@pytest.fixture(autouse=True)
def clean_state():
    SESSIONS.clear()
    get_workspace_settings.cache_clear()
    yield
    SESSIONS.clear()
    get_workspace_settings.cache_clear()


async def _drop_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@asynccontextmanager
async def workspace_session():
    await create_tables()
    try:
        async with AsyncSessionLocal() as session:
            yield session
    finally:
        await _drop_tables()
        # pooled aiosqlite connections must not outlive the test's event loop
        await engine.dispose()


@asynccontextmanager
async def workspace_client(auth_token: str | None = "test-token", owner_id: str = "owner-1"):
    headers: dict[str, str] = {}
    if auth_token:
        SESSIONS[auth_token] = owner_id
        headers["Authorization"] = f"Bearer {auth_token}"
    await create_tables()
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test", headers=headers) as client:
            yield client
    finally:
        await _drop_tables()
        await engine.dispose()
