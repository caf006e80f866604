import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from settings import settings
from server.src.modules.workspace_errors import StoreError

logger = logging.getLogger(__name__)

_raw_url = settings.database_url or "sqlite+aiosqlite:///./workspace.db"
if _raw_url.startswith("postgresql://") and "+asyncpg" not in _raw_url:
    DATABASE_URL = _raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)
else:
    DATABASE_URL = _raw_url

engine = create_async_engine(DATABASE_URL, future=True, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
DOC_JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")
IS_SQLITE = DATABASE_URL.startswith("sqlite")
ID_COLUMN_TYPE = String(36)

if IS_SQLITE:
    # pysqlite defers BEGIN and ignores FKs; SAVEPOINT support and cascades need both fixed.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def empty_doc() -> dict[str, Any]:
    return {"type": "doc", "content": []}


class Base(DeclarativeBase):
    pass


class Folder(Base):
    __tablename__ = "folders"
    __table_args__ = (Index("ix_folders_owner_parent", "owner_id", "parent_id"),)

    id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    parent_id: Mapped[str | None] = mapped_column(
        ID_COLUMN_TYPE,
        ForeignKey("folders.id", ondelete="CASCADE"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = (Index("ix_pages_owner_folder", "owner_id", "folder_id"),)

    id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    folder_id: Mapped[str | None] = mapped_column(
        ID_COLUMN_TYPE,
        ForeignKey("folders.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[Any] = mapped_column(DOC_JSON_TYPE, nullable=False, default=empty_doc)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slug: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class PageLink(Base):
    __tablename__ = "page_links"
    __table_args__ = (
        UniqueConstraint("from_page_id", "to_page_id", name="ux_page_links_pair"),
        Index("ix_page_links_to", "to_page_id"),
    )

    id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, primary_key=True, default=new_id)
    from_page_id: Mapped[str] = mapped_column(
        ID_COLUMN_TYPE,
        ForeignKey("pages.id", ondelete="CASCADE"),
        nullable=False,
    )
    to_page_id: Mapped[str] = mapped_column(
        ID_COLUMN_TYPE,
        ForeignKey("pages.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class TrashItem(Base):
    __tablename__ = "bin_items"
    __table_args__ = (Index("ix_bin_items_owner_deleted", "owner_id", "deleted_at"),)

    id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload: Mapped[dict] = mapped_column(DOC_JSON_TYPE, nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(ID_COLUMN_TYPE, primary_key=True, default=new_id)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    details: Mapped[dict] = mapped_column(DOC_JSON_TYPE, nullable=False, default=dict)


def db_error_detail(exc: Exception, operation: str) -> str:
    raw = str(getattr(exc, "orig", exc) or "")
    msg = raw.lower()
    if "does not exist" in msg or "no such table" in msg:
        return "Workspace tables are missing. Run database migrations (alembic upgrade head)."
    if "permission denied" in msg:
        return "Workspace database permission error."
    if "read-only" in msg or "readonly" in msg:
        return "Workspace database is read-only."
    if "unique" in msg or "duplicate" in msg:
        return f"Workspace storage conflict during {operation}."
    return f"Workspace database error during {operation}."


@asynccontextmanager
async def transaction(session: AsyncSession, operation: str) -> AsyncGenerator[AsyncSession, None]:
    """Commit the work done in the block, or roll all of it back."""
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("workspace %s database failure", operation)
        raise StoreError(db_error_detail(exc, operation)) from exc
    except Exception:
        await session.rollback()
        raise


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
