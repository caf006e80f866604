from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from settings import settings
from server.src.modules.logging_helpers import logger
from server.src.modules.workspace_api import router as workspace_router
from server.src.modules.workspace_config import validate_workspace_environment
from server.src.modules.workspace_db import IS_SQLITE, create_tables, engine


# ---------- Lifespan (startup/shutdown) ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    report = validate_workspace_environment()
    for warning in report.warnings:
        logger.warning("workspace config: %s", warning)
    for error in report.errors:
        logger.error("workspace config: %s", error)
    if IS_SQLITE:
        # local sqlite runs without alembic
        await create_tables()
    yield
    await engine.dispose()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()] or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(workspace_router)


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
