#!/usr/bin/env python
"""Apply workspace migrations: `python scripts/run_migrations.py [revision]`."""

from __future__ import annotations

import sys
from pathlib import Path

from alembic.config import main as alembic_main

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from server.src.modules.logging_helpers import logger
from server.src.modules.workspace_config import validate_workspace_environment


def run(revision: str = "head") -> int:
    """Check the environment, then upgrade the schema to ``revision``."""
    report = validate_workspace_environment()
    for warning in report.warnings:
        logger.warning("workspace config: %s", warning)
    if report.errors:
        for error in report.errors:
            logger.error("workspace config: %s", error)
        return 1
    alembic_main(argv=["-c", str(ROOT_DIR / "alembic.ini"), "upgrade", revision])
    return 0


if __name__ == "__main__":
    sys.exit(run(*sys.argv[1:2]))
