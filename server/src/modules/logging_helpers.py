import logging
from typing import Any

from settings import settings
from server.src.modules.workspace_db import AuditLog

logging.basicConfig(
    level=getattr(logging, str(settings.log_level or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("workspace")

def write_audit(session, action: str, owner_id: str, item_id: str, details: dict[str, Any] | None = None):
    """Append an audit row to the caller's open transaction."""
    session.add(AuditLog(owner_id=owner_id, action=action, item_id=item_id, details=dict(details or {})))
    logger.info("audit %s owner=%s item=%s %s", action, owner_id, item_id, details or {})
