import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Activity trail. Writes inside a savepoint so a failed audit row never aborts the caller."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog | None:
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        try:
            with self.db.begin_nested():
                self.db.add(entry)
            return entry
        except SQLAlchemyError as e:
            logger.warning(
                "audit_log_write_failed",
                extra={"operation": action, "error": str(e)},
            )
            return None
