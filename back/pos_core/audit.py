import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session

from .models import AuditAction, AuditLog, EntityType

logger = logging.getLogger(__name__)


class DatabaseAuditSink:
    """
    Append-only audit trail.

    Writes in its own session after the primary mutation has committed, so a
    failed audit write is logged and never rolls back or fails the request.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def record(
        self,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: int | None = None,
        actor_user_id: int | None = None,
        company_id: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        try:
            with Session(self.engine) as session:
                session.add(AuditLog(
                    actor_user_id=actor_user_id,
                    company_id=company_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    detail=detail,
                ))
                session.commit()
        except Exception as e:
            logger.error(
                f"Audit write failed for {action.value} {entity_type.value} #{entity_id}: {e}",
                exc_info=True,
            )


def safe_record(sink, action: AuditAction, entity_type: EntityType, **kwargs) -> None:
    """Record through any AuditSink; its failure never reaches the caller."""
    try:
        sink.record(action, entity_type, **kwargs)
    except Exception as e:
        logger.error(f"Audit sink failed for {action.value} {entity_type.value}: {e}", exc_info=True)
