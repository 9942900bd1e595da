from typing import List, Optional

from sqlalchemy import select

from notification_engine.core.database import session_scope
from notification_engine.models import AuditLog


def log_action(action: str, detail: str | None = None, actor: Optional[str] = None):
    with session_scope(use_lock=True) as session:
        session.add(AuditLog(actor=actor, action=action, detail=detail))


def list_actions(limit: int = 50) -> List[AuditLog]:
    with session_scope() as session:
        stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return session.execute(stmt).scalars().all()
