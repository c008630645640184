# ticketing/infrastructure/repositories/audit_repository.py

import json

from sqlalchemy.orm import Session
from sqlalchemy import select

from ticketing.infrastructure.db.models import AuditLog


class AuditRepository:
    """
    Audit rows are written inside the caller's transaction, so an
    administrative change and its audit entry commit or roll back together.
    """

    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        old_values: dict | None = None,
        new_values: dict | None = None,
        user_id: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=json.dumps(old_values or {}, sort_keys=True, default=str),
            new_values=json.dumps(new_values or {}, sort_keys=True, default=str),
        )
        self.db.add(entry)
        return entry

    def for_resource(self, resource_type: str, resource_id: str) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.resource_type == resource_type)
            .where(AuditLog.resource_id == resource_id)
            .order_by(AuditLog.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())
