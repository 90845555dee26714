"""Repository for AuditEntry database operations."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from habitcore.database.models import AuditEntryDB
from habitcore.models.audit_event import AuditEntry

logger = logging.getLogger(__name__)


class AuditRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, entry: AuditEntry) -> AuditEntry:
        try:
            self.db.add(AuditEntryDB.from_pydantic(entry))
            self.db.commit()
            return entry
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to add audit entry {entry.id}: {type(e).__name__}: {str(e)}")
            raise

    def list_recent(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        """Newest first."""
        query = self.db.query(AuditEntryDB)
        if entity_id is not None:
            query = query.filter(AuditEntryDB.entity_id == entity_id)
        rows = query.order_by(desc(AuditEntryDB.timestamp)).limit(limit).all()
        return [row.to_pydantic() for row in rows]

    def prune_before(self, cutoff: datetime) -> int:
        try:
            removed = (
                self.db.query(AuditEntryDB)
                .filter(AuditEntryDB.timestamp < cutoff)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return removed
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to prune audit log: {type(e).__name__}: {str(e)}")
            raise
