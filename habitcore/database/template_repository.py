"""Repository for HabitTemplate database operations."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from habitcore.database.models import InstanceDB, TemplateDB
from habitcore.models.template import HabitTemplate, RetirementStatus

logger = logging.getLogger(__name__)


class TemplateRepository:
    """Repository for HabitTemplate database operations."""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, template_id: str) -> Optional[TemplateDB]:
        return self.db.query(TemplateDB).filter(TemplateDB.id == template_id).first()

    def save(self, template: HabitTemplate, commit: bool = True) -> HabitTemplate:
        """Insert or update a template together with its atom definitions.

        With commit=False the change is only flushed; the caller commits.
        """
        try:
            row = self._row(template.id)
            if row is None:
                row = TemplateDB.from_pydantic(template)
                self.db.add(row)
            else:
                row.apply(template)
            if not commit:
                self.db.flush()
                return row.to_pydantic()
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Saved template {template.id}: {template.title[:50]}")
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save template {template.id}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, template_id: str) -> Optional[HabitTemplate]:
        row = self._row(template_id)
        return row.to_pydantic() if row else None

    def get_all(self, include_archived: bool = False) -> List[HabitTemplate]:
        """Templates ordered by title."""
        query = self.db.query(TemplateDB)
        if not include_archived:
            query = query.filter(TemplateDB.is_archived.is_(False))
        return [row.to_pydantic() for row in query.order_by(TemplateDB.title, TemplateDB.id).all()]

    def get_retirement_status(self, template_id: str) -> Optional[str]:
        """Stored retirement status, read from the table rather than the session's loaded rows."""
        return (
            self.db.query(TemplateDB.retirement_status)
            .filter(TemplateDB.id == template_id)
            .scalar()
        )

    def get_pending_retirement(self) -> List[HabitTemplate]:
        rows = (
            self.db.query(TemplateDB)
            .filter(TemplateDB.retirement_status == RetirementStatus.PENDING.value)
            .order_by(TemplateDB.undo_deadline)
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def delete(self, template_id: str, commit: bool = True) -> int:
        """Hard-delete a template. Its instances are kept and flagged orphaned.

        Returns:
            Number of instances orphaned (0 if the template did not exist)
        """
        row = self._row(template_id)
        if not row:
            return 0
        try:
            now = datetime.now()
            orphaned = (
                self.db.query(InstanceDB)
                .filter(InstanceDB.template_id == template_id)
                .update(
                    {
                        InstanceDB.is_orphan: True,
                        InstanceDB.original_template_title: row.title,
                        InstanceDB.template_id: None,
                        InstanceDB.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            self.db.delete(row)
            if commit:
                self.db.commit()
            else:
                self.db.flush()
            logger.debug(f"Deleted template {template_id}, orphaned {orphaned} instances")
            return orphaned
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete template {template_id}: {type(e).__name__}: {str(e)}")
            raise
