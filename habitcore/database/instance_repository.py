"""Repository for HabitInstance database operations."""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import or_
from sqlalchemy.orm import Session

from habitcore.database.models import InstanceDB, TemplateDB
from habitcore.models.instance import HabitInstance

logger = logging.getLogger(__name__)


class InstanceRepository:
    """Repository for HabitInstance database operations."""

    def __init__(self, db: Session):
        self.db = db

    def _as_unique_ids(self, instance_ids: Iterable[str]) -> List[str]:
        """Deduplicate while preserving order."""
        seen: Set[str] = set()
        unique: List[str] = []
        for instance_id in instance_ids:
            if instance_id not in seen:
                seen.add(instance_id)
                unique.append(instance_id)
        return unique

    def _stage(self, instance: HabitInstance, rows: Dict[str, InstanceDB]) -> None:
        row = rows.get(instance.id)
        if row is None:
            self.db.add(InstanceDB.from_pydantic(instance))
        else:
            row.apply(instance)

    def save(self, instance: HabitInstance, commit: bool = True) -> HabitInstance:
        """Insert or update one instance; atom rows are replaced to match."""
        return self.save_many([instance], commit=commit)[0]

    def save_many(self, instances: List[HabitInstance], commit: bool = True) -> List[HabitInstance]:
        """Insert or update instances in a single transaction.

        With commit=False the changes are only flushed; the caller commits.
        """
        if not instances:
            return []
        ids = self._as_unique_ids(i.id for i in instances)
        try:
            rows = {r.id: r for r in self.db.query(InstanceDB).filter(InstanceDB.id.in_(ids)).all()}
            for instance in instances:
                self._stage(instance, rows)
            if commit:
                self.db.commit()
            else:
                self.db.flush()
            logger.debug(f"Saved {len(instances)} instances")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save {len(instances)} instances: {type(e).__name__}: {str(e)}")
            raise
        return self.get_many(ids)

    def get(self, instance_id: str) -> Optional[HabitInstance]:
        row = self.db.query(InstanceDB).filter(InstanceDB.id == instance_id).first()
        return row.to_pydantic() if row else None

    def get_many(self, instance_ids: Iterable[str]) -> List[HabitInstance]:
        """Instances for the given ids, in the order requested (missing ids skipped)."""
        ids = self._as_unique_ids(instance_ids)
        if not ids:
            return []
        rows = {r.id: r for r in self.db.query(InstanceDB).filter(InstanceDB.id.in_(ids)).all()}
        return [rows[i].to_pydantic() for i in ids if i in rows]

    def get_for_template(self, template_id: str, include_archived: bool = True) -> List[HabitInstance]:
        """All instances that reference a template (orphan-flagged ones included), date ascending."""
        query = self.db.query(InstanceDB).filter(InstanceDB.template_id == template_id)
        if not include_archived:
            query = query.filter(InstanceDB.is_archived.is_(False))
        rows = query.order_by(InstanceDB.scheduled_date, InstanceDB.id).all()
        return [row.to_pydantic() for row in rows]

    def get_in_range(self, start: datetime, end: datetime) -> List[HabitInstance]:
        """Non-archived, non-orphan instances with start <= scheduled_date < end."""
        rows = (
            self.db.query(InstanceDB)
            .filter(
                InstanceDB.scheduled_date >= start,
                InstanceDB.scheduled_date < end,
                InstanceDB.is_archived.is_(False),
                InstanceDB.is_orphan.is_(False),
            )
            .order_by(InstanceDB.scheduled_date, InstanceDB.id)
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def get_orphans(self) -> List[HabitInstance]:
        """Flagged orphans plus instances whose template is missing, date ascending."""
        rows = (
            self.db.query(InstanceDB)
            .outerjoin(TemplateDB, InstanceDB.template_id == TemplateDB.id)
            .filter(
                or_(
                    InstanceDB.is_orphan.is_(True),
                    InstanceDB.template_id.is_(None),
                    TemplateDB.id.is_(None),
                )
            )
            .order_by(InstanceDB.scheduled_date, InstanceDB.id)
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def delete_many(self, instance_ids: Iterable[str], commit: bool = True) -> int:
        """Hard-delete instances (and their atoms). Returns the number deleted."""
        ids = self._as_unique_ids(instance_ids)
        if not ids:
            return 0
        try:
            rows = self.db.query(InstanceDB).filter(InstanceDB.id.in_(ids)).all()
            for row in rows:
                self.db.delete(row)
            if commit:
                self.db.commit()
            else:
                self.db.flush()
            logger.debug(f"Deleted {len(rows)} instances")
            return len(rows)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete instances: {type(e).__name__}: {str(e)}")
            raise

    def delete(self, instance_id: str) -> bool:
        return self.delete_many([instance_id]) == 1
