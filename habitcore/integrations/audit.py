"""Audit logging for data operations.

Audit writes are best-effort: a failure to record an entry is logged and
never fails the operation being audited.
"""

import logging
from collections import deque
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from habitcore.models.audit_event import AuditEntityType, AuditEntry, AuditOperation
from habitcore.models.constants import AUDIT_MAX_AGE_DAYS, AUDIT_MAX_ENTRIES

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """JSON-safe form of a changed value."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return str(value)


class AuditLogger:
    """Base audit logger. Subclasses implement _record() and entries()."""

    def _record(self, entry: AuditEntry) -> None:
        raise NotImplementedError

    def entries(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        raise NotImplementedError

    def record(self, entry: AuditEntry) -> Optional[AuditEntry]:
        try:
            self._record(entry)
        except Exception as e:
            logger.warning(f"Failed to record audit entry '{entry.summary}': {type(e).__name__}: {str(e)}")
            return None
        return entry

    def _log(
        self,
        operation: AuditOperation,
        entity_type: AuditEntityType,
        entity_id: str,
        entity_name: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        info: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        entry = AuditEntry(
            operation=operation,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            changes={field: _plain(change) for field, change in (changes or {}).items()},
            info=info,
        )
        return self.record(entry)

    def log_create(self, entity_type, entity_id, entity_name=None, changes=None, info=None):
        return self._log(AuditOperation.CREATE, entity_type, entity_id, entity_name, changes, info)

    def log_update(self, entity_type, entity_id, entity_name=None, changes=None, info=None):
        return self._log(AuditOperation.UPDATE, entity_type, entity_id, entity_name, changes, info)

    def log_delete(self, entity_type, entity_id, entity_name=None, changes=None, info=None):
        return self._log(AuditOperation.DELETE, entity_type, entity_id, entity_name, changes, info)

    def log_bulk_create(self, entity_type, count: int, info=None):
        return self._log(AuditOperation.BULK_CREATE, entity_type, f"{count} items", info=info)

    def log_bulk_delete(self, entity_type, count: int, info=None):
        return self._log(AuditOperation.BULK_DELETE, entity_type, f"{count} items", info=info)


class InMemoryAuditLogger(AuditLogger):
    """Bounded in-memory log: newest AUDIT_MAX_ENTRIES entries, none older than AUDIT_MAX_AGE_DAYS."""

    def __init__(self, max_entries: int = AUDIT_MAX_ENTRIES, max_age: timedelta = timedelta(days=AUDIT_MAX_AGE_DAYS)):
        self.max_age = max_age
        self._entries: Deque[AuditEntry] = deque(maxlen=max_entries)

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.max_age
        while self._entries and self._entries[0].timestamp < cutoff:
            self._entries.popleft()

    def _record(self, entry: AuditEntry) -> None:
        self._entries.append(entry)
        self._prune(entry.timestamp)

    def entries(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        self._prune(datetime.now())
        selected = [e for e in reversed(self._entries) if entity_id is None or e.entity_id == entity_id]
        return selected[:limit]


class DatabaseAuditLogger(AuditLogger):
    """Persists entries through an AuditRepository.

    With `defer` set, entries are handed to it instead of being inserted
    inline; the API passes a FastAPI background task so the insert runs after
    the response is sent. Reads always go to the repository.
    """

    def __init__(self, repository, defer: Optional[Callable[[AuditEntry], None]] = None):
        self.repository = repository
        self.defer = defer

    def _record(self, entry: AuditEntry) -> None:
        if self.defer is not None:
            self.defer(entry)
            return
        self.repository.add(entry)

    def entries(self, entity_id: Optional[str] = None, limit: int = 100) -> List[AuditEntry]:
        return self.repository.list_recent(entity_id=entity_id, limit=limit)
