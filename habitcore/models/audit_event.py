"""AuditEntry data model for habitcore."""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
import uuid
from pydantic import BaseModel, Field


class AuditOperation(str, Enum):
    """Audit operation enumeration."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BULK_CREATE = "bulk_create"
    BULK_DELETE = "bulk_delete"


class AuditEntityType(str, Enum):
    """Entity types that show up in the audit log."""
    TEMPLATE = "template"
    INSTANCE = "instance"
    ATOM_DEFINITION = "atom_definition"
    ATOM_INSTANCE = "atom_instance"


class AuditEntry(BaseModel):
    """Audit entry for a data operation performed by the engine."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique audit entry identifier")
    timestamp: datetime = Field(default_factory=datetime.now, description="Entry timestamp")
    operation: AuditOperation = Field(..., description="Type of operation")
    entity_type: AuditEntityType = Field(..., description="Type of entity touched")
    entity_id: str = Field(..., description="ID of the entity (or a count label for bulk entries)")
    entity_name: Optional[str] = Field(None, description="Human readable entity name")
    changes: Dict[str, Any] = Field(default_factory=dict, description="Field-level changes {field: [old, new]}")
    info: Optional[str] = Field(None, description="Additional information")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def summary(self) -> str:
        name = self.entity_name or self.entity_id
        if self.operation == AuditOperation.CREATE:
            return f"Created {self.entity_type}: {name}"
        if self.operation == AuditOperation.UPDATE:
            n = len(self.changes)
            return f"Updated {self.entity_type}: {name} ({n} field{'' if n == 1 else 's'})"
        if self.operation == AuditOperation.DELETE:
            return f"Deleted {self.entity_type}: {name}"
        if self.operation == AuditOperation.BULK_CREATE:
            return f"Bulk created {self.entity_type}s"
        return f"Bulk deleted {self.entity_type}s"
