"""HabitInstance data model for habitcore."""

from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from habitcore.models.atom import AtomInstance


class HabitInstance(BaseModel):
    """One concrete, dated occurrence of a template (or a standalone occurrence)."""

    id: str = Field(..., description="Unique instance identifier (UUID v4)")
    scheduled_date: datetime = Field(..., description="Authoritative date and time of the occurrence")
    original_scheduled_date: Optional[datetime] = Field(
        None, description="Rule-implied time captured on the first manual override (write-once)"
    )
    is_exception: bool = Field(False, description="Time manually overridden; detached from rule recompute")
    exception_title: Optional[str] = Field(None, description="Per-occurrence title override")

    template_id: Optional[str] = Field(None, description="Owning template id (weak reference)")
    is_orphan: bool = Field(False, description="Explicitly detached from its template")
    original_template_title: Optional[str] = Field(None, description="Template title kept for orphan display")

    atoms: List[AtomInstance] = Field(default_factory=list, description="Child-task instances")

    is_completed: bool = Field(False, description="Whether the occurrence is done")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    notes: Optional[str] = Field(None, description="Notes for this occurrence")
    alert_offsets: List[int] = Field(default_factory=lambda: [15], description="Alert offsets in minutes")
    is_all_day: bool = Field(False, description="All-day occurrence")
    is_archived: bool = Field(False, description="Soft-deleted occurrence")
    notifications_cancelled_at: Optional[datetime] = Field(
        None, description="Set once pending notifications were cancelled by a retirement cascade"
    )

    created_at: datetime = Field(..., description="Instance creation timestamp")
    updated_at: datetime = Field(..., description="Instance last update timestamp")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def scheduled_day(self) -> date:
        return self.scheduled_date.date()

    @property
    def progress(self) -> float:
        if self.is_completed:
            return 1.0
        if not self.atoms:
            return 0.0
        return sum(1 for a in self.atoms if a.is_completed) / len(self.atoms)

    def sorted_atoms(self) -> List[AtomInstance]:
        return sorted(self.atoms, key=lambda a: a.order)
