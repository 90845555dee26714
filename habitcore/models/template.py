"""HabitTemplate data model for habitcore."""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from habitcore.models.atom import AtomDefinition
from habitcore.models.recurrence import RecurrenceRule


class RetirementStatus(str, Enum):
    """Retirement lifecycle: none -> pending -> retired (or pending -> none on undo)."""
    NONE = "none"
    PENDING = "pending"
    RETIRED = "retired"


class RetirementFutureAction(str, Enum):
    """What finalizing a retirement does to the template's upcoming instances.

    Every instance is orphaned either way; the archive actions additionally
    soft-delete incomplete instances (is_archived) so they drop out of calendars.
    """
    KEEP = "keep"
    ARCHIVE_FUTURE = "archive_future"
    ARCHIVE_AFTER_DATE = "archive_after_date"


class HabitTemplate(BaseModel):
    """Recurring habit definition from which instances are generated."""

    id: str = Field(..., description="Unique template identifier (UUID v4)")
    title: str = Field(..., description="Habit title")
    base_time: datetime = Field(
        ..., description="Base day (date part) and time-of-day anchor (hour/minute) for occurrences"
    )
    rule: RecurrenceRule = Field(default_factory=RecurrenceRule, description="Recurrence rule")
    atoms: List[AtomDefinition] = Field(default_factory=list, description="Child-task definitions")

    notes: Optional[str] = Field(None, description="Optional description")
    alert_offsets: List[int] = Field(default_factory=lambda: [15], description="Alert offsets in minutes")
    is_all_day: bool = Field(False, description="All-day habit (no specific time)")
    is_archived: bool = Field(False, description="Hidden from active lists")

    retirement_status: RetirementStatus = Field(RetirementStatus.NONE, description="Retirement state")
    retirement_date: Optional[datetime] = Field(None, description="When retirement was requested")
    undo_deadline: Optional[datetime] = Field(None, description="End of the undo grace period")
    retirement_reason: Optional[str] = Field(None, description="Why the habit was retired")
    future_action: RetirementFutureAction = Field(
        RetirementFutureAction.KEEP, description="Handling of upcoming instances when retirement is finalized"
    )
    delete_after_date: Optional[date] = Field(
        None, description="With archive_after_date: instances scheduled after this day are archived"
    )

    created_at: datetime = Field(..., description="Template creation timestamp")
    updated_at: datetime = Field(..., description="Template last update timestamp")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def base_day(self) -> date:
        return self.base_time.date()

    @property
    def is_active(self) -> bool:
        return self.retirement_status == RetirementStatus.NONE and not self.is_archived

    def sorted_atoms(self) -> List[AtomDefinition]:
        return sorted(self.atoms, key=lambda a: a.order)

    def atom(self, atom_id: str) -> Optional[AtomDefinition]:
        for a in self.atoms:
            if a.id == atom_id:
                return a
        return None
