"""Atom (child task) models for habitcore.

An AtomDefinition lives on a HabitTemplate. When an instance is materialized
each definition is cloned into an AtomInstance that remembers the definition
id in `source_template_id`.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class AtomInputType(str, Enum):
    """How the user records progress on an atom."""
    BINARY = "binary"
    COUNTER = "counter"
    VALUE = "value"


# Fields that define what an atom asks the user to do. Edits to any of these can
# cascade to scheduled atom instances; cosmetic fields never do.
STRUCTURAL_FIELDS = (
    "title",
    "input_type",
    "target_value",
    "unit",
    "video_url",
    "target_sets",
    "target_reps",
    "default_rest_seconds",
)


class AtomDefinition(BaseModel):
    """Child-task definition owned by a template."""

    id: str = Field(..., description="Unique atom definition identifier (UUID v4)")
    title: str = Field(..., description="Task title (e.g. 'Drink water')")
    input_type: AtomInputType = Field(AtomInputType.BINARY, description="Input type")
    target_value: Optional[float] = Field(None, description="Target for counter/value atoms")
    unit: Optional[str] = Field(None, description="Unit of measurement")
    order: int = Field(0, description="Sort order within the template")
    target_sets: Optional[int] = Field(None, description="Workout: target number of sets")
    target_reps: Optional[int] = Field(None, description="Workout: target reps per set")
    default_rest_seconds: Optional[float] = Field(None, description="Workout: rest between sets")
    video_url: Optional[str] = Field(None, description="Instructional media URL")
    icon_symbol: Optional[str] = Field(None, description="Cosmetic icon symbol")
    created_at: datetime = Field(default_factory=datetime.now, description="Creation timestamp")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def is_workout_exercise(self) -> bool:
        return self.input_type == AtomInputType.VALUE and (
            self.target_sets is not None or self.target_reps is not None
        )


class AtomInstance(BaseModel):
    """Point-in-time clone of an AtomDefinition living on a HabitInstance."""

    id: str = Field(..., description="Unique atom instance identifier (UUID v4)")
    title: str = Field(..., description="Task title (copied from definition)")
    input_type: AtomInputType = Field(AtomInputType.BINARY, description="Input type")
    target_value: Optional[float] = None
    unit: Optional[str] = None
    order: int = 0
    target_sets: Optional[int] = None
    target_reps: Optional[int] = None
    default_rest_seconds: Optional[float] = None
    video_url: Optional[str] = None

    source_template_id: Optional[str] = Field(
        None, description="Id of the AtomDefinition this was cloned from (lookup only, not ownership)"
    )

    is_completed: bool = False
    current_value: Optional[float] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def progress(self) -> float:
        if self.input_type == AtomInputType.BINARY:
            return 1.0 if self.is_completed else 0.0
        if not self.target_value or self.target_value <= 0:
            return 0.0
        return min((self.current_value or 0.0) / self.target_value, 1.0)
