"""SQLAlchemy database models for habitcore."""

from datetime import datetime
import uuid
from typing import Iterable, List, Type, TypeVar, Union

from sqlalchemy import Column, String, Integer, Float, Boolean, Date, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship

from habitcore.database.database import Base
from habitcore.models.atom import AtomInputType
from habitcore.models.audit_event import AuditEntityType, AuditOperation
from habitcore.models.template import RetirementFutureAction, RetirementStatus

T = TypeVar('T')


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string).

    Pydantic models with use_enum_values=True already hold strings.
    """
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default."""
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


def sync_children(collection: List, items: Iterable, db_class) -> None:
    """Make a child-row collection match `items` by id: update, append, drop."""
    existing = {row.id: row for row in collection}
    wanted = []
    for item in items:
        row = existing.get(item.id)
        if row is None:
            row = db_class.from_pydantic(item)
        else:
            row.apply(item)
        wanted.append(row)
    wanted_ids = {row.id for row in wanted}
    for row in list(collection):
        if row.id not in wanted_ids:
            collection.remove(row)
    for row in wanted:
        if row not in collection:
            collection.append(row)


class AtomDefinitionDB(Base):
    """Database model for an atom definition (owned by a template)."""

    __tablename__ = "atom_definitions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    template_id = Column(String, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    input_type = Column(String, nullable=False, default=AtomInputType.BINARY.value)
    target_value = Column(Float, nullable=True)
    unit = Column(String, nullable=True)
    order = Column("sort_order", Integer, nullable=False, default=0)
    target_sets = Column(Integer, nullable=True)
    target_reps = Column(Integer, nullable=True)
    default_rest_seconds = Column(Float, nullable=True)
    video_url = Column(String, nullable=True)
    icon_symbol = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def apply(self, atom) -> None:
        self.title = atom.title
        self.input_type = enum_to_value(atom.input_type)
        self.target_value = atom.target_value
        self.unit = atom.unit
        self.order = atom.order
        self.target_sets = atom.target_sets
        self.target_reps = atom.target_reps
        self.default_rest_seconds = atom.default_rest_seconds
        self.video_url = atom.video_url
        self.icon_symbol = atom.icon_symbol
        self.created_at = atom.created_at

    def to_pydantic(self):
        from habitcore.models.atom import AtomDefinition

        return AtomDefinition(
            id=self.id,
            title=self.title,
            input_type=value_to_enum(self.input_type, AtomInputType, AtomInputType.BINARY),
            target_value=self.target_value,
            unit=self.unit,
            order=self.order,
            target_sets=self.target_sets,
            target_reps=self.target_reps,
            default_rest_seconds=self.default_rest_seconds,
            video_url=self.video_url,
            icon_symbol=self.icon_symbol,
            created_at=self.created_at,
        )

    @classmethod
    def from_pydantic(cls, atom):
        row = cls(id=atom.id)
        row.apply(atom)
        return row


class TemplateDB(Base):
    """Database model for HabitTemplate."""

    __tablename__ = "templates"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    base_time = Column(DateTime, nullable=False)

    # RecurrenceRule stored as JSON (model_dump(mode="json"))
    rule = Column(JSON, nullable=False)

    notes = Column(String, nullable=True)
    alert_offsets = Column(JSON, nullable=False, default=list)
    is_all_day = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False, index=True)

    retirement_status = Column(String, nullable=False, default=RetirementStatus.NONE.value, index=True)
    retirement_date = Column(DateTime, nullable=True)
    undo_deadline = Column(DateTime, nullable=True)
    retirement_reason = Column(String, nullable=True)
    future_action = Column(String, nullable=False, default=RetirementFutureAction.KEEP.value)
    delete_after_date = Column(Date, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    atoms = relationship(
        "AtomDefinitionDB",
        cascade="all, delete-orphan",
        order_by="AtomDefinitionDB.order",
    )

    def apply(self, template) -> None:
        self.title = template.title
        self.base_time = template.base_time
        self.rule = template.rule.model_dump(mode="json")
        self.notes = template.notes
        self.alert_offsets = list(template.alert_offsets)
        self.is_all_day = template.is_all_day
        self.is_archived = template.is_archived
        self.retirement_status = enum_to_value(template.retirement_status)
        self.retirement_date = template.retirement_date
        self.undo_deadline = template.undo_deadline
        self.retirement_reason = template.retirement_reason
        self.future_action = enum_to_value(template.future_action)
        self.delete_after_date = template.delete_after_date
        self.created_at = template.created_at
        self.updated_at = template.updated_at
        sync_children(self.atoms, template.atoms, AtomDefinitionDB)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from habitcore.models.recurrence import RecurrenceRule
        from habitcore.models.template import HabitTemplate

        return HabitTemplate(
            id=self.id,
            title=self.title,
            base_time=self.base_time,
            rule=RecurrenceRule.model_validate(self.rule or {}),
            atoms=[a.to_pydantic() for a in self.atoms],
            notes=self.notes,
            alert_offsets=list(self.alert_offsets or []),
            is_all_day=self.is_all_day,
            is_archived=self.is_archived,
            retirement_status=value_to_enum(self.retirement_status, RetirementStatus, RetirementStatus.NONE),
            retirement_date=self.retirement_date,
            undo_deadline=self.undo_deadline,
            retirement_reason=self.retirement_reason,
            future_action=value_to_enum(self.future_action, RetirementFutureAction, RetirementFutureAction.KEEP),
            delete_after_date=self.delete_after_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_pydantic(cls, template):
        """Create database model from Pydantic model."""
        row = cls(id=template.id)
        row.apply(template)
        return row


class AtomInstanceDB(Base):
    """Database model for an atom instance (owned by a habit instance)."""

    __tablename__ = "atom_instances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String, ForeignKey("instances.id", ondelete="CASCADE"), nullable=False, index=True)

    # Lookup key into atom_definitions; no foreign key, the definition may be gone.
    source_template_id = Column(String, nullable=True, index=True)

    title = Column(String, nullable=False)
    input_type = Column(String, nullable=False, default=AtomInputType.BINARY.value)
    target_value = Column(Float, nullable=True)
    unit = Column(String, nullable=True)
    order = Column("sort_order", Integer, nullable=False, default=0)
    target_sets = Column(Integer, nullable=True)
    target_reps = Column(Integer, nullable=True)
    default_rest_seconds = Column(Float, nullable=True)
    video_url = Column(String, nullable=True)

    is_completed = Column(Boolean, nullable=False, default=False)
    current_value = Column(Float, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def apply(self, atom) -> None:
        self.source_template_id = atom.source_template_id
        self.title = atom.title
        self.input_type = enum_to_value(atom.input_type)
        self.target_value = atom.target_value
        self.unit = atom.unit
        self.order = atom.order
        self.target_sets = atom.target_sets
        self.target_reps = atom.target_reps
        self.default_rest_seconds = atom.default_rest_seconds
        self.video_url = atom.video_url
        self.is_completed = atom.is_completed
        self.current_value = atom.current_value
        self.completed_at = atom.completed_at
        self.notes = atom.notes
        self.created_at = atom.created_at

    def to_pydantic(self):
        from habitcore.models.atom import AtomInstance

        return AtomInstance(
            id=self.id,
            source_template_id=self.source_template_id,
            title=self.title,
            input_type=value_to_enum(self.input_type, AtomInputType, AtomInputType.BINARY),
            target_value=self.target_value,
            unit=self.unit,
            order=self.order,
            target_sets=self.target_sets,
            target_reps=self.target_reps,
            default_rest_seconds=self.default_rest_seconds,
            video_url=self.video_url,
            is_completed=self.is_completed,
            current_value=self.current_value,
            completed_at=self.completed_at,
            notes=self.notes,
            created_at=self.created_at,
        )

    @classmethod
    def from_pydantic(cls, atom):
        row = cls(id=atom.id)
        row.apply(atom)
        return row


class InstanceDB(Base):
    """Database model for HabitInstance."""

    __tablename__ = "instances"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Weak back-reference: deleting the template nulls it rather than deleting history.
    template_id = Column(String, ForeignKey("templates.id", ondelete="SET NULL"), nullable=True, index=True)
    is_orphan = Column(Boolean, nullable=False, default=False, index=True)
    original_template_title = Column(String, nullable=True)

    scheduled_date = Column(DateTime, nullable=False, index=True)
    original_scheduled_date = Column(DateTime, nullable=True)
    is_exception = Column(Boolean, nullable=False, default=False)
    exception_title = Column(String, nullable=True)

    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)
    alert_offsets = Column(JSON, nullable=False, default=list)
    is_all_day = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    notifications_cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)

    atoms = relationship(
        "AtomInstanceDB",
        cascade="all, delete-orphan",
        order_by="AtomInstanceDB.order",
    )

    def apply(self, instance) -> None:
        self.template_id = instance.template_id
        self.is_orphan = instance.is_orphan
        self.original_template_title = instance.original_template_title
        self.scheduled_date = instance.scheduled_date
        self.original_scheduled_date = instance.original_scheduled_date
        self.is_exception = instance.is_exception
        self.exception_title = instance.exception_title
        self.is_completed = instance.is_completed
        self.completed_at = instance.completed_at
        self.notes = instance.notes
        self.alert_offsets = list(instance.alert_offsets)
        self.is_all_day = instance.is_all_day
        self.is_archived = instance.is_archived
        self.notifications_cancelled_at = instance.notifications_cancelled_at
        self.created_at = instance.created_at
        self.updated_at = instance.updated_at
        sync_children(self.atoms, instance.atoms, AtomInstanceDB)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from habitcore.models.instance import HabitInstance

        return HabitInstance(
            id=self.id,
            template_id=self.template_id,
            is_orphan=self.is_orphan,
            original_template_title=self.original_template_title,
            scheduled_date=self.scheduled_date,
            original_scheduled_date=self.original_scheduled_date,
            is_exception=self.is_exception,
            exception_title=self.exception_title,
            atoms=[a.to_pydantic() for a in self.atoms],
            is_completed=self.is_completed,
            completed_at=self.completed_at,
            notes=self.notes,
            alert_offsets=list(self.alert_offsets or []),
            is_all_day=self.is_all_day,
            is_archived=self.is_archived,
            notifications_cancelled_at=self.notifications_cancelled_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_pydantic(cls, instance):
        """Create database model from Pydantic model."""
        row = cls(id=instance.id)
        row.apply(instance)
        return row


class AuditEntryDB(Base):
    """Database model for AuditEntry."""

    __tablename__ = "audit_log"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    timestamp = Column(DateTime, nullable=False, default=datetime.now, index=True)
    operation = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    entity_name = Column(String, nullable=True)
    changes = Column(JSON, nullable=False, default=dict)
    info = Column(String, nullable=True)

    def to_pydantic(self):
        from habitcore.models.audit_event import AuditEntry

        return AuditEntry(
            id=self.id,
            timestamp=self.timestamp,
            operation=value_to_enum(self.operation, AuditOperation, AuditOperation.UPDATE),
            entity_type=value_to_enum(self.entity_type, AuditEntityType, AuditEntityType.TEMPLATE),
            entity_id=self.entity_id,
            entity_name=self.entity_name,
            changes=self.changes or {},
            info=self.info,
        )

    @classmethod
    def from_pydantic(cls, entry):
        return cls(
            id=entry.id,
            timestamp=entry.timestamp,
            operation=enum_to_value(entry.operation),
            entity_type=enum_to_value(entry.entity_type),
            entity_id=entry.entity_id,
            entity_name=entry.entity_name,
            changes=entry.changes,
            info=entry.info,
        )
