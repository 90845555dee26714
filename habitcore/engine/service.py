"""HabitEngine: the public operations, composed over repositories and collaborators.

Each operation loads what it needs, applies the pure engine functions to
pydantic records, then stages and commits every touched row in one
transaction. Notifications and audit entries are sent after the commit and
never fail the operation.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from habitcore import config
from habitcore.database.instance_repository import InstanceRepository
from habitcore.database.template_repository import TemplateRepository
from habitcore.engine import exceptions as overrides
from habitcore.engine import orphans, retirement
from habitcore.engine.cascade import EditScope, cascade_structural_edit, snapshot_structure
from habitcore.engine.errors import HabitValidationError, NotFoundError, PersistenceError, RetirementStateError
from habitcore.engine.retirement import RetirementCascade, RetirementCountdown
from habitcore.engine.sync import SyncResult, sync_atoms_to_instances
from habitcore.integrations.audit import AuditLogger, InMemoryAuditLogger
from habitcore.integrations.notifications import InMemoryNotificationScheduler, NotificationScheduler
from habitcore.models.atom import AtomDefinition
from habitcore.models.audit_event import AuditEntityType
from habitcore.models.factory import create_atom_definition, create_template_base
from habitcore.models.instance import HabitInstance
from habitcore.models.recurrence import RecurrenceRule
from habitcore.models.template import HabitTemplate, RetirementFutureAction, RetirementStatus
from habitcore.recurrence import materialize

logger = logging.getLogger(__name__)

# AtomDefinition fields callers may change through update_atom_definition().
EDITABLE_ATOM_FIELDS = frozenset(AtomDefinition.model_fields) - {"id", "created_at"}


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class HabitEngine:
    """Public habit operations.

    Args:
        db: SQLAlchemy session used for every read and write of this engine
        notifications: NotificationScheduler (defaults to an in-memory one)
        audit: AuditLogger (defaults to an in-memory one)
        countdown: RetirementCountdown to arm on retire(); optional
        retirement_grace: undo window (defaults to HABITCORE_RETIREMENT_GRACE_HOURS)
        cascades: in-flight retirement cascades by template id. Engines built per
            request should share one dict so undo_retirement() can stop a running cascade.
    """

    def __init__(
        self,
        db: Session,
        notifications: Optional[NotificationScheduler] = None,
        audit: Optional[AuditLogger] = None,
        countdown: Optional[RetirementCountdown] = None,
        retirement_grace: Optional[timedelta] = None,
        cascades: Optional[Dict[str, RetirementCascade]] = None,
    ):
        self.db = db
        self.templates = TemplateRepository(db)
        self.instances = InstanceRepository(db)
        self.notifications = notifications if notifications is not None else InMemoryNotificationScheduler()
        self.audit = audit if audit is not None else InMemoryAuditLogger()
        self.countdown = countdown
        self.retirement_grace = retirement_grace if retirement_grace is not None else config.retirement_grace()
        self.cascades = cascades if cascades is not None else {}

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, action: str):
        """Commit everything staged inside the block, or raise PersistenceError."""
        try:
            yield
            self.db.commit()
        except (HabitValidationError, RetirementStateError, NotFoundError):
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to {action}: {type(e).__name__}: {str(e)}")
            raise PersistenceError(f"Failed to {action}") from e

    def _template(self, template_id: str) -> HabitTemplate:
        template = self.templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    def _instance(self, instance_id: str) -> HabitInstance:
        instance = self.instances.get(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        return instance

    def _active_template(self, template_id: str) -> HabitTemplate:
        template = self._template(template_id)
        if template.retirement_status != RetirementStatus.NONE:
            raise RetirementStateError(
                f"Template {template_id} is {template.retirement_status}; reactivate or duplicate it first"
            )
        return template

    def _notify(self, method: str, instances: Iterable[HabitInstance]) -> None:
        for instance in instances:
            try:
                getattr(self.notifications, method)(instance)
            except Exception as e:
                logger.warning(
                    f"Notification {method} failed for instance {instance.id}: {type(e).__name__}: {str(e)}"
                )

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------

    def create_template(
        self,
        title: str,
        base_time: datetime,
        rule: Union[RecurrenceRule, Dict[str, Any], None] = None,
        atoms: Optional[Sequence[Union[AtomDefinition, Dict[str, Any]]]] = None,
        notes: Optional[str] = None,
        alert_offsets: Optional[List[int]] = None,
        is_all_day: bool = False,
    ) -> HabitTemplate:
        title = (title or "").strip()
        if not title:
            raise HabitValidationError("Template title must not be empty", field="title")
        try:
            if isinstance(rule, dict):
                rule = RecurrenceRule.model_validate(rule)
            definitions = []
            for index, atom in enumerate(atoms or []):
                if isinstance(atom, AtomDefinition):
                    definitions.append(atom)
                else:
                    fields = dict(atom)
                    fields.setdefault("order", index)
                    definitions.append(create_atom_definition(**fields))
        except ValidationError as e:
            raise HabitValidationError(_validation_message(e), field="rule") from e
        except TypeError as e:
            raise HabitValidationError(f"Invalid atom definition: {e}", field="atoms") from e

        template = create_template_base(
            title=title,
            base_time=base_time,
            rule=rule,
            atoms=definitions,
            notes=notes,
            alert_offsets=alert_offsets,
            is_all_day=is_all_day,
        )
        with self._transaction(f"create template '{title}'"):
            saved = self.templates.save(template, commit=False)
        self.audit.log_create(AuditEntityType.TEMPLATE, saved.id, saved.title)
        logger.info(f"Created template {saved.id} '{saved.title}' with {len(saved.atoms)} atoms")
        return saved

    def get_template(self, template_id: str) -> HabitTemplate:
        return self._template(template_id)

    def list_templates(self, include_archived: bool = False) -> List[HabitTemplate]:
        return self.templates.get_all(include_archived=include_archived)

    def duplicate_template(self, template_id: str) -> HabitTemplate:
        source = self._template(template_id)
        copy = retirement.duplicate_template(source)
        with self._transaction(f"duplicate template {template_id}"):
            saved = self.templates.save(copy, commit=False)
        self.audit.log_create(AuditEntityType.TEMPLATE, saved.id, saved.title, info=f"Duplicated from {source.id}")
        return saved

    def delete_template(self, template_id: str) -> int:
        """Hard delete. Instances are kept and become orphans. Returns how many."""
        template = self._template(template_id)
        with self._transaction(f"delete template {template_id}"):
            orphaned = self.templates.delete(template_id, commit=False)
        if self.countdown is not None:
            self.countdown.disarm(template_id)
        self.audit.log_delete(
            AuditEntityType.TEMPLATE, template_id, template.title, info=f"{orphaned} instances orphaned"
        )
        logger.info(f"Deleted template {template_id}; {orphaned} instances orphaned")
        return orphaned

    # ------------------------------------------------------------------
    # atom definitions
    # ------------------------------------------------------------------

    def add_atom_definition(self, template_id: str, title: str, **fields: Any) -> HabitTemplate:
        """Append a definition. Scheduled instances pick it up only via sync_atoms_to_instances()."""
        template = self._template(template_id)
        if not (title or "").strip():
            raise HabitValidationError("Atom title must not be empty", field="title")
        fields.setdefault("order", max((a.order for a in template.atoms), default=-1) + 1)
        try:
            definition = create_atom_definition(title.strip(), **fields)
        except ValidationError as e:
            raise HabitValidationError(_validation_message(e), field="atom") from e
        template.atoms.append(definition)
        template.updated_at = datetime.now()
        with self._transaction(f"add atom to template {template_id}"):
            saved = self.templates.save(template, commit=False)
        self.audit.log_create(AuditEntityType.ATOM_DEFINITION, definition.id, definition.title)
        return saved

    def remove_atom_definition(self, template_id: str, atom_id: str) -> HabitTemplate:
        """Drop a definition. Scheduled atoms stay until sync_atoms_to_instances() runs."""
        template = self._template(template_id)
        definition = template.atom(atom_id)
        if definition is None:
            raise NotFoundError(f"Atom {atom_id} not found on template {template_id}")
        template.atoms = [a for a in template.atoms if a.id != atom_id]
        template.updated_at = datetime.now()
        with self._transaction(f"remove atom {atom_id}"):
            saved = self.templates.save(template, commit=False)
        self.audit.log_delete(AuditEntityType.ATOM_DEFINITION, atom_id, definition.title)
        return saved

    def update_atom_definition(
        self,
        template_id: str,
        atom_id: str,
        changes: Dict[str, Any],
        scope: EditScope = EditScope.THIS_TEMPLATE_ONLY,
    ) -> Tuple[HabitTemplate, int]:
        """Edit a definition; with TEMPLATE_AND_FUTURE push structural changes to scheduled atoms.

        Returns:
            (saved template, number of atom instances updated)

        Raises:
            NoStructuralChangeError: TEMPLATE_AND_FUTURE without a structural diff
        """
        scope = EditScope(scope)
        unknown = set(changes) - EDITABLE_ATOM_FIELDS
        if unknown:
            raise HabitValidationError(f"Unknown atom fields: {sorted(unknown)}", field="changes")

        template = self._template(template_id)
        definition = template.atom(atom_id)
        if definition is None:
            raise NotFoundError(f"Atom {atom_id} not found on template {template_id}")

        snapshot = snapshot_structure(definition)
        try:
            edited = AtomDefinition.model_validate({**definition.model_dump(), **changes})
        except ValidationError as e:
            raise HabitValidationError(_validation_message(e), field="changes") from e

        now = datetime.now()
        scheduled: List[HabitInstance] = []
        updated = 0
        if scope == EditScope.TEMPLATE_AND_FUTURE:
            scheduled = [i for i in self.instances.get_for_template(template_id) if not i.is_orphan]
            updated = cascade_structural_edit(edited, scheduled, snapshot=snapshot, now=now)

        template.atoms = [edited if a.id == atom_id else a for a in template.atoms]
        template.updated_at = now
        with self._transaction(f"update atom {atom_id}"):
            saved = self.templates.save(template, commit=False)
            if updated:
                self.instances.save_many(scheduled, commit=False)

        self.audit.log_update(
            AuditEntityType.ATOM_DEFINITION,
            atom_id,
            edited.title,
            changes={field: (getattr(definition, field), value) for field, value in changes.items()},
            info=f"scope={scope.value}, {updated} scheduled atoms updated",
        )
        return saved, updated

    # ------------------------------------------------------------------
    # instances
    # ------------------------------------------------------------------

    def get_instance(self, instance_id: str) -> HabitInstance:
        return self._instance(instance_id)

    def list_instances(self, template_id: str) -> List[HabitInstance]:
        return self.instances.get_for_template(template_id)

    def list_instances_between(self, start: datetime, end: datetime) -> List[HabitInstance]:
        return self.instances.get_in_range(start, end)

    def generate_instances(self, template_id: str, until: Optional[date] = None) -> List[HabitInstance]:
        """Materialize missing occurrences from today through `until` (default: configured horizon)."""
        template = self._active_template(template_id)
        now = datetime.now()
        until = until or (now + config.generation_horizon()).date()
        existing = self.instances.get_for_template(template_id)
        created = materialize.generate_instances(template, until, existing=existing, now=now)
        return self._store_created(template, created, "generate")

    def backfill_instances(self, template_id: str, start: date, end: date) -> List[HabitInstance]:
        template = self._active_template(template_id)
        existing = self.instances.get_for_template(template_id)
        created = materialize.backfill_instances(template, start, end, existing=existing)
        return self._store_created(template, created, "backfill")

    def _store_created(self, template: HabitTemplate, created: List[HabitInstance], verb: str) -> List[HabitInstance]:
        if not created:
            logger.info(f"{verb.capitalize()}: template {template.id} already covered")
            return []
        with self._transaction(f"{verb} instances for template {template.id}"):
            saved = self.instances.save_many(created, commit=False)
        self._notify("schedule", saved)
        self.audit.log_bulk_create(AuditEntityType.INSTANCE, len(saved), info=f"{verb} for '{template.title}'")
        logger.info(f"{verb.capitalize()}d {len(saved)} instances for template {template.id}")
        return saved

    def make_exception(self, instance_id: str, new_time: datetime, title: Optional[str] = None) -> HabitInstance:
        instance = self._instance(instance_id)
        before = instance.scheduled_date
        overrides.make_exception(instance, new_time, title=title)
        return self._store_override(instance, before, "exception")

    def snooze(self, instance_id: str, minutes: int) -> HabitInstance:
        if minutes <= 0:
            raise HabitValidationError("Snooze minutes must be positive", field="minutes")
        instance = self._instance(instance_id)
        before = instance.scheduled_date
        overrides.snooze(instance, minutes)
        return self._store_override(instance, before, f"snoozed {minutes} min")

    def revert_exception(self, instance_id: str) -> HabitInstance:
        instance = self._instance(instance_id)
        if instance.template_id is None or instance.is_orphan:
            raise HabitValidationError("Instance has no template to revert to", field="instance_id")
        template = self._template(instance.template_id)
        before = instance.scheduled_date
        overrides.revert_to_template(instance, template)
        return self._store_override(instance, before, "reverted to template")

    def _store_override(self, instance: HabitInstance, before: datetime, info: str) -> HabitInstance:
        with self._transaction(f"reschedule instance {instance.id}"):
            saved = self.instances.save(instance, commit=False)
        self._notify("schedule", [saved])
        self.audit.log_update(
            AuditEntityType.INSTANCE,
            saved.id,
            saved.exception_title,
            changes={"scheduled_date": (before, saved.scheduled_date)},
            info=info,
        )
        return saved

    def complete_instance(self, instance_id: str, completed: bool = True) -> HabitInstance:
        instance = self._instance(instance_id)
        now = datetime.now()
        instance.is_completed = completed
        instance.completed_at = now if completed else None
        instance.updated_at = now
        with self._transaction(f"complete instance {instance_id}"):
            saved = self.instances.save(instance, commit=False)
        self._notify("cancel" if completed else "schedule", [saved])
        self.audit.log_update(
            AuditEntityType.INSTANCE, saved.id, None, changes={"is_completed": (not completed, completed)}
        )
        return saved

    def delete_instance(self, instance_id: str) -> None:
        instance = self._instance(instance_id)
        with self._transaction(f"delete instance {instance_id}"):
            self.instances.delete_many([instance_id], commit=False)
        self._notify("cancel", [instance])
        self.audit.log_delete(AuditEntityType.INSTANCE, instance_id, instance.exception_title)

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    def sync_atoms_to_instances(self, template_id: str) -> SyncResult:
        template = self._active_template(template_id)
        scheduled = self.instances.get_for_template(template_id)
        result = sync_atoms_to_instances(template, scheduled)
        if result.added or result.removed:
            with self._transaction(f"sync template {template_id}"):
                self.instances.save_many(scheduled, commit=False)
        self.audit.log_update(AuditEntityType.TEMPLATE, template.id, template.title, info=result.message)
        return result

    # ------------------------------------------------------------------
    # retirement
    # ------------------------------------------------------------------

    def retire(
        self,
        template_id: str,
        reason: Optional[str] = None,
        future_action: Union[RetirementFutureAction, str, None] = RetirementFutureAction.KEEP,
        delete_after_date: Optional[date] = None,
    ) -> HabitTemplate:
        template = self._template(template_id)
        retirement.retire(
            template,
            reason,
            grace=self.retirement_grace,
            future_action=future_action,
            delete_after_date=delete_after_date,
        )
        with self._transaction(f"retire template {template_id}"):
            saved = self.templates.save(template, commit=False)
        if self.countdown is not None:
            self.countdown.arm(saved)
        self.audit.log_update(
            AuditEntityType.TEMPLATE,
            saved.id,
            saved.title,
            changes={"retirement_status": (RetirementStatus.NONE, saved.retirement_status)},
            info=reason,
        )
        logger.info(f"Template {saved.id} pending retirement until {saved.undo_deadline} ({saved.future_action})")
        return saved

    def undo_retirement(self, template_id: str) -> HabitTemplate:
        """pending -> none, stopping a cascade that is already running for the template.

        Instances whose notifications an interrupted cascade already cancelled
        (and persisted) get them scheduled again.
        """
        template = self._template(template_id)
        retirement.undo_retirement(template)
        cascade = self.cascades.pop(template_id, None)
        if cascade is not None and not cascade.done:
            cascade.cancel()
        silenced = [
            i for i in self.instances.get_for_template(template_id)
            if i.notifications_cancelled_at is not None and not i.is_orphan
        ]
        for instance in silenced:
            instance.notifications_cancelled_at = None
        with self._transaction(f"undo retirement of template {template_id}"):
            saved = self.templates.save(template, commit=False)
            if silenced:
                self.instances.save_many(silenced, commit=False)
        if self.countdown is not None:
            self.countdown.disarm(template_id)
        self._notify("schedule", silenced)
        self.audit.log_update(
            AuditEntityType.TEMPLATE,
            saved.id,
            saved.title,
            changes={"retirement_status": (RetirementStatus.PENDING, saved.retirement_status)},
            info="Retirement undone",
        )
        return saved

    def _still_pending(self, template_id: str) -> bool:
        return self.templates.get_retirement_status(template_id) == RetirementStatus.PENDING.value

    def _persist_cascade(self, template: HabitTemplate, batch: List[HabitInstance]) -> None:
        if not self._still_pending(template.id):
            logger.info(f"Template {template.id} is no longer pending retirement; cascade batch not written")
            return
        with self._transaction(f"persist retirement of template {template.id}"):
            self.templates.save(template, commit=False)
            self.instances.save_many(batch, commit=False)
        if template.retirement_status == RetirementStatus.RETIRED:
            self.audit.log_update(
                AuditEntityType.TEMPLATE,
                template.id,
                template.title,
                changes={"retirement_status": (RetirementStatus.PENDING, template.retirement_status)},
                info=f"{len(batch)} instances orphaned",
            )

    def process_retirement_deadline(self, template_id: str) -> RetirementCascade:
        """Start the retirement cascade for a pending template on the running event loop.

        A cascade already running for the template is returned instead of starting a second one.
        """
        template = self._template(template_id)
        if template.retirement_status != RetirementStatus.PENDING:
            raise RetirementStateError(
                f"Template {template_id} is not pending retirement (status '{template.retirement_status}')"
            )
        running = self.cascades.get(template_id)
        if running is not None and not running.done:
            return running
        if self.countdown is not None:
            self.countdown.disarm(template_id)
        cascade = RetirementCascade(
            template,
            self.instances.get_for_template(template_id),
            self.notifications,
            persist=self._persist_cascade,
            still_pending=self._still_pending,
        )
        for finished in [tid for tid, c in self.cascades.items() if c.done]:
            del self.cascades[finished]
        self.cascades[template_id] = cascade
        logger.info(f"Starting retirement cascade for template {template_id} ({cascade.total} instances)")
        return cascade.start()

    async def check_pending_retirements(self, now: Optional[datetime] = None) -> List[RetirementCascade]:
        """Run the cascade for every pending template whose undo deadline has passed."""
        now = now or datetime.now()
        due = [t for t in self.templates.get_pending_retirement() if retirement.deadline_elapsed(t, now)]
        cascades = []
        for template in due:
            cascade = self.process_retirement_deadline(template.id)
            await cascade.wait()
            cascades.append(cascade)
        return cascades

    def rearm_pending(self) -> int:
        """Re-create countdown timers from persisted deadlines (after a restart)."""
        if self.countdown is None:
            return 0
        armed = self.countdown.rearm(self.templates.get_pending_retirement())
        logger.info(f"Re-armed {armed} retirement countdowns")
        return armed

    # ------------------------------------------------------------------
    # orphans
    # ------------------------------------------------------------------

    def list_orphans(self) -> List[HabitInstance]:
        return self.instances.get_orphans()

    def _orphan_selection(self, instance_ids: Sequence[str]) -> List[HabitInstance]:
        if not instance_ids:
            raise HabitValidationError("Select at least one instance", field="instance_ids")
        selection = self.instances.get_many(instance_ids)
        missing = set(instance_ids) - {i.id for i in selection}
        if missing:
            raise NotFoundError(f"Instances not found: {sorted(missing)}")
        not_orphaned = [i.id for i in selection if not orphans.is_orphaned(i, self.templates.get)]
        if not_orphaned:
            raise HabitValidationError(f"Instances are not orphaned: {not_orphaned}", field="instance_ids")
        return selection

    def recover_orphans(self, instance_ids: Sequence[str], new_title: str) -> HabitTemplate:
        selection = self._orphan_selection(instance_ids)
        template, relinked = orphans.recover_orphans(selection, new_title)
        with self._transaction(f"recover {len(relinked)} orphans"):
            saved = self.templates.save(template, commit=False)
            self.instances.save_many(relinked, commit=False)
        self.audit.log_create(
            AuditEntityType.TEMPLATE, saved.id, saved.title, info=f"Recovered from {len(relinked)} orphans"
        )
        return saved

    def delete_orphans(self, instance_ids: Sequence[str]) -> int:
        selection = self._orphan_selection(instance_ids)
        with self._transaction(f"delete {len(selection)} orphans"):
            deleted = self.instances.delete_many([i.id for i in selection], commit=False)
        self._notify("cancel", selection)
        self.audit.log_bulk_delete(AuditEntityType.INSTANCE, deleted, info="Orphan cleanup")
        return deleted
