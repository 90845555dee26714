"""Tests for the template, instance and audit repositories."""

from datetime import date, datetime, timedelta

from habitcore.database.audit_repository import AuditRepository
from habitcore.database.models import TemplateDB
from habitcore.engine.retirement import retire
from habitcore.integrations.audit import DatabaseAuditLogger
from habitcore.models.audit_event import AuditEntityType, AuditEntry, AuditOperation
from habitcore.models.factory import create_atom_definition
from habitcore.models.template import RetirementFutureAction, RetirementStatus


class TestTemplateRepository:
    """Test TemplateRepository persistence."""

    def test_save_and_get_round_trips_rule_and_atoms(self, template_repository, sample_template):
        """Test saving a template keeps its rule and ordered atoms."""
        template_repository.save(sample_template)

        retrieved = template_repository.get(sample_template.id)

        assert retrieved is not None
        assert retrieved.rule == sample_template.rule
        assert [a.title for a in retrieved.atoms] == ["Drink water", "Stretch"]
        assert retrieved.atoms[0].target_value == 8
        assert retrieved.atoms[0].unit == "glasses"

    def test_get_nonexistent_template(self, template_repository):
        """Test retrieving a nonexistent template returns None."""
        assert template_repository.get("nonexistent-id") is None

    def test_retirement_fields_round_trip(self, template_repository, sample_template):
        retire(
            sample_template,
            "Moving on",
            grace=timedelta(hours=24),
            future_action=RetirementFutureAction.ARCHIVE_AFTER_DATE,
            delete_after_date=date(2025, 2, 1),
        )
        template_repository.save(sample_template)

        retrieved = template_repository.get(sample_template.id)

        assert retrieved.future_action == RetirementFutureAction.ARCHIVE_AFTER_DATE
        assert retrieved.delete_after_date == date(2025, 2, 1)
        assert template_repository.get_retirement_status(sample_template.id) == "pending"

    def test_retirement_status_reads_the_table(self, db_session, template_repository, sample_template):
        """The status comes from the table even when this session holds an older copy."""
        template_repository.save(sample_template)
        template_repository.get(sample_template.id)
        db_session.execute(
            TemplateDB.__table__.update()
            .where(TemplateDB.id == sample_template.id)
            .values(retirement_status="pending")
        )

        assert template_repository.get_retirement_status(sample_template.id) == "pending"
        assert template_repository.get_retirement_status("nonexistent-id") is None

    def test_save_replaces_atom_definitions(self, template_repository, sample_template):
        """Test that saving again updates, adds and drops atom rows to match."""
        template_repository.save(sample_template)
        water = sample_template.atoms[0]
        water.target_value = 10
        sample_template.atoms = [water, create_atom_definition("Meditate", order=2)]

        template_repository.save(sample_template)
        retrieved = template_repository.get(sample_template.id)

        assert [a.title for a in retrieved.atoms] == ["Drink water", "Meditate"]
        assert retrieved.atoms[0].id == water.id
        assert retrieved.atoms[0].target_value == 10

    def test_get_all_hides_archived(self, template_repository, make_template):
        """Test that archived templates are only listed on request."""
        active = make_template(title="B active")
        archived = make_template(title="A archived")
        archived.is_archived = True
        template_repository.save(active)
        template_repository.save(archived)

        assert [t.title for t in template_repository.get_all()] == ["B active"]
        assert [t.title for t in template_repository.get_all(include_archived=True)] == ["A archived", "B active"]

    def test_get_pending_retirement(self, template_repository, make_template):
        """Test that only pending templates are returned."""
        pending = make_template(title="Pending")
        pending.retirement_status = RetirementStatus.PENDING
        pending.undo_deadline = datetime(2025, 1, 2)
        template_repository.save(pending)
        template_repository.save(make_template(title="Active"))

        result = template_repository.get_pending_retirement()

        assert [t.id for t in result] == [pending.id]
        assert result[0].retirement_status == RetirementStatus.PENDING

    def test_delete_orphans_instances(self, template_repository, instance_repository, sample_template, make_instance):
        """Test that hard-deleting a template keeps its instances as orphans."""
        template_repository.save(sample_template)
        instance = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        instance_repository.save(instance)

        orphaned = template_repository.delete(sample_template.id)

        assert orphaned == 1
        assert template_repository.get(sample_template.id) is None
        stored = instance_repository.get(instance.id)
        assert stored.is_orphan is True
        assert stored.template_id is None
        assert stored.original_template_title == "Morning Routine"
        assert len(stored.atoms) == 2

    def test_delete_nonexistent_template(self, template_repository):
        assert template_repository.delete("nonexistent-id") == 0


class TestInstanceRepository:
    """Test InstanceRepository persistence and queries."""

    def test_save_and_get(self, template_repository, instance_repository, sample_template, make_instance):
        """Test saving an instance with its atom instances."""
        template_repository.save(sample_template)
        instance = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)

        saved = instance_repository.save(instance)

        assert saved.id == instance.id
        assert saved.scheduled_date == datetime(2025, 1, 6, 7, 0)
        assert [a.title for a in saved.atoms] == ["Drink water", "Stretch"]
        assert saved.atoms[0].source_template_id == sample_template.atoms[0].id

    def test_save_updates_atoms(self, template_repository, instance_repository, sample_template, make_instance):
        """Test that atom progress and removals are persisted on update."""
        template_repository.save(sample_template)
        instance = instance_repository.save(make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template))
        instance.atoms[0].current_value = 4
        instance.atoms = instance.atoms[:1]

        updated = instance_repository.save(instance)

        assert len(updated.atoms) == 1
        assert updated.atoms[0].current_value == 4

    def test_standalone_instance(self, instance_repository, make_instance):
        """Test that instances without a template can be stored."""
        saved = instance_repository.save(make_instance(datetime(2025, 1, 6, 7, 0)))
        assert saved.template_id is None
        assert saved.atoms == []

    def test_get_many_keeps_requested_order(self, template_repository, instance_repository, sample_template, make_instance):
        template_repository.save(sample_template)
        first = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        second = make_instance(datetime(2025, 1, 8, 7, 0), template=sample_template)
        instance_repository.save_many([first, second])

        result = instance_repository.get_many([second.id, "missing", first.id, second.id])

        assert [i.id for i in result] == [second.id, first.id]

    def test_get_for_template_sorted_by_date(self, template_repository, instance_repository, sample_template, make_instance):
        """Test that a template's instances come back oldest first."""
        template_repository.save(sample_template)
        later = make_instance(datetime(2025, 1, 10, 7, 0), template=sample_template)
        earlier = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        archived = make_instance(datetime(2025, 1, 8, 7, 0), template=sample_template, is_archived=True)
        instance_repository.save_many([later, earlier, archived])

        assert [i.id for i in instance_repository.get_for_template(sample_template.id)] == [
            earlier.id,
            archived.id,
            later.id,
        ]
        assert len(instance_repository.get_for_template(sample_template.id, include_archived=False)) == 2

    def test_get_in_range(self, template_repository, instance_repository, sample_template, make_instance):
        """Test the half-open range excludes archived and orphaned instances."""
        template_repository.save(sample_template)
        inside = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        at_end = make_instance(datetime(2025, 1, 8, 0, 0), template=sample_template)
        orphan = make_instance(datetime(2025, 1, 7, 7, 0), template=sample_template, is_orphan=True)
        archived = make_instance(datetime(2025, 1, 7, 8, 0), template=sample_template, is_archived=True)
        instance_repository.save_many([inside, at_end, orphan, archived])

        result = instance_repository.get_in_range(datetime(2025, 1, 6), datetime(2025, 1, 8))

        assert [i.id for i in result] == [inside.id]

    def test_get_orphans(self, template_repository, instance_repository, sample_template, make_instance):
        """Test orphans include flagged, standalone and template-less instances."""
        template_repository.save(sample_template)
        linked = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        flagged = make_instance(datetime(2025, 1, 8, 7, 0), template=sample_template, is_orphan=True)
        standalone = make_instance(datetime(2025, 1, 7, 7, 0))
        instance_repository.save_many([linked, flagged, standalone])

        assert [i.id for i in instance_repository.get_orphans()] == [standalone.id, flagged.id]

    def test_delete_many(self, template_repository, instance_repository, sample_template, make_instance):
        """Test hard delete removes instances and reports the count."""
        template_repository.save(sample_template)
        first = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)
        second = make_instance(datetime(2025, 1, 8, 7, 0), template=sample_template)
        instance_repository.save_many([first, second])

        assert instance_repository.delete_many([first.id, "missing"]) == 1
        assert instance_repository.get(first.id) is None
        assert instance_repository.get(second.id) is not None
        assert instance_repository.delete(second.id) is True
        assert instance_repository.delete(second.id) is False

    def test_commit_false_only_flushes(self, template_repository, instance_repository, sample_template, make_instance):
        """Test that commit=False only flushes until the caller commits."""
        template_repository.save(sample_template)
        instance = make_instance(datetime(2025, 1, 6, 7, 0), template=sample_template)

        instance_repository.save(instance, commit=False)
        instance_repository.db.rollback()

        assert instance_repository.get(instance.id) is None


class TestAuditRepository:
    """Test AuditRepository persistence."""

    def _entry(self, entity_id, timestamp):
        return AuditEntry(
            operation=AuditOperation.UPDATE,
            entity_type=AuditEntityType.TEMPLATE,
            entity_id=entity_id,
            entity_name="Morning Routine",
            changes={"title": ["Old", "New"]},
            timestamp=timestamp,
        )

    def test_list_recent_newest_first(self, db_session):
        repository = AuditRepository(db_session)
        now = datetime(2025, 1, 6, 12, 0)
        repository.add(self._entry("t1", now - timedelta(hours=1)))
        repository.add(self._entry("t2", now))
        repository.add(self._entry("t1", now - timedelta(hours=2)))

        assert [e.entity_id for e in repository.list_recent()] == ["t2", "t1", "t1"]
        filtered = repository.list_recent(entity_id="t1", limit=1)
        assert len(filtered) == 1
        assert filtered[0].changes == {"title": ["Old", "New"]}

    def test_prune_before(self, db_session):
        repository = AuditRepository(db_session)
        now = datetime(2025, 1, 6, 12, 0)
        repository.add(self._entry("old", now - timedelta(days=10)))
        repository.add(self._entry("new", now))

        assert repository.prune_before(now - timedelta(days=7)) == 1
        assert [e.entity_id for e in repository.list_recent()] == ["new"]

    def test_database_logger_defers_insert(self, db_session):
        repository = AuditRepository(db_session)
        deferred = []
        audit = DatabaseAuditLogger(repository, defer=deferred.append)

        entry = audit.log_update(AuditEntityType.TEMPLATE, "t1", "Morning Routine", info="Renamed")

        assert deferred == [entry]
        assert repository.list_recent() == []

        DatabaseAuditLogger(repository).record(deferred[0])
        assert [e.info for e in audit.entries(entity_id="t1")] == ["Renamed"]
