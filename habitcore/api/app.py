"""FastAPI web application for habitcore."""

import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from habitcore.database.audit_repository import AuditRepository
from habitcore.database.database import get_db
from habitcore.engine.cascade import EditScope
from habitcore.engine.errors import HabitValidationError, NotFoundError, PersistenceError, RetirementStateError
from habitcore.engine.retirement import RetirementCascade, RetirementCountdown
from habitcore.engine.service import HabitEngine
from habitcore.integrations.audit import DatabaseAuditLogger
from habitcore.integrations.notifications import InMemoryNotificationScheduler
from habitcore.models.atom import AtomInputType
from habitcore.models.audit_event import AuditEntry
from habitcore.models.constants import DEFAULT_BACKFILL_DAYS
from habitcore.models.instance import HabitInstance
from habitcore.models.template import HabitTemplate, RetirementFutureAction
from habitcore.recurrence.describe import describe_rule

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"

# Process-wide collaborators; sessions are per request.
notifications = InMemoryNotificationScheduler()
cascades: Dict[str, RetirementCascade] = {}


@contextmanager
def _session():
    """A session from get_db, honouring dependency overrides (tests)."""
    provider = app.dependency_overrides.get(get_db, get_db)
    sessions = provider()
    try:
        yield next(sessions)
    finally:
        sessions.close()


def _write_audit_entry(entry: AuditEntry) -> None:
    """Background task: insert one audit entry on its own session."""
    with _session() as db:
        DatabaseAuditLogger(AuditRepository(db)).record(entry)


def _build_engine(db: Session, background_tasks: Optional[BackgroundTasks] = None) -> HabitEngine:
    audit = DatabaseAuditLogger(AuditRepository(db))
    if background_tasks is not None:
        audit.defer = lambda entry: background_tasks.add_task(_write_audit_entry, entry)
    return HabitEngine(
        db,
        notifications=notifications,
        audit=audit,
        countdown=countdown,
        cascades=cascades,
    )


async def _on_retirement_deadline(template_id: str) -> None:
    with _session() as db:
        cascade = _build_engine(db).process_retirement_deadline(template_id)
        await cascade.wait()


countdown = RetirementCountdown(_on_retirement_deadline)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Re-arm retirement countdowns from persisted deadlines; stop them on shutdown."""
    with _session() as db:
        _build_engine(db).rearm_pending()
    yield
    await countdown.shutdown()


app = FastAPI(
    title="habitcore API",
    description="Recurring habits: templates, generated occurrences, retirement and orphan recovery",
    version=API_VERSION,
    lifespan=lifespan,
)


def get_engine(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> HabitEngine:
    """Per-request engine; its audit inserts run as background tasks after the response."""
    return _build_engine(db, background_tasks)


# ----------------------------------------------------------------------
# Error mapping
# ----------------------------------------------------------------------

@app.exception_handler(HabitValidationError)
async def validation_error_handler(request: Request, exc: HabitValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RetirementStateError)
async def state_error_handler(request: Request, exc: RetirementStateError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ----------------------------------------------------------------------
# Request / response models
# ----------------------------------------------------------------------

class AtomCreateRequest(BaseModel):
    """Atom definition payload."""
    title: str
    input_type: AtomInputType = AtomInputType.BINARY
    target_value: Optional[float] = None
    unit: Optional[str] = None
    order: Optional[int] = None
    target_sets: Optional[int] = None
    target_reps: Optional[int] = None
    default_rest_seconds: Optional[float] = None
    video_url: Optional[str] = None
    icon_symbol: Optional[str] = None

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TemplateCreateRequest(BaseModel):
    """Request to create a habit template."""
    title: str
    base_time: datetime
    rule: Optional[Dict[str, Any]] = Field(None, description="RecurrenceRule fields; daily when omitted")
    atoms: List[AtomCreateRequest] = Field(default_factory=list)
    notes: Optional[str] = None
    alert_offsets: Optional[List[int]] = None
    is_all_day: bool = False


class TemplateDetailResponse(BaseModel):
    template: HabitTemplate
    schedule: str = Field(..., description="Human readable recurrence")


class AtomUpdateRequest(BaseModel):
    changes: Dict[str, Any]
    scope: EditScope = EditScope.THIS_TEMPLATE_ONLY


class AtomUpdateResponse(BaseModel):
    template: HabitTemplate
    updated_instances: int


class GenerateRequest(BaseModel):
    until: Optional[date] = Field(None, description="Last day to generate (defaults to the configured horizon)")


class BackfillRequest(BaseModel):
    start: Optional[date] = Field(None, description=f"Defaults to {DEFAULT_BACKFILL_DAYS} days ago")
    end: Optional[date] = Field(None, description="Defaults to today")


class InstancesResponse(BaseModel):
    count: int
    instances: List[HabitInstance]


class SyncResponse(BaseModel):
    added: int
    removed: int
    instances_touched: int
    message: str


class RetireRequest(BaseModel):
    reason: Optional[str] = None
    future_action: RetirementFutureAction = RetirementFutureAction.KEEP
    delete_after_date: Optional[date] = None


class CascadeResponse(BaseModel):
    template_id: str
    state: str
    status: str
    current: int
    total: int
    progress: float


class ExceptionRequest(BaseModel):
    new_time: datetime
    title: Optional[str] = None


class SnoozeRequest(BaseModel):
    minutes: int = Field(10, description="Minutes to push the occurrence back")


class CompleteRequest(BaseModel):
    completed: bool = True


class OrphanRecoverRequest(BaseModel):
    instance_ids: List[str]
    title: str


class OrphanDeleteRequest(BaseModel):
    instance_ids: List[str]


def _cascade_response(cascade: RetirementCascade) -> CascadeResponse:
    return CascadeResponse(
        template_id=cascade.template.id,
        state=cascade.state.value,
        status=cascade.status,
        current=cascade.current,
        total=cascade.total,
        progress=cascade.progress,
    )


# ----------------------------------------------------------------------
# Endpoints
# ----------------------------------------------------------------------

@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": API_VERSION}


@app.post("/templates", response_model=HabitTemplate, status_code=201)
async def create_template(request: TemplateCreateRequest, engine: HabitEngine = Depends(get_engine)):
    return engine.create_template(
        title=request.title,
        base_time=request.base_time,
        rule=request.rule,
        atoms=[a.fields() for a in request.atoms],
        notes=request.notes,
        alert_offsets=request.alert_offsets,
        is_all_day=request.is_all_day,
    )


@app.get("/templates", response_model=List[HabitTemplate])
async def list_templates(include_archived: bool = False, engine: HabitEngine = Depends(get_engine)):
    return engine.list_templates(include_archived=include_archived)


@app.get("/templates/{template_id}", response_model=TemplateDetailResponse)
async def get_template(template_id: str, engine: HabitEngine = Depends(get_engine)):
    template = engine.get_template(template_id)
    return TemplateDetailResponse(template=template, schedule=describe_rule(template.rule))


@app.delete("/templates/{template_id}")
async def delete_template(template_id: str, engine: HabitEngine = Depends(get_engine)):
    return {"orphaned_instances": engine.delete_template(template_id)}


@app.post("/templates/{template_id}/duplicate", response_model=HabitTemplate, status_code=201)
async def duplicate_template(template_id: str, engine: HabitEngine = Depends(get_engine)):
    return engine.duplicate_template(template_id)


@app.post("/templates/{template_id}/atoms", response_model=HabitTemplate, status_code=201)
async def add_atom(template_id: str, request: AtomCreateRequest, engine: HabitEngine = Depends(get_engine)):
    fields = request.fields()
    return engine.add_atom_definition(template_id, fields.pop("title"), **fields)


@app.patch("/templates/{template_id}/atoms/{atom_id}", response_model=AtomUpdateResponse)
async def update_atom(
    template_id: str,
    atom_id: str,
    request: AtomUpdateRequest,
    engine: HabitEngine = Depends(get_engine),
):
    template, updated = engine.update_atom_definition(template_id, atom_id, request.changes, request.scope)
    return AtomUpdateResponse(template=template, updated_instances=updated)


@app.delete("/templates/{template_id}/atoms/{atom_id}", response_model=HabitTemplate)
async def remove_atom(template_id: str, atom_id: str, engine: HabitEngine = Depends(get_engine)):
    return engine.remove_atom_definition(template_id, atom_id)


@app.get("/templates/{template_id}/instances", response_model=InstancesResponse)
async def list_template_instances(template_id: str, engine: HabitEngine = Depends(get_engine)):
    engine.get_template(template_id)
    instances = engine.list_instances(template_id)
    return InstancesResponse(count=len(instances), instances=instances)


@app.post("/templates/{template_id}/generate", response_model=InstancesResponse)
async def generate_instances(
    template_id: str,
    request: Optional[GenerateRequest] = None,
    engine: HabitEngine = Depends(get_engine),
):
    until = request.until if request else None
    created = engine.generate_instances(template_id, until)
    return InstancesResponse(count=len(created), instances=created)


@app.post("/templates/{template_id}/backfill", response_model=InstancesResponse)
async def backfill_instances(
    template_id: str,
    request: Optional[BackfillRequest] = None,
    engine: HabitEngine = Depends(get_engine),
):
    request = request or BackfillRequest()
    end = request.end or date.today()
    start = request.start or (end - timedelta(days=DEFAULT_BACKFILL_DAYS))
    created = engine.backfill_instances(template_id, start, end)
    return InstancesResponse(count=len(created), instances=created)


@app.post("/templates/{template_id}/sync", response_model=SyncResponse)
async def sync_template(template_id: str, engine: HabitEngine = Depends(get_engine)):
    result = engine.sync_atoms_to_instances(template_id)
    return SyncResponse(
        added=result.added,
        removed=result.removed,
        instances_touched=result.instances_touched,
        message=result.message,
    )


@app.post("/templates/{template_id}/retire", response_model=HabitTemplate)
async def retire_template(
    template_id: str,
    request: Optional[RetireRequest] = None,
    engine: HabitEngine = Depends(get_engine),
):
    if request is None:
        return engine.retire(template_id)
    return engine.retire(
        template_id,
        request.reason,
        future_action=request.future_action,
        delete_after_date=request.delete_after_date,
    )


@app.post("/templates/{template_id}/undo-retirement", response_model=HabitTemplate)
async def undo_retirement(template_id: str, engine: HabitEngine = Depends(get_engine)):
    return engine.undo_retirement(template_id)


@app.post("/templates/{template_id}/process-retirement", response_model=CascadeResponse)
async def process_retirement(template_id: str, engine: HabitEngine = Depends(get_engine)):
    """Run the retirement cascade now, without waiting for the undo deadline."""
    cascade = engine.process_retirement_deadline(template_id)
    await cascade.wait()
    return _cascade_response(cascade)


@app.post("/retirements/check", response_model=List[CascadeResponse])
async def check_retirements(engine: HabitEngine = Depends(get_engine)):
    cascades = await engine.check_pending_retirements()
    return [_cascade_response(c) for c in cascades]


@app.get("/instances", response_model=InstancesResponse)
async def list_instances(start: datetime, end: datetime, engine: HabitEngine = Depends(get_engine)):
    instances = engine.list_instances_between(start, end)
    return InstancesResponse(count=len(instances), instances=instances)


@app.get("/instances/{instance_id}", response_model=HabitInstance)
async def get_instance(instance_id: str, engine: HabitEngine = Depends(get_engine)):
    return engine.get_instance(instance_id)


@app.post("/instances/{instance_id}/exception", response_model=HabitInstance)
async def make_exception(instance_id: str, request: ExceptionRequest, engine: HabitEngine = Depends(get_engine)):
    return engine.make_exception(instance_id, request.new_time, title=request.title)


@app.post("/instances/{instance_id}/revert", response_model=HabitInstance)
async def revert_exception(instance_id: str, engine: HabitEngine = Depends(get_engine)):
    return engine.revert_exception(instance_id)


@app.post("/instances/{instance_id}/snooze", response_model=HabitInstance)
async def snooze_instance(instance_id: str, request: SnoozeRequest, engine: HabitEngine = Depends(get_engine)):
    return engine.snooze(instance_id, request.minutes)


@app.post("/instances/{instance_id}/complete", response_model=HabitInstance)
async def complete_instance(
    instance_id: str,
    request: Optional[CompleteRequest] = None,
    engine: HabitEngine = Depends(get_engine),
):
    return engine.complete_instance(instance_id, request.completed if request else True)


@app.delete("/instances/{instance_id}", status_code=204)
async def delete_instance(instance_id: str, engine: HabitEngine = Depends(get_engine)):
    engine.delete_instance(instance_id)
    return Response(status_code=204)


@app.get("/orphans", response_model=InstancesResponse)
async def list_orphans(engine: HabitEngine = Depends(get_engine)):
    orphans = engine.list_orphans()
    return InstancesResponse(count=len(orphans), instances=orphans)


@app.post("/orphans/recover", response_model=HabitTemplate, status_code=201)
async def recover_orphans(request: OrphanRecoverRequest, engine: HabitEngine = Depends(get_engine)):
    return engine.recover_orphans(request.instance_ids, request.title)


@app.post("/orphans/delete")
async def delete_orphans(request: OrphanDeleteRequest, engine: HabitEngine = Depends(get_engine)):
    return {"deleted": engine.delete_orphans(request.instance_ids)}


@app.get("/audit", response_model=List[AuditEntry])
async def list_audit(entity_id: Optional[str] = None, limit: int = 100, engine: HabitEngine = Depends(get_engine)):
    return engine.audit.entries(entity_id=entity_id, limit=limit)
