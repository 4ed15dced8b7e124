import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gearguard.core import maintenance as maintenance_service
from gearguard.core import policy
from gearguard.core.auth import get_current_actor
from gearguard.core.config import get_settings
from gearguard.core.lifecycle import get_status_validator
from gearguard.core.roles import Actor
from gearguard.core.teams import TeamMembershipResolver
from gearguard.db.session import get_db
from gearguard.models.models import MaintenanceRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance/requests", tags=["maintenance"])


def _isoformat(value):
    return value.isoformat() if value is not None else None


def _summary(obj, *fields):
    if obj is None:
        return None
    return {f: getattr(obj, f) for f in fields}


def serialize_request(r: MaintenanceRequest) -> dict:
    return {
        "id": r.id,
        "subject": r.subject,
        "description": r.description,
        "maintenance_for": r.maintenance_for,
        "maintenance_type": r.maintenance_type,
        "equipment_id": r.equipment_id,
        "work_center_id": r.work_center_id,
        "category_id": r.category_id,
        "priority": r.priority,
        "status": r.status,
        "team_id": r.team_id,
        "assigned_to_id": r.assigned_to_id,
        "scheduled_date": _isoformat(r.scheduled_date),
        "duration_hours": r.duration_hours,
        "created_by_id": r.created_by_id,
        "created_at": _isoformat(r.created_at),
        "updated_at": _isoformat(r.updated_at),
        "team": _summary(r.team, "id", "name"),
        "category": _summary(r.category, "id", "name"),
        "equipment": _summary(r.equipment, "id", "name"),
        "work_center": _summary(r.work_center, "id", "name"),
        "assigned_to": _summary(r.assigned_to, "id", "username", "role"),
        "created_by": _summary(r.created_by, "id", "username", "role"),
    }


def _denied(
    decision: policy.Decision, actor: Actor, action: str, request_id=None
) -> HTTPException:
    reason = decision.reason
    logger.info(
        "%s denied for user %s (%s) on request %s: %s",
        action,
        actor.id,
        actor.role.value,
        request_id,
        reason.value,
    )
    return HTTPException(
        status_code=reason.status_code,
        detail={"message": reason.message, "reason": reason.value},
    )


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Maintenance request not found",
    )


def _load_or_404(db: Session, request_id: int) -> MaintenanceRequest:
    request = maintenance_service.get_request(db, request_id, with_relations=True)
    if request is None:
        raise _not_found()
    return request


def _mutate(db: Session, request_id: int, decide, actor: Actor, action: str) -> dict:
    # Existence is checked before any role rule runs
    current = _load_or_404(db, request_id)
    settings = get_settings()
    try:
        request, decision = maintenance_service.apply_decision(
            db,
            request_id,
            decide,
            max_attempts=settings.ASSIGN_MAX_RETRIES,
            snapshot=policy.TicketSnapshot.from_model(current),
        )
    except maintenance_service.RequestNotFound:
        raise _not_found()
    except maintenance_service.ConcurrentUpdateError:
        logger.warning("%s on request %s gave up after retries", action, request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Request was modified concurrently, retry"},
        )

    if not decision.allowed:
        raise _denied(decision, actor, action, request_id)
    return serialize_request(request)


@router.post("", status_code=201)
def create_maintenance_request(
    payload: dict,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Create a request as the current employee; status starts at NEW."""
    decision = policy.authorize_create(actor, payload)
    if not decision.allowed:
        raise _denied(decision, actor, "create")

    created = maintenance_service.create_request(db, decision.value)
    return serialize_request(_load_or_404(db, created.id))


@router.get("")
def list_maintenance_requests(
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List requests the current user may read, newest first."""
    settings = get_settings()
    limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    scope = policy.list_scope(actor, TeamMembershipResolver(db))
    rows = maintenance_service.list_requests(
        db, scope, status=status_filter, limit=limit, offset=offset
    )
    return [serialize_request(r) for r in rows]


@router.get("/{request_id}")
def get_maintenance_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    request = _load_or_404(db, request_id)
    snapshot = policy.TicketSnapshot.from_model(request)
    if not policy.authorize_read(actor, snapshot, TeamMembershipResolver(db)):
        logger.info(
            "read denied for user %s (%s) on request %s",
            actor.id,
            actor.role.value,
            request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail={"message": "Forbidden"}
        )
    return serialize_request(request)


@router.patch("/{request_id}")
def update_maintenance_request(
    request_id: int,
    payload: dict,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Field update. Fields outside the caller's allow-list are ignored."""
    settings = get_settings()
    membership = TeamMembershipResolver(db)
    validator = get_status_validator(settings.STATUS_VALIDATION)

    def decide(snapshot):
        return policy.authorize_update(
            actor,
            snapshot,
            payload,
            membership,
            validator,
            team_scoped_writes=settings.TECHNICIAN_WRITES_REQUIRE_TEAM,
        )

    return _mutate(db, request_id, decide, actor, "update")


@router.patch("/{request_id}/assign")
@router.patch("/{request_id}/status")
def assign_maintenance_request(
    request_id: int,
    payload: dict,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Assign a request. Technicians may only take it themselves.

    Also served at ``/status`` for clients of the older path.
    """
    settings = get_settings()
    membership = TeamMembershipResolver(db)

    def decide(snapshot):
        return policy.authorize_assign(
            actor,
            snapshot,
            payload,
            membership,
            team_scoped_writes=settings.TECHNICIAN_WRITES_REQUIRE_TEAM,
        )

    return _mutate(db, request_id, decide, actor, "assign")
