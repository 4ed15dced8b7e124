import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from gearguard.core.policy import (
    CreateData,
    Decision,
    ListScope,
    SanitizedPatch,
    TicketSnapshot,
)
from gearguard.models.models import MaintenanceRequest

logger = logging.getLogger(__name__)


class RequestNotFound(Exception):
    pass


class ConcurrentUpdateError(Exception):
    """The request kept changing under us and no update could be applied."""


def _with_relations(query):
    return query.options(
        selectinload(MaintenanceRequest.team),
        selectinload(MaintenanceRequest.category),
        selectinload(MaintenanceRequest.equipment),
        selectinload(MaintenanceRequest.work_center),
        selectinload(MaintenanceRequest.assigned_to),
        selectinload(MaintenanceRequest.created_by),
    )


def create_request(db: Session, data: CreateData) -> MaintenanceRequest:
    request = MaintenanceRequest(**data.as_dict())
    db.add(request)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(request)
    logger.info(
        "maintenance request %s created by user %s", request.id, request.created_by_id
    )
    return request


def get_request(
    db: Session, request_id: int, with_relations: bool = False
) -> Optional[MaintenanceRequest]:
    query = db.query(MaintenanceRequest)
    if with_relations:
        query = _with_relations(query)
    return query.filter(MaintenanceRequest.id == request_id).first()


def list_requests(
    db: Session,
    scope: ListScope,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[MaintenanceRequest]:
    """Return one page of requests inside ``scope``, newest first.

    The scope is part of the WHERE clause, so paging can never pull in a
    row the actor is not allowed to read.
    """
    query = _with_relations(db.query(MaintenanceRequest))
    if scope.created_by_id is not None:
        query = query.filter(MaintenanceRequest.created_by_id == scope.created_by_id)
    if scope.team_ids is not None:
        query = query.filter(MaintenanceRequest.team_id.in_(sorted(scope.team_ids)))
    if status:
        query = query.filter(MaintenanceRequest.status == status)
    return (
        query.order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def apply_patch(
    db: Session,
    request_id: int,
    patch: SanitizedPatch,
    expected_assigned_to_id: Optional[int],
) -> bool:
    """Write ``patch`` only if ``assigned_to_id`` still has the expected value.

    Returns False when another writer changed the assignment first. An
    empty patch writes nothing and always succeeds.
    """
    values = patch.as_dict()
    if not values:
        return True

    if expected_assigned_to_id is None:
        unchanged = MaintenanceRequest.assigned_to_id.is_(None)
    else:
        unchanged = MaintenanceRequest.assigned_to_id == expected_assigned_to_id

    stmt = (
        update(MaintenanceRequest)
        .where(MaintenanceRequest.id == request_id, unchanged)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            return False
        db.commit()
    except Exception:
        db.rollback()
        raise
    return True


def apply_decision(
    db: Session,
    request_id: int,
    decide: Callable[[TicketSnapshot], Decision],
    max_attempts: int = 3,
    snapshot: Optional[TicketSnapshot] = None,
) -> Tuple[MaintenanceRequest, Decision]:
    """Decide on a fresh snapshot and persist the result conditionally.

    When the conditional write loses to a concurrent one, the request is
    read again and the decision re-made, so the caller sees the outcome
    against the winning state (for example ``AssignedToOther``).
    """
    for attempt in range(max(1, max_attempts)):
        if snapshot is None:
            request = get_request(db, request_id)
            if request is None:
                raise RequestNotFound(request_id)
            snapshot = TicketSnapshot.from_model(request)

        decision = decide(snapshot)
        if not decision.allowed:
            return get_request(db, request_id, with_relations=True), decision

        if apply_patch(db, request_id, decision.value, snapshot.assigned_to_id):
            request = get_request(db, request_id, with_relations=True)
            if request is None:
                raise RequestNotFound(request_id)
            return request, decision

        logger.warning(
            "conditional update of maintenance request %s lost a race (attempt %s)",
            request_id,
            attempt + 1,
        )
        db.expire_all()
        snapshot = None

    raise ConcurrentUpdateError(request_id)
