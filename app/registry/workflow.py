"""Routing of registered documents between actors.

Steps of one document form a forest: a root step is opened with ``sent`` or
``forwarded`` and no parent, follow-up steps hang off a *completed* step.
Steps are append-only; closing one flips it from ``pending`` to ``completed``
exactly once. When an approve/reject decision closes a root step with no
pending step below it the owning document is moved to ``resolved``.
"""
from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from app.core.extensions import db
from app.core.models import (
    DocumentEntry,
    DocumentEventType,
    DocumentStatus,
    ResolutionStatus,
    RoutingAction,
    RoutingStep,
    StepStatus,
    utcnow,
)
from app.core.utils import coerce_enum, iso
from app.registry.errors import (
    CycleDetectedError,
    InvalidActionError,
    InvalidParentStepError,
    InvalidTransitionError,
    ResolutionRequiredError,
    StepAlreadyCompletedError,
    StepNotFoundError,
    UnregisteredDocumentError,
)
from app.registry.services import (
    CLOSED_STATUSES,
    advance_status_to,
    document_by_id,
    log_document_event,
    page_bounds,
)

logger = logging.getLogger(__name__)

OPEN_ACTIONS = frozenset({RoutingAction.SENT, RoutingAction.FORWARDED})
CLOSE_ACTIONS = frozenset(
    {
        RoutingAction.RETURNED,
        RoutingAction.APPROVED,
        RoutingAction.REJECTED,
        RoutingAction.CANCELLED,
    }
)
RESOLUTION_BY_ACTION: dict[RoutingAction, ResolutionStatus] = {
    RoutingAction.APPROVED: ResolutionStatus.APPROVED,
    RoutingAction.REJECTED: ResolutionStatus.REJECTED,
}


def _max_depth() -> int:
    return int(current_app.config.get("REGISTRY_ROUTING_MAX_DEPTH", 64))


def step_by_id(step_id: int) -> RoutingStep:
    step = db.session.get(RoutingStep, step_id)
    if not step:
        raise StepNotFoundError(f"Routing step {step_id} not found")
    return step


def document_steps(document_id: int) -> dict[int, RoutingStep]:
    steps = RoutingStep.query.filter_by(document_id=document_id).order_by(RoutingStep.id.asc()).all()
    return {step.id: step for step in steps}


def _ancestry(step: RoutingStep, steps_by_id: dict[int, RoutingStep]) -> list[RoutingStep]:
    """``step`` followed by its ancestors up to the root, bounded by the configured depth."""
    max_depth = _max_depth()
    chain: list[RoutingStep] = []
    seen: set[int] = set()
    node: RoutingStep | None = step
    while node is not None:
        if node.id in seen:
            logger.error("Routing cycle through step %s on document %s", node.id, step.document_id)
            raise CycleDetectedError(f"Routing cycle detected at step {node.id}")
        if len(chain) >= max_depth:
            logger.error("Routing ancestry of step %s exceeds %s levels", step.id, max_depth)
            raise CycleDetectedError(f"Routing tree deeper than {max_depth} levels at step {step.id}")
        seen.add(node.id)
        chain.append(node)
        if node.parent_step_id is None:
            break
        node = steps_by_id.get(node.parent_step_id)
        if node is None:
            # parent on another document
            raise InvalidParentStepError(f"Step {chain[-1].id} has a parent outside document {step.document_id}")
    return chain


def _subtree(root: RoutingStep, steps_by_id: dict[int, RoutingStep]) -> list[RoutingStep]:
    children: dict[int, list[RoutingStep]] = {}
    for item in steps_by_id.values():
        if item.parent_step_id is not None:
            children.setdefault(item.parent_step_id, []).append(item)
    found: list[RoutingStep] = []
    visited: set[int] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if node.id in visited:
            logger.error("Routing cycle below root step %s", root.id)
            raise CycleDetectedError(f"Routing cycle detected at step {node.id}")
        visited.add(node.id)
        found.append(node)
        stack.extend(children.get(node.id, []))
    return found


def open_route(
    document_id: int,
    from_actor_id: int,
    to_actor_id: int,
    action=RoutingAction.SENT,
    parent_step_id: int | None = None,
    notes: str = "",
) -> RoutingStep:
    route_action = coerce_enum(RoutingAction, action, InvalidActionError, "routing action")
    if route_action not in OPEN_ACTIONS:
        raise InvalidActionError(f"Routes are opened with sent or forwarded, not {route_action.value}")

    document = document_by_id(document_id)
    if not document.is_registered:
        raise UnregisteredDocumentError(f"Document {document.id} has no registration number yet")
    if document.status in CLOSED_STATUSES:
        raise InvalidTransitionError(f"Document {document.id} is {document.status.value}")

    if parent_step_id is not None:
        parent = db.session.get(RoutingStep, parent_step_id)
        if not parent or parent.document_id != document.id:
            raise InvalidParentStepError(f"Step {parent_step_id} does not belong to document {document.id}")
        if parent.is_pending:
            raise InvalidParentStepError(f"Step {parent_step_id} is still pending")
        depth = len(_ancestry(parent, document_steps(document.id))) + 1
        if depth > _max_depth():
            logger.error("Route under step %s would reach depth %s on document %s", parent.id, depth, document.id)
            raise CycleDetectedError(f"Routing tree deeper than {_max_depth()} levels under step {parent.id}")

    step = RoutingStep(
        document_id=document.id,
        parent_step_id=parent_step_id,
        from_actor_id=from_actor_id,
        to_actor_id=to_actor_id,
        action=route_action,
        step_status=StepStatus.PENDING,
        notes=(notes or "").strip(),
    )
    db.session.add(step)
    db.session.flush()
    log_document_event(
        document.id,
        DocumentEventType.ROUTE_OPENED,
        f"{route_action.value}: {from_actor_id} -> {to_actor_id}",
        from_actor_id,
        step_id=step.id,
    )
    db.session.commit()
    logger.info(
        "Route %s opened on document %s (%s, parent=%s)",
        step.id,
        document.id,
        route_action.value,
        parent_step_id,
    )
    return step


def _resolution_for(action: RoutingAction, resolution) -> ResolutionStatus | None:
    expected = RESOLUTION_BY_ACTION.get(action)
    if expected is None:
        if resolution is not None:
            raise ResolutionRequiredError(f"A {action.value} step does not carry a resolution")
        return None
    if resolution is None:
        raise ResolutionRequiredError(f"A {action.value} step requires a resolution")
    value = coerce_enum(ResolutionStatus, resolution, ResolutionRequiredError, "resolution")
    if value != expected:
        raise ResolutionRequiredError(f"Resolution {value.value} does not match action {action.value}")
    return value


def close_route(
    step_id: int,
    action,
    resolution=None,
    notes: str | None = None,
    actor_id: int | None = None,
    resolution_text: str | None = None,
) -> RoutingStep:
    route_action = coerce_enum(RoutingAction, action, InvalidActionError, "routing action")
    if route_action not in CLOSE_ACTIONS:
        raise InvalidActionError(
            f"Routes are closed with returned, approved, rejected or cancelled, not {route_action.value}"
        )
    resolution_status = _resolution_for(route_action, resolution)

    step = step_by_id(step_id)
    document = document_by_id(step.document_id)
    if not step.is_pending:
        raise StepAlreadyCompletedError(f"Step {step.id} is already completed")
    acting = actor_id if actor_id is not None else step.to_actor_id

    values: dict[str, object] = {
        "step_status": StepStatus.COMPLETED,
        "completed_at": utcnow(),
        "action": route_action,
        "resolution_status": resolution_status,
        "resolution": None,
    }
    if resolution_status is not None:
        values["resolution"] = (resolution_text or "").strip() or None
    if notes is not None:
        values["notes"] = notes.strip()
    result = db.session.execute(
        update(RoutingStep)
        .where(RoutingStep.id == step.id, RoutingStep.step_status == StepStatus.PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise StepAlreadyCompletedError(f"Step {step_id} is already completed")

    try:
        db.session.refresh(step)
        resolved = False
        if resolution_status is not None and step.is_root:
            resolved = _resolve_document_if_settled(step, document, acting)

        details = route_action.value
        if resolution_status is not None:
            details = f"{route_action.value} ({resolution_status.value})"
        log_document_event(step.document_id, DocumentEventType.ROUTE_CLOSED, details, acting, step_id=step.id)
        db.session.commit()
    except Exception:
        # completed step and its event land together or not at all
        db.session.rollback()
        raise
    logger.info(
        "Route %s closed on document %s (%s%s)",
        step.id,
        step.document_id,
        route_action.value,
        ", document resolved" if resolved else "",
    )
    return step


def _resolve_document_if_settled(root: RoutingStep, document: DocumentEntry, actor_id: int | None) -> bool:
    """Resolve ``document`` once the closed root step has no pending step below it."""
    if any(item.is_pending for item in _subtree(root, document_steps(root.document_id))):
        return False
    return advance_status_to(document, DocumentStatus.RESOLVED, actor_id)


def document_history(document_id: int) -> list[RoutingStep]:
    document = document_by_id(document_id)
    return (
        RoutingStep.query.filter_by(document_id=document.id)
        .order_by(RoutingStep.created_at.desc(), RoutingStep.id.desc())
        .all()
    )


def step_payload(step: RoutingStep) -> dict[str, object]:
    return {
        "id": step.id,
        "document_id": step.document_id,
        "parent_step_id": step.parent_step_id,
        "from_actor_id": step.from_actor_id,
        "to_actor_id": step.to_actor_id,
        "action": step.action.value,
        "step_status": step.step_status.value,
        "resolution_status": step.resolution_status.value if step.resolution_status else None,
        "resolution": step.resolution,
        "notes": step.notes,
        "is_expired": step.is_expired,
        "created_at": iso(step.created_at),
        "completed_at": iso(step.completed_at),
    }


def workflow_tree(document_id: int) -> list[dict[str, object]]:
    document = document_by_id(document_id)
    steps_by_id = document_steps(document.id)
    nodes = {step_id: {**step_payload(step), "children": []} for step_id, step in steps_by_id.items()}
    roots: list[dict[str, object]] = []
    for step_id, step in steps_by_id.items():
        if step.parent_step_id is None:
            roots.append(nodes[step_id])
        elif step.parent_step_id in nodes:
            nodes[step.parent_step_id]["children"].append(nodes[step_id])
    return roots


def pending_steps_for_actor(actor_id: int, page: int = 1, page_size: int | None = None) -> dict[str, object]:
    """Inbox of ``actor_id``: pending steps addressed to them on live documents, oldest first."""
    query = (
        RoutingStep.query.join(DocumentEntry, DocumentEntry.id == RoutingStep.document_id)
        .filter(
            RoutingStep.to_actor_id == actor_id,
            RoutingStep.step_status == StepStatus.PENDING,
            DocumentEntry.deleted_at.is_(None),
        )
    )
    safe_page, safe_size = page_bounds(page, page_size)
    total = query.count()
    rows = (
        query.order_by(RoutingStep.created_at.asc(), RoutingStep.id.asc())
        .offset((safe_page - 1) * safe_size)
        .limit(safe_size)
        .all()
    )
    return {
        "rows": rows,
        "page": safe_page,
        "page_size": safe_size,
        "total": total,
        "pages": max(1, (total + safe_size - 1) // safe_size),
    }


def flag_expired_steps(older_than: datetime) -> int:
    """Advisory sweep: mark pending steps created before ``older_than``. Never closes them."""
    result = db.session.execute(
        update(RoutingStep)
        .where(
            RoutingStep.step_status == StepStatus.PENDING,
            RoutingStep.is_expired.is_(False),
            RoutingStep.created_at < older_than,
        )
        .values(is_expired=True)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Flagged %s pending routes created before %s as expired", result.rowcount, older_than.isoformat())
    return result.rowcount
