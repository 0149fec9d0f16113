from __future__ import annotations

import logging

from flask import jsonify, request

from app.core.utils import parse_optional_iso_date
from app.registry import registry_bp
from app.registry.errors import RegistryError
from app.registry.services import (
    archive,
    archive_payload,
    connect,
    connection_payload,
    create_draft,
    document_events,
    document_payload,
    event_payload,
    get_document,
    list_connections,
    mark_deleted,
    overdue_documents,
    register,
    search_documents,
    transition_status,
)
from app.registry.workflow import (
    close_route,
    open_route,
    pending_steps_for_actor,
    step_payload,
    workflow_tree,
)

logger = logging.getLogger(__name__)


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _int_field(data: dict, name: str, required: bool = True) -> int | None:
    value = data.get(name)
    if value is None or value == "":
        if required:
            raise ValueError(f"Missing {name}")
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid {name}") from exc


def _actor_id(data: dict) -> int | None:
    raw = data.get("actor_id")
    if raw is None:
        raw = request.headers.get("X-Actor-Id")
    return _int_field({"actor_id": raw}, "actor_id", required=False)


@registry_bp.errorhandler(RegistryError)
def registry_error(exc: RegistryError):
    if exc.status_code >= 500:
        logger.error("Registry integrity error on %s: %s", request.path, exc)
    else:
        logger.warning("Registry rejected %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": exc.code, "message": str(exc)}), exc.status_code


@registry_bp.errorhandler(ValueError)
def validation_error(exc: ValueError):
    return jsonify({"error": "validation_error", "message": str(exc)}), 400


@registry_bp.post("/documents")
def document_create():
    data = _payload()
    fields = {
        "sender_name": data.get("sender_name"),
        "recipient_name": data.get("recipient_name"),
        "description": data.get("description") or "",
        "priority": data.get("priority") or "normal",
        "due_date": parse_optional_iso_date(data.get("due_date")),
    }
    args = (
        _int_field(data, "registration_config_id"),
        _int_field(data, "organization_unit_id"),
        data.get("document_category"),
        data.get("subject") or "",
        _actor_id(data),
    )
    if data.get("draft"):
        document = create_draft(*args, **fields)
    else:
        document = register(
            *args,
            registration_date=parse_optional_iso_date(data.get("registration_date")),
            **fields,
        )
    return jsonify(document_payload(document)), 201


@registry_bp.get("/documents")
def document_search():
    filters = {
        key: request.args.get(key, "").strip()
        for key in (
            "organization_unit_id",
            "registration_config_id",
            "document_category",
            "status",
            "priority",
            "year",
            "search",
        )
    }
    page = request.args.get("page", 1, type=int)
    page_size = request.args.get("page_size", type=int)
    result = search_documents(filters, page=page, page_size=page_size)
    result["rows"] = [document_payload(document) for document in result["rows"]]
    return jsonify(result)


@registry_bp.get("/documents/overdue")
def document_overdue():
    unit_id = _int_field(request.args, "organization_unit_id", required=False)
    today = parse_optional_iso_date(request.args.get("today"))
    return jsonify([document_payload(document) for document in overdue_documents(unit_id, today)])


@registry_bp.get("/documents/<int:document_id>")
def document_detail(document_id: int):
    return jsonify(document_payload(get_document(document_id)))


@registry_bp.delete("/documents/<int:document_id>")
def document_delete(document_id: int):
    document = mark_deleted(document_id, _actor_id(_payload()))
    return jsonify(document_payload(document))


@registry_bp.post("/documents/<int:document_id>/status")
def document_status(document_id: int):
    data = _payload()
    document = transition_status(document_id, data.get("status"), _actor_id(data))
    return jsonify(document_payload(document))


@registry_bp.post("/documents/<int:document_id>/archive")
def document_archive(document_id: int):
    data = _payload()
    record = archive(
        document_id,
        data.get("archive_indicator") or "",
        data.get("archive_term") or "",
        data.get("archive_location"),
        _actor_id(data),
    )
    return jsonify(archive_payload(record)), 201


@registry_bp.get("/documents/<int:document_id>/connections")
def document_connections(document_id: int):
    return jsonify([connection_payload(item) for item in list_connections(document_id)])


@registry_bp.post("/documents/<int:document_id>/connections")
def document_connect(document_id: int):
    data = _payload()
    connection = connect(
        document_id,
        _int_field(data, "related_document_id"),
        data.get("connection_type") or "related",
        _actor_id(data),
    )
    return jsonify(connection_payload(connection)), 201


@registry_bp.get("/documents/<int:document_id>/workflow")
def document_workflow(document_id: int):
    return jsonify(workflow_tree(document_id))


@registry_bp.post("/documents/<int:document_id>/workflow")
def document_route_open(document_id: int):
    data = _payload()
    from_actor = _int_field(data, "from_actor_id", required=False)
    if from_actor is None:
        from_actor = _actor_id(data)
    if from_actor is None:
        raise ValueError("Missing from_actor_id")
    step = open_route(
        document_id,
        from_actor,
        _int_field(data, "to_actor_id"),
        data.get("action") or "sent",
        _int_field(data, "parent_step_id", required=False),
        data.get("notes") or "",
    )
    return jsonify(step_payload(step)), 201


@registry_bp.post("/workflow/<int:step_id>/close")
def route_close(step_id: int):
    data = _payload()
    step = close_route(
        step_id,
        data.get("action"),
        resolution=data.get("resolution_status"),
        notes=data.get("notes"),
        actor_id=_actor_id(data),
        resolution_text=data.get("resolution"),
    )
    return jsonify(step_payload(step))


@registry_bp.get("/documents/<int:document_id>/events")
def document_event_log(document_id: int):
    return jsonify([event_payload(item) for item in document_events(document_id)])


@registry_bp.get("/actors/<int:actor_id>/pending")
def actor_pending(actor_id: int):
    page = request.args.get("page", 1, type=int)
    page_size = request.args.get("page_size", type=int)
    result = pending_steps_for_actor(actor_id, page=page, page_size=page_size)
    result["rows"] = [step_payload(step) for step in result["rows"]]
    return jsonify(result)
