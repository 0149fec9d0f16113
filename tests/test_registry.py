from __future__ import annotations

from datetime import date

import pytest

from app.core.extensions import db
from app.core.models import (
    ArchiveRecord,
    DocumentEntry,
    DocumentEvent,
    DocumentEventType,
    DocumentStatus,
)
from app.registry.errors import (
    AlreadyArchivedError,
    DocumentNotFoundError,
    DuplicateConnectionError,
    InvalidConfigError,
    InvalidTransitionError,
    NotResolvableError,
    SelfConnectionError,
    UnregisteredDocumentError,
)
from app.registry.services import (
    archive,
    connect,
    create_draft,
    document_events,
    get_document,
    list_connections,
    mark_deleted,
    overdue_documents,
    register,
    search_documents,
    transition_status,
)


def _resolve(document_id, actor_id=None):
    for status in ("in_work", "distributed", "resolved"):
        transition_status(document_id, status, actor_id)
    return get_document(document_id)


def test_register_assigns_number_and_logs_event(app, seeded, register_doc):
    document = register_doc(
        sender_name="Ion Popescu",
        priority="high",
        due_date=date(2024, 2, 15),
        registration_date=date(2024, 2, 1),
    )

    assert document.status == DocumentStatus.REGISTERED
    assert document.formatted_number == "IN-2024-0001"
    assert document.registration_date == date(2024, 2, 1)
    assert document.priority.value == "high"
    events = document_events(document.id)
    assert [item.event_type for item in events] == [DocumentEventType.REGISTERED]
    assert events[0].actor_id == seeded["secretary"]


def test_subject_is_required(app, seeded, register_doc):
    with pytest.raises(InvalidConfigError):
        register_doc(subject="   ")


def test_draft_gets_number_only_when_registered(app, seeded):
    draft = create_draft(seeded["annual_config"], seeded["psn"], "internal", "Inventar obiecte de cult")
    assert draft.status == DocumentStatus.DRAFT
    assert draft.document_number is None

    registered = transition_status(draft.id, "registered", seeded["secretary"])

    assert registered.document_number == 1
    assert registered.formatted_number.startswith("INT-")
    types = [item.event_type for item in document_events(draft.id)]
    assert DocumentEventType.REGISTERED in types
    assert DocumentEventType.STATUS_CHANGED in types
    assert "draft -> registered" in [item.details for item in document_events(draft.id)]


def test_status_moves_forward_one_step_at_a_time(app, seeded, register_doc):
    document = register_doc()

    with pytest.raises(InvalidTransitionError):
        transition_status(document.id, "resolved")
    with pytest.raises(InvalidTransitionError):
        transition_status(document.id, "draft")

    transition_status(document.id, "in_work", seeded["priest"])
    resolved = _resolve(document.id)
    assert resolved.status == DocumentStatus.RESOLVED

    changes = [
        item.details
        for item in DocumentEvent.query.filter_by(
            document_id=document.id, event_type=DocumentEventType.STATUS_CHANGED
        ).order_by(DocumentEvent.id)
    ]
    assert changes == [
        "registered -> in_work",
        "in_work -> distributed",
        "distributed -> resolved",
    ]


def test_archived_is_not_a_plain_status_target(app, seeded, register_doc):
    document = _resolve(register_doc().id)
    with pytest.raises(InvalidTransitionError):
        transition_status(document.id, "archived")


def test_cancelled_is_terminal(app, seeded, register_doc):
    document = register_doc()
    transition_status(document.id, "cancelled")

    for target in ("registered", "in_work", "resolved"):
        with pytest.raises(InvalidTransitionError):
            transition_status(document.id, target)
    with pytest.raises(InvalidTransitionError):
        archive(document.id, "A-12", "10 ani")


def test_cancelling_twice_is_a_no_op(app, seeded, register_doc):
    document = register_doc()
    transition_status(document.id, "cancelled")
    changes = DocumentEvent.query.filter_by(
        document_id=document.id, event_type=DocumentEventType.STATUS_CHANGED
    ).count()

    again = transition_status(document.id, "cancelled", seeded["priest"])

    assert again.status == DocumentStatus.CANCELLED
    assert again.updated_by != seeded["priest"]
    assert (
        DocumentEvent.query.filter_by(
            document_id=document.id, event_type=DocumentEventType.STATUS_CHANGED
        ).count()
        == changes
        == 1
    )


def test_unknown_status_is_rejected(app, seeded, register_doc):
    document = register_doc()
    with pytest.raises(InvalidTransitionError):
        transition_status(document.id, "lost")


def test_archive_resolved_document_once(app, seeded, register_doc):
    document = _resolve(register_doc().id)

    record = archive(document.id, "A-12", "10 ani", "Dulap 3", seeded["archivist"])

    assert record.archive_indicator == "A-12"
    assert get_document(document.id).status == DocumentStatus.ARCHIVED
    with pytest.raises(AlreadyArchivedError):
        archive(document.id, "A-13", "permanent")
    assert ArchiveRecord.query.filter_by(document_id=document.id).count() == 1


def test_archive_requires_resolution(app, seeded, register_doc):
    document = register_doc()
    transition_status(document.id, "in_work")

    with pytest.raises(NotResolvableError):
        archive(document.id, "A-12", "10 ani")
    assert ArchiveRecord.query.count() == 0


def test_archive_requires_indicator_and_term(app, seeded, register_doc):
    document = _resolve(register_doc().id)
    with pytest.raises(InvalidConfigError):
        archive(document.id, "", "10 ani")
    with pytest.raises(InvalidConfigError):
        archive(document.id, "A-12", "  ")


def test_configured_categories_archive_without_resolution(app, seeded, register_doc):
    app.config["REGISTRY_ARCHIVE_SKIP_RESOLVED"] = frozenset({"INTERNAL"})
    internal = register_doc(category="internal")
    incoming = register_doc(category="incoming")
    draft = create_draft(seeded["annual_config"], seeded["psn"], "internal", "Ciorna")

    archive(internal.id, "I-1", "5 ani")

    assert get_document(internal.id).status == DocumentStatus.ARCHIVED
    with pytest.raises(NotResolvableError):
        archive(incoming.id, "I-2", "5 ani")
    with pytest.raises(NotResolvableError):
        archive(draft.id, "I-3", "5 ani")


def test_connect_documents(app, seeded, register_doc):
    request_doc = register_doc(subject="Cerere certificat")
    reply = register_doc(subject="Raspuns certificat", category="outgoing")

    connection = connect(reply.id, request_doc.id, "response", seeded["secretary"])

    assert connection.connection_type.value == "response"
    assert [item.id for item in list_connections(request_doc.id)] == [connection.id]
    assert [item.id for item in list_connections(reply.id)] == [connection.id]

    with pytest.raises(DuplicateConnectionError):
        connect(request_doc.id, reply.id, "response")
    other_kind = connect(request_doc.id, reply.id, "related")
    assert other_kind.id != connection.id


def test_connect_rejects_self_and_unregistered(app, seeded, register_doc):
    document = register_doc()
    draft = create_draft(seeded["annual_config"], seeded["psn"], "incoming", "Ciorna")

    with pytest.raises(SelfConnectionError):
        connect(document.id, document.id, "related")
    with pytest.raises(UnregisteredDocumentError):
        connect(document.id, draft.id, "related")
    with pytest.raises(DocumentNotFoundError):
        connect(document.id, 9999, "related")


def test_soft_delete_hides_document_but_keeps_history(app, seeded, register_doc):
    document = register_doc()

    mark_deleted(document.id, seeded["secretary"])

    with pytest.raises(DocumentNotFoundError):
        get_document(document.id)
    assert db.session.get(DocumentEntry, document.id).is_deleted
    assert search_documents({})["total"] == 0
    assert search_documents({}, include_deleted=True)["total"] == 1
    types = [item.event_type for item in document_events(document.id)]
    assert types[-1] == DocumentEventType.DELETED


def test_search_filters_and_paginates(app, seeded, register_doc):
    for index in range(5):
        register_doc(subject=f"Cerere botez {index}", registration_date=date(2024, 4, 1))
    register_doc(subject="Raport financiar", category="outgoing", registration_date=date(2025, 1, 10))
    transition_status(register_doc(subject="Cerere cununie").id, "in_work")

    assert search_documents({"search": "botez"})["total"] == 5
    assert search_documents({"search": "OUT-2025"})["total"] == 1
    assert search_documents({"year": "2024"})["total"] == 5
    assert search_documents({"document_category": "outgoing"})["total"] == 1
    assert search_documents({"status": "in_work"})["total"] == 1
    assert search_documents({"organization_unit_id": str(seeded["pad"])})["total"] == 0
    assert search_documents({"year": "abc"})["total"] == 0

    page = search_documents({"search": "botez"}, page=2, page_size=2)
    assert page["page"] == 2
    assert page["pages"] == 3
    assert len(page["rows"]) == 2


def test_overdue_lists_open_documents_past_their_deadline(app, seeded, register_doc):
    late = register_doc(subject="Cerere veche", due_date=date(2024, 3, 1))
    later = register_doc(subject="Cerere in lucru", due_date=date(2024, 3, 20))
    transition_status(later.id, "in_work")
    done = register_doc(subject="Cerere rezolvata", due_date=date(2024, 2, 1))
    _resolve(done.id)
    register_doc(subject="Fara termen")
    register_doc(subject="Termen viitor", due_date=date(2024, 6, 1))
    removed = register_doc(subject="Stearsa", due_date=date(2024, 1, 5))
    mark_deleted(removed.id)
    other_unit = register(
        seeded["global_config"],
        seeded["arh"],
        "internal",
        "Circulara restanta",
        due_date=date(2024, 2, 10),
    )

    overdue = overdue_documents(today=date(2024, 4, 1))

    assert [item.id for item in overdue] == [other_unit.id, late.id, later.id]
    assert [item.id for item in overdue_documents(seeded["psn"], date(2024, 4, 1))] == [late.id, later.id]
    assert overdue_documents(today=date(2024, 3, 1)) == [other_unit]
