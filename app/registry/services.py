from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import and_, func, inspect, or_
from sqlalchemy.exc import IntegrityError

from app.core.extensions import db
from app.core.models import (
    ArchiveRecord,
    ConnectionType,
    DocumentCategory,
    DocumentConnection,
    DocumentEntry,
    DocumentEvent,
    DocumentEventType,
    DocumentPriority,
    DocumentStatus,
    OrganizationUnit,
    RegistrationConfig,
    utcnow,
)
from app.core.utils import coerce_enum, iso
from app.registry.errors import (
    AlreadyArchivedError,
    DocumentNotFoundError,
    DuplicateConnectionError,
    InvalidActionError,
    InvalidConfigError,
    InvalidTransitionError,
    NotResolvableError,
    SelfConnectionError,
    UnregisteredDocumentError,
)
from app.registry.numbering import format_number, next_number, resolve_scope

logger = logging.getLogger(__name__)

STATUS_ORDER: tuple[DocumentStatus, ...] = (
    DocumentStatus.DRAFT,
    DocumentStatus.REGISTERED,
    DocumentStatus.IN_WORK,
    DocumentStatus.DISTRIBUTED,
    DocumentStatus.RESOLVED,
    DocumentStatus.ARCHIVED,
)

STATUS_TRANSITIONS: dict[DocumentStatus, set[DocumentStatus]] = {
    DocumentStatus.DRAFT: {DocumentStatus.REGISTERED, DocumentStatus.CANCELLED},
    DocumentStatus.REGISTERED: {DocumentStatus.IN_WORK, DocumentStatus.CANCELLED},
    DocumentStatus.IN_WORK: {DocumentStatus.DISTRIBUTED, DocumentStatus.CANCELLED},
    DocumentStatus.DISTRIBUTED: {DocumentStatus.RESOLVED, DocumentStatus.CANCELLED},
    # RESOLVED -> ARCHIVED only happens through archive()
    DocumentStatus.RESOLVED: {DocumentStatus.CANCELLED},
    DocumentStatus.ARCHIVED: set(),
    DocumentStatus.CANCELLED: set(),
}

CLOSED_STATUSES = frozenset({DocumentStatus.ARCHIVED, DocumentStatus.CANCELLED})


@dataclass
class DocumentDraft:
    subject: str
    sender_name: str | None = None
    recipient_name: str | None = None
    description: str = ""
    priority: DocumentPriority = DocumentPriority.NORMAL
    due_date: date | None = None


def parse_category(value) -> DocumentCategory:
    return coerce_enum(DocumentCategory, value, InvalidConfigError, "document category")


def parse_status(value) -> DocumentStatus:
    return coerce_enum(DocumentStatus, value, InvalidTransitionError, "document status")


def parse_connection_type(value) -> ConnectionType:
    return coerce_enum(ConnectionType, value, InvalidActionError, "connection type")


def status_rank(status: DocumentStatus) -> int:
    return STATUS_ORDER.index(status)


def log_document_event(
    document_id: int,
    event_type: DocumentEventType,
    details: str,
    actor_id: int | None,
    step_id: int | None = None,
) -> None:
    db.session.add(
        DocumentEvent(
            document_id=document_id,
            step_id=step_id,
            event_type=event_type,
            details=details,
            actor_id=actor_id,
        )
    )


def document_by_id(document_id: int, include_deleted: bool = False) -> DocumentEntry:
    query = DocumentEntry.query.filter(DocumentEntry.id == document_id)
    if not include_deleted:
        query = query.filter(DocumentEntry.deleted_at.is_(None))
    document = query.first()
    if not document:
        raise DocumentNotFoundError(f"Document {document_id} not found")
    return document


def get_document(document_id: int) -> DocumentEntry:
    return document_by_id(document_id)


def _registration_config_for(config_id: int, organization_unit_id: int) -> RegistrationConfig:
    config = db.session.get(RegistrationConfig, config_id)
    if not config:
        raise InvalidConfigError(f"Registration config {config_id} not found")
    if not config.is_active:
        raise InvalidConfigError(f"Registration config {config_id} is inactive")
    if not (config.name or "").strip() or config.starting_number is None or config.resets_annually is None:
        raise InvalidConfigError(f"Registration config {config_id} is incomplete")
    if config.starting_number < 0:
        raise InvalidConfigError("Starting number must be >= 0")
    if config.organization_unit_id is not None and config.organization_unit_id != organization_unit_id:
        raise InvalidConfigError(
            f"Registration config {config_id} belongs to unit {config.organization_unit_id}, "
            f"not {organization_unit_id}"
        )
    unit = db.session.get(OrganizationUnit, organization_unit_id)
    if not unit:
        raise InvalidConfigError(f"Organization unit {organization_unit_id} not found")
    return config


def _new_entry(
    config_id: int,
    organization_unit_id: int,
    category,
    draft: DocumentDraft,
    actor_id: int | None,
) -> tuple[DocumentEntry, RegistrationConfig]:
    subject = (draft.subject or "").strip()
    if not subject:
        raise InvalidConfigError("Subject is required")
    config = _registration_config_for(config_id, organization_unit_id)
    document = DocumentEntry(
        registration_config_id=config.id,
        organization_unit_id=organization_unit_id,
        document_category=parse_category(category),
        subject=subject,
        sender_name=draft.sender_name,
        recipient_name=draft.recipient_name,
        description=draft.description or "",
        priority=coerce_enum(DocumentPriority, draft.priority, InvalidConfigError, "priority"),
        due_date=draft.due_date,
        status=DocumentStatus.DRAFT,
        created_by=actor_id,
        updated_by=actor_id,
    )
    return document, config


def _assign_number(
    document: DocumentEntry,
    config: RegistrationConfig,
    registration_date: date | None = None,
) -> None:
    reg_date = registration_date or utcnow().date()
    scope = resolve_scope(config, document.organization_unit_id, document.document_category, reg_date.year)
    number = next_number(scope, config.starting_number)
    # from here on the number is burned whatever happens to this document
    if inspect(document).persistent:
        # next_number committed; reload so status history keeps the previous value
        db.session.refresh(document)
    document.document_number = number
    document.year = reg_date.year
    document.numbering_year = scope.counter_year
    document.registration_date = reg_date
    document.formatted_number = format_number(number, reg_date.year, document.document_category)


def register(
    config_id: int,
    organization_unit_id: int,
    category,
    subject: str,
    actor_id: int | None = None,
    *,
    sender_name: str | None = None,
    recipient_name: str | None = None,
    description: str = "",
    priority: DocumentPriority = DocumentPriority.NORMAL,
    due_date: date | None = None,
    registration_date: date | None = None,
) -> DocumentEntry:
    draft = DocumentDraft(
        subject=subject,
        sender_name=sender_name,
        recipient_name=recipient_name,
        description=description,
        priority=priority,
        due_date=due_date,
    )
    document, config = _new_entry(config_id, organization_unit_id, category, draft, actor_id)
    _assign_number(document, config, registration_date)
    document.status = DocumentStatus.REGISTERED
    db.session.add(document)
    db.session.flush()

    log_document_event(
        document.id,
        DocumentEventType.REGISTERED,
        f"Registered as {document.formatted_number}",
        actor_id,
    )
    db.session.commit()
    logger.info("Document %s registered as %s", document.id, document.formatted_number)
    return document


def create_draft(
    config_id: int,
    organization_unit_id: int,
    category,
    subject: str,
    actor_id: int | None = None,
    **fields,
) -> DocumentEntry:
    draft = DocumentDraft(subject=subject, **fields)
    document, _config = _new_entry(config_id, organization_unit_id, category, draft, actor_id)
    db.session.add(document)
    db.session.commit()
    logger.info("Draft document %s created", document.id)
    return document


def transition_status(document_id: int, target_status, actor_id: int | None = None) -> DocumentEntry:
    document = document_by_id(document_id)
    current = document.status
    target = parse_status(target_status)
    if current == DocumentStatus.CANCELLED and target == DocumentStatus.CANCELLED:
        return document
    if target == DocumentStatus.ARCHIVED:
        raise InvalidTransitionError("Documents are archived through an archive record")
    if target not in STATUS_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Invalid transition: {current.value} -> {target.value}")

    if current == DocumentStatus.DRAFT and target == DocumentStatus.REGISTERED:
        config = _registration_config_for(document.registration_config_id, document.organization_unit_id)
        _assign_number(document, config)
        log_document_event(
            document.id,
            DocumentEventType.REGISTERED,
            f"Registered as {document.formatted_number}",
            actor_id,
        )

    document.status = target
    document.updated_by = actor_id
    db.session.add(document)
    db.session.commit()
    logger.info("Document %s status %s -> %s", document.id, current.value, target.value)
    return document


def advance_status_to(document: DocumentEntry, target: DocumentStatus, actor_id: int | None) -> bool:
    """Walk ``document`` forward one adjacent status at a time until ``target``.

    Used by the routing engine when a resolution closes a route tree. Closed or
    already-later documents are left alone and ``False`` is returned. The
    caller owns the commit.
    """
    if document.status in CLOSED_STATUSES or document.status == DocumentStatus.DRAFT:
        return False
    if status_rank(document.status) >= status_rank(target):
        return False
    while document.status != target:
        following = STATUS_ORDER[status_rank(document.status) + 1]
        if following not in STATUS_TRANSITIONS[document.status]:
            raise InvalidTransitionError(f"Invalid transition: {document.status.value} -> {following.value}")
        document.status = following
        document.updated_by = actor_id
        db.session.add(document)
        db.session.flush()
    return True


def _archive_allowed_without_resolution(category: DocumentCategory) -> bool:
    skip = current_app.config.get("REGISTRY_ARCHIVE_SKIP_RESOLVED") or ()
    return category.name in skip


def archive(
    document_id: int,
    archive_indicator: str,
    archive_term: str,
    archive_location: str | None = None,
    actor_id: int | None = None,
) -> ArchiveRecord:
    document = document_by_id(document_id)
    existing = ArchiveRecord.query.filter_by(document_id=document.id).first()
    if existing or document.status == DocumentStatus.ARCHIVED:
        raise AlreadyArchivedError(f"Document {document.id} is already archived")
    if document.status == DocumentStatus.CANCELLED:
        raise InvalidTransitionError(f"Document {document.id} is cancelled")
    if status_rank(document.status) < status_rank(DocumentStatus.RESOLVED):
        skip_allowed = _archive_allowed_without_resolution(document.document_category)
        if not skip_allowed or not document.is_registered:
            raise NotResolvableError(
                f"Document {document.id} must be resolved before archiving (status {document.status.value})"
            )

    indicator = (archive_indicator or "").strip()
    term = (archive_term or "").strip()
    if not indicator or not term:
        raise InvalidConfigError("Archive indicator and term are required")

    record = ArchiveRecord(
        document_id=document.id,
        archive_indicator=indicator,
        archive_term=term,
        archive_location=(archive_location or "").strip() or None,
        archived_by=actor_id,
    )
    document.status = DocumentStatus.ARCHIVED
    document.updated_by = actor_id
    db.session.add_all([record, document])
    log_document_event(
        document.id,
        DocumentEventType.ARCHIVED,
        f"Archived {indicator} / {term}",
        actor_id,
    )
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise AlreadyArchivedError(f"Document {document_id} is already archived") from exc
    logger.info("Document %s archived (%s, %s)", document.id, indicator, term)
    return record


def connect(
    document_id: int,
    related_document_id: int,
    connection_type,
    actor_id: int | None = None,
) -> DocumentConnection:
    if document_id == related_document_id:
        raise SelfConnectionError("A document cannot be connected to itself")
    kind = parse_connection_type(connection_type)
    document = document_by_id(document_id)
    related = document_by_id(related_document_id)
    for doc in (document, related):
        if not doc.is_registered:
            raise UnregisteredDocumentError(f"Document {doc.id} has no registration number yet")

    duplicate = DocumentConnection.query.filter(
        DocumentConnection.connection_type == kind,
        or_(
            and_(
                DocumentConnection.document_id == document.id,
                DocumentConnection.related_document_id == related.id,
            ),
            and_(
                DocumentConnection.document_id == related.id,
                DocumentConnection.related_document_id == document.id,
            ),
        ),
    ).first()
    if duplicate:
        raise DuplicateConnectionError(
            f"Documents {document.id} and {related.id} are already connected as {kind.value}"
        )

    connection = DocumentConnection(
        document_id=document.id,
        related_document_id=related.id,
        connection_type=kind,
        created_by=actor_id,
    )
    db.session.add(connection)
    log_document_event(
        document.id,
        DocumentEventType.CONNECTED,
        f"{kind.value} -> {related.formatted_number}",
        actor_id,
    )
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise DuplicateConnectionError(
            f"Documents {document_id} and {related_document_id} are already connected as {kind.value}"
        ) from exc
    logger.info("Document %s connected to %s (%s)", document_id, related_document_id, kind.value)
    return connection


def mark_deleted(document_id: int, actor_id: int | None = None) -> DocumentEntry:
    document = document_by_id(document_id)
    document.deleted_at = utcnow()
    document.updated_by = actor_id
    db.session.add(document)
    log_document_event(document.id, DocumentEventType.DELETED, "Marked as deleted", actor_id)
    db.session.commit()
    logger.info("Document %s marked as deleted", document.id)
    return document


def list_connections(document_id: int) -> list[DocumentConnection]:
    document = document_by_id(document_id)
    return (
        DocumentConnection.query.filter(
            or_(
                DocumentConnection.document_id == document.id,
                DocumentConnection.related_document_id == document.id,
            )
        )
        .order_by(DocumentConnection.created_at.asc(), DocumentConnection.id.asc())
        .all()
    )


def document_events(document_id: int) -> list[DocumentEvent]:
    document = document_by_id(document_id, include_deleted=True)
    return (
        DocumentEvent.query.filter_by(document_id=document.id)
        .order_by(DocumentEvent.event_at.asc(), DocumentEvent.id.asc())
        .all()
    )


def page_bounds(page: int, page_size: int | None) -> tuple[int, int]:
    default_size = current_app.config.get("REGISTRY_PAGE_SIZE", 20)
    max_size = current_app.config.get("REGISTRY_MAX_PAGE_SIZE", 100)
    safe_page = page if page and page > 0 else 1
    safe_size = max(1, min(page_size or default_size, max_size))
    return safe_page, safe_size


def search_documents(
    filters: dict[str, str],
    page: int = 1,
    page_size: int | None = None,
    include_deleted: bool = False,
) -> dict[str, object]:
    query = DocumentEntry.query
    if not include_deleted:
        query = query.filter(DocumentEntry.deleted_at.is_(None))

    unit_id = (filters.get("organization_unit_id") or "").strip()
    if unit_id:
        if not unit_id.isdigit():
            return _empty_page(page, page_size)
        query = query.filter(DocumentEntry.organization_unit_id == int(unit_id))
    config_id = (filters.get("registration_config_id") or "").strip()
    if config_id:
        if not config_id.isdigit():
            return _empty_page(page, page_size)
        query = query.filter(DocumentEntry.registration_config_id == int(config_id))
    year = (filters.get("year") or "").strip()
    if year:
        if not year.isdigit():
            return _empty_page(page, page_size)
        query = query.filter(DocumentEntry.year == int(year))

    category = (filters.get("document_category") or "").strip().lower()
    if category:
        query = query.filter(DocumentEntry.document_category == parse_category(category))
    status = (filters.get("status") or "").strip().lower()
    if status:
        query = query.filter(DocumentEntry.status == parse_status(status))
    priority = (filters.get("priority") or "").strip().lower()
    if priority:
        try:
            query = query.filter(DocumentEntry.priority == DocumentPriority(priority))
        except ValueError:
            return _empty_page(page, page_size)

    text = (filters.get("search") or "").strip()
    if text:
        like = f"%{text}%"
        query = query.filter(
            or_(
                DocumentEntry.subject.ilike(like),
                DocumentEntry.sender_name.ilike(like),
                DocumentEntry.recipient_name.ilike(like),
                DocumentEntry.formatted_number.ilike(like),
            )
        )

    safe_page, safe_size = page_bounds(page, page_size)
    total = query.with_entities(func.count(DocumentEntry.id)).scalar()
    items = (
        query.order_by(DocumentEntry.created_at.desc(), DocumentEntry.id.desc())
        .offset((safe_page - 1) * safe_size)
        .limit(safe_size)
        .all()
    )
    return {
        "rows": items,
        "page": safe_page,
        "page_size": safe_size,
        "total": total,
        "pages": max(1, (total + safe_size - 1) // safe_size),
    }


OVERDUE_STATUSES = (DocumentStatus.REGISTERED, DocumentStatus.IN_WORK, DocumentStatus.DISTRIBUTED)


def overdue_documents(organization_unit_id: int | None = None, today: date | None = None) -> list[DocumentEntry]:
    """Open documents whose due date lies before ``today``, oldest deadline first."""
    cutoff = today or utcnow().date()
    query = DocumentEntry.query.filter(
        DocumentEntry.deleted_at.is_(None),
        DocumentEntry.status.in_(OVERDUE_STATUSES),
        DocumentEntry.due_date.is_not(None),
        DocumentEntry.due_date < cutoff,
    )
    if organization_unit_id is not None:
        query = query.filter(DocumentEntry.organization_unit_id == organization_unit_id)
    return query.order_by(DocumentEntry.due_date.asc(), DocumentEntry.id.asc()).all()


def _empty_page(page: int, page_size: int | None) -> dict[str, object]:
    safe_page, safe_size = page_bounds(page, page_size)
    return {"rows": [], "page": safe_page, "page_size": safe_size, "total": 0, "pages": 1}


def document_payload(document: DocumentEntry) -> dict[str, object]:
    return {
        "id": document.id,
        "registration_config_id": document.registration_config_id,
        "organization_unit_id": document.organization_unit_id,
        "document_number": document.document_number,
        "year": document.year,
        "formatted_number": document.formatted_number,
        "document_category": document.document_category.value,
        "subject": document.subject,
        "sender_name": document.sender_name,
        "recipient_name": document.recipient_name,
        "description": document.description,
        "priority": document.priority.value,
        "status": document.status.value,
        "registration_date": iso(document.registration_date),
        "due_date": iso(document.due_date),
        "created_by": document.created_by,
        "created_at": iso(document.created_at),
        "updated_at": iso(document.updated_at),
        "deleted_at": iso(document.deleted_at),
    }


def archive_payload(record: ArchiveRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "document_id": record.document_id,
        "archive_indicator": record.archive_indicator,
        "archive_term": record.archive_term,
        "archive_location": record.archive_location,
        "archived_by": record.archived_by,
        "archived_at": iso(record.archived_at),
    }


def connection_payload(connection: DocumentConnection) -> dict[str, object]:
    return {
        "id": connection.id,
        "document_id": connection.document_id,
        "related_document_id": connection.related_document_id,
        "connection_type": connection.connection_type.value,
        "created_by": connection.created_by,
        "created_at": iso(connection.created_at),
    }


def event_payload(item: DocumentEvent) -> dict[str, object]:
    return {
        "id": item.id,
        "document_id": item.document_id,
        "step_id": item.step_id,
        "event_type": item.event_type.value,
        "event_at": iso(item.event_at),
        "details": item.details,
        "actor_id": item.actor_id,
    }