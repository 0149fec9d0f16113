from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, event, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Counter year used by scopes whose configuration never resets.
CONTINUOUS_SCOPE_YEAR = 0


class DocumentCategory(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    INTERNAL = "internal"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    REGISTERED = "registered"
    IN_WORK = "in_work"
    DISTRIBUTED = "distributed"
    RESOLVED = "resolved"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"


class DocumentPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class RoutingAction(str, Enum):
    SENT = "sent"
    FORWARDED = "forwarded"
    RETURNED = "returned"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ResolutionStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ConnectionType(str, Enum):
    RELATED = "related"
    RESPONSE = "response"
    ATTACHMENT = "attachment"
    AMENDMENT = "amendment"


class DocumentEventType(str, Enum):
    REGISTERED = "registered"
    STATUS_CHANGED = "status_changed"
    ROUTE_OPENED = "route_opened"
    ROUTE_CLOSED = "route_closed"
    ARCHIVED = "archived"
    CONNECTED = "connected"
    DELETED = "deleted"


class OrganizationUnit(db.Model):
    # parish, deanery or diocese owning its own registers
    __tablename__ = "organization_unit"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)
    code: Mapped[str] = mapped_column(db.String(30), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(db.String(30), nullable=False, default="parish")
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    registration_configs = relationship("RegistrationConfig", back_populates="organization_unit")


class User(db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class RegistrationConfig(db.Model):
    __tablename__ = "registration_config"
    __table_args__ = (
        CheckConstraint("starting_number >= 0", name="ck_registration_config_starting_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    # NULL marks a global template usable by any unit
    organization_unit_id: Mapped[int | None] = mapped_column(
        ForeignKey("organization_unit.id"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    resets_annually: Mapped[bool] = mapped_column(default=True, nullable=False)
    starting_number: Mapped[int] = mapped_column(default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    notes: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    organization_unit = relationship("OrganizationUnit", back_populates="registration_configs")

    @property
    def is_global(self) -> bool:
        return self.organization_unit_id is None


class SequenceCounter(db.Model):
    __tablename__ = "sequence_counter"
    __table_args__ = (
        UniqueConstraint(
            "organization_unit_id",
            "document_category",
            "year",
            name="uq_sequence_counter_scope",
        ),
        CheckConstraint("current_value >= 0", name="ck_sequence_counter_value"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_unit_id: Mapped[int] = mapped_column(ForeignKey("organization_unit.id"), nullable=False)
    document_category: Mapped[DocumentCategory] = mapped_column(
        SAEnum(DocumentCategory, name="document_category"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(nullable=False, default=CONTINUOUS_SCOPE_YEAR)
    current_value: Mapped[int] = mapped_column(nullable=False, default=0)
    last_updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class DocumentEntry(db.Model):
    __tablename__ = "document_entry"
    __table_args__ = (
        UniqueConstraint(
            "organization_unit_id",
            "document_category",
            "numbering_year",
            "document_number",
            name="uq_document_entry_scope_number",
        ),
        Index("ix_document_entry_unit_status", "organization_unit_id", "status"),
        Index("ix_document_entry_config_year", "registration_config_id", "year"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    registration_config_id: Mapped[int] = mapped_column(ForeignKey("registration_config.id"), nullable=False)
    organization_unit_id: Mapped[int] = mapped_column(ForeignKey("organization_unit.id"), nullable=False)
    document_number: Mapped[int | None] = mapped_column(nullable=True)
    year: Mapped[int | None] = mapped_column(nullable=True)
    # counter year of the numbering scope: the registration year, or 0 for continuous registers
    numbering_year: Mapped[int | None] = mapped_column(nullable=True)
    formatted_number: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    document_category: Mapped[DocumentCategory] = mapped_column(
        SAEnum(DocumentCategory, name="document_category"),
        nullable=False,
    )
    subject: Mapped[str] = mapped_column(db.String(500), nullable=False)
    sender_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    recipient_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    description: Mapped[str] = mapped_column(db.Text(), nullable=False, default="")
    priority: Mapped[DocumentPriority] = mapped_column(
        SAEnum(DocumentPriority, name="document_priority"),
        nullable=False,
        default=DocumentPriority.NORMAL,
    )
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, name="document_status"),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )
    registration_date: Mapped[date | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    updated_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    registration_config = relationship("RegistrationConfig")
    organization_unit = relationship("OrganizationUnit")
    steps = relationship("RoutingStep", back_populates="document", order_by="RoutingStep.id")
    archive_record = relationship("ArchiveRecord", back_populates="document", uselist=False)
    events = relationship("DocumentEvent", back_populates="document", order_by="DocumentEvent.id")

    @property
    def is_registered(self) -> bool:
        return self.document_number is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class RoutingStep(db.Model):
    __tablename__ = "routing_step"
    __table_args__ = (
        CheckConstraint(
            "(step_status = 'COMPLETED' AND completed_at IS NOT NULL)"
            " OR (step_status = 'PENDING' AND completed_at IS NULL)",
            name="ck_routing_step_completed_at",
        ),
        CheckConstraint(
            "resolution_status IS NULL OR action IN ('APPROVED', 'REJECTED')",
            name="ck_routing_step_resolution",
        ),
        Index("ix_routing_step_document_status", "document_id", "step_status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("document_entry.id"), nullable=False, index=True)
    parent_step_id: Mapped[int | None] = mapped_column(ForeignKey("routing_step.id"), nullable=True, index=True)
    from_actor_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    to_actor_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    action: Mapped[RoutingAction] = mapped_column(
        SAEnum(RoutingAction, name="routing_action"),
        nullable=False,
    )
    step_status: Mapped[StepStatus] = mapped_column(
        SAEnum(StepStatus, name="step_status"),
        nullable=False,
        default=StepStatus.PENDING,
    )
    resolution_status: Mapped[ResolutionStatus | None] = mapped_column(
        SAEnum(ResolutionStatus, name="resolution_status"),
        nullable=True,
    )
    resolution: Mapped[str | None] = mapped_column(db.Text(), nullable=True)
    notes: Mapped[str] = mapped_column(db.String(1000), nullable=False, default="")
    is_expired: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    document = relationship("DocumentEntry", back_populates="steps")
    parent = relationship("RoutingStep", remote_side=[id], uselist=False)

    @property
    def is_root(self) -> bool:
        return self.parent_step_id is None

    @property
    def is_pending(self) -> bool:
        return self.step_status == StepStatus.PENDING


class DocumentConnection(db.Model):
    __tablename__ = "document_connection"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "related_document_id",
            "connection_type",
            name="uq_document_connection_pair_type",
        ),
        CheckConstraint("document_id <> related_document_id", name="ck_document_connection_not_self"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("document_entry.id"), nullable=False, index=True)
    related_document_id: Mapped[int] = mapped_column(ForeignKey("document_entry.id"), nullable=False, index=True)
    connection_type: Mapped[ConnectionType] = mapped_column(
        SAEnum(ConnectionType, name="connection_type"),
        nullable=False,
    )
    created_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    document = relationship("DocumentEntry", foreign_keys=[document_id])
    related_document = relationship("DocumentEntry", foreign_keys=[related_document_id])


class ArchiveRecord(db.Model):
    __tablename__ = "archive_record"

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("document_entry.id"), nullable=False, unique=True)
    archive_indicator: Mapped[str] = mapped_column(db.String(60), nullable=False)
    archive_term: Mapped[str] = mapped_column(db.String(60), nullable=False)
    archive_location: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    archived_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    archived_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    document = relationship("DocumentEntry", back_populates="archive_record")


class DocumentEvent(db.Model):
    __tablename__ = "document_event"
    __table_args__ = (
        Index("ix_document_event_document_at", "document_id", "event_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("document_entry.id"), nullable=False)
    step_id: Mapped[int | None] = mapped_column(ForeignKey("routing_step.id"), nullable=True)
    event_type: Mapped[DocumentEventType] = mapped_column(
        SAEnum(DocumentEventType, name="document_event_type"),
        nullable=False,
    )
    event_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    details: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)

    document = relationship("DocumentEntry", back_populates="events")


@event.listens_for(DocumentEntry, "after_update")
def document_after_update(_mapper, connection, target: DocumentEntry) -> None:
    history = inspect(target).attrs.status.history
    if not history.has_changes():
        return
    previous = history.deleted[0].value if history.deleted and history.deleted[0] else "?"
    connection.execute(
        DocumentEvent.__table__.insert().values(
            document_id=target.id,
            event_type=DocumentEventType.STATUS_CHANGED,
            event_at=utcnow(),
            details=f"{previous} -> {target.status.value}",
            actor_id=target.updated_by,
        )
    )


def seed_demo_data(session) -> None:
    parish = OrganizationUnit(name="Parohia Sf. Nicolae", code="PSN", kind="parish")
    parish_2 = OrganizationUnit(name="Parohia Adormirea Maicii Domnului", code="PAD", kind="parish")
    diocese = OrganizationUnit(name="Arhiepiscopia Demo", code="ARH", kind="diocese")
    session.add_all([parish, parish_2, diocese])
    session.flush()

    session.add_all(
        [
            User(email="secretar@parohie.local", full_name="Secretar Parohie"),
            User(email="paroh@parohie.local", full_name="Preot Paroh"),
            User(email="arhivar@arhiepiscopie.local", full_name="Arhivar Eparhial"),
        ]
    )

    session.add_all(
        [
            RegistrationConfig(
                organization_unit_id=parish.id,
                name="Registru general PSN",
                resets_annually=True,
                starting_number=1,
            ),
            RegistrationConfig(
                organization_unit_id=parish_2.id,
                name="Registru continuu PAD",
                resets_annually=False,
                starting_number=100,
            ),
            RegistrationConfig(
                organization_unit_id=None,
                name="Registru general (sablon)",
                resets_annually=True,
                starting_number=1,
                notes="Sablon global pentru unitatile fara registru propriu",
            ),
        ]
    )
    session.commit()
