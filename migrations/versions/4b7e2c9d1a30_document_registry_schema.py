"""document registry schema

Revision ID: 4b7e2c9d1a30
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "4b7e2c9d1a30"
down_revision = None
branch_labels = None
depends_on = None


CATEGORY_VALUES = ("INCOMING", "OUTGOING", "INTERNAL")
ENUM_TYPES = (
    "document_event_type",
    "connection_type",
    "resolution_status",
    "step_status",
    "routing_action",
    "document_status",
    "document_priority",
    "document_category",
)


def _category_enum_reused() -> sa.types.TypeEngine:
    # the type itself is created with sequence_counter
    return sa.Enum(*CATEGORY_VALUES, name="document_category").with_variant(
        postgresql.ENUM(*CATEGORY_VALUES, name="document_category", create_type=False),
        "postgresql",
    )


def upgrade():
    op.create_table(
        "organization_unit",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=30), nullable=False),
        sa.Column("kind", sa.String(length=30), nullable=False, server_default="parish"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "registration_config",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_unit_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("resets_annually", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("starting_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("starting_number >= 0", name="ck_registration_config_starting_number"),
        sa.ForeignKeyConstraint(["organization_unit_id"], ["organization_unit.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("registration_config", schema=None) as batch_op:
        batch_op.create_index(
            batch_op.f("ix_registration_config_organization_unit_id"),
            ["organization_unit_id"],
            unique=False,
        )

    op.create_table(
        "sequence_counter",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_unit_id", sa.Integer(), nullable=False),
        sa.Column("document_category", sa.Enum(*CATEGORY_VALUES, name="document_category"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("current_value >= 0", name="ck_sequence_counter_value"),
        sa.ForeignKeyConstraint(["organization_unit_id"], ["organization_unit.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_unit_id",
            "document_category",
            "year",
            name="uq_sequence_counter_scope",
        ),
    )

    op.create_table(
        "document_entry",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("registration_config_id", sa.Integer(), nullable=False),
        sa.Column("organization_unit_id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.Integer(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("numbering_year", sa.Integer(), nullable=True),
        sa.Column("formatted_number", sa.String(length=40), nullable=True),
        sa.Column("document_category", _category_enum_reused(), nullable=False),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("recipient_name", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "priority",
            sa.Enum("LOW", "NORMAL", "HIGH", "URGENT", name="document_priority"),
            nullable=False,
            server_default="NORMAL",
        ),
        sa.Column(
            "status",
            sa.Enum(
                "DRAFT",
                "REGISTERED",
                "IN_WORK",
                "DISTRIBUTED",
                "RESOLVED",
                "ARCHIVED",
                "CANCELLED",
                name="document_status",
            ),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("registration_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["created_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["organization_unit_id"], ["organization_unit.id"]),
        sa.ForeignKeyConstraint(["registration_config_id"], ["registration_config.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "organization_unit_id",
            "document_category",
            "numbering_year",
            "document_number",
            name="uq_document_entry_scope_number",
        ),
    )
    op.create_index(
        "ix_document_entry_unit_status",
        "document_entry",
        ["organization_unit_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_document_entry_config_year",
        "document_entry",
        ["registration_config_id", "year"],
        unique=False,
    )

    op.create_table(
        "routing_step",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("parent_step_id", sa.Integer(), nullable=True),
        sa.Column("from_actor_id", sa.Integer(), nullable=False),
        sa.Column("to_actor_id", sa.Integer(), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "SENT",
                "FORWARDED",
                "RETURNED",
                "APPROVED",
                "REJECTED",
                "CANCELLED",
                name="routing_action",
            ),
            nullable=False,
        ),
        sa.Column(
            "step_status",
            sa.Enum("PENDING", "COMPLETED", name="step_status"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column(
            "resolution_status",
            sa.Enum("APPROVED", "REJECTED", name="resolution_status"),
            nullable=True,
        ),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=False, server_default=""),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "(step_status = 'COMPLETED' AND completed_at IS NOT NULL)"
            " OR (step_status = 'PENDING' AND completed_at IS NULL)",
            name="ck_routing_step_completed_at",
        ),
        sa.CheckConstraint(
            "resolution_status IS NULL OR action IN ('APPROVED', 'REJECTED')",
            name="ck_routing_step_resolution",
        ),
        sa.ForeignKeyConstraint(["document_id"], ["document_entry.id"]),
        sa.ForeignKeyConstraint(["from_actor_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["parent_step_id"], ["routing_step.id"]),
        sa.ForeignKeyConstraint(["to_actor_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("routing_step", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_routing_step_document_id"), ["document_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_routing_step_parent_step_id"), ["parent_step_id"], unique=False)
    op.create_index(
        "ix_routing_step_document_status",
        "routing_step",
        ["document_id", "step_status"],
        unique=False,
    )

    op.create_table(
        "document_connection",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("related_document_id", sa.Integer(), nullable=False),
        sa.Column(
            "connection_type",
            sa.Enum("RELATED", "RESPONSE", "ATTACHMENT", "AMENDMENT", name="connection_type"),
            nullable=False,
        ),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("document_id <> related_document_id", name="ck_document_connection_not_self"),
        sa.ForeignKeyConstraint(["created_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["document_entry.id"]),
        sa.ForeignKeyConstraint(["related_document_id"], ["document_entry.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "document_id",
            "related_document_id",
            "connection_type",
            name="uq_document_connection_pair_type",
        ),
    )
    with op.batch_alter_table("document_connection", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_document_connection_document_id"), ["document_id"], unique=False)
        batch_op.create_index(
            batch_op.f("ix_document_connection_related_document_id"),
            ["related_document_id"],
            unique=False,
        )

    op.create_table(
        "archive_record",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("archive_indicator", sa.String(length=60), nullable=False),
        sa.Column("archive_term", sa.String(length=60), nullable=False),
        sa.Column("archive_location", sa.String(length=255), nullable=True),
        sa.Column("archived_by", sa.Integer(), nullable=True),
        sa.Column("archived_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["archived_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["document_entry.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id"),
    )

    op.create_table(
        "document_event",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("step_id", sa.Integer(), nullable=True),
        sa.Column(
            "event_type",
            sa.Enum(
                "REGISTERED",
                "STATUS_CHANGED",
                "ROUTE_OPENED",
                "ROUTE_CLOSED",
                "ARCHIVED",
                "CONNECTED",
                "DELETED",
                name="document_event_type",
            ),
            nullable=False,
        ),
        sa.Column("event_at", sa.DateTime(), nullable=False),
        sa.Column("details", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["actor_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["document_id"], ["document_entry.id"]),
        sa.ForeignKeyConstraint(["step_id"], ["routing_step.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_document_event_document_at",
        "document_event",
        ["document_id", "event_at"],
        unique=False,
    )


def downgrade():
    op.drop_index("ix_document_event_document_at", table_name="document_event")
    op.drop_table("document_event")
    op.drop_table("archive_record")
    with op.batch_alter_table("document_connection", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_document_connection_related_document_id"))
        batch_op.drop_index(batch_op.f("ix_document_connection_document_id"))
    op.drop_table("document_connection")
    op.drop_index("ix_routing_step_document_status", table_name="routing_step")
    with op.batch_alter_table("routing_step", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_routing_step_parent_step_id"))
        batch_op.drop_index(batch_op.f("ix_routing_step_document_id"))
    op.drop_table("routing_step")
    op.drop_index("ix_document_entry_config_year", table_name="document_entry")
    op.drop_index("ix_document_entry_unit_status", table_name="document_entry")
    op.drop_table("document_entry")
    op.drop_table("sequence_counter")
    with op.batch_alter_table("registration_config", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_registration_config_organization_unit_id"))
    op.drop_table("registration_config")
    op.drop_table("user_account")
    op.drop_table("organization_unit")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in ENUM_TYPES:
            op.execute(sa.text(f"DROP TYPE IF EXISTS {enum_name}"))
