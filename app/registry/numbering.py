"""Registration number issuance.

Counters live in ``sequence_counter``, one row per numbering scope. The only
writer of ``current_value`` is :func:`next_number`, which performs the
create-or-increment as a single ``INSERT ... ON CONFLICT DO UPDATE ...
RETURNING`` statement and commits it right away. A number handed out here is
therefore burned even when the caller fails to persist its document: numbers
may skip, they are never issued twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.core.extensions import db
from app.core.models import (
    CONTINUOUS_SCOPE_YEAR,
    DocumentCategory,
    RegistrationConfig,
    SequenceCounter,
    utcnow,
)
from app.registry.errors import InvalidConfigError

logger = logging.getLogger(__name__)

CATEGORY_PREFIX: dict[DocumentCategory, str] = {
    DocumentCategory.INCOMING: "IN",
    DocumentCategory.OUTGOING: "OUT",
    DocumentCategory.INTERNAL: "INT",
}

_UPSERT_BY_DIALECT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class NumberingScope:
    organization_unit_id: int
    document_category: DocumentCategory
    year: int | None = None

    @property
    def counter_year(self) -> int:
        return self.year if self.year is not None else CONTINUOUS_SCOPE_YEAR

    def label(self) -> str:
        year = self.year if self.year is not None else "*"
        return f"unit={self.organization_unit_id}/{self.document_category.value}/{year}"


def resolve_scope(
    config: RegistrationConfig,
    organization_unit_id: int,
    category: DocumentCategory,
    year: int,
) -> NumberingScope:
    """Scope for a registration: the year only counts when the register resets annually."""
    return NumberingScope(
        organization_unit_id=organization_unit_id,
        document_category=category,
        year=year if config.resets_annually else None,
    )


def next_number(scope: NumberingScope, starting_number: int = 1) -> int:
    if starting_number is None or starting_number < 0:
        raise InvalidConfigError("Starting number must be >= 0")

    bind = db.session.get_bind()
    upsert = _UPSERT_BY_DIALECT.get(bind.dialect.name)
    if upsert is None:
        raise RuntimeError(f"Sequence counters are not supported on dialect {bind.dialect.name!r}")

    table = SequenceCounter.__table__
    now = utcnow()
    stmt = upsert(table).values(
        organization_unit_id=scope.organization_unit_id,
        document_category=scope.document_category,
        year=scope.counter_year,
        current_value=starting_number,
        last_updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.organization_unit_id, table.c.document_category, table.c.year],
        set_={
            "current_value": table.c.current_value + 1,
            "last_updated_at": now,
        },
    ).returning(table.c.current_value)

    value = db.session.execute(stmt).scalar_one()
    db.session.commit()
    logger.debug("Issued number %s for scope %s", value, scope.label())
    return value


def current_value(scope: NumberingScope) -> int | None:
    counter = SequenceCounter.query.filter_by(
        organization_unit_id=scope.organization_unit_id,
        document_category=scope.document_category,
        year=scope.counter_year,
    ).first()
    return counter.current_value if counter else None


def format_number(document_number: int, year: int, category: DocumentCategory) -> str:
    return f"{CATEGORY_PREFIX[category]}-{year}-{document_number:04d}"
