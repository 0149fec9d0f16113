from __future__ import annotations

from datetime import date, datetime


def coerce_enum(enum_cls, value, error_cls, label: str):
    if isinstance(value, enum_cls):
        return value
    raw = (value or "").strip().lower() if isinstance(value, str) else value
    try:
        return enum_cls(raw)
    except ValueError as exc:
        raise error_cls(f"Invalid {label}: {value!r}") from exc


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_optional_iso_date(value: str | None) -> date | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid date: {raw}") from exc
