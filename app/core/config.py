from __future__ import annotations

import os


def _csv_env(name: str, default: str = "") -> frozenset[str]:
    raw = os.getenv(name, default)
    return frozenset(item.strip().upper() for item in raw.split(",") if item.strip())


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///registry.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    REGISTRY_ROUTING_MAX_DEPTH = int(os.getenv("REGISTRY_ROUTING_MAX_DEPTH", "64"))
    # Document categories (INCOMING/OUTGOING/INTERNAL) archivable without a resolution.
    REGISTRY_ARCHIVE_SKIP_RESOLVED = _csv_env("REGISTRY_ARCHIVE_SKIP_RESOLVED")
    REGISTRY_STALE_ROUTE_DAYS = int(os.getenv("REGISTRY_STALE_ROUTE_DAYS", "30"))
    REGISTRY_PAGE_SIZE = int(os.getenv("REGISTRY_PAGE_SIZE", "20"))
    REGISTRY_MAX_PAGE_SIZE = 100
