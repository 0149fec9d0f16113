from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import OrganizationUnit, RegistrationConfig, User, seed_demo_data


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    REGISTRY_ARCHIVE_SKIP_RESOLVED = frozenset()


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded(app):
    """Ids of the demo units, actors and registers keyed by a short name."""
    units = {unit.code: unit.id for unit in OrganizationUnit.query.all()}
    users = {user.email.split("@")[0]: user.id for user in User.query.all()}
    configs = {config.name: config for config in RegistrationConfig.query.all()}
    return {
        "psn": units["PSN"],
        "pad": units["PAD"],
        "arh": units["ARH"],
        "secretary": users["secretar"],
        "priest": users["paroh"],
        "archivist": users["arhivar"],
        "annual_config": configs["Registru general PSN"].id,
        "continuous_config": configs["Registru continuu PAD"].id,
        "global_config": configs["Registru general (sablon)"].id,
    }


@pytest.fixture
def register_doc(seeded):
    from app.registry.services import register

    def _register(subject="Cerere eliberare certificat de botez", category="incoming", **fields):
        fields.setdefault("actor_id", seeded["secretary"])
        return register(
            seeded["annual_config"],
            seeded["psn"],
            category,
            subject,
            **fields,
        )

    return _register
