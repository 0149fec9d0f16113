from __future__ import annotations

import threading
from datetime import date

import pytest

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import (
    DocumentCategory,
    DocumentEntry,
    OrganizationUnit,
    RegistrationConfig,
    SequenceCounter,
    seed_demo_data,
)
from app.registry import services
from app.registry.errors import InvalidConfigError
from app.registry.numbering import (
    NumberingScope,
    current_value,
    format_number,
    next_number,
    resolve_scope,
)
from app.registry.services import register


def test_format_number_pads_and_prefixes_by_category():
    assert format_number(1, 2024, DocumentCategory.INCOMING) == "IN-2024-0001"
    assert format_number(57, 2025, DocumentCategory.OUTGOING) == "OUT-2025-0057"
    assert format_number(12345, 2025, DocumentCategory.INTERNAL) == "INT-2025-12345"


def test_first_number_uses_starting_number_then_increments(app, seeded):
    scope = NumberingScope(seeded["psn"], DocumentCategory.INCOMING, 2024)
    assert current_value(scope) is None
    assert next_number(scope, starting_number=5) == 5
    assert next_number(scope, starting_number=5) == 6
    assert current_value(scope) == 6


def test_negative_starting_number_is_rejected(app, seeded):
    scope = NumberingScope(seeded["psn"], DocumentCategory.INCOMING, 2024)
    with pytest.raises(InvalidConfigError):
        next_number(scope, starting_number=-1)
    assert SequenceCounter.query.count() == 0


def test_annual_register_restarts_each_year(app, seeded, register_doc):
    last_2024 = None
    for day in (1, 2, 3):
        last_2024 = register_doc(registration_date=date(2024, 12, day))
    first_2025 = register_doc(registration_date=date(2025, 1, 2))

    assert last_2024.document_number == 3
    assert last_2024.formatted_number == "IN-2024-0003"
    assert first_2025.document_number == 1
    assert first_2025.year == 2025
    assert first_2025.formatted_number == "IN-2025-0001"


def test_continuous_register_ignores_year(app, seeded):
    with app.app_context():
        first = register(
            seeded["continuous_config"],
            seeded["pad"],
            "outgoing",
            "Adresa catre protopopiat",
            registration_date=date(2024, 12, 30),
        )
        second = register(
            seeded["continuous_config"],
            seeded["pad"],
            "outgoing",
            "Raport anual",
            registration_date=date(2025, 1, 3),
        )

        assert (first.document_number, second.document_number) == (100, 101)
        assert second.formatted_number == "OUT-2025-0101"
        config = db.session.get(RegistrationConfig, seeded["continuous_config"])
        scope = resolve_scope(config, seeded["pad"], DocumentCategory.OUTGOING, 2025)
        assert scope.year is None
        assert current_value(scope) == 101


def test_annual_and_continuous_registers_of_one_unit_coexist(app, seeded, register_doc):
    continuous = RegistrationConfig(
        organization_unit_id=seeded["psn"],
        name="Registru continuu PSN",
        resets_annually=False,
        starting_number=1,
    )
    db.session.add(continuous)
    db.session.commit()

    annual_doc = register_doc(registration_date=date(2024, 4, 2))
    continuous_doc = register(
        continuous.id,
        seeded["psn"],
        "incoming",
        "Cerere din registrul continuu",
        registration_date=date(2024, 4, 2),
    )

    assert annual_doc.document_number == continuous_doc.document_number == 1
    assert (annual_doc.year, continuous_doc.year) == (2024, 2024)
    assert (annual_doc.numbering_year, continuous_doc.numbering_year) == (2024, 0)
    assert DocumentEntry.query.filter_by(organization_unit_id=seeded["psn"]).count() == 2


def test_categories_and_units_number_independently(app, seeded, register_doc):
    incoming = register_doc(category="incoming", registration_date=date(2024, 3, 1))
    outgoing = register_doc(category="outgoing", registration_date=date(2024, 3, 1))
    template_psn = register(
        seeded["global_config"],
        seeded["psn"],
        "internal",
        "Proces verbal consiliu parohial",
        registration_date=date(2024, 3, 1),
    )
    template_arh = register(
        seeded["global_config"],
        seeded["arh"],
        "internal",
        "Circulara eparhiala",
        registration_date=date(2024, 3, 1),
    )

    assert incoming.document_number == 1
    assert outgoing.document_number == 1
    assert template_psn.document_number == 1
    assert template_arh.document_number == 1
    assert template_arh.organization_unit_id == seeded["arh"]


def test_config_of_another_unit_is_rejected(app, seeded):
    with pytest.raises(InvalidConfigError):
        register(seeded["annual_config"], seeded["pad"], "incoming", "Cerere")
    assert SequenceCounter.query.count() == 0


def test_inactive_config_is_rejected(app, seeded):
    config = db.session.get(RegistrationConfig, seeded["annual_config"])
    config.is_active = False
    db.session.commit()

    with pytest.raises(InvalidConfigError):
        register(seeded["annual_config"], seeded["psn"], "incoming", "Cerere")


def test_unknown_category_is_rejected(app, seeded):
    with pytest.raises(InvalidConfigError):
        register(seeded["annual_config"], seeded["psn"], "fax", "Cerere")


def test_number_is_burned_when_entry_insert_fails(app, seeded, register_doc, monkeypatch):
    def broken_format(*_args, **_kwargs):
        raise RuntimeError("storage unavailable")

    with monkeypatch.context() as patch:
        patch.setattr(services, "format_number", broken_format)
        with pytest.raises(RuntimeError):
            register_doc(registration_date=date(2024, 6, 1))
    db.session.rollback()

    scope = NumberingScope(seeded["psn"], DocumentCategory.INCOMING, 2024)
    assert current_value(scope) == 1

    document = register_doc(registration_date=date(2024, 6, 2))
    assert document.document_number == 2


def test_concurrent_registrations_never_duplicate(tmp_path):
    class FileConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'registry.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        unit_id = OrganizationUnit.query.filter_by(code="PSN").one().id
        config_id = RegistrationConfig.query.filter_by(organization_unit_id=unit_id).one().id

    issued: list[int] = []
    failures: list[Exception] = []
    lock = threading.Lock()

    def worker(index: int):
        with app.app_context():
            try:
                document = register(
                    config_id,
                    unit_id,
                    "incoming",
                    f"Cerere {index}",
                    registration_date=date(2024, 9, 1),
                )
                value = document.document_number
            except Exception as exc:
                with lock:
                    failures.append(exc)
                return
            finally:
                db.session.remove()
            with lock:
                issued.append(value)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    assert sorted(issued) == list(range(1, 51))
    with app.app_context():
        scope = NumberingScope(unit_id, DocumentCategory.INCOMING, 2024)
        assert current_value(scope) == 50
        db.drop_all()
        db.engine.dispose()
