import asyncio
from datetime import date, datetime, timedelta, timezone
import time
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.orm import Session

from conftest import memory_engine
from parms_api.core.config import get_settings
from parms_api.core.errors import NotFoundError
from parms_api.db.base import METADATA_BY_STORE
from parms_api.db.federation import BILLING_STORE, PRIMARY_STORE, STAFF_STORE, ConnectionFederator
from parms_api.models.clinical import Appointment, Patient
from parms_api.models.enums import AppointmentStatus
from parms_api.models.federated import BillingRecord, StaffMember
from parms_api.schemas.dashboard import BillingSummary, SectionUnavailable
from parms_api.services import repositories
from parms_api.services.aggregation import AggregationService


def _seed_patient(federator: ConnectionFederator, doctor_ids: list) -> Patient:
    now = datetime.now(timezone.utc)
    with federator.primary().session() as db:
        patient = Patient(mrn="PATTEST00000001", first_name="Ada", last_name="Lovelace", date_of_birth=date(1990, 1, 1))
        db.add(patient)
        db.flush()
        for offset, doctor_id in enumerate(doctor_ids, start=1):
            db.add(
                Appointment(
                    patient_id=patient.id,
                    doctor_id=doctor_id,
                    scheduled_at=now + timedelta(days=offset),
                    status=AppointmentStatus.SCHEDULED,
                )
            )
        # 已取消与已过去的预约不应出现在看板中。
        db.add(
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor_ids[0],
                scheduled_at=now + timedelta(days=9),
                status=AppointmentStatus.CANCELLED,
            )
        )
        db.add(
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor_ids[0],
                scheduled_at=now - timedelta(days=1),
                status=AppointmentStatus.SCHEDULED,
            )
        )
        db.commit()
        db.refresh(patient)
        db.expunge(patient)
        return patient


def _seed_doctors(federator: ConnectionFederator) -> list:
    doctors = [
        StaffMember(id=uuid4(), first_name="Gregory", last_name="House", role="doctor", specialty="Diagnostics"),
        StaffMember(id=uuid4(), first_name="Lisa", last_name="Cuddy", role="doctor", specialty="Endocrinology"),
    ]
    with Session(federator.get(STAFF_STORE).engine) as staff_db:
        staff_db.add_all(doctors)
        staff_db.add(StaffMember(id=uuid4(), first_name="Front", last_name="Desk", role="frontdesk"))
        staff_db.commit()
        return [doctor.id for doctor in doctors]


def _seed_bills(federator: ConnectionFederator, patient_id, amounts_due: list[float]) -> None:
    now = datetime.now(timezone.utc)
    with Session(federator.get(BILLING_STORE).engine) as billing_db:
        for index, amount_due in enumerate(amounts_due):
            billing_db.add(
                BillingRecord(
                    id=uuid4(),
                    patient_id=patient_id,
                    billed_at=now - timedelta(days=index),
                    amount=100.0,
                    amount_due=amount_due,
                    status="open" if amount_due else "paid",
                )
            )
        billing_db.commit()


def test_dashboard_merges_all_sections(federator):
    doctor_ids = _seed_doctors(federator)
    patient = _seed_patient(federator, doctor_ids)
    _seed_bills(federator, patient.id, [0.0, 25.5] + [10.0] * 6)

    view = asyncio.run(AggregationService(federator).build_dashboard(patient.id))

    assert view.partial is False
    assert view.unavailable_sections == []
    assert view.patient.mrn == "PATTEST00000001"
    assert isinstance(view.appointments, list)
    assert len(view.appointments) == 2
    assert [item.doctor.last_name for item in view.appointments] == ["House", "Cuddy"]
    assert isinstance(view.billing, BillingSummary)
    assert len(view.billing.recent_bills) == 5
    assert view.billing.total_outstanding == pytest.approx(85.5)
    assert view.billing.has_outstanding is True


def test_billing_timeout_degrades_only_billing(monkeypatch, federator):
    monkeypatch.setenv("PARMS_STORE_QUERY_TIMEOUT_SECONDS", "0.2")
    get_settings.cache_clear()

    doctor_ids = _seed_doctors(federator)
    patient = _seed_patient(federator, doctor_ids)
    _seed_bills(federator, patient.id, [10.0])

    @event.listens_for(federator.get(BILLING_STORE).engine, "before_cursor_execute")
    def _slow_billing(*_args, **_kwargs):
        time.sleep(0.6)

    view = asyncio.run(AggregationService(federator, get_settings()).build_dashboard(patient.id))

    assert view.patient.first_name == "Ada"
    assert isinstance(view.billing, SectionUnavailable)
    assert view.billing.unavailable is True
    assert view.billing.reason == "timeout"
    assert {item.doctor.first_name for item in view.appointments} == {"Gregory", "Lisa"}
    assert view.partial is True
    assert view.unavailable_sections == ["billing"]

    payload = view.model_dump(by_alias=True, mode="json")
    assert payload["billing"] == {"unavailable": True, "reason": "timeout"}
    assert payload["unavailableSections"] == ["billing"]


def test_unconfigured_staff_store_marks_doctors_unavailable():
    federator = ConnectionFederator(get_settings())
    for name in (PRIMARY_STORE, BILLING_STORE):
        engine = memory_engine()
        METADATA_BY_STORE[name].create_all(engine)
        federator.register_engine(name, engine)

    patient = _seed_patient(federator, [uuid4()])
    view = asyncio.run(AggregationService(federator).build_dashboard(patient.id))

    assert view.partial is True
    assert view.unavailable_sections == ["doctors"]
    assert isinstance(view.billing, BillingSummary)
    assert view.billing.has_outstanding is False
    doctor = view.appointments[0].doctor
    assert isinstance(doctor, SectionUnavailable)
    assert doctor.reason == "not_configured"
    federator.close_all()


def test_missing_patient_is_not_found(federator):
    with pytest.raises(NotFoundError):
        asyncio.run(AggregationService(federator).build_dashboard(uuid4()))


def test_billing_history_pages(federator):
    patient_id = uuid4()
    _seed_bills(federator, patient_id, [1.0] * 7)
    service = AggregationService(federator)

    first = asyncio.run(service.billing_history(patient_id, limit=5, skip=0))
    second = asyncio.run(service.billing_history(patient_id, limit=5, skip=5))

    assert (len(first.items), first.total, first.has_more) == (5, 7, True)
    assert (len(second.items), second.has_more) == (2, False)
    assert first.items[0].billed_at > first.items[-1].billed_at


def test_search_doctors_filters_active_doctors(federator):
    _seed_doctors(federator)
    service = AggregationService(federator)

    by_specialty = asyncio.run(service.search_doctors(specialty="endo"))
    by_name = asyncio.run(service.search_doctors(name="hou"))
    everyone = asyncio.run(service.search_doctors())

    assert [doctor.last_name for doctor in by_specialty] == ["Cuddy"]
    assert [doctor.last_name for doctor in by_name] == ["House"]
    assert len(everyone) == 2


def test_malformed_staff_rows_degrade_only_doctors(monkeypatch, federator):
    doctor_ids = _seed_doctors(federator)
    patient = _seed_patient(federator, doctor_ids)
    _seed_bills(federator, patient.id, [12.0])

    def _malformed(*_args, **_kwargs):
        raise ValueError("staff store returned malformed row")

    monkeypatch.setattr(repositories, "find_doctors_by_ids", _malformed)

    view = asyncio.run(AggregationService(federator).build_dashboard(patient.id))

    assert view.partial is True
    assert view.unavailable_sections == ["doctors"]
    assert isinstance(view.billing, BillingSummary)
    assert view.billing.total_outstanding == pytest.approx(12.0)
    assert len(view.appointments) == 2
    for item in view.appointments:
        assert isinstance(item.doctor, SectionUnavailable)
        assert item.doctor.reason == "unavailable"
