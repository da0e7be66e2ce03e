from uuid import uuid4

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session

from parms_api.core.errors import ConflictError, NotFoundError, ValidationError
from parms_api.models.base import Base
from parms_api.models.clinical import Patient, Prescription
from parms_api.models.enums import PrescriptionStatus
from parms_api.services import patients as patients_service
from parms_api.services.patients import MRN_ALPHABET, MRN_MAX_ATTEMPTS, create_patient, generate_mrn
from parms_api.services.prescriptions import process_refill


def test_generated_mrn_shape():
    mrn = generate_mrn()
    assert mrn.startswith("PAT")
    assert len(mrn) == 15
    assert set(mrn[3:]) <= set(MRN_ALPHABET)


def test_mrn_collision_is_retried(monkeypatch, db):
    create_patient(db, first_name="First", last_name="Holder")
    taken = db.execute(select(Patient.mrn)).scalar_one()
    candidates = iter([taken, taken, "PATFRESHFRESH2"])
    monkeypatch.setattr(patients_service, "generate_mrn", lambda: next(candidates))

    patient = create_patient(db, first_name=" Second ", last_name="Holder", email="Second@Example.com")

    assert patient.mrn == "PATFRESHFRESH2"
    assert patient.first_name == "Second"
    assert patient.email == "second@example.com"
    assert db.execute(select(func.count()).select_from(Patient)).scalar_one() == 2


def test_mrn_retries_are_bounded(monkeypatch, db):
    create_patient(db, first_name="Only", last_name="Holder")
    taken = db.execute(select(Patient.mrn)).scalar_one()
    calls = []

    def _always_taken() -> str:
        calls.append(taken)
        return taken

    monkeypatch.setattr(patients_service, "generate_mrn", _always_taken)

    with pytest.raises(ConflictError) as exc:
        create_patient(db, first_name="Never", last_name="Stored")
    assert exc.value.code == "MRN_GENERATION_EXHAUSTED"
    assert len(calls) == MRN_MAX_ATTEMPTS
    assert db.execute(select(func.count()).select_from(Patient)).scalar_one() == 1


def test_refill_never_goes_negative(db):
    prescription = Prescription(patient_id=uuid4(), medication="Metformin", refills_allowed=1, refills_remaining=1)
    db.add(prescription)
    db.commit()

    assert process_refill(db, prescription.id) == 0
    with pytest.raises(ValidationError) as exc:
        process_refill(db, prescription.id)
    assert exc.value.code == "NO_REFILLS_REMAINING"

    db.expire_all()
    assert db.get(Prescription, prescription.id).refills_remaining == 0


def test_refill_rejects_inactive_and_missing(db):
    completed = Prescription(
        patient_id=uuid4(),
        medication="Lisinopril",
        refills_allowed=3,
        refills_remaining=3,
        status=PrescriptionStatus.COMPLETED,
    )
    db.add(completed)
    db.commit()

    with pytest.raises(ValidationError) as exc:
        process_refill(db, completed.id)
    assert exc.value.code == "PRESCRIPTION_INACTIVE"
    with pytest.raises(NotFoundError):
        process_refill(db, uuid4())


def _transactional_engine(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    # pysqlite 默认在最外层 RELEASE SAVEPOINT 时直接提交，这里改为显式 BEGIN。
    @event.listens_for(engine, "connect")
    def _disable_implicit_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


def test_create_patient_leaves_commit_to_caller(monkeypatch, tmp_path):
    engine = _transactional_engine(tmp_path / "patients.db")

    with Session(engine) as session:
        first = create_patient(session, first_name="Kept", last_name="Inside")
        candidates = iter([first.mrn, "PATRETRYRETRY2"])
        monkeypatch.setattr(patients_service, "generate_mrn", lambda: next(candidates))

        # 冲突只回滚本次保存点，同一事务中先前写入的患者仍在。
        second = create_patient(session, first_name="Also", last_name="Inside")
        assert second.mrn == "PATRETRYRETRY2"
        assert session.execute(select(func.count()).select_from(Patient)).scalar_one() == 2

        # 调用方放弃事务时不留下任何患者记录。
        session.rollback()

    with Session(engine) as session:
        assert session.execute(select(func.count()).select_from(Patient)).scalar_one() == 0
        create_patient(session, first_name="Committed", last_name="Later")
        session.commit()

    with Session(engine) as session:
        assert session.execute(select(func.count()).select_from(Patient)).scalar_one() == 1
    engine.dispose()
