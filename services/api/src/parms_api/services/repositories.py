"""各数据源查询封装。

主库查询接收 ORM 会话；只读库查询接收只读句柄，写操作在句柄层被拒绝。
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from parms_api.db.federation import ReadOnlyStoreHandle
from parms_api.models.clinical import Appointment, Patient
from parms_api.models.enums import AppointmentStatus, Role
from parms_api.models.federated import BillingRecord, StaffMember

UPCOMING_APPOINTMENT_LIMIT = 5
RECENT_BILL_LIMIT = 10
DOCTOR_SEARCH_LIMIT = 50


def get_patient(db: Session, patient_id: UUID) -> Patient | None:
    return db.get(Patient, patient_id)


def list_upcoming_appointments(
    db: Session,
    patient_id: UUID,
    now: datetime,
    limit: int = UPCOMING_APPOINTMENT_LIMIT,
) -> list[Appointment]:
    """未取消、未完成且晚于当前时间的预约，按时间升序。"""
    return list(
        db.execute(
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .where(Appointment.scheduled_at >= now)
            .where(Appointment.status.not_in([AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED]))
            .order_by(Appointment.scheduled_at.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def list_recent_bills(handle: ReadOnlyStoreHandle, patient_id: UUID, limit: int = RECENT_BILL_LIMIT) -> list[BillingRecord]:
    return handle.scalars(
        select(BillingRecord)
        .where(BillingRecord.patient_id == patient_id)
        .order_by(BillingRecord.billed_at.desc())
        .limit(limit)
    )


def list_bills_page(
    handle: ReadOnlyStoreHandle,
    patient_id: UUID,
    *,
    limit: int,
    skip: int,
) -> tuple[list[BillingRecord], int]:
    """分页查询账单，返回当前页与总数。"""
    items = handle.scalars(
        select(BillingRecord)
        .where(BillingRecord.patient_id == patient_id)
        .order_by(BillingRecord.billed_at.desc())
        .offset(skip)
        .limit(limit)
    )
    total = handle.scalar(
        select(func.count()).select_from(BillingRecord).where(BillingRecord.patient_id == patient_id)
    )
    return items, int(total or 0)


def find_doctors_by_ids(handle: ReadOnlyStoreHandle, doctor_ids: Iterable[UUID]) -> list[StaffMember]:
    ids = list(doctor_ids)
    if not ids:
        return []
    return handle.scalars(
        select(StaffMember).where(StaffMember.id.in_(ids)).where(StaffMember.role == Role.DOCTOR)
    )


def search_doctors(
    handle: ReadOnlyStoreHandle,
    *,
    specialty: str | None = None,
    name: str | None = None,
    department: str | None = None,
    limit: int = DOCTOR_SEARCH_LIMIT,
) -> list[StaffMember]:
    """按专科、姓名、科室模糊检索在职医生。"""
    stmt = select(StaffMember).where(StaffMember.role == Role.DOCTOR).where(StaffMember.status == "active")
    if specialty:
        stmt = stmt.where(StaffMember.specialty.ilike(f"%{specialty}%"))
    if name:
        pattern = f"%{name}%"
        stmt = stmt.where(or_(StaffMember.first_name.ilike(pattern), StaffMember.last_name.ilike(pattern)))
    if department:
        stmt = stmt.where(StaffMember.department.ilike(f"%{department}%"))
    return handle.scalars(stmt.order_by(StaffMember.last_name, StaffMember.first_name).limit(limit))
