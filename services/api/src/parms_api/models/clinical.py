"""主库中的临床业务模型。"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from parms_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from parms_api.models.enums import AppointmentStatus, PatientStatus, PrescriptionStatus


class Patient(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """患者档案。"""

    __tablename__ = "patients"

    # 病历号，唯一约束由数据库保证。
    mrn: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(256))
    phone: Mapped[str | None] = mapped_column(String(32))
    date_of_birth: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=PatientStatus.ACTIVE)


class Appointment(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """预约记录。doctor_id 指向人事库中的员工 ID。"""

    __tablename__ = "appointments"

    patient_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    doctor_id: Mapped[UUID | None] = mapped_column(index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    time_slot: Mapped[str | None] = mapped_column(String(32))
    appointment_type: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=AppointmentStatus.SCHEDULED)


class Prescription(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """处方记录。"""

    __tablename__ = "prescriptions"
    __table_args__ = (CheckConstraint("refills_remaining >= 0", name="refills_non_negative"),)

    patient_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    provider_id: Mapped[UUID | None] = mapped_column()
    medication: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=PrescriptionStatus.ACTIVE)
    refills_allowed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refills_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
