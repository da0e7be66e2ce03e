"""患者看板聚合视图结构。

任一外部数据源失败时，对应分区以 `{"unavailable": true, "reason": ...}` 显式标记，
同时在顶层设置 partial 与 unavailableSections。
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import Field

from parms_api.schemas.common import CamelSchema


class SectionUnavailable(CamelSchema):
    """分区不可用标记。"""

    unavailable: Literal[True] = Field(default=True, description="固定为 true。")
    reason: str = Field(description="不可用原因：timeout / unavailable / not_configured。")


class PatientSummary(CamelSchema):
    id: UUID
    mrn: str = Field(description="病历号。")
    first_name: str
    last_name: str
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None
    status: str


class DoctorSummary(CamelSchema):
    """人事库医生摘要。"""

    id: UUID
    first_name: str
    last_name: str
    specialty: str | None = None
    department: str | None = None
    phone: str | None = None
    years_of_experience: int | None = None


class AppointmentView(CamelSchema):
    """预约条目，doctor 来自人事库查找表。"""

    id: UUID
    scheduled_at: datetime
    time_slot: str | None = None
    appointment_type: str | None = None
    status: str
    doctor_id: UUID | None = None
    doctor: DoctorSummary | SectionUnavailable | None = Field(default=None, description="医生信息。")


class BillView(CamelSchema):
    id: UUID
    billed_at: datetime
    amount: float
    amount_due: float
    status: str
    description: str | None = None


class BillingSummary(CamelSchema):
    """最近账单与欠费汇总。"""

    unavailable: Literal[False] = False
    recent_bills: list[BillView] = Field(default_factory=list)
    total_outstanding: float = Field(default=0.0, description="最近账单欠费合计。")
    has_outstanding: bool = False


class DashboardView(CamelSchema):
    """患者看板。"""

    patient: PatientSummary
    appointments: list[AppointmentView] | SectionUnavailable
    billing: BillingSummary | SectionUnavailable
    partial: bool = Field(default=False, description="是否存在不可用分区。")
    unavailable_sections: list[str] = Field(default_factory=list)


class BillingPage(CamelSchema):
    """账单分页结果。"""

    items: list[BillView]
    total: int
    limit: int
    skip: int
    has_more: bool


class DoctorSearchResult(CamelSchema):
    items: list[DoctorSummary]
    count: int
