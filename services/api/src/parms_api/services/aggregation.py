"""跨数据源聚合视图。

患者看板的组装流程：
1. 先从主库读取患者（必需）；不存在返回 404，主库超时或不可达直接失败。
2. 随后并发读取三个分区：即将到来的预约（主库）、最近账单（计费库）、
   预约对应的医生（人事库，依赖预约结果中的医生 ID，但与账单查询并行）。
3. 每个分区在线程中执行同步查询，并受统一超时约束；失败的分区以显式标记返回，
   整体仍然成功，同时标记 partial。
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from parms_api.core.config import Settings, get_settings
from parms_api.core.errors import ConfigurationError, NotFoundError, UpstreamUnavailable
from parms_api.db.federation import BILLING_STORE, PRIMARY_STORE, STAFF_STORE, ConnectionFederator
from parms_api.schemas.dashboard import (
    AppointmentView,
    BillingPage,
    BillingSummary,
    BillView,
    DashboardView,
    DoctorSummary,
    PatientSummary,
    SectionUnavailable,
)
from parms_api.services import repositories
from parms_api.utils.timeutil import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECTION_APPOINTMENTS = "appointments"
SECTION_BILLING = "billing"
SECTION_DOCTORS = "doctors"
# 看板只展示最近账单中的前几条，欠费合计按全部已读取账单计算。
DASHBOARD_BILL_DISPLAY = 5


@dataclass
class SectionResult(Generic[T]):
    """单个分区的执行结果，value 与 reason 二选一。"""

    name: str
    value: T | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def marker(self) -> SectionUnavailable:
        return SectionUnavailable(reason=self.reason or "unavailable")


class AggregationService:
    """聚合查询服务。"""

    def __init__(self, federator: ConnectionFederator, settings: Settings | None = None):
        self._federator = federator
        self._settings = settings or get_settings()

    @property
    def timeout(self) -> float:
        return self._settings.store_query_timeout_seconds

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def _section(self, name: str, store: str, func: Callable[..., T], *args: Any) -> SectionResult[T]:
        """执行单个分区查询，失败时转换为不可用标记。"""
        try:
            return SectionResult(name=name, value=await self._call(func, *args))
        except TimeoutError:
            logger.warning("dashboard section degraded section=%s store=%s reason=timeout", name, store)
            return SectionResult(name=name, reason="timeout")
        except UpstreamUnavailable as exc:
            logger.warning(
                "dashboard section degraded section=%s store=%s reason=%s",
                name,
                exc.store,
                type(exc.__cause__ or exc).__name__,
            )
            return SectionResult(name=name, reason="unavailable")
        except (DBAPIError, PoolTimeoutError) as exc:
            logger.warning("dashboard section degraded section=%s store=%s reason=%s", name, store, type(exc).__name__)
            return SectionResult(name=name, reason="unavailable")
        except ConfigurationError as exc:
            logger.error("dashboard section not configured section=%s store=%s error=%s", name, store, exc.message)
            return SectionResult(name=name, reason="not_configured")
        except Exception:
            # 外部库数据格式异常等未预期错误同样只影响本分区。
            logger.exception("dashboard section failed section=%s store=%s", name, store)
            return SectionResult(name=name, reason="unavailable")

    def _load_patient(self, patient_id: UUID) -> PatientSummary | None:
        with self._federator.primary().session() as db:
            patient = repositories.get_patient(db, patient_id)
            return PatientSummary.model_validate(patient) if patient else None

    def _load_appointments(self, patient_id: UUID) -> list[AppointmentView]:
        with self._federator.primary().session() as db:
            appointments = repositories.list_upcoming_appointments(db, patient_id, utc_now())
            return [AppointmentView.model_validate(item) for item in appointments]

    def _load_billing(self, patient_id: UUID) -> BillingSummary:
        bills = repositories.list_recent_bills(self._federator.read_only(BILLING_STORE), patient_id)
        total_outstanding = sum(bill.amount_due or 0.0 for bill in bills)
        return BillingSummary(
            recent_bills=[BillView.model_validate(bill) for bill in bills[:DASHBOARD_BILL_DISPLAY]],
            total_outstanding=total_outstanding,
            has_outstanding=total_outstanding > 0,
        )

    def _load_doctors(self, doctor_ids: list[UUID]) -> dict[str, DoctorSummary]:
        doctors = repositories.find_doctors_by_ids(self._federator.read_only(STAFF_STORE), doctor_ids)
        # 以医生 ID 建立查找表，避免预约与医生双重循环。
        return {str(doctor.id): DoctorSummary.model_validate(doctor) for doctor in doctors}

    async def _resolve_doctors(
        self,
        appointments_task: "asyncio.Task[SectionResult[list[AppointmentView]]]",
    ) -> SectionResult[dict[str, DoctorSummary]]:
        appointments = await appointments_task
        if not appointments.ok or not appointments.value:
            return SectionResult(name=SECTION_DOCTORS, value={})
        doctor_ids = list({item.doctor_id for item in appointments.value if item.doctor_id is not None})
        if not doctor_ids:
            return SectionResult(name=SECTION_DOCTORS, value={})
        return await self._section(SECTION_DOCTORS, STAFF_STORE, self._load_doctors, doctor_ids)

    async def build_dashboard(self, patient_id: UUID) -> DashboardView:
        """组装患者看板。"""
        try:
            patient = await self._call(self._load_patient, patient_id)
        except TimeoutError as exc:
            raise UpstreamUnavailable(PRIMARY_STORE) from exc
        except (DBAPIError, PoolTimeoutError) as exc:
            raise UpstreamUnavailable(PRIMARY_STORE) from exc
        if patient is None:
            raise NotFoundError("患者不存在。")

        appointments_task = asyncio.create_task(
            self._section(SECTION_APPOINTMENTS, PRIMARY_STORE, self._load_appointments, patient_id)
        )
        billing_task = asyncio.create_task(
            self._section(SECTION_BILLING, BILLING_STORE, self._load_billing, patient_id)
        )
        doctors_task = asyncio.create_task(self._resolve_doctors(appointments_task))
        appointments, billing, doctors = await asyncio.gather(appointments_task, billing_task, doctors_task)

        unavailable_sections = [section.name for section in (appointments, billing, doctors) if not section.ok]

        appointment_view: list[AppointmentView] | SectionUnavailable
        if appointments.ok:
            doctor_map = doctors.value or {}
            appointment_view = []
            for item in appointments.value or []:
                if item.doctor_id is None:
                    doctor = None
                elif doctors.ok:
                    doctor = doctor_map.get(str(item.doctor_id))
                else:
                    doctor = doctors.marker()
                appointment_view.append(item.model_copy(update={"doctor": doctor}))
        else:
            appointment_view = appointments.marker()

        return DashboardView(
            patient=patient,
            appointments=appointment_view,
            billing=billing.value if billing.ok else billing.marker(),
            partial=bool(unavailable_sections),
            unavailable_sections=unavailable_sections,
        )

    async def billing_history(self, patient_id: UUID, *, limit: int, skip: int) -> BillingPage:
        """分页账单，计费库不可用时直接返回 503。"""

        def _load() -> BillingPage:
            items, total = repositories.list_bills_page(
                self._federator.read_only(BILLING_STORE), patient_id, limit=limit, skip=skip
            )
            return BillingPage(
                items=[BillView.model_validate(item) for item in items],
                total=total,
                limit=limit,
                skip=skip,
                has_more=skip + len(items) < total,
            )

        try:
            return await self._call(_load)
        except TimeoutError as exc:
            raise UpstreamUnavailable(BILLING_STORE) from exc

    async def search_doctors(
        self,
        *,
        specialty: str | None = None,
        name: str | None = None,
        department: str | None = None,
    ) -> list[DoctorSummary]:
        """在人事库中检索医生。"""

        def _load() -> list[DoctorSummary]:
            doctors = repositories.search_doctors(
                self._federator.read_only(STAFF_STORE),
                specialty=specialty,
                name=name,
                department=department,
            )
            return [DoctorSummary.model_validate(doctor) for doctor in doctors]

        try:
            return await self._call(_load)
        except TimeoutError as exc:
            raise UpstreamUnavailable(STAFF_STORE) from exc
