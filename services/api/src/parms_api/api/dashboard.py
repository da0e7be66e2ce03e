"""患者看板接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from parms_api.dependencies import AuthContext, get_aggregation_service, get_auth_context, require_guards
from parms_api.schemas.common import ErrorResponse, SuccessResponse
from parms_api.schemas.dashboard import BillingPage, DashboardView, DoctorSearchResult
from parms_api.services.aggregation import AggregationService
from parms_api.services.authorization import ResourceKind, collection_access
from parms_api.utils.response import success

router = APIRouter(prefix="/patient-dashboard", tags=["dashboard"])

_patient_record_access = require_guards(collection_access(ResourceKind.PATIENT_RECORD, "patient_id"))


# 固定路径需先于 /{patient_id} 声明。
@router.get(
    "/doctors/search",
    summary="检索医生",
    description="按专科、姓名、科室在人事库中检索在职医生，最多返回 50 条。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DoctorSearchResult],
    responses={401: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def search_doctors(
    request: Request,
    specialty: str | None = Query(default=None, max_length=64),
    name: str | None = Query(default=None, max_length=64),
    department: str | None = Query(default=None, max_length=64),
    _ctx: AuthContext = Depends(get_auth_context),
    service: AggregationService = Depends(get_aggregation_service),
):
    doctors = await service.search_doctors(specialty=specialty, name=name, department=department)
    return success(request, DoctorSearchResult(items=doctors, count=len(doctors)))


@router.get(
    "/{patient_id}",
    summary="患者看板",
    description=(
        "聚合患者档案、即将到来的预约（含医生信息）与最近账单。"
        "外部数据源不可用时对应分区返回 unavailable 标记，并设置 partial。"
    ),
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[DashboardView],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_dashboard(
    patient_id: UUID,
    request: Request,
    _ctx: AuthContext = Depends(_patient_record_access),
    service: AggregationService = Depends(get_aggregation_service),
):
    view = await service.build_dashboard(patient_id)
    return success(request, view, meta={"partial": view.partial})


@router.get(
    "/{patient_id}/billing",
    summary="账单历史",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[BillingPage],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_billing_history(
    patient_id: UUID,
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    _ctx: AuthContext = Depends(_patient_record_access),
    service: AggregationService = Depends(get_aggregation_service),
):
    page = await service.billing_history(patient_id, limit=limit, skip=skip)
    return success(request, page)
