"""预约查询接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from parms_api.core.errors import NotFoundError
from parms_api.db.session import get_db
from parms_api.dependencies import AuthContext, get_auth_context
from parms_api.models.clinical import Appointment
from parms_api.schemas.common import ErrorResponse, SuccessResponse
from parms_api.schemas.dashboard import AppointmentView
from parms_api.services.authorization import ResourceKind, check_collection_access, ensure_appointment_owner
from parms_api.utils.response import success

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get(
    "/{appointment_id}",
    summary="预约详情",
    description="前台与管理员可查看任意预约；患者与医生只能查看本人关联的预约。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AppointmentView],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_appointment(
    appointment_id: UUID,
    request: Request,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """加载前先判断角色能否访问预约，加载后再校验归属。"""
    check_collection_access(ctx.principal, ResourceKind.APPOINTMENT)
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFoundError("预约不存在。")
    ensure_appointment_owner(ctx.principal, appointment)
    return success(request, AppointmentView.model_validate(appointment))
