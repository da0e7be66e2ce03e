"""患者建档接口。"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from parms_api.db.session import get_db
from parms_api.dependencies import AuthContext, require_guards
from parms_api.models.enums import Role
from parms_api.schemas.clinical import PatientCreateRequest
from parms_api.schemas.common import ErrorResponse, SuccessResponse
from parms_api.schemas.dashboard import PatientSummary
from parms_api.services.authorization import at_least
from parms_api.services.patients import create_patient
from parms_api.utils.response import success

router = APIRouter(prefix="/patients", tags=["patients"])


@router.post(
    "",
    summary="创建患者档案",
    description="前台及以上角色可建档，病历号由服务端生成并保证唯一。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[PatientSummary],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create(
    payload: PatientCreateRequest,
    request: Request,
    _ctx: AuthContext = Depends(require_guards(at_least(Role.FRONTDESK))),
    db: Session = Depends(get_db),
):
    patient = create_patient(
        db,
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        phone=payload.phone,
        date_of_birth=payload.date_of_birth,
    )
    db.commit()
    db.refresh(patient)
    return success(request, PatientSummary.model_validate(patient))
