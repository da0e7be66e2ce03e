"""处方续方接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from parms_api.db.session import get_db
from parms_api.dependencies import AuthContext, require_guards
from parms_api.models.enums import Role
from parms_api.schemas.clinical import RefillData
from parms_api.schemas.common import ErrorResponse, SuccessResponse
from parms_api.services.authorization import at_least
from parms_api.services.prescriptions import process_refill
from parms_api.utils.response import success

router = APIRouter(prefix="/prescriptions", tags=["prescriptions"])


@router.post(
    "/{prescription_id}/refill",
    summary="处方续方",
    description="扣减一次剩余续方次数；处方无效或次数用尽时返回 400。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[RefillData],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
def refill(
    prescription_id: UUID,
    request: Request,
    _ctx: AuthContext = Depends(require_guards(at_least(Role.FRONTDESK))),
    db: Session = Depends(get_db),
):
    remaining = process_refill(db, prescription_id)
    return success(request, RefillData(prescription_id=prescription_id, refills_remaining=remaining))
