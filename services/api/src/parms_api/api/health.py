"""健康检查接口。"""

from fastapi import APIRouter, Depends, Request, status

from parms_api.db.federation import ConnectionFederator
from parms_api.db.session import get_federator
from parms_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from parms_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="检测主库连通性；只读库按需连接，这里只报告其连接状态。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def ready(request: Request, federator: ConnectionFederator = Depends(get_federator)):
    """执行主库最小探活语句。"""
    federator.primary().ping()
    stores = {name: federator.state(name).value for name in federator.store_names}
    return success(request, {"status": "ready", "stores": stores})
