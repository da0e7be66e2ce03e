"""应用异常处理注册。

领域异常、协议异常、参数校验异常与未捕获异常统一转换为
`{request_id, error: {code, message, details}}` 结构。
"""

import logging
from typing import NamedTuple

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from parms_api.core.errors import AppError, ConfigurationError
from parms_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger(__name__)


class _StatusHint(NamedTuple):
    code: str
    message: str
    suggestion: str


_FALLBACK_HINT = _StatusHint("HTTP_ERROR", "请求处理失败。", "请稍后重试，若持续失败请联系管理员并提供 request_id。")

_STATUS_HINTS: dict[int, _StatusHint] = {
    status.HTTP_400_BAD_REQUEST: _StatusHint(
        "BAD_REQUEST", "请求参数不合法。", "请根据错误字段提示修正请求参数后重试。"
    ),
    status.HTTP_401_UNAUTHORIZED: _StatusHint(
        "UNAUTHORIZED", "未登录或登录状态已失效。", "请重新登录并携带有效访问令牌。"
    ),
    status.HTTP_403_FORBIDDEN: _StatusHint(
        "FORBIDDEN", "无权限访问该资源。", "请确认当前账号角色以及所访问资源是否归属于本人。"
    ),
    status.HTTP_404_NOT_FOUND: _StatusHint(
        "NOT_FOUND", "请求资源不存在。", "请确认资源 ID 是否正确，或资源是否已被删除。"
    ),
    status.HTTP_405_METHOD_NOT_ALLOWED: _StatusHint(
        "METHOD_NOT_ALLOWED", "请求方法不被允许。", "请核对接口文档中的请求方法。"
    ),
    status.HTTP_409_CONFLICT: _StatusHint(
        "CONFLICT", "请求与当前数据状态冲突。", "请刷新页面获取最新数据后重试。"
    ),
    status.HTTP_503_SERVICE_UNAVAILABLE: _StatusHint(
        "UPSTREAM_UNAVAILABLE", "依赖的数据源暂不可用。", "外部数据源暂时不可达，请稍后重试。"
    ),
}


def _hint(status_code: int) -> _StatusHint:
    return _STATUS_HINTS.get(status_code, _FALLBACK_HINT)


def _details_for(status_code: int, reason: str) -> dict[str, object]:
    return {"status_code": status_code, "reason": reason, "suggestion": _hint(status_code).suggestion}


async def app_error_handler(request: Request, exc: AppError):
    """领域异常 -> 标准错误结构。"""
    details = _details_for(exc.status_code, exc.code.lower())
    message = exc.message
    if isinstance(exc, ConfigurationError):
        # 配置错误只写日志，对外返回通用提示。
        logger.error("configuration error code=%s message=%s", exc.code, exc.message)
        message = exc.default_message
    else:
        details.update(exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=exc.code, message=message, details=details),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """框架层协议异常（404 路由、405 方法等）。"""
    hint = _hint(exc.status_code)
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else hint.message
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            request,
            code=hint.code,
            message=message,
            details=_details_for(exc.status_code, hint.code.lower()),
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """请求体、路径与查询参数校验失败统一返回 400。"""
    errors = []
    for err in exc.errors():
        location = [str(item) for item in err.get("loc", []) if item != "body"]
        errors.append({"field": ".".join(location), "message": err.get("msg"), "type": err.get("type")})

    details = _details_for(status.HTTP_400_BAD_REQUEST, "validation_error")
    details["errors"] = errors
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(request, code="VALIDATION_ERROR", message="请求参数校验失败。", details=details),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled exception path=%s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details=_details_for(status.HTTP_500_INTERNAL_SERVER_ERROR, "unexpected_exception"),
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
