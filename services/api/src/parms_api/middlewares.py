"""应用中间件注册。"""

import logging
from time import perf_counter
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger("parms_api.access")


def _resolve_request_id(request: Request) -> str:
    """沿用上游网关传入的合法请求 ID，否则重新生成。"""
    incoming = request.headers.get("X-Request-Id", "").strip()
    if incoming:
        try:
            return str(uuid.UUID(incoming))
        except ValueError:
            pass
    return str(uuid.uuid4())


async def request_context_middleware(request: Request, call_next):
    """注入请求追踪 ID 与计时，并记录访问日志。"""
    request.state.request_id = _resolve_request_id(request)
    request.state.request_started_at = perf_counter()
    response = await call_next(request)
    elapsed_ms = round((perf_counter() - request.state.request_started_at) * 1000, 2)
    response.headers["X-Request-Id"] = request.state.request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    # 访问日志只记录路由模板，不记录路径中的资源 ID。
    route = request.scope.get("route")
    path_template = getattr(route, "path", None) or "<unmatched>"
    logger.info(
        "request_id=%s method=%s route=%s status=%s elapsed_ms=%s",
        request.state.request_id,
        request.method,
        path_template,
        response.status_code,
        elapsed_ms,
    )
    return response


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件。"""
    app.middleware("http")(request_context_middleware)
