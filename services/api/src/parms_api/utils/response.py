"""统一响应包裹。

成功：`{request_id, data, meta}`；失败：`{request_id, error: {code, message, details}}`。
错误信息与细节在写出前统一脱敏。
"""

from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from fastapi import Request

from parms_api.utils.sanitize import sanitize_message, sanitize_value

DEFAULT_ERROR_MESSAGE = "internal server error"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def _elapsed_ms(request: Request) -> int | None:
    started_at = getattr(request.state, "request_started_at", None)
    if not isinstance(started_at, float):
        return None
    return int((perf_counter() - started_at) * 1000)


def _request_meta(request: Request) -> dict[str, Any]:
    return {
        "method": request.method.upper(),
        "path": request.url.path,
        "timestamp": _timestamp(),
    }


def success(request: Request, data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """构造成功响应，meta 中的同名键覆盖默认值。"""
    final_meta = _request_meta(request)
    final_meta["process_ms"] = _elapsed_ms(request)
    final_meta.update(meta or {})
    return {"request_id": _request_id(request), "data": data, "meta": final_meta}


def error_payload(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """构造错误响应。"""
    final_details = _request_meta(request)
    final_details.update(details or {})
    return {
        "request_id": _request_id(request),
        "error": {
            "code": code,
            "message": sanitize_message(message),
            "details": sanitize_value(final_details),
        },
    }
