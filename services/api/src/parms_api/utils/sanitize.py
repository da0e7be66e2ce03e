"""对外错误信息脱敏。

返回给客户端的错误信息不得包含邮箱、电话、证件号或原始记录 ID；完整信息只写服务端日志。
"""

import re
from typing import Any

_SANITIZE_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[email]"),
    (re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"), "[id]"),
    (re.compile(r"\b[0-9a-fA-F]{24}\b"), "[id]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[ssn]"),
    (re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"), "[phone]"),
)


def sanitize_message(message: str) -> str:
    """替换文本中的敏感片段。"""
    sanitized = message
    for pattern, replacement in _SANITIZE_RULES:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def sanitize_value(value: Any) -> Any:
    """递归脱敏字符串、列表与字典。"""
    if isinstance(value, str):
        return sanitize_message(value)
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(item) for item in value]
    return value
