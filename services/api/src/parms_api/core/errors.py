"""领域异常分类。

路由层只抛出这些异常，由 exceptions.py 统一转换为标准错误结构：
- ValidationError / AuthenticationError / AuthorizationError / NotFoundError / ConflictError
  属于可恢复的客户端错误；
- ConfigurationError 属于致命错误，中止当前操作；
- UpstreamUnavailable 表示只读联邦数据源不可达，聚合层会将其降级为局部缺失。
"""

from typing import Any


class AppError(Exception):
    """应用异常基类。"""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "请求处理失败。"

    def __init__(self, message: str | None = None, *, code: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """请求内容不合法。"""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "请求参数不合法。"


class AuthenticationError(AppError):
    """缺少凭据、凭据无效或已过期。"""

    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "未登录或登录状态已失效。"


class InvalidTokenError(AuthenticationError):
    """令牌签名、结构或存储状态无效。"""

    code = "TOKEN_INVALID"
    default_message = "令牌无效。"


class TokenExpiredError(AuthenticationError):
    """令牌已过期。"""

    code = "TOKEN_EXPIRED"
    default_message = "令牌已过期。"


class WrongTokenKindError(AuthenticationError):
    """令牌类型与使用场景不符（访问令牌 / 刷新令牌混用）。"""

    code = "TOKEN_WRONG_KIND"
    default_message = "令牌类型不匹配。"


class AuthorizationError(AppError):
    """角色或资源归属不满足。"""

    status_code = 403
    code = "FORBIDDEN"
    default_message = "无权限访问该资源。"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "请求资源不存在。"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"
    default_message = "请求与当前数据状态冲突。"


class ConfigurationError(AppError):
    """缺少必需的外部配置（密钥、连接串）或以错误方式使用数据源。"""

    status_code = 500
    code = "CONFIGURATION_ERROR"
    default_message = "服务配置错误。"


class UpstreamUnavailable(AppError):
    """联邦数据源不可达或超时。"""

    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    default_message = "依赖的数据源暂不可用。"

    def __init__(self, store: str, message: str | None = None):
        self.store = store
        super().__init__(message, details={"store": store})
