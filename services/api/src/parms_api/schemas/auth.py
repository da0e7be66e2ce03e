"""认证相关请求与响应结构，对外字段统一为驼峰命名。"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field

from parms_api.schemas.common import CamelSchema

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(CamelSchema):
    """本地账号注册请求。"""

    email: str = Field(
        min_length=5,
        max_length=256,
        pattern=_EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=8, max_length=128, description="登录密码。", examples=["StrongPassw0rd!"])
    role: Literal["patient", "frontdesk", "doctor"] = Field(default="patient", description="自助注册可选角色。")
    first_name: str | None = Field(default=None, min_length=1, max_length=128, description="名。")
    last_name: str | None = Field(default=None, min_length=1, max_length=128, description="姓。")


class LoginRequest(CamelSchema):
    email: str = Field(min_length=5, max_length=256, pattern=_EMAIL_PATTERN, description="登录邮箱。")
    password: str = Field(min_length=1, max_length=128, description="登录密码。")


class RefreshTokenRequest(CamelSchema):
    refresh_token: str = Field(min_length=1, description="刷新令牌。")


class LogoutRequest(CamelSchema):
    """登出请求，不传刷新令牌表示注销全部设备。"""

    refresh_token: str | None = Field(default=None, description="要注销的刷新令牌。")


class ForgotPasswordRequest(CamelSchema):
    email: str = Field(min_length=5, max_length=256, pattern=_EMAIL_PATTERN, description="登录邮箱。")


class ResetPasswordRequest(CamelSchema):
    token: str = Field(min_length=1, max_length=256, description="重置口令令牌。")
    new_password: str = Field(min_length=8, max_length=128, description="新密码。")


class ChangePasswordRequest(CamelSchema):
    current_password: str = Field(min_length=1, max_length=128, description="当前密码。")
    new_password: str = Field(min_length=8, max_length=128, description="新密码。")


class VerifyEmailRequest(CamelSchema):
    token: str = Field(min_length=1, max_length=256, description="邮箱验证令牌。")


class PrincipalData(CamelSchema):
    """对外展示的账号信息，不包含任何凭据字段。"""

    id: UUID
    email: str
    role: str
    is_active: bool
    is_email_verified: bool
    mfa_enabled: bool
    profile_id: UUID | None = None
    profile_model: str | None = None
    last_login_at: datetime | None = None


class TokenPairData(CamelSchema):
    access_token: str = Field(description="访问令牌。")
    refresh_token: str = Field(description="刷新令牌。")
    access_ttl: int = Field(description="访问令牌有效期（秒）。")
    token_type: str = Field(default="Bearer", description="令牌类型。")


class AuthSessionData(TokenPairData):
    """注册 / 登录结果。"""

    principal: PrincipalData


class LogoutData(CamelSchema):
    logged_out: bool = Field(description="是否已完成登出。")
    revoked_refresh_tokens: int = Field(description="本次注销的刷新令牌条数。")
    access_token_revoked: bool = Field(description="当前访问令牌是否已加入黑名单。")


class MessageData(CamelSchema):
    message: str


class VerifyTokenData(CamelSchema):
    valid: bool
    user_id: UUID
    role: str
    expires_at: datetime
