"""请求上下文依赖。

职责:
1. 从 Authorization 头（或 accessToken Cookie）提取并校验访问令牌；
2. 校验访问令牌未被注销、主体仍然存在且可用、令牌签发晚于最近一次改密；
3. 生成后续路由统一使用的 AuthContext；
4. 将守卫列表组合为路由依赖。
"""

from dataclasses import dataclass

from fastapi import Cookie, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parms_api.core.errors import AuthenticationError, InvalidTokenError
from parms_api.core.security import extract_bearer_token, is_access_token_denied
from parms_api.db.federation import ConnectionFederator
from parms_api.db.session import get_db, get_federator
from parms_api.models.auth import User
from parms_api.models.enums import TokenKind
from parms_api.services.account_guard import AccountGuard
from parms_api.services.aggregation import AggregationService
from parms_api.services.authorization import Guard, Principal, run_guards
from parms_api.services.notifications import AccountNotifier, LoggingNotifier
from parms_api.services.tokens import AccessClaims, TokenService, issued_before_password_change

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """已认证请求上下文。"""

    # 当前主体（主库最新数据）。
    user: User
    # 授权判断使用的主体信息，角色取自主库而非令牌。
    principal: Principal
    # 访问令牌声明。
    claims: AccessClaims


def get_token_service() -> TokenService:
    return TokenService()


def get_account_guard() -> AccountGuard:
    return AccountGuard()


def get_notifier() -> AccountNotifier:
    return LoggingNotifier()


def get_aggregation_service(federator: ConnectionFederator = Depends(get_federator)) -> AggregationService:
    return AggregationService(federator)


def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    access_cookie: str | None = Cookie(default=None, alias="accessToken"),
) -> str:
    """提取访问令牌原文。"""
    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"
    return extract_bearer_token(authorization, access_cookie)


def get_auth_context(
    token: str = Depends(get_access_token),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    guard: AccountGuard = Depends(get_account_guard),
) -> AuthContext:
    """完成认证并返回请求上下文。"""
    claims = tokens.verify(token, TokenKind.ACCESS)
    if is_access_token_denied(claims.jti):
        raise InvalidTokenError("令牌已注销。", code="TOKEN_REVOKED")

    user = db.get(User, claims.user_id)
    if user is None:
        raise AuthenticationError("账号不存在或已失效。")
    guard.ensure_can_authenticate(user)

    if issued_before_password_change(claims.issued_at, user.password_changed_at):
        raise InvalidTokenError("口令已修改，请重新登录。", code="TOKEN_STALE")

    return AuthContext(
        user=user,
        principal=Principal(user_id=user.id, email=user.email, role=user.role, profile_id=user.profile_id),
        claims=claims,
    )


def require_guards(*guards: Guard):
    """按顺序执行守卫列表的路由依赖，守卫可读取路径参数。"""

    def _dep(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        run_guards(ctx.principal, guards, request.path_params)
        return ctx

    return _dep
