"""访问令牌与刷新令牌的签发、校验与轮换。

职责:
1. 访问令牌与刷新令牌使用两把不同的密钥签名；
2. 令牌种类写入签名载荷的 typ 声明，校验时在签名通过后再核对种类；
3. 校验本身不做任何 I/O，吊销状态由 token_store 与访问令牌黑名单负责；
4. 轮换通过条件 DELETE 原子消费旧记录，保证同一刷新令牌至多成功轮换一次。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any
from uuid import UUID, uuid4

import jwt
from sqlalchemy.orm import Session

from parms_api.core.config import Settings, get_settings
from parms_api.core.errors import (
    ConfigurationError,
    InvalidTokenError,
    TokenExpiredError,
    WrongTokenKindError,
)
from parms_api.models.auth import User
from parms_api.models.enums import TokenKind
from parms_api.services.token_store import consume_refresh_token, lock_token_owner, store_refresh_token
from parms_api.utils.timeutil import as_utc

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "sub", "jti", "typ"]


@dataclass(frozen=True)
class AccessClaims:
    """访问令牌解码结果。"""

    user_id: UUID
    email: str
    role: str
    jti: str
    issued_at: int
    expires_at: int
    kind: TokenKind = TokenKind.ACCESS


@dataclass(frozen=True)
class RefreshClaims:
    """刷新令牌解码结果，只携带主体 ID。"""

    user_id: UUID
    jti: str
    issued_at: int
    expires_at: int
    kind: TokenKind = TokenKind.REFRESH


TokenClaims = AccessClaims | RefreshClaims


def issued_before_password_change(issued_at: int, password_changed_at: datetime | None) -> bool:
    """令牌签发时间早于最近一次改密（按秒比较）时视为过期凭据。"""
    changed_at = as_utc(password_changed_at)
    return changed_at is not None and issued_at < int(changed_at.timestamp())


@dataclass(frozen=True)
class TokenPair:
    """一次签发的令牌对。"""

    access_token: str
    refresh_token: str
    access_ttl: int
    refresh_expires_at: datetime


class TokenService:
    """令牌服务。"""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    def _secret_for(self, kind: TokenKind) -> str:
        access_secret = self._settings.access_token_secret
        refresh_secret = self._settings.refresh_token_secret
        if not access_secret or not refresh_secret:
            raise ConfigurationError(
                "access and refresh token secrets must both be configured",
                code="TOKEN_SECRET_MISSING",
            )
        if access_secret == refresh_secret:
            raise ConfigurationError(
                "access and refresh token secrets must differ",
                code="TOKEN_SECRET_REUSED",
            )
        return access_secret if kind == TokenKind.ACCESS else refresh_secret

    def _encode(self, kind: TokenKind, subject: UUID, ttl_seconds: int, extra: dict[str, Any]) -> tuple[str, datetime]:
        secret = self._secret_for(kind)
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds)
        claims: dict[str, Any] = {
            "sub": str(subject),
            "typ": kind.value,
            "jti": str(uuid4()),
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        claims.update(extra)
        token = jwt.encode(claims, secret, algorithm=self._settings.jwt_algorithm)
        return token, expires_at

    def issue_access_token(self, user: User) -> tuple[str, datetime]:
        """签发访问令牌，载荷包含 ID、邮箱、角色。"""
        return self._encode(
            TokenKind.ACCESS,
            user.id,
            self._settings.access_token_ttl_seconds,
            {"email": user.email, "role": user.role},
        )

    def issue_refresh_token(self, user: User) -> tuple[str, datetime]:
        """签发刷新令牌，载荷只包含 ID。"""
        return self._encode(TokenKind.REFRESH, user.id, self._settings.refresh_token_ttl_seconds, {})

    def issue_pair(self, user: User) -> TokenPair:
        access_token, _ = self.issue_access_token(user)
        refresh_token, refresh_expires_at = self.issue_refresh_token(user)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_ttl=self._settings.access_token_ttl_seconds,
            refresh_expires_at=refresh_expires_at,
        )

    def _decode(self, token: str, kind: TokenKind, *, verify_exp: bool = True) -> dict[str, Any]:
        return jwt.decode(
            token,
            self._secret_for(kind),
            algorithms=[self._settings.jwt_algorithm],
            audience=self._settings.jwt_audience,
            issuer=self._settings.jwt_issuer,
            leeway=self._settings.jwt_leeway_seconds,
            options={"require": _REQUIRED_CLAIMS, "verify_exp": verify_exp},
        )

    def _signed_as(self, token: str, kind: TokenKind) -> bool:
        try:
            self._decode(token, kind, verify_exp=False)
        except jwt.InvalidTokenError:
            return False
        return True

    def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """校验签名、有效期与令牌种类。"""
        try:
            payload = self._decode(token, expected_kind)
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except jwt.InvalidTokenError as exc:
            other_kind = TokenKind.REFRESH if expected_kind == TokenKind.ACCESS else TokenKind.ACCESS
            if self._signed_as(token, other_kind):
                raise WrongTokenKindError() from exc
            raise InvalidTokenError() from exc

        if payload.get("typ") != expected_kind.value:
            raise WrongTokenKindError()

        try:
            user_id = UUID(str(payload["sub"]))
        except ValueError as exc:
            raise InvalidTokenError() from exc

        if expected_kind == TokenKind.ACCESS:
            email = payload.get("email")
            role = payload.get("role")
            if not isinstance(email, str) or not isinstance(role, str):
                raise InvalidTokenError()
            return AccessClaims(
                user_id=user_id,
                email=email,
                role=role,
                jti=str(payload["jti"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        return RefreshClaims(
            user_id=user_id,
            jti=str(payload["jti"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )

    def rotate(
        self,
        db: Session,
        old_refresh_token: str,
        user: User,
        *,
        device: str | None = None,
        ip_address: str | None = None,
    ) -> TokenPair:
        """用旧刷新令牌换取新令牌对，并在同一事务内保存新记录。"""
        claims = self.verify(old_refresh_token, TokenKind.REFRESH)
        if claims.user_id != user.id:
            raise InvalidTokenError()

        owner = lock_token_owner(db, user.id)
        if owner is None:
            db.rollback()
            raise InvalidTokenError()
        if issued_before_password_change(claims.issued_at, owner.password_changed_at):
            db.rollback()
            raise InvalidTokenError("口令已修改，请重新登录。", code="TOKEN_STALE")

        if not consume_refresh_token(db, user.id, old_refresh_token):
            db.rollback()
            raise InvalidTokenError("刷新令牌已失效或已被使用。")

        pair = self.issue_pair(user)
        store_refresh_token(
            db,
            user.id,
            pair.refresh_token,
            pair.refresh_expires_at,
            device=device,
            ip_address=ip_address,
        )
        db.commit()
        logger.info("refresh token rotated user_id=%s", user.id)
        return pair


def decode_unverified(token: str) -> dict[str, Any]:
    """不校验签名解码载荷，仅用于排障。"""
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError() from exc


def token_expiry(token: str) -> datetime | None:
    """读取令牌过期时间（不校验签名）。"""
    exp = decode_unverified(token).get("exp")
    if not isinstance(exp, int):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
