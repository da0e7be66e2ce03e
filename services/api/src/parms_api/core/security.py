"""令牌提取与访问令牌黑名单。

刷新令牌的吊销依赖主库中的逐用户记录列表；访问令牌本身无状态，
只有主动登出时才将其 jti 写入黑名单，直到令牌自然过期。
"""

from datetime import datetime, timezone
import logging
import re
from threading import Lock

from redis import Redis
from redis.exceptions import RedisError

from parms_api.core.config import get_settings
from parms_api.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

_LOCAL_DENYLIST: dict[str, int] = {}
_LOCAL_LOCK = Lock()
_redis_client: Redis | None = None


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _cleanup_local(now_ts: int) -> None:
    expired_keys = [key for key, expires_at in _LOCAL_DENYLIST.items() if expires_at <= now_ts]
    for key in expired_keys:
        _LOCAL_DENYLIST.pop(key, None)


def _get_redis() -> Redis | None:
    global _redis_client
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def _key_for_jti(jti: str) -> str:
    settings = get_settings()
    return f"{settings.access_denylist_prefix}{jti}"


def deny_access_token(jti: str, exp_ts: int) -> None:
    """将访问令牌 jti 拉黑到令牌过期时间。"""
    now_ts = _now_ts()
    ttl = max(1, exp_ts - now_ts)
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            redis_client.setex(_key_for_jti(jti), ttl, "1")
            return
        except RedisError:
            # Redis 不可用时回退到进程内缓存，保证登出语义尽量可用。
            logger.warning("redis unavailable, access denylist falls back to local cache")

    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        _LOCAL_DENYLIST[jti] = exp_ts


def is_access_token_denied(jti: str) -> bool:
    """判断访问令牌 jti 是否已被拉黑。"""
    redis_client = _get_redis()
    if redis_client is not None:
        try:
            return bool(redis_client.exists(_key_for_jti(jti)))
        except RedisError:
            logger.warning("redis unavailable, access denylist lookup falls back to local cache")

    now_ts = _now_ts()
    with _LOCAL_LOCK:
        _cleanup_local(now_ts)
        expires_at = _LOCAL_DENYLIST.get(jti)
        return expires_at is not None and expires_at > now_ts


def reset_local_denylist() -> None:
    """清空进程内黑名单（测试隔离使用）。"""
    global _redis_client
    with _LOCAL_LOCK:
        _LOCAL_DENYLIST.clear()
    _redis_client = None


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None, cookie_token: str | None = None) -> str:
    """从 Authorization 头提取 Bearer 令牌，缺失时回退到 Cookie。

    兼容重复头被逗号拼接的场景，取最后一个非占位符的令牌。
    """
    if authorization:
        tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
        for candidate in reversed(tokens):
            token = candidate.strip()
            if token and not _is_placeholder_token(token):
                return token
        if tokens:
            raise AuthenticationError(
                "认证失败：Authorization 仍为变量占位符，未替换为真实访问令牌。",
                code="AUTH_TOKEN_PLACEHOLDER_NOT_RESOLVED",
            )

    if cookie_token and cookie_token.strip():
        return cookie_token.strip()

    raise AuthenticationError("缺少认证令牌。")
