"""本地账号口令与一次性令牌工具。"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import secrets

from parms_api.core.config import get_settings

# 未知账号登录时用于消耗同等计算量的占位哈希，避免通过响应耗时枚举邮箱。
_DUMMY_PASSWORD_HASH: str | None = None


def normalize_email(email: str) -> str:
    """标准化邮箱（去空白 + 小写）。"""
    return email.strip().lower()


def hash_password(password: str) -> str:
    """使用 PBKDF2-SHA256 生成口令哈希。"""
    settings = get_settings()
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        settings.password_hash_iterations,
    )
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"pbkdf2_sha256${settings.password_hash_iterations}${salt_b64}${digest_b64}"


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配。"""
    try:
        algorithm, iterations_text, salt_b64, expected_digest_b64 = password_hash.split("$", 3)
        if algorithm != "pbkdf2_sha256":
            return False
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected_digest = base64.b64decode(expected_digest_b64.encode("ascii"))
    except (ValueError, TypeError, binascii.Error):
        return False

    actual_digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual_digest, expected_digest)


def burn_password_check(password: str) -> None:
    """对不存在的账号执行一次等价校验，结果丢弃。"""
    global _DUMMY_PASSWORD_HASH
    if _DUMMY_PASSWORD_HASH is None:
        _DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(16))
    verify_password(password, _DUMMY_PASSWORD_HASH)


def digest_token(raw_token: str) -> str:
    """一次性令牌与刷新令牌统一以 sha256 十六进制摘要落库。"""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class OneTimeToken:
    """一次性令牌：原文只交给通知通道，库中只存摘要。"""

    raw: str
    digest: str
    expires_at: datetime


def issue_one_time_token(ttl_seconds: int) -> OneTimeToken:
    """生成 32 字节随机一次性令牌（重置口令 / 邮箱验证）。"""
    raw = secrets.token_hex(32)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    return OneTimeToken(raw=raw, digest=digest_token(raw), expires_at=expires_at)


def issue_password_reset_token() -> OneTimeToken:
    return issue_one_time_token(get_settings().password_reset_ttl_seconds)


def issue_email_verification_token() -> OneTimeToken:
    return issue_one_time_token(get_settings().email_verification_ttl_seconds)
