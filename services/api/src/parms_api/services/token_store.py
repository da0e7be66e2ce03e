"""刷新令牌记录持久化。

库中只保存令牌摘要；每个用户最多保留最近 N 条，写入前先清理过期记录。
所有失效操作都是单条 DELETE，rowcount 即为实际失效条数。
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from parms_api.core.config import get_settings
from parms_api.models.auth import RefreshToken, User
from parms_api.services.local_auth import digest_token
from parms_api.utils.timeutil import utc_now


def lock_token_owner(db: Session, user_id: UUID) -> User | None:
    """锁定并重新读取用户行。

    轮换、改密与重置口令都先取得该行锁，同一用户上的令牌写入因此串行执行。
    SQLite 不支持 FOR UPDATE，由其单写者锁提供同样的顺序。
    """
    return db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()


def prune_expired_refresh_tokens(db: Session, user_id: UUID, *, now: datetime | None = None) -> int:
    """删除用户已过期的刷新令牌记录。"""
    moment = now or utc_now()
    result = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.expires_at <= moment)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _evict_beyond_cap(db: Session, user_id: UUID, cap: int) -> int:
    overflow_ids = (
        db.execute(
            select(RefreshToken.id)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .offset(cap)
        )
        .scalars()
        .all()
    )
    if not overflow_ids:
        return 0
    result = db.execute(
        delete(RefreshToken).where(RefreshToken.id.in_(overflow_ids)).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def store_refresh_token(
    db: Session,
    user_id: UUID,
    raw_token: str,
    expires_at: datetime,
    *,
    device: str | None = None,
    ip_address: str | None = None,
) -> RefreshToken:
    """保存新的刷新令牌记录（不提交事务）。"""
    settings = get_settings()
    now = utc_now()
    prune_expired_refresh_tokens(db, user_id, now=now)
    record = RefreshToken(
        user_id=user_id,
        token_hash=digest_token(raw_token),
        created_at=now,
        expires_at=expires_at,
        device=(device or "")[:256] or None,
        ip_address=(ip_address or "")[:64] or None,
    )
    db.add(record)
    db.flush()
    _evict_beyond_cap(db, user_id, settings.refresh_token_max_per_user)
    return record


def consume_refresh_token(db: Session, user_id: UUID, raw_token: str) -> bool:
    """原子消费一条未过期记录；并发调用中最多一个返回 True。"""
    result = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.token_hash == digest_token(raw_token))
        .where(RefreshToken.expires_at > utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def revoke_refresh_token(db: Session, user_id: UUID, raw_token: str) -> int:
    """吊销单条记录（不区分是否过期）。"""
    result = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.token_hash == digest_token(raw_token))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def revoke_all_refresh_tokens(db: Session, user_id: UUID) -> int:
    """吊销用户全部刷新令牌（登出全部设备、改密、重置口令）。"""
    result = db.execute(
        delete(RefreshToken).where(RefreshToken.user_id == user_id).execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def list_refresh_tokens(db: Session, user_id: UUID) -> list[RefreshToken]:
    """按创建时间倒序列出用户的刷新令牌记录。"""
    return list(
        db.execute(
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
        )
        .scalars()
        .all()
    )
