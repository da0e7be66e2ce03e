"""登录失败计数与账号锁定。

状态机：clear -> warned(1..阈值-1) -> locked；locked 只有在锁定窗口过去后
通过一次成功登录回到 clear。计数更新是单条 UPDATE，由数据库基于当前行值计算，
并发登录失败不会丢失计数。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy import and_, case, literal, null, or_, update
from sqlalchemy.orm import Session

from parms_api.core.config import Settings, get_settings
from parms_api.core.errors import AuthorizationError
from parms_api.models.auth import User
from parms_api.models.enums import LockState
from parms_api.utils.timeutil import as_utc, utc_now

logger = logging.getLogger(__name__)

LOCKED_MESSAGE = "账号已被临时锁定，请稍后再试。"


@dataclass(frozen=True)
class LockStatus:
    """账号锁定状态快照。"""

    state: LockState
    failed_attempts: int
    locked_until: datetime | None
    remaining_attempts: int


class AccountGuard:
    """账号锁定守卫。"""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.threshold = settings.lockout_threshold
        self.duration = timedelta(seconds=settings.lockout_duration_seconds)

    def is_locked(self, user: User, now: datetime | None = None) -> bool:
        """锁定截止时间存在且晚于当前时间即视为锁定。"""
        locked_until = as_utc(user.locked_until)
        return locked_until is not None and locked_until > (now or utc_now())

    def ensure_can_authenticate(self, user: User, now: datetime | None = None) -> None:
        """锁定或停用的账号一律拒绝，锁定提示与口令是否正确无关。"""
        if self.is_locked(user, now):
            raise AuthorizationError(LOCKED_MESSAGE, code="ACCOUNT_LOCKED")
        if not user.is_active:
            raise AuthorizationError("账号已停用，请联系管理员。", code="ACCOUNT_INACTIVE")

    def lock_state(self, user: User, now: datetime | None = None) -> LockStatus:
        if self.is_locked(user, now):
            state = LockState.LOCKED
        elif user.failed_login_attempts > 0:
            state = LockState.WARNED
        else:
            state = LockState.CLEAR
        return LockStatus(
            state=state,
            failed_attempts=user.failed_login_attempts,
            locked_until=as_utc(user.locked_until),
            remaining_attempts=max(0, self.threshold - user.failed_login_attempts),
        )

    def record_failure(self, db: Session, user: User, now: datetime | None = None) -> LockStatus:
        """原子累加失败次数，达到阈值时写入锁定截止时间（不提交事务）。"""
        moment = now or utc_now()
        lock_at = literal(moment + self.duration, type_=User.locked_until.type)
        lock_expired = and_(User.locked_until.is_not(None), User.locked_until < moment)
        not_locked = or_(User.locked_until.is_(None), User.locked_until <= moment)
        # 过期锁重置后计数为 1，阈值为 1 时同样立即锁定。
        locked_after_reset = lock_at if self.threshold <= 1 else null()

        db.execute(
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=case(
                    (lock_expired, 1),
                    else_=User.failed_login_attempts + 1,
                ),
                locked_until=case(
                    (lock_expired, locked_after_reset),
                    (and_(not_locked, User.failed_login_attempts + 1 >= self.threshold), lock_at),
                    else_=User.locked_until,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        db.refresh(user)
        status = self.lock_state(user, moment)
        if status.state == LockState.LOCKED:
            logger.warning("account locked user_id=%s attempts=%s", user.id, status.failed_attempts)
        else:
            logger.info("login failure recorded user_id=%s attempts=%s", user.id, status.failed_attempts)
        return status

    def record_success(self, db: Session, user: User, now: datetime | None = None) -> None:
        """清空失败计数与锁定，记录最近登录时间（不提交事务）。"""
        moment = now or utc_now()
        db.execute(
            update(User)
            .where(User.id == user.id)
            .values(failed_login_attempts=0, locked_until=None, last_login_at=moment)
            .execution_options(synchronize_session=False)
        )
        db.refresh(user)
