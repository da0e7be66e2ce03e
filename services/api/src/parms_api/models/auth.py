"""认证主体、凭据与刷新令牌模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from parms_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from parms_api.models.enums import Role


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """认证主体。只做软状态变更，不做物理删除。"""

    __tablename__ = "users"

    # 登录邮箱，统一小写后全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # 角色名，未知角色在授权时视为最低等级 0。
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=Role.PATIENT, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # 连续登录失败次数，仅通过原子 UPDATE 修改。
    failed_login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # 锁定截止时间，为空或已过去表示未锁定。
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # 最近一次修改口令时间，早于该时间签发的访问令牌一律失效。
    password_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # 关联的患者 / 医生档案 ID，用于资源归属校验。
    profile_id: Mapped[UUID | None] = mapped_column(Uuid, index=True)
    profile_model: Mapped[str | None] = mapped_column(String(32))


class UserCredential(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户本地凭据，只归属于单个用户，永不对外序列化。"""

    __tablename__ = "user_credentials"
    __table_args__ = (UniqueConstraint("user_id", name="uk_user_credential_user"),)

    # 用户 ID（逻辑关联 users.id，不声明数据库外键）。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    password_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # 重置口令令牌只存 sha256 摘要。
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    email_verification_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    email_verification_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RefreshToken(Base, UUIDPrimaryKeyMixin):
    """刷新令牌记录。每个用户只保留最近 N 条，保存前清理过期记录。"""

    __tablename__ = "refresh_tokens"

    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 令牌原文的 sha256 摘要，库中不保存原文。
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    device: Mapped[str | None] = mapped_column(String(256))
    ip_address: Mapped[str | None] = mapped_column(String(64))
