"""对象映射基础模型与通用混入。

三个联邦数据源各自拥有独立的声明基类：
- Base：本服务可读写的主库；
- BillingBase / StaffBase：由其他系统维护的只读库，本服务只声明查询所需字段，不负责建表。
"""

from datetime import datetime
from uuid import UUID
from uuid import uuid4

from sqlalchemy import DateTime, MetaData, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

_NAMING_CONVENTION = {
    "pk": "pk_%(table_name)s",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uk_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
}


class Base(DeclarativeBase):
    """主库对象映射声明基类。"""

    metadata = MetaData(naming_convention=_NAMING_CONVENTION)


class BillingBase(DeclarativeBase):
    """计费库（只读）声明基类。"""

    metadata = MetaData(naming_convention=_NAMING_CONVENTION)


class StaffBase(DeclarativeBase):
    """人事库（只读）声明基类。"""

    metadata = MetaData(naming_convention=_NAMING_CONVENTION)


class UUIDPrimaryKeyMixin:
    """提供统一 UUID 主键字段。"""

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4, comment="主键 ID。")


class TimestampMixin:
    """提供创建时间与更新时间字段。"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, comment="创建时间。"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="更新时间。",
    )
