"""数据库声明基类导出。

不执行自动建表或结构同步：主库结构由迁移脚本维护，
计费库与人事库由其他系统维护，本服务只读。
"""

from parms_api.models.base import Base, BillingBase, StaffBase

# 数据源名 -> 声明基类，测试与本地初始化按此建表。
METADATA_BY_STORE = {
    "primary": Base.metadata,
    "billing": BillingBase.metadata,
    "staff": StaffBase.metadata,
}

__all__ = ["Base", "BillingBase", "METADATA_BY_STORE", "StaffBase"]
