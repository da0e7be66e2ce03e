"""领域枚举定义。"""

from enum import StrEnum


class Role(StrEnum):
    """账号角色，按权限从低到高排列。"""

    PATIENT = "patient"  # 自助层，仅能访问本人关联资源。
    FRONTDESK = "frontdesk"  # 前台行政人员。
    DOCTOR = "doctor"  # 临床医生。
    ADMIN = "admin"  # 系统管理员。
    SUPERADMIN = "superadmin"  # 超级管理员，可创建各类账号。


class ProfileModel(StrEnum):
    """账号关联的业务档案类型。"""

    PATIENT = "patient"
    DOCTOR = "doctor"


class TokenKind(StrEnum):
    """令牌种类，写入签名载荷的 typ 声明。"""

    ACCESS = "access"
    REFRESH = "refresh"


class LockState(StrEnum):
    """登录失败锁定状态机。"""

    CLEAR = "clear"  # 无失败记录。
    WARNED = "warned"  # 已有失败记录，尚未达到阈值。
    LOCKED = "locked"  # 锁定窗口内，拒绝任何登录尝试。


class PatientStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AppointmentStatus(StrEnum):
    """预约状态。"""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PrescriptionStatus(StrEnum):
    """处方状态。"""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
