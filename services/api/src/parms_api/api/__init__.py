"""路由模块导出集合。"""

from . import appointments, auth, dashboard, health, patients, prescriptions

__all__ = ["appointments", "auth", "dashboard", "health", "patients", "prescriptions"]
