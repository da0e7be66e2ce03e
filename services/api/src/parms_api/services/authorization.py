"""角色层级与资源归属校验。

统一维护一张有序角色表，所有授权判断都经过这里，避免路由层各自拼写角色字符串。
校验分两类：
1. 只依赖已知数据（角色、档案 ID）的纯函数：require_role / check_ownership；
2. 需要先加载资源才能判断归属的场景：check_collection_access 只给出“加载后需校验归属”的结论，
   由调用方在加载后调用 ensure_appointment_owner 等函数完成判断。
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from uuid import UUID

from parms_api.core.config import get_settings
from parms_api.core.errors import AuthorizationError
from parms_api.models.enums import Role

# 角色等级表，必须全序且单调；未知角色一律为 0。
ROLE_LEVELS: dict[str, int] = {
    Role.PATIENT: 1,
    Role.FRONTDESK: 2,
    Role.DOCTOR: 3,
    Role.ADMIN: 4,
    Role.SUPERADMIN: 5,
}


class RoleMatch(StrEnum):
    """角色匹配方式。"""

    EXACT = "exact"
    AT_LEAST = "at_least"


class ResourceKind(StrEnum):
    """需要先加载再判断归属的资源类别。"""

    APPOINTMENT = "appointment"
    PATIENT_RECORD = "patient_record"


class AccessDecision(StrEnum):
    GRANTED = "granted"
    OWNERSHIP_REQUIRED = "ownership_required"


@dataclass(frozen=True)
class Principal:
    """授权判断所需的主体信息。"""

    user_id: UUID
    email: str
    role: str
    profile_id: UUID | None = None


# 资源类别 -> 角色 -> 访问结论；表中不存在的角色无权访问该类资源。
_COLLECTION_RULES: dict[ResourceKind, dict[str, AccessDecision]] = {
    ResourceKind.APPOINTMENT: {
        Role.PATIENT: AccessDecision.OWNERSHIP_REQUIRED,
        Role.FRONTDESK: AccessDecision.GRANTED,
        Role.DOCTOR: AccessDecision.OWNERSHIP_REQUIRED,
        Role.ADMIN: AccessDecision.GRANTED,
        Role.SUPERADMIN: AccessDecision.GRANTED,
    },
    ResourceKind.PATIENT_RECORD: {
        Role.PATIENT: AccessDecision.OWNERSHIP_REQUIRED,
        Role.DOCTOR: AccessDecision.GRANTED,
        Role.ADMIN: AccessDecision.GRANTED,
        Role.SUPERADMIN: AccessDecision.GRANTED,
    },
}


def role_level(role: str | None) -> int:
    """返回角色等级，未知角色为 0。"""
    if not role:
        return 0
    return ROLE_LEVELS.get(role, 0)


def _role_error(role: str | None, allowed: Sequence[str], mode: RoleMatch) -> AuthorizationError | None:
    level = role_level(role)
    if level == 0 or not allowed:
        return AuthorizationError("权限不足。", code="INSUFFICIENT_ROLE")

    if mode == RoleMatch.EXACT:
        if role in allowed:
            return None
        return AuthorizationError(
            f"该操作仅允许以下角色：{', '.join(allowed)}。",
            code="INSUFFICIENT_ROLE",
            details={"allowed_roles": list(allowed)},
        )

    required = min(role_level(item) for item in allowed)
    if required > 0 and level >= required:
        return None
    # 至少模式不暴露层级细节。
    return AuthorizationError("权限不足。", code="INSUFFICIENT_ROLE")


def require_role(role: str | None, allowed: Sequence[str], mode: RoleMatch = RoleMatch.EXACT) -> None:
    """校验角色，不满足时抛出 AuthorizationError。"""
    error = _role_error(role, allowed, mode)
    if error is not None:
        raise error


def _same_id(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left).strip().lower() == str(right).strip().lower()


def _ownership_error(principal: Principal, resource_owner_id: Any) -> AuthorizationError | None:
    level = role_level(principal.role)
    if level == 0:
        return AuthorizationError("权限不足。", code="INSUFFICIENT_ROLE")
    if level > role_level(get_settings().self_service_role):
        return None
    if _same_id(principal.profile_id, resource_owner_id):
        return None
    return AuthorizationError("只能访问本人关联的资源。", code="OWNERSHIP_REQUIRED")


def check_ownership(principal: Principal, resource_owner_id: Any) -> None:
    """自助层主体只能访问关联档案本身；更高等级角色直接放行。"""
    error = _ownership_error(principal, resource_owner_id)
    if error is not None:
        raise error


def check_collection_access(principal: Principal, resource_kind: ResourceKind) -> AccessDecision:
    """判断主体对某类资源的访问方式。

    返回 GRANTED 表示无需归属校验；OWNERSHIP_REQUIRED 表示调用方须在加载资源后校验归属。
    """
    decision = _COLLECTION_RULES.get(resource_kind, {}).get(principal.role)
    if decision is None:
        raise AuthorizationError("无权限访问该类资源。", details={"resource_kind": resource_kind.value})
    return decision


def ensure_appointment_owner(principal: Principal, appointment: Any) -> None:
    """加载预约后校验归属：患者对应 patient_id，医生对应 doctor_id。"""
    decision = check_collection_access(principal, ResourceKind.APPOINTMENT)
    if decision == AccessDecision.GRANTED:
        return
    if principal.role == Role.DOCTOR:
        owner_id = appointment.doctor_id
    else:
        owner_id = appointment.patient_id
    if not _same_id(principal.profile_id, owner_id):
        raise AuthorizationError("只能访问本人关联的预约。", code="OWNERSHIP_REQUIRED")


# 守卫：返回 None 表示继续，返回异常表示终止。
Guard = Callable[[Principal, Mapping[str, Any]], AuthorizationError | None]


def at_least(role: str) -> Guard:
    """等级不低于指定角色。"""

    def _guard(principal: Principal, _params: Mapping[str, Any]) -> AuthorizationError | None:
        return _role_error(principal.role, [role], RoleMatch.AT_LEAST)

    return _guard


def exactly_one_of(*roles: str) -> Guard:
    """角色必须是给定集合之一。"""

    def _guard(principal: Principal, _params: Mapping[str, Any]) -> AuthorizationError | None:
        return _role_error(principal.role, list(roles), RoleMatch.EXACT)

    return _guard


def owns(resource_id: str | Callable[[Mapping[str, Any]], Any]) -> Guard:
    """资源归属守卫，resource_id 为路径参数名或取值函数。"""

    def _guard(principal: Principal, params: Mapping[str, Any]) -> AuthorizationError | None:
        owner_id = resource_id(params) if callable(resource_id) else params.get(resource_id)
        return _ownership_error(principal, owner_id)

    return _guard


def collection_access(resource_kind: ResourceKind, resource_id: str) -> Guard:
    """资源类别守卫：GRANTED 直接放行，OWNERSHIP_REQUIRED 时按路径参数校验归属。"""

    def _guard(principal: Principal, params: Mapping[str, Any]) -> AuthorizationError | None:
        try:
            decision = check_collection_access(principal, resource_kind)
        except AuthorizationError as exc:
            return exc
        if decision == AccessDecision.GRANTED:
            return None
        return _ownership_error(principal, params.get(resource_id))

    return _guard


def run_guards(principal: Principal, guards: Iterable[Guard], params: Mapping[str, Any] | None = None) -> None:
    """按顺序执行守卫，遇到第一个终止结果即抛出。"""
    resolved_params = params or {}
    for guard in guards:
        error = guard(principal, resolved_params)
        if error is not None:
            raise error
