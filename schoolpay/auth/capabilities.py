"""Role capability sets. Roles never branch on their names outside this module."""

from typing import Dict, FrozenSet

from schoolpay.core.enums import UserRole

CAN_PAY = "can_pay"
CAN_MANAGE = "can_manage"
CAN_EXPORT = "can_export"

ROLE_CAPABILITIES: Dict[UserRole, FrozenSet[str]] = {
    UserRole.PARENT: frozenset({CAN_PAY}),
    UserRole.STUDENT: frozenset({CAN_PAY}),
    UserRole.ADMIN: frozenset({CAN_MANAGE, CAN_EXPORT}),
}


def capabilities_for(role: UserRole) -> FrozenSet[str]:
    return ROLE_CAPABILITIES.get(role, frozenset())
