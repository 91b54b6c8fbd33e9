from fastapi import Depends, HTTPException, status

from schoolpay.auth.capabilities import CAN_MANAGE
from schoolpay.auth.dependencies import get_current_user
from schoolpay.auth.schemas import CurrentUser
from schoolpay.core.models import Student


def can_view_student(user: CurrentUser, student: Student) -> bool:
    """Managers see everyone; parents see their children; students see their own record."""
    if user.can(CAN_MANAGE):
        return True
    return student.parent_id == user.id or student.user_id == user.id or student.id == user.id


def require_capability(capability: str):
    """
    Dependency factory to enforce a capability.

    Example:
        Depends(require_capability(CAN_EXPORT))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if not current_user.can(capability):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
