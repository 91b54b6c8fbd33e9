from typing import FrozenSet, Optional
from uuid import UUID

from pydantic import BaseModel

from schoolpay.core.enums import UserRole


class CurrentUser(BaseModel):
    """Caller resolved from the access token. There is no user table; the token is the identity."""

    id: UUID
    role: UserRole
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    capabilities: FrozenSet[str] = frozenset()

    def can(self, capability: str) -> bool:
        return capability in self.capabilities
