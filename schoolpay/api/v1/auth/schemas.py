from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr

from schoolpay.core.enums import UserRole


class DemoTokenRequest(BaseModel):
    user_id: UUID
    role: UserRole
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    capabilities: List[str]
