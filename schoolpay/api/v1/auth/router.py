from fastapi import APIRouter, HTTPException
from fastapi import status as http_status

from schoolpay.auth.capabilities import capabilities_for
from schoolpay.auth.security import create_access_token
from schoolpay.core.config import settings

from .schemas import DemoTokenRequest, TokenResponse

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
async def issue_demo_token(payload: DemoTokenRequest) -> TokenResponse:
    """Role selector: issue a token for any user id and role. Disabled unless DEMO_LOGIN_ENABLED is set."""
    if not settings.demo_login_enabled:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Not Found")
    claims = {"name": payload.name, "email": payload.email, "phone": payload.phone}
    return TokenResponse(
        access_token=create_access_token(user_id=payload.user_id, role=payload.role, claims=claims),
        role=payload.role,
        capabilities=sorted(capabilities_for(payload.role)),
    )
