# routers/auth.py — Login and current-principal endpoints
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserLogin, TokenResponse, CurrentPrincipalOut,
    get_current_principal, get_role_policy, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from principal import Principal, RolePolicy

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = AuthService.create_access_token({"sub": user.id, "email": user.email})
    return TokenResponse(
        access_token=token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user.id,
            "email": user.email,
            "display_name": user.display_name or "",
            "roles": [r.name for r in user.roles],
        },
    )


@router.get("/me", response_model=CurrentPrincipalOut)
async def get_current_user_info(
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
):
    """Get the authenticated principal with its resolved roles"""
    return CurrentPrincipalOut(
        id=principal.id,
        email=principal.email,
        display_name=principal.display_name,
        roles=list(principal.role_names),
        access_level=policy.label(principal),
    )
