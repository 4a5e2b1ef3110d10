# auth.py — Token handling and principal resolution for the task dashboard
# Features:
# - JWT (HS256) access tokens with JTI
# - bcrypt password hashing
# - Principal resolution with configurable distinguished roles
# - Unauthenticated and unknown-principal collapse to one 401 outcome

import os
import uuid
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import Unauthenticated, NotAuthorized
from models import User
from principal import Principal, PrincipalResolver, RolePolicy
from stores import UserDirectory

logger = logging.getLogger("taskscope.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY:
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer(auto_error=False)

_role_policy = RolePolicy.from_env()


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentPrincipalOut(BaseModel):
    id: str
    email: str
    display_name: str
    roles: List[str] = []
    access_level: str


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> str:
        """Verify an access token and return its subject (user id)"""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise Unauthenticated()
        except JWTError:
            logger.info("Rejected invalid token")
            raise Unauthenticated()

        if payload.get("type") != "access" or not payload.get("sub"):
            raise Unauthenticated()
        return payload["sub"]

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        stmt = select(User).where(User.email == email)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            return None
        if not user.is_active:
            return None
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_role_policy() -> RolePolicy:
    return _role_policy


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
    policy: RolePolicy = Depends(get_role_policy),
) -> Principal:
    resolver = PrincipalResolver(
        directory=UserDirectory(db),
        verify=AuthService.verify_token,
        policy=policy,
    )
    return await resolver.resolve(credentials.credentials if credentials else None)


async def require_top_role(
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
) -> Principal:
    if not policy.is_top_role(principal):
        raise NotAuthorized("Only the top role may manage users and roles")
    return principal
