# routers/users.py — Users, roles and the reporting hierarchy
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, get_current_principal, get_role_policy, require_top_role,
)
from database import get_db_session
from errors import NotAuthorized, NotFound
from hierarchy import HierarchyWalker
from models import User, Role
from principal import Principal, RolePolicy
from stores import UserDirectory

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str = ""


class RoleOut(BaseModel):
    id: str
    name: str
    description: str = ""


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    display_name: str = Field("", max_length=50)
    senior_person_id: Optional[str] = None
    role_ids: List[str] = Field(default_factory=list)


class UserOut(BaseModel):
    id: str
    email: str
    display_name: str
    roles: List[RoleOut] = []
    senior_person_id: Optional[str] = None
    is_active: bool
    created_at: str


class SeniorUpdate(BaseModel):
    senior_person_id: Optional[str] = None


class RolesUpdate(BaseModel):
    role_ids: List[str] = Field(default_factory=list)


class ChainMember(BaseModel):
    id: str
    display_name: str
    email: str


class SuperiorChainOut(BaseModel):
    user_id: str
    chain: List[ChainMember] = []
    truncated: bool = False
    warnings: List[str] = []


# --- Helpers ---

def _role_to_out(r: Role) -> RoleOut:
    return RoleOut(id=r.id, name=r.name, description=r.description or "")


def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        display_name=u.display_name or "",
        roles=[_role_to_out(r) for r in u.roles],
        senior_person_id=u.senior_person_id,
        is_active=u.is_active,
        created_at=u.created_at.isoformat() if u.created_at else "",
    )


async def _resolve_roles(directory: UserDirectory, role_ids: List[str]) -> List[Role]:
    roles = []
    for role_id in dict.fromkeys(role_ids):
        role = await directory.get_role(role_id)
        if role is None:
            raise NotFound(f"Role {role_id} not found")
        roles.append(role)
    return roles


async def _visible_user_ids(
    principal: Principal, policy: RolePolicy, walker: HierarchyWalker,
) -> Optional[List[str]]:
    """None means every user; leads see direct reports; others see themselves"""
    if policy.is_top_role(principal):
        return None
    if policy.is_hierarchy_lead(principal):
        return [principal.id, *await walker.direct_reports(principal.id)]
    return [principal.id]


async def _load_user(directory: UserDirectory, user_id: str) -> User:
    user = await directory.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


# --- Roles ---

@router.get("/roles", response_model=List[RoleOut])
async def list_roles(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """List all roles"""
    return [_role_to_out(r) for r in await UserDirectory(db).list_roles()]


@router.post("/roles", response_model=RoleOut, status_code=201)
async def create_role(
    data: RoleCreate,
    principal: Principal = Depends(require_top_role),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a role"""
    directory = UserDirectory(db)
    if await directory.get_role_by_name(data.name):
        raise HTTPException(status_code=409, detail="Role already exists")
    role = Role(name=data.name, description=data.description)
    db.add(role)
    await db.commit()
    return _role_to_out(role)


# --- Users ---

@router.post("", response_model=UserOut, status_code=201)
async def create_user(
    data: UserCreate,
    principal: Principal = Depends(require_top_role),
    db: AsyncSession = Depends(get_db_session),
):
    """Register a user with roles and an optional senior person"""
    directory = UserDirectory(db)
    if await directory.get_user_by_email(data.email):
        raise HTTPException(status_code=409, detail="User already exists")
    if data.senior_person_id:
        await _load_user(directory, data.senior_person_id)
    roles = await _resolve_roles(directory, data.role_ids)

    user = User(
        email=data.email,
        display_name=data.display_name or data.email.split("@")[0],
        password_hash=AuthService.hash_password(data.password),
        senior_person_id=data.senior_person_id,
        is_active=True,
        role_links=[],
    )
    db.add(user)
    await db.flush()
    await directory.set_roles(user, roles)
    await db.commit()

    return _user_to_out(await directory.reload(user.id))


@router.get("/visible", response_model=List[UserOut])
async def list_visible_users(
    search: Optional[str] = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Users the principal may pick from, scoped by role and hierarchy"""
    directory = UserDirectory(db)
    visible = await _visible_user_ids(principal, policy, HierarchyWalker(directory))
    users = await directory.list_users(user_ids=visible, search=search)
    return [_user_to_out(u) for u in users]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db_session),
):
    """Get a single user"""
    return _user_to_out(await _load_user(UserDirectory(db), user_id))


@router.get("/{user_id}/superiors", response_model=SuperiorChainOut)
async def get_superior_chain(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    policy: RolePolicy = Depends(get_role_policy),
    db: AsyncSession = Depends(get_db_session),
):
    """Reporting chain above a user, nearest superior first"""
    directory = UserDirectory(db)
    walker = HierarchyWalker(directory)
    visible = await _visible_user_ids(principal, policy, walker)
    if visible is not None and user_id not in visible:
        raise NotAuthorized()
    await _load_user(directory, user_id)

    chain_ids = await walker.superior_chain(user_id)
    users = await directory.get_users(chain_ids)
    return SuperiorChainOut(
        user_id=user_id,
        chain=[
            ChainMember(id=uid, display_name=users[uid].display_name or "", email=users[uid].email)
            for uid in chain_ids if uid in users
        ],
        truncated=bool(walker.warnings),
        warnings=[str(w) for w in walker.warnings],
    )


@router.put("/{user_id}/senior", response_model=UserOut)
async def set_senior_person(
    user_id: str,
    data: SeniorUpdate,
    principal: Principal = Depends(require_top_role),
    db: AsyncSession = Depends(get_db_session),
):
    """Set or clear a user's direct superior"""
    directory = UserDirectory(db)
    user = await _load_user(directory, user_id)
    if data.senior_person_id:
        if data.senior_person_id == user_id:
            raise HTTPException(status_code=400, detail="A user cannot be their own senior person")
        await _load_user(directory, data.senior_person_id)

    user.senior_person_id = data.senior_person_id
    await db.commit()
    return _user_to_out(await directory.reload(user.id))


@router.put("/{user_id}/roles", response_model=UserOut)
async def set_user_roles(
    user_id: str,
    data: RolesUpdate,
    principal: Principal = Depends(require_top_role),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace a user's ordered role set"""
    directory = UserDirectory(db)
    user = await _load_user(directory, user_id)
    roles = await _resolve_roles(directory, data.role_ids)
    await directory.set_roles(user, roles)
    await db.commit()
    return _user_to_out(await directory.reload(user.id))
