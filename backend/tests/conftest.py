# tests/conftest.py — Shared test fixtures
import os
from types import SimpleNamespace
from typing import List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["TOP_ROLE_NAME"] = "CEO"
os.environ["MANAGER_ROLE_NAMES"] = "Engineer,Manager"
os.environ["HIERARCHY_LEAD_ROLE_NAME"] = "Project Lead"
os.environ["ACTIVITY_TIMEZONE"] = "UTC"

from models import Base, User, Role, UserRoleLink
from auth import AuthService
from database import get_db_session
from main import app

ROLE_NAMES = ["CEO", "Manager", "Engineer", "Project Lead", "Designer"]


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def roles(db_session):
    """The distinguished roles plus one ordinary role, keyed by name"""
    created = {name: Role(name=name, description=f"{name} role") for name in ROLE_NAMES}
    db_session.add_all(created.values())
    await db_session.commit()
    return created


async def make_user(
    db_session,
    email: str,
    display_name: str,
    roles: List[Role],
    senior: Optional[User] = None,
    password: str = "TestPassword123!",
) -> User:
    user = User(
        email=email,
        display_name=display_name,
        password_hash=AuthService.hash_password(password),
        senior_person_id=senior.id if senior else None,
        is_active=True,
        role_links=[UserRoleLink(role=r, position=i) for i, r in enumerate(roles)],
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def org(db_session, roles):
    """A small reporting hierarchy.

    ceo
    └── lead (Project Lead, Manager)
        └── engineer (Engineer)
            └── designer (Designer)
    outsider (Engineer) reports to nobody
    """
    ceo = await make_user(db_session, "ceo@taskscope.dev", "Casey CEO", [roles["CEO"]])
    lead = await make_user(
        db_session, "lead@taskscope.dev", "Lee Lead",
        [roles["Project Lead"], roles["Manager"]], senior=ceo,
    )
    engineer = await make_user(
        db_session, "engineer@taskscope.dev", "Erin Engineer", [roles["Engineer"]], senior=lead,
    )
    designer = await make_user(
        db_session, "designer@taskscope.dev", "Dana Designer", [roles["Designer"]], senior=engineer,
    )
    outsider = await make_user(
        db_session, "outsider@taskscope.dev", "Oscar Outsider", [roles["Engineer"]],
    )
    return SimpleNamespace(
        ceo=ceo, lead=lead, engineer=engineer, designer=designer, outsider=outsider,
    )


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# IN-MEMORY FAKES for the engine components
# ============================================================

class FakeDirectory:
    """Directory over a {user_id: senior_id} map; counts lookups"""

    def __init__(self, seniors: dict, missing=()):
        self.seniors = dict(seniors)
        self.missing = set(missing)
        self.lookups = 0

    async def get_user(self, user_id):
        self.lookups += 1
        if user_id in self.missing or user_id not in self.seniors:
            return None
        return SimpleNamespace(id=user_id, senior_person_id=self.seniors[user_id])

    async def list_direct_reports(self, user_id):
        return sorted(uid for uid, senior in self.seniors.items() if senior == user_id)


class FakeTaskStore:
    """Holds the ACL of in-memory tasks and mirrors writes onto them"""

    def __init__(self):
        self.tasks = {}
        self.add_calls = []

    def register(self, task):
        self.tasks[task.id] = task
        return task

    async def add_access_members(self, task_id, user_ids):
        user_ids = list(user_ids)
        self.add_calls.append(user_ids)
        task = self.tasks[task_id]
        for uid in user_ids:
            if uid not in task.can_access:
                task.can_access.append(uid)

    async def remove_access_members(self, task_id, user_ids):
        task = self.tasks[task_id]
        task.can_access = [uid for uid in task.can_access if uid not in set(user_ids)]


def make_task(task_id="t1", created_by="A", assigned_to=None, can_access=None):
    return SimpleNamespace(
        id=task_id,
        created_by_id=created_by,
        assigned_to=list(assigned_to or []),
        can_access=list(can_access or []),
    )


@pytest.fixture
def fake_store():
    return FakeTaskStore()
