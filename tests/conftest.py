import asyncio
import os
import tempfile

# Must be set before app.core.config is imported
_db_dir = tempfile.mkdtemp(prefix="permissions-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["EDIT_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient
from ulid import ULID

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.matrix import PermissionMatrix
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.main import app


async def _add_user(**fields) -> User:
    async with AsyncSessionLocal() as db:
        user = User(**fields)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


@pytest.fixture(scope="session")
def client():
    asyncio.run(init_db())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(client):
    """Persist a user so ownership checks can find it."""
    def _make_user(role: str = "agent", **fields) -> User:
        user_id = str(ULID())
        fields.setdefault("appwrite_id", f"aw-{user_id}")
        fields.setdefault("email", f"{user_id.lower()}@example.com")
        fields.setdefault("name", f"{role} {user_id[-6:]}")
        return asyncio.run(_add_user(id=user_id, role=role, **fields))
    return _make_user


@pytest.fixture
def login():
    """Make requests run as the given user."""
    def _login(user: User) -> User:
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    yield _login
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def jobs_matrix() -> PermissionMatrix:
    return PermissionMatrix.from_document([
        {
            "module": "jobs",
            "actions": {
                "all": False, "create": True, "read": False, "update": False,
                "delete": False, "print": False, "export": False, "approve": False,
            },
            "subModules": [
                {
                    "name": "Job Posting",
                    "icon": "megaphone",
                    "order": 1,
                    "actions": {
                        "all": False, "create": False, "read": True, "update": False,
                        "delete": False, "print": False, "export": False, "approve": False,
                    },
                }
            ],
        }
    ])
