from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.features.permissions.dependencies import require_permission, subject_for_user
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


guarded = FastAPI()


@guarded.post("/jobs")
async def create_job(user: User = Depends(require_permission("clinic_jobs", "create", "Job Posting"))):
    return {"created_by": user.id}


def _as(user: User) -> TestClient:
    guarded.dependency_overrides[get_current_user] = lambda: user
    return TestClient(guarded)


def test_subject_for_user():
    assert subject_for_user(User(id="u1", role="agent")) == ("agent", "u1")
    assert subject_for_user(User(id="u2", role="clinic", clinic_id="c9")) == ("clinic", "c9")
    assert subject_for_user(User(id="u3", role="clinic")) == ("clinic", "u3")


def test_require_permission(client, make_user, login):
    agent = make_user("agent")
    login(make_user("admin"))
    client.patch(f"/permissions/agent/{agent.id}", json={
        "moduleKey": "jobs", "action": "create", "value": True, "subModuleName": "Job Posting",
    })

    allowed = _as(agent).post("/jobs")
    assert allowed.status_code == 200
    assert allowed.json() == {"created_by": agent.id}

    denied = _as(make_user("agent")).post("/jobs")
    assert denied.status_code == 403
    assert denied.json()["detail"] == "Permission denied: create action not allowed for submodule Job Posting"

    assert _as(make_user("admin")).post("/jobs").status_code == 200
    guarded.dependency_overrides.clear()
