import asyncio

import pytest
from ulid import ULID

import app.features.permissions.dependencies as permission_dependencies
from app.core.database.engine import AsyncSessionLocal
from app.features.permissions.dependencies import (
    get_governing_document,
    get_permission_document,
    save_matrix,
)
from app.features.permissions.errors import StaleDocument
from app.features.permissions.matrix import PermissionMatrix
from app.features.users.models import User


def _matrix(**flags) -> PermissionMatrix:
    return PermissionMatrix.from_document([{"module": "jobs", "actions": flags}])


def _subject() -> str:
    return f"agent-{ULID()}"


def test_racing_saves_from_same_version_only_one_wins(client):
    subject_id = _subject()

    async def scenario():
        async with AsyncSessionLocal() as db:
            await save_matrix(db, "agent", subject_id, _matrix(read=True), expected_version=0)

        async with AsyncSessionLocal() as first, AsyncSessionLocal() as second:
            # both editors load version 1
            assert (await get_permission_document(first, "agent", subject_id)).version == 1
            assert (await get_permission_document(second, "agent", subject_id)).version == 1

            saved = await save_matrix(second, "agent", subject_id, _matrix(create=True), expected_version=1)
            assert saved.version == 2

            with pytest.raises(StaleDocument) as excinfo:
                await save_matrix(first, "agent", subject_id, _matrix(delete=True), expected_version=1)
            assert excinfo.value.current_version == 2

        async with AsyncSessionLocal() as db:
            stored = await get_permission_document(db, "agent", subject_id)
            return stored.version, stored.permissions[0]["actions"]

    version, actions = asyncio.run(scenario())
    assert version == 2
    assert actions["create"] is True
    assert actions["delete"] is False


def test_racing_first_saves_only_one_wins(client, monkeypatch):
    subject_id = _subject()

    async def not_saved_yet(*args, **kwargs):
        return None

    async def scenario():
        async with AsyncSessionLocal() as db:
            await save_matrix(db, "agent", subject_id, _matrix(read=True), expected_version=0)

        # the second editor read before the first insert landed
        monkeypatch.setattr(permission_dependencies, "get_permission_document", not_saved_yet)
        async with AsyncSessionLocal() as db:
            with pytest.raises(StaleDocument) as excinfo:
                await save_matrix(db, "agent", subject_id, _matrix(delete=True), expected_version=0)
        monkeypatch.undo()

        async with AsyncSessionLocal() as db:
            stored = await get_permission_document(db, "agent", subject_id)
        return excinfo.value.current_version, stored.version

    current_version, stored_version = asyncio.run(scenario())
    assert current_version == 1
    assert stored_version == 1


def test_save_without_changes_still_bumps_version(client):
    subject_id = _subject()

    async def scenario():
        async with AsyncSessionLocal() as db:
            await save_matrix(db, "agent", subject_id, _matrix(read=True))
            document = await save_matrix(db, "agent", subject_id, _matrix(read=True), expected_version=1)
            return document.version

    assert asyncio.run(scenario()) == 2


def test_governing_document_falls_back_to_clinic_role_document(client):
    clinic_id = f"clinic-{ULID()}"
    doctor = User(id=str(ULID()), role="doctor", clinic_id=clinic_id)

    async def scenario():
        async with AsyncSessionLocal() as db:
            assert await get_governing_document(db, doctor) is None

            clinic_default = await save_matrix(db, "clinic", clinic_id, _matrix(read=True), role="doctor")
            assert (await get_governing_document(db, doctor)).id == clinic_default.id

            own = await save_matrix(db, "doctor", doctor.id, _matrix(create=True))
            assert (await get_governing_document(db, doctor)).id == own.id

    asyncio.run(scenario())
