# tests/test_tasks.py — Task assignment and status tests
import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import create_project, get_auth_headers


async def _create_task(client: AsyncClient, creator, project, assignee, **extra) -> dict:
    res = await client.post("/api/tasks", headers=get_auth_headers(creator), json={
        "title": "Pour foundations",
        "projectId": project.id,
        "assignedTo": assignee.id,
        "dueDate": "2026-11-20",
        **extra,
    })
    assert res.status_code == 201
    return res.json()


@pytest.mark.asyncio
class TestTasks:
    async def test_create_notifies_assignee_and_managers(self, client: AsyncClient, db_session,
                                                         manager_user, staff_user, outbox):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user, priority="High")
        assert task["status"] == "To Do"
        assert task["priority"] == "High"
        assert task["project"]["projectName"] == project.project_name
        assert task["assignee"]["id"] == staff_user.id

        assert sorted(m.recipient for m in await outbox()) == sorted([staff_user.email, manager_user.email])

    async def test_default_priority_is_medium(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)
        assert task["priority"] == "Medium"

    async def test_unknown_assignee_rejected(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        res = await client.post("/api/tasks", headers=get_auth_headers(manager_user), json={
            "title": "Orphan", "projectId": project.id, "assignedTo": "no-such-user",
        })
        assert res.status_code == 400

    async def test_unknown_project_is_not_found(self, client: AsyncClient, manager_user, staff_user):
        res = await client.post("/api/tasks", headers=get_auth_headers(manager_user), json={
            "title": "Lost", "projectId": "no-such-project", "assignedTo": staff_user.id,
        })
        assert res.status_code == 404

    async def test_staff_sees_only_assigned_tasks(self, client: AsyncClient, db_session,
                                                  manager_user, staff_user, other_staff):
        project = await create_project(db_session, manager_user)
        mine = await _create_task(client, manager_user, project, staff_user)
        theirs = await _create_task(client, manager_user, project, other_staff, title="Frame walls")

        res = await client.get("/api/tasks", headers=get_auth_headers(staff_user))
        assert [t["id"] for t in res.json()["items"]] == [mine["id"]]

        res = await client.get(f"/api/tasks/{theirs['id']}", headers=get_auth_headers(staff_user))
        missing = await client.get(f"/api/tasks/{uuid.uuid4()}", headers=get_auth_headers(staff_user))
        assert res.status_code == missing.status_code == 404
        assert res.json()["message"] == missing.json()["message"]

        res = await client.get(f"/api/tasks/project/{project.id}", headers=get_auth_headers(manager_user))
        assert len(res.json()["items"]) == 2

    async def test_reassignment_emails_new_assignee(self, client: AsyncClient, db_session,
                                                    manager_user, staff_user, other_staff, outbox):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)

        res = await client.put(f"/api/tasks/{task['id']}", json={"assignedTo": other_staff.id},
                               headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert res.json()["assignedTo"] == other_staff.id
        assert len(await outbox(other_staff.email)) == 1

    async def test_status_change(self, client: AsyncClient, db_session, manager_user, staff_user, outbox):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)
        before = len(await outbox(staff_user.email))

        res = await client.patch(f"/api/tasks/{task['id']}/status", json={"status": "In Progress"},
                                 headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert res.json()["status"] == "In Progress"
        assert len(await outbox(staff_user.email)) == before + 1

    async def test_invalid_status_rejected(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)
        res = await client.patch(f"/api/tasks/{task['id']}/status", json={"status": "Someday"},
                                 headers=get_auth_headers(manager_user))
        assert res.status_code == 400

    async def test_staff_cannot_change_status(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)
        res = await client.patch(f"/api/tasks/{task['id']}/status", json={"status": "Done"},
                                 headers=get_auth_headers(staff_user))
        assert res.status_code == 403

    async def test_delete(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        task = await _create_task(client, manager_user, project, staff_user)
        headers = get_auth_headers(manager_user)
        assert (await client.delete(f"/api/tasks/{task['id']}", headers=headers)).status_code == 200
        assert (await client.get(f"/api/tasks/{task['id']}", headers=headers)).status_code == 404
