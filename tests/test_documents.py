# tests/test_documents.py — Files attached to projects
import uuid

import pytest
from httpx import AsyncClient

from models import ClientProject, ProjectReport, Team, TeamProject, UserTeam
from tests.conftest import (
    create_client_account, create_project, get_auth_headers, get_client_headers, png_upload, stored_files,
)


async def _crew(db_session, project, *users) -> None:
    team = Team(id=str(uuid.uuid4()), name=f"Crew {uuid.uuid4().hex[:6]}")
    db_session.add(team)
    await db_session.flush()
    for user in users:
        db_session.add(UserTeam(user_id=user.id, team_id=team.id, project_id=project.id))
    db_session.add(TeamProject(team_id=team.id, project_id=project.id))
    await db_session.commit()


async def _upload(client, project, headers, *names, **data):
    files = [("files", png_upload(name)) for name in names or ("plan.png",)]
    return await client.post(f"/api/documents/project/{project.id}", headers=headers, files=files, data=data)


@pytest.mark.asyncio
class TestUpload:
    async def test_member_uploads_and_managers_hear_about_it(self, client: AsyncClient, db_session, outbox,
                                                             admin_user, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)

        res = await _upload(client, project, get_auth_headers(staff_user), "plan.png", "section.png")
        assert res.status_code == 201
        items = res.json()["items"]
        assert [d["name"] for d in items] == ["plan.png", "section.png"]
        assert all(d["status"] == "pending" and d["uploadedBy"] == staff_user.id for d in items)
        assert len(stored_files("projects")) >= 2

        notices = await outbox(admin_user.email)
        assert [m.subject for m in notices] == ["New documents on Bridge Refit"]

    async def test_linked_client_uploads(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        account = await create_client_account(db_session)
        db_session.add(ClientProject(client_id=account.id, project_id=project.id))
        await db_session.commit()

        res = await _upload(client, project, get_client_headers(account))
        assert res.status_code == 201
        item = res.json()["items"][0]
        assert item["clientId"] == account.id
        assert item["uploadedBy"] is None

    async def test_outsider_gets_not_found(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        before = stored_files("projects")

        res = await _upload(client, project, get_auth_headers(staff_user))
        assert res.status_code == 404
        assert res.json()["message"] == "Project not found"
        assert stored_files("projects") == before

    async def test_report_must_be_on_the_same_project(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        other = await create_project(db_session, manager_user, name="Other")
        report = ProjectReport(id=str(uuid.uuid4()), title="Site visit", content="All fine",
                               project_id=other.id, created_by=manager_user.id)
        db_session.add(report)
        await db_session.commit()

        res = await _upload(client, project, get_auth_headers(manager_user), reportId=report.id)
        assert res.status_code == 400


@pytest.mark.asyncio
class TestReview:
    async def test_status_change_tells_the_uploader(self, client: AsyncClient, db_session, outbox,
                                                    manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        uploaded = await _upload(client, project, get_auth_headers(staff_user))
        doc_id = uploaded.json()["items"][0]["id"]

        res = await client.patch(f"/api/documents/{doc_id}/status", headers=get_auth_headers(manager_user),
                                 json={"status": "not complete"})
        assert res.status_code == 200
        assert res.json()["document"]["status"] == "not complete"
        assert [m.subject for m in await outbox(staff_user.email)] == ["Document plan.png marked not complete"]

    async def test_staff_cannot_review(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        uploaded = await _upload(client, project, get_auth_headers(staff_user))
        doc_id = uploaded.json()["items"][0]["id"]

        res = await client.patch(f"/api/documents/{doc_id}/status", headers=get_auth_headers(staff_user),
                                 json={"status": "approved"})
        assert res.status_code == 403

    async def test_replacing_the_file_resets_review(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        headers = get_auth_headers(staff_user)
        uploaded = await _upload(client, project, headers)
        doc = uploaded.json()["items"][0]
        await client.patch(f"/api/documents/{doc['id']}/status", headers=get_auth_headers(manager_user),
                           json={"status": "approved"})

        res = await client.put(f"/api/documents/{doc['id']}", headers=headers,
                               files={"file": png_upload("plan-v2.png")})
        assert res.status_code == 200
        assert res.json()["status"] == "pending"
        assert res.json()["url"] != doc["url"]

    async def test_teammate_cannot_edit_my_upload(self, client: AsyncClient, db_session,
                                                  manager_user, staff_user, other_staff):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user, other_staff)
        uploaded = await _upload(client, project, get_auth_headers(staff_user))
        doc_id = uploaded.json()["items"][0]["id"]

        res = await client.put(f"/api/documents/{doc_id}", headers=get_auth_headers(other_staff),
                               data={"name": "mine now.png"})
        assert res.status_code == 403


@pytest.mark.asyncio
class TestRemoval:
    async def test_delete_removes_the_stored_file(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        before = stored_files("projects")
        uploaded = await _upload(client, project, get_auth_headers(staff_user))
        doc_id = uploaded.json()["items"][0]["id"]
        assert len(stored_files("projects")) == len(before) + 1

        res = await client.delete(f"/api/documents/{doc_id}", headers=get_auth_headers(staff_user))
        assert res.status_code == 200
        assert stored_files("projects") == before

        gone = await client.get(f"/api/documents/{doc_id}", headers=get_auth_headers(staff_user))
        assert gone.status_code == 404

    async def test_outsider_cannot_tell_a_document_exists(self, client: AsyncClient, db_session,
                                                          manager_user, staff_user, other_staff):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        uploaded = await _upload(client, project, get_auth_headers(staff_user))
        doc_id = uploaded.json()["items"][0]["id"]
        headers = get_auth_headers(other_staff)

        foreign = await client.delete(f"/api/documents/{doc_id}", headers=headers)
        missing = await client.delete(f"/api/documents/{uuid.uuid4()}", headers=headers)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json()["message"] == missing.json()["message"]
