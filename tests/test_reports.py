# tests/test_reports.py — Project reports
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import ProjectDocument, Team, TeamProject, UserTeam
from tests.conftest import create_project, create_user, get_auth_headers


async def _crew(db_session, project, *users) -> Team:
    team = Team(id=str(uuid.uuid4()), name=f"Crew {uuid.uuid4().hex[:6]}")
    db_session.add(team)
    await db_session.flush()
    for user in users:
        db_session.add(UserTeam(user_id=user.id, team_id=team.id, project_id=project.id))
    db_session.add(TeamProject(team_id=team.id, project_id=project.id))
    await db_session.commit()
    return team


async def _write(client, user, project, title="Site visit", **extra):
    body = {"title": title, "content": "Footings poured, curing on schedule.", "projectId": project.id}
    body.update(extra)
    return await client.post("/api/reports", headers=get_auth_headers(user), json=body)


@pytest.mark.asyncio
class TestWriting:
    async def test_member_writes_report(self, client: AsyncClient, db_session, outbox,
                                        admin_user, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        team = await _crew(db_session, project, staff_user)

        res = await _write(client, staff_user, project, teamId=team.id)
        assert res.status_code == 201
        data = res.json()
        assert data["createdBy"] == staff_user.id
        assert data["project"]["projectName"] == "Bridge Refit"
        assert data["team"]["id"] == team.id
        assert [m.subject for m in await outbox(admin_user.email)] == ["New report: Site visit"]

    async def test_unknown_project(self, client: AsyncClient, manager_user):
        res = await client.post("/api/reports", headers=get_auth_headers(manager_user), json={
            "title": "Ghost", "content": "Nothing", "projectId": str(uuid.uuid4()),
        })
        assert res.status_code == 404

    async def test_outsider_cannot_report_on_project(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        res = await _write(client, staff_user, project)
        assert res.status_code == 404

    async def test_unknown_team(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        res = await _write(client, manager_user, project, teamId=str(uuid.uuid4()))
        assert res.status_code == 404
        assert res.json()["message"] == "Team not found"


@pytest.mark.asyncio
class TestReading:
    async def test_staff_list_is_scoped(self, client: AsyncClient, db_session, manager_user, staff_user):
        mine = await create_project(db_session, manager_user, name="Mine")
        theirs = await create_project(db_session, manager_user, name="Theirs")
        await _crew(db_session, mine, staff_user)
        await _write(client, manager_user, mine, title="Visible")
        await _write(client, manager_user, theirs, title="Hidden")

        res = await client.get("/api/reports", headers=get_auth_headers(staff_user))
        assert [r["title"] for r in res.json()["items"]] == ["Visible"]

        everything = await client.get("/api/reports", headers=get_auth_headers(manager_user))
        assert everything.json()["pagination"]["totalItems"] == 2

    async def test_filters(self, client: AsyncClient, db_session, manager_user):
        harbour = await create_project(db_session, manager_user, name="Harbour Wall")
        bridge = await create_project(db_session, manager_user, name="Bridge Refit")
        await _write(client, manager_user, harbour, title="Tide readings")
        await _write(client, manager_user, bridge, title="Deck survey")
        headers = get_auth_headers(manager_user)

        by_project = await client.get("/api/reports?projectName=harbour", headers=headers)
        assert [r["title"] for r in by_project.json()["items"]] == ["Tide readings"]
        by_author = await client.get("/api/reports?userName=manager", headers=headers)
        assert by_author.json()["pagination"]["totalItems"] == 2
        by_text = await client.get("/api/reports?search=deck", headers=headers)
        assert [r["title"] for r in by_text.json()["items"]] == ["Deck survey"]

    async def test_hidden_report_is_not_found(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        created = await _write(client, manager_user, project)
        headers = get_auth_headers(staff_user)

        foreign = await client.get(f"/api/reports/{created.json()['id']}", headers=headers)
        missing = await client.get(f"/api/reports/{uuid.uuid4()}", headers=headers)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json()["message"] == missing.json()["message"]


@pytest.mark.asyncio
class TestChanges:
    async def test_author_updates(self, client: AsyncClient, db_session, outbox, admin_user, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        created = await _write(client, staff_user, project)

        res = await client.put(f"/api/reports/{created.json()['id']}", headers=get_auth_headers(staff_user),
                               json={"title": "Site visit (revised)"})
        assert res.status_code == 200
        assert res.json()["title"] == "Site visit (revised)"
        assert res.json()["content"] == "Footings poured, curing on schedule."
        assert "Report updated: Site visit (revised)" in [m.subject for m in await outbox(admin_user.email)]

    async def test_empty_update_rejected(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        created = await _write(client, manager_user, project)
        res = await client.put(f"/api/reports/{created.json()['id']}", headers=get_auth_headers(manager_user), json={})
        assert res.status_code == 400

    async def test_teammate_cannot_edit(self, client: AsyncClient, db_session, manager_user, staff_user, other_staff):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user, other_staff)
        created = await _write(client, staff_user, project)

        res = await client.put(f"/api/reports/{created.json()['id']}", headers=get_auth_headers(other_staff),
                               json={"content": "Rewritten"})
        assert res.status_code == 403

    async def test_assign_then_assignee_may_edit(self, client: AsyncClient, db_session, outbox,
                                                 manager_user, staff_user, other_staff):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user, other_staff)
        created = await _write(client, staff_user, project)
        report_id = created.json()["id"]

        res = await client.post(f"/api/reports/{report_id}/assign", headers=get_auth_headers(manager_user),
                                json={"userId": other_staff.id})
        assert res.status_code == 200
        assert res.json()["assignee"]["id"] == other_staff.id
        assert "Report assigned: Site visit" in [m.subject for m in await outbox(other_staff.email)]

        edit = await client.put(f"/api/reports/{report_id}", headers=get_auth_headers(other_staff),
                                json={"content": "Follow-up done"})
        assert edit.status_code == 200

    async def test_cannot_assign_inactive_user(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        created = await _write(client, manager_user, project)
        retired = await create_user(db_session, is_active=False)

        res = await client.post(f"/api/reports/{created.json()['id']}/assign",
                                headers=get_auth_headers(manager_user), json={"userId": retired.id})
        assert res.status_code == 400

    async def test_staff_cannot_assign(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        created = await _write(client, manager_user, project)
        res = await client.post(f"/api/reports/{created.json()['id']}/assign",
                                headers=get_auth_headers(staff_user), json={"userId": staff_user.id})
        assert res.status_code == 403

    async def test_delete_detaches_documents_and_tells_the_author(self, client: AsyncClient, db_session, outbox,
                                                                  manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _crew(db_session, project, staff_user)
        created = await _write(client, staff_user, project)
        report_id = created.json()["id"]
        document = ProjectDocument(id=str(uuid.uuid4()), name="plan.png", url="/uploads/projects/plan.png",
                                   project_id=project.id, report_id=report_id, uploaded_by=staff_user.id)
        db_session.add(document)
        await db_session.commit()

        res = await client.delete(f"/api/reports/{report_id}", headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert "Report deleted: Site visit" in [m.subject for m in await outbox(staff_user.email)]

        kept = (await db_session.execute(
            select(ProjectDocument).where(ProjectDocument.id == document.id).execution_options(populate_existing=True)
        )).scalar_one()
        assert kept.report_id is None
