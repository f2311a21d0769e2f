# tests/test_projects.py — Projects, their links and the status workflow
import uuid

import pytest
from httpx import AsyncClient

from models import ClientProject, Team, TeamProject, UserTeam
from tests.conftest import (
    create_client_account, create_project, get_auth_headers, get_client_headers,
)


async def _link_team(db_session, project, *users) -> Team:
    team = Team(id=str(uuid.uuid4()), name=f"Crew {uuid.uuid4().hex[:6]}")
    db_session.add(team)
    await db_session.flush()
    for user in users:
        db_session.add(UserTeam(user_id=user.id, team_id=team.id, project_id=project.id))
    db_session.add(TeamProject(team_id=team.id, project_id=project.id))
    await db_session.commit()
    return team


async def _link_client(db_session, project, account) -> None:
    db_session.add(ClientProject(client_id=account.id, project_id=project.id))
    await db_session.commit()


@pytest.mark.asyncio
class TestProjectCrud:
    async def test_create_project(self, client: AsyncClient, manager_user):
        res = await client.post("/api/projects", headers=get_auth_headers(manager_user), json={
            "projectName": "Harbour Wall",
            "startDate": "2026-11-01",
            "endDate": "2027-03-31",
            "budget": 125000.5,
        })
        assert res.status_code == 201
        data = res.json()
        assert data["projectName"] == "Harbour Wall"
        assert data["status"] == "To Do"
        assert data["budget"] == 125000.5
        assert data["createdBy"] == manager_user.id

    async def test_end_before_start_rejected(self, client: AsyncClient, manager_user):
        res = await client.post("/api/projects", headers=get_auth_headers(manager_user), json={
            "projectName": "Backwards",
            "startDate": "2026-11-01",
            "endDate": "2026-10-01",
        })
        assert res.status_code == 400

    async def test_staff_cannot_create(self, client: AsyncClient, staff_user):
        res = await client.post("/api/projects", headers=get_auth_headers(staff_user),
                                json={"projectName": "Side Quest"})
        assert res.status_code == 403

    async def test_staff_sees_only_member_projects(self, client: AsyncClient, db_session, manager_user, staff_user):
        mine = await create_project(db_session, manager_user, name="Mine")
        await create_project(db_session, manager_user, name="Not Mine")
        await _link_team(db_session, mine, staff_user)

        res = await client.get("/api/projects", headers=get_auth_headers(staff_user))
        assert res.status_code == 200
        assert [p["projectName"] for p in res.json()["items"]] == ["Mine"]

        all_projects = await client.get("/api/projects", headers=get_auth_headers(manager_user))
        assert all_projects.json()["pagination"]["totalItems"] == 2

    async def test_hidden_project_is_not_found(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        res = await client.get(f"/api/projects/{project.id}", headers=get_auth_headers(staff_user))
        assert res.status_code == 404

    async def test_detail_includes_teams_and_clients(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        team = await _link_team(db_session, project, staff_user)
        account = await create_client_account(db_session)
        await _link_client(db_session, project, account)

        res = await client.get(f"/api/projects/{project.id}", headers=get_auth_headers(staff_user))
        assert res.status_code == 200
        data = res.json()
        assert [t["id"] for t in data["teams"]] == [team.id]
        assert [c["email"] for c in data["clients"]] == [account.email]

    async def test_client_sees_linked_projects(self, client: AsyncClient, db_session, manager_user):
        linked = await create_project(db_session, manager_user, name="Linked")
        await create_project(db_session, manager_user, name="Other")
        account = await create_client_account(db_session)
        await _link_client(db_session, linked, account)

        res = await client.get("/api/projects/mine", headers=get_client_headers(account))
        assert res.status_code == 200
        assert [p["projectName"] for p in res.json()["items"]] == ["Linked"]

    async def test_delete_project_notifies_members_and_clients(self, client: AsyncClient, db_session,
                                                               manager_user, staff_user, outbox):
        project = await create_project(db_session, manager_user)
        await _link_team(db_session, project, staff_user)
        account = await create_client_account(db_session)
        await _link_client(db_session, project, account)

        res = await client.delete(f"/api/projects/{project.id}", headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert sorted(m.recipient for m in await outbox()) == sorted([staff_user.email, account.email])


@pytest.mark.asyncio
class TestProjectStatus:
    async def test_done_emails_each_linked_client_once(self, client: AsyncClient, db_session,
                                                       manager_user, outbox):
        project = await create_project(db_session, manager_user)
        first = await create_client_account(db_session)
        second = await create_client_account(db_session)
        await _link_client(db_session, project, first)
        await _link_client(db_session, project, second)

        res = await client.post(f"/api/projects/{project.id}/status", json={"status": "Done"},
                                headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert res.json()["project"]["status"] == "Done"

        assert len(await outbox(first.email)) == 1
        assert len(await outbox(second.email)) == 1

    async def test_same_status_is_a_quiet_no_op(self, client: AsyncClient, db_session, manager_user, outbox):
        project = await create_project(db_session, manager_user)
        account = await create_client_account(db_session)
        await _link_client(db_session, project, account)

        res = await client.post(f"/api/projects/{project.id}/status", json={"status": "To Do"},
                                headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert res.json()["project"]["status"] == "To Do"
        assert await outbox() == []

    async def test_non_done_change_does_not_email_clients(self, client: AsyncClient, db_session,
                                                          manager_user, staff_user, outbox):
        project = await create_project(db_session, manager_user)
        await _link_team(db_session, project, staff_user)
        account = await create_client_account(db_session)
        await _link_client(db_session, project, account)

        res = await client.post(f"/api/projects/{project.id}/status", json={"status": "In Progress"},
                                headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert await outbox(account.email) == []
        assert len(await outbox(staff_user.email)) == 1

    async def test_team_member_may_change_status(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        await _link_team(db_session, project, staff_user)

        res = await client.post(f"/api/projects/{project.id}/status", json={"status": "Review"},
                                headers=get_auth_headers(staff_user))
        assert res.status_code == 200

    async def test_outsider_status_change_looks_like_a_missing_id(self, client: AsyncClient, db_session,
                                                                  manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        headers = get_auth_headers(staff_user)
        foreign = await client.post(f"/api/projects/{project.id}/status", json={"status": "Review"}, headers=headers)
        missing = await client.post(f"/api/projects/{uuid.uuid4()}/status", json={"status": "Review"}, headers=headers)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json()["message"] == missing.json()["message"]

    async def test_unknown_status_rejected(self, client: AsyncClient, db_session, manager_user):
        project = await create_project(db_session, manager_user)
        res = await client.post(f"/api/projects/{project.id}/status", json={"status": "Abandoned"},
                                headers=get_auth_headers(manager_user))
        assert res.status_code == 400


@pytest.mark.asyncio
class TestProjectLinks:
    async def test_link_client_twice_conflicts(self, client: AsyncClient, db_session, manager_user, outbox):
        project = await create_project(db_session, manager_user)
        account = await create_client_account(db_session)
        headers = get_auth_headers(manager_user)

        res = await client.post(f"/api/projects/{project.id}/clients", json={"clientId": account.id}, headers=headers)
        assert res.status_code == 201
        assert len(await outbox(account.email)) == 1

        again = await client.post(f"/api/projects/{project.id}/clients", json={"clientId": account.id}, headers=headers)
        assert again.status_code == 409

    async def test_assign_team_scopes_memberships(self, client: AsyncClient, db_session, manager_user, staff_user):
        project = await create_project(db_session, manager_user)
        team = Team(id=str(uuid.uuid4()), name="Surveyors")
        db_session.add(team)
        await db_session.flush()
        db_session.add(UserTeam(user_id=staff_user.id, team_id=team.id))
        await db_session.commit()

        res = await client.post(f"/api/projects/{project.id}/teams", json={"teamId": team.id},
                                headers=get_auth_headers(manager_user))
        assert res.status_code == 201

        members = await client.get(f"/api/projects/{project.id}/members", headers=get_auth_headers(staff_user))
        assert members.status_code == 200
        assert [m["id"] for m in members.json()["items"]] == [staff_user.id]
