# tests/test_audits.py — Audit trail listing and CSV export
import csv
import io

import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


async def _make_some_history(client: AsyncClient, manager_user) -> dict:
    res = await client.post("/api/projects", json={"projectName": "Audited"}, headers=get_auth_headers(manager_user))
    assert res.status_code == 201
    project = res.json()
    await client.put(f"/api/projects/{project['id']}", json={"description": "Changed"},
                     headers=get_auth_headers(manager_user))
    return project


@pytest.mark.asyncio
class TestAuditLog:
    async def test_writes_are_audited(self, client: AsyncClient, admin_user, manager_user):
        project = await _make_some_history(client, manager_user)

        res = await client.get("/api/audits?model=Project", headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        items = res.json()["items"]
        assert {i["action"] for i in items} == {"CREATE", "UPDATE"}
        assert all(i["recordId"] == project["id"] for i in items)
        assert all(i["userId"] == manager_user.id for i in items)

        update = next(i for i in items if i["action"] == "UPDATE")
        assert update["oldValues"]["description"] is None
        assert update["newValues"]["description"] == "Changed"

    async def test_snapshots_never_hold_password_hashes(self, client: AsyncClient, admin_user):
        res = await client.post("/api/auth/login", json={"email": "admin@example.com", "password": "AdminPassword123!"})
        assert res.status_code == 200
        await client.put(f"/api/users/{admin_user.id}", data={"firstName": "Root"}, headers=get_auth_headers(admin_user))

        res = await client.get("/api/audits?model=User", headers=get_auth_headers(admin_user))
        for item in res.json()["items"]:
            for values in (item["oldValues"] or {}, item["newValues"] or {}):
                assert "password_hash" not in values
                assert "otp_hash" not in values

    async def test_filter_by_action(self, client: AsyncClient, admin_user, manager_user):
        await _make_some_history(client, manager_user)
        res = await client.get("/api/audits?action=CREATE", headers=get_auth_headers(admin_user))
        assert [i["action"] for i in res.json()["items"]] == ["CREATE"]

    async def test_manager_cannot_read_audits(self, client: AsyncClient, manager_user):
        res = await client.get("/api/audits", headers=get_auth_headers(manager_user))
        assert res.status_code == 403

    async def test_get_single_entry(self, client: AsyncClient, admin_user, manager_user):
        await _make_some_history(client, manager_user)
        headers = get_auth_headers(admin_user)
        entry = (await client.get("/api/audits", headers=headers)).json()["items"][0]
        res = await client.get(f"/api/audits/{entry['id']}", headers=headers)
        assert res.status_code == 200
        assert res.json()["id"] == entry["id"]


@pytest.mark.asyncio
class TestAuditExport:
    async def test_export_csv(self, client: AsyncClient, admin_user, manager_user):
        project = await _make_some_history(client, manager_user)

        res = await client.get("/api/audits/export?model=Project", headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=audit-log-" in res.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(res.text)))
        assert rows[0] == ["id", "action", "model", "recordId", "user.email", "ipAddress", "createdAt"]
        assert len(rows) == 3
        assert {r[3] for r in rows[1:]} == {project["id"]}
        assert {r[4] for r in rows[1:]} == {manager_user.email}
