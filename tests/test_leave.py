# tests/test_leave.py — Leave requests and the approval workflow
import uuid

import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers

LEAVE_BODY = {
    "startDate": "2026-11-02",
    "endDate": "2026-11-06",
    "reason": "Family visit",
    "leaveType": "annual",
}


async def _request_leave(client: AsyncClient, user, body=None) -> dict:
    res = await client.post("/api/leave", json=body or LEAVE_BODY, headers=get_auth_headers(user))
    assert res.status_code == 201
    return res.json()


@pytest.mark.asyncio
class TestRequestLeave:
    async def test_request_notifies_approvers(self, client: AsyncClient, admin_user, manager_user, staff_user, outbox):
        leave = await _request_leave(client, staff_user)
        assert leave["status"] == "pending"
        assert leave["userId"] == staff_user.id
        assert leave["user"]["email"] == staff_user.email

        recipients = sorted(m.recipient for m in await outbox())
        assert recipients == ["admin@example.com", "manager@example.com"]

    async def test_end_before_start_rejected(self, client: AsyncClient, staff_user):
        res = await client.post("/api/leave", json={**LEAVE_BODY, "endDate": "2026-11-01"},
                                headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_staff_only_sees_own_requests(self, client: AsyncClient, manager_user, staff_user, other_staff):
        await _request_leave(client, staff_user)
        await _request_leave(client, other_staff)

        mine = await client.get("/api/leave", headers=get_auth_headers(staff_user))
        assert mine.status_code == 200
        assert [l["userId"] for l in mine.json()["items"]] == [staff_user.id]

        everyone = await client.get("/api/leave", headers=get_auth_headers(manager_user))
        assert everyone.json()["pagination"]["totalItems"] == 2

    async def test_colleague_leave_looks_like_a_missing_id(self, client: AsyncClient, staff_user, other_staff):
        leave = await _request_leave(client, other_staff)
        headers = get_auth_headers(staff_user)
        for method in ("get", "delete"):
            foreign = await client.request(method.upper(), f"/api/leave/{leave['id']}", headers=headers)
            missing = await client.request(method.upper(), f"/api/leave/{uuid.uuid4()}", headers=headers)
            assert foreign.status_code == missing.status_code == 404
            assert foreign.json()["message"] == missing.json()["message"]


@pytest.mark.asyncio
class TestDecideLeave:
    async def test_approve_emails_owner_once(self, client: AsyncClient, manager_user, staff_user, outbox):
        leave = await _request_leave(client, staff_user)
        before = len(await outbox())

        res = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"},
                               headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        decided = res.json()["leave"]
        assert decided["status"] == "approved"
        assert decided["decidedBy"] == manager_user.id
        assert decided["decidedAt"] is not None

        messages = await outbox()
        assert len(messages) == before + 1
        assert [m.recipient for m in await outbox(staff_user.email)] == [staff_user.email]

    async def test_repeat_decision_is_rejected_without_email(self, client: AsyncClient, manager_user, staff_user, outbox):
        leave = await _request_leave(client, staff_user)
        headers = get_auth_headers(manager_user)
        first = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"}, headers=headers)
        assert first.status_code == 200
        after_first = len(await outbox())

        again = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"}, headers=headers)
        assert again.status_code == 400
        assert again.json()["code"] == "illegal_transition"
        assert len(await outbox()) == after_first

    async def test_reject_after_approval_is_rejected(self, client: AsyncClient, manager_user, staff_user):
        leave = await _request_leave(client, staff_user)
        headers = get_auth_headers(manager_user)
        await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"}, headers=headers)

        res = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "rejected"}, headers=headers)
        assert res.status_code == 400

    async def test_staff_cannot_decide(self, client: AsyncClient, staff_user, other_staff):
        leave = await _request_leave(client, other_staff)
        res = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"},
                               headers=get_auth_headers(staff_user))
        assert res.status_code == 403

    async def test_unknown_status_rejected(self, client: AsyncClient, manager_user, staff_user):
        leave = await _request_leave(client, staff_user)
        res = await client.put(f"/api/leave/{leave['id']}/status", json={"status": "pending"},
                               headers=get_auth_headers(manager_user))
        assert res.status_code == 400


@pytest.mark.asyncio
class TestEditLeave:
    async def test_owner_edits_pending_request(self, client: AsyncClient, staff_user):
        leave = await _request_leave(client, staff_user)
        res = await client.put(f"/api/leave/{leave['id']}", json={"reason": "Moved dates", "endDate": "2026-11-09"},
                               headers=get_auth_headers(staff_user))
        assert res.status_code == 200
        assert res.json()["reason"] == "Moved dates"
        assert res.json()["endDate"] == "2026-11-09"

    async def test_edit_after_decision_is_rejected(self, client: AsyncClient, manager_user, staff_user):
        leave = await _request_leave(client, staff_user)
        await client.put(f"/api/leave/{leave['id']}/status", json={"status": "rejected"},
                         headers=get_auth_headers(manager_user))

        res = await client.put(f"/api/leave/{leave['id']}", json={"reason": "Please reconsider"},
                               headers=get_auth_headers(staff_user))
        assert res.status_code == 400

        unchanged = await client.get(f"/api/leave/{leave['id']}", headers=get_auth_headers(staff_user))
        assert unchanged.json()["reason"] == "Family visit"

    async def test_edit_without_fields_rejected(self, client: AsyncClient, staff_user):
        leave = await _request_leave(client, staff_user)
        res = await client.put(f"/api/leave/{leave['id']}", json={}, headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_colleague_cannot_edit(self, client: AsyncClient, staff_user, other_staff):
        leave = await _request_leave(client, other_staff)
        res = await client.put(f"/api/leave/{leave['id']}", json={"reason": "Hijacked"},
                               headers=get_auth_headers(staff_user))
        assert res.status_code == 404


@pytest.mark.asyncio
class TestDeleteLeave:
    async def test_owner_deletes_pending_request(self, client: AsyncClient, staff_user):
        leave = await _request_leave(client, staff_user)
        res = await client.delete(f"/api/leave/{leave['id']}", headers=get_auth_headers(staff_user))
        assert res.status_code == 200

    async def test_owner_cannot_delete_decided_request(self, client: AsyncClient, manager_user, staff_user):
        leave = await _request_leave(client, staff_user)
        await client.put(f"/api/leave/{leave['id']}/status", json={"status": "approved"},
                         headers=get_auth_headers(manager_user))

        res = await client.delete(f"/api/leave/{leave['id']}", headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_manager_deletes_and_owner_is_told(self, client: AsyncClient, manager_user, staff_user, outbox):
        leave = await _request_leave(client, staff_user)
        res = await client.delete(f"/api/leave/{leave['id']}", headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert len(await outbox(staff_user.email)) == 1
