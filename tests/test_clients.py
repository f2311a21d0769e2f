# tests/test_clients.py — Client self-registration, approval and administration
import pytest
from httpx import AsyncClient

from models import ApprovalStatus
from tests.conftest import create_client_account, get_auth_headers, get_client_headers, png_upload, stored_files

REGISTRATION = {
    "firstName": "Jordan",
    "lastName": "Reyes",
    "email": "jordan@example.com",
    "password": "ClientPass123!",
    "phoneNumber": "+15557654321",
    "company": "Reyes Logistics",
}


def _pdf(name="licence.pdf"):
    return (name, b"%PDF-1.4 test document", "application/pdf")


async def _register(client: AsyncClient, **overrides):
    return await client.post("/api/clients/register", data={**REGISTRATION, **overrides},
                             files=[("documents", _pdf())])


@pytest.mark.asyncio
class TestSelfRegistration:
    async def test_register_is_pending_and_notifies(self, client: AsyncClient, admin_user, outbox):
        res = await _register(client)
        assert res.status_code == 201
        data = res.json()["client"]
        assert data["approvalStatus"] == "pending"
        assert data["emailVerified"] is False
        assert len(data["documents"]) == 1

        assert len(await outbox("jordan@example.com")) == 1
        assert len(await outbox(admin_user.email)) == 1

    async def test_register_requires_documents(self, client: AsyncClient):
        res = await client.post("/api/clients/register", data=REGISTRATION)
        assert res.status_code == 400

    async def test_duplicate_email(self, client: AsyncClient, db_session):
        await create_client_account(db_session, email="jordan@example.com")
        res = await _register(client)
        assert res.status_code == 409

    async def test_duplicate_phone(self, client: AsyncClient):
        assert (await _register(client)).status_code == 201
        res = await _register(client, email="someone-else@example.com")
        assert res.status_code == 409

    async def test_pending_client_cannot_log_in(self, client: AsyncClient, db_session):
        await create_client_account(db_session, ApprovalStatus.PENDING, email="waiting@example.com")
        res = await client.post("/api/clients/login", json={"email": "waiting@example.com", "password": "ClientPass123!"})
        assert res.status_code == 403
        assert res.json()["details"]["approvalStatus"] == "pending"

    async def test_approved_client_logs_in(self, client: AsyncClient, db_session):
        account = await create_client_account(db_session, email="ready@example.com")
        res = await client.post("/api/clients/login", json={"email": "ready@example.com", "password": "ClientPass123!"})
        assert res.status_code == 200
        token = res.json()["token"]

        me = await client.get("/api/clients/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["id"] == account.id


@pytest.mark.asyncio
class TestApproval:
    async def test_admin_approves(self, client: AsyncClient, db_session, admin_user, outbox):
        account = await create_client_account(db_session, ApprovalStatus.PENDING)
        res = await client.patch(f"/api/clients/{account.id}/approval", json={"status": "approved"},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["client"]["approvalStatus"] == "approved"
        assert len(await outbox(account.email)) == 1

    async def test_reject_records_reason(self, client: AsyncClient, db_session, admin_user):
        account = await create_client_account(db_session, ApprovalStatus.PENDING)
        res = await client.patch(f"/api/clients/{account.id}/approval",
                                 json={"status": "rejected", "reason": "Licence expired"},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["client"]["approvalNote"] == "Licence expired"

    async def test_decision_on_approved_client_rejected(self, client: AsyncClient, db_session, admin_user):
        account = await create_client_account(db_session)
        res = await client.patch(f"/api/clients/{account.id}/approval", json={"status": "rejected"},
                                 headers=get_auth_headers(admin_user))
        assert res.status_code == 400

    async def test_manager_cannot_approve(self, client: AsyncClient, db_session, manager_user):
        account = await create_client_account(db_session, ApprovalStatus.PENDING)
        res = await client.patch(f"/api/clients/{account.id}/approval", json={"status": "approved"},
                                 headers=get_auth_headers(manager_user))
        assert res.status_code == 403

    async def test_rejected_client_resubmits(self, client: AsyncClient, db_session, admin_user):
        account = await create_client_account(db_session, ApprovalStatus.REJECTED, email="again@example.com")
        res = await client.post(
            "/api/clients/resubmit",
            data={"email": "again@example.com", "password": "ClientPass123!"},
            files=[("documents", _pdf("renewed.pdf"))],
        )
        assert res.status_code == 200
        assert res.json()["client"]["approvalStatus"] == "pending"
        assert len(res.json()["client"]["documents"]) == 1

    async def test_resubmit_with_wrong_password(self, client: AsyncClient, db_session):
        await create_client_account(db_session, ApprovalStatus.REJECTED, email="again@example.com")
        res = await client.post(
            "/api/clients/resubmit",
            data={"email": "again@example.com", "password": "wrong-password"},
            files=[("documents", _pdf())],
        )
        assert res.status_code == 401


@pytest.mark.asyncio
class TestAdministration:
    async def test_manager_creates_approved_client(self, client: AsyncClient, manager_user, outbox):
        res = await client.post(
            "/api/clients",
            data={"firstName": "Sam", "lastName": "Okafor", "email": "sam@example.com"},
            files={"image": png_upload()},
            headers=get_auth_headers(manager_user),
        )
        assert res.status_code == 201
        assert res.json()["client"]["approvalStatus"] == "approved"
        assert len(await outbox("sam@example.com")) == 1

    async def test_list_filters_by_approval_status(self, client: AsyncClient, db_session, manager_user):
        await create_client_account(db_session, ApprovalStatus.PENDING)
        await create_client_account(db_session)

        res = await client.get("/api/clients?approvalStatus=pending", headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        assert res.json()["pagination"]["totalItems"] == 1

    async def test_client_token_cannot_reach_staff_routes(self, client: AsyncClient, db_session):
        account = await create_client_account(db_session)
        res = await client.get("/api/clients", headers=get_client_headers(account))
        assert res.status_code == 403

    async def test_admin_deletes_client(self, client: AsyncClient, db_session, admin_user):
        account = await create_client_account(db_session)
        headers = get_auth_headers(admin_user)
        assert (await client.delete(f"/api/clients/{account.id}", headers=headers)).status_code == 200
        assert (await client.get(f"/api/clients/{account.id}", headers=headers)).status_code == 404

    async def test_failed_create_leaves_no_uploads_behind(self, lenient_client: AsyncClient, manager_user, monkeypatch):
        def audit_store_down(*args, **kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr("routers.clients.record_audit", audit_store_down)
        before = stored_files("clients")
        res = await lenient_client.post(
            "/api/clients",
            data={"firstName": "Ada", "lastName": "Obi", "email": "ada@example.com"},
            files=[("image", png_upload()), ("documents", png_upload("licence.png"))],
            headers=get_auth_headers(manager_user),
        )
        assert res.status_code == 500
        assert stored_files("clients") == before
