# tests/test_hse.py — HSE incident reports, documents and analytics
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers, png_upload, stored_files

REPORT_FORM = {
    "title": "Slip near loading bay",
    "dateOfReport": "2026-10-12",
    "timeOfReport": "14:35",
    "report": "Wet floor, no signage. Minor bruising.",
}


async def _file_report(client: AsyncClient, user, files=None, **overrides) -> dict:
    res = await client.post("/api/hse/reports", data={**REPORT_FORM, **overrides}, files=files,
                            headers=get_auth_headers(user))
    assert res.status_code == 201
    return res.json()


async def _upload_document(client: AsyncClient, user, name="Site photo", **form) -> dict:
    res = await client.post(
        "/api/hse/documents",
        data={"name": name, "type": "photo", **form},
        files=[("files", png_upload("a.png")), ("files", png_upload("b.png"))],
        headers=get_auth_headers(user),
    )
    assert res.status_code == 201
    return res.json()


@pytest.mark.asyncio
class TestReports:
    async def test_file_report_with_uploads(self, client: AsyncClient, manager_user, staff_user, outbox):
        report = await _file_report(client, staff_user, files=[("files", png_upload("bay.png"))])
        assert report["status"] == "open"
        assert report["reporter"]["id"] == staff_user.id
        assert len(report["documents"]) == 1
        assert report["documents"][0]["urls"][0].startswith("/uploads/hse/")
        assert [m.recipient for m in await outbox()] == [manager_user.email]

    async def test_bad_time_rejected(self, client: AsyncClient, staff_user):
        res = await client.post("/api/hse/reports", data={**REPORT_FORM, "timeOfReport": "25:00"},
                                headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_attach_existing_document(self, client: AsyncClient, manager_user, staff_user):
        document = await _upload_document(client, staff_user)
        report = await _file_report(client, staff_user, documentIds=document["id"])
        assert [d["id"] for d in report["documents"]] == [document["id"]]

        res = await client.get(f"/api/hse/reports/by-document/{document['id']}", headers=get_auth_headers(staff_user))
        assert res.status_code == 200
        assert res.json()["id"] == report["id"]

    async def test_unknown_document_rejected(self, client: AsyncClient, staff_user):
        res = await client.post("/api/hse/reports", data={**REPORT_FORM, "documentIds": "missing"},
                                headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_update_attaches_and_detaches(self, client: AsyncClient, manager_user, staff_user):
        report = await _file_report(client, staff_user)
        document = await _upload_document(client, staff_user)
        headers = get_auth_headers(manager_user)

        res = await client.put(f"/api/hse/reports/{report['id']}", headers=headers,
                               json={"attachDocumentIds": [document["id"]]})
        assert res.status_code == 200
        assert [d["id"] for d in res.json()["documents"]] == [document["id"]]

        res = await client.put(f"/api/hse/reports/{report['id']}", headers=headers,
                               json={"detachDocumentIds": [document["id"]]})
        assert res.status_code == 200
        assert res.json()["documents"] == []

    async def test_status_close_and_reopen(self, client: AsyncClient, manager_user, staff_user, outbox):
        report = await _file_report(client, staff_user)
        headers = get_auth_headers(manager_user)

        closed = await client.patch(f"/api/hse/reports/{report['id']}/status", json={"status": "closed"},
                                    headers=headers)
        assert closed.status_code == 200
        assert closed.json()["closedBy"] == manager_user.id
        assert closed.json()["closedAt"] is not None
        assert len(await outbox(staff_user.email)) == 1

        reopened = await client.patch(f"/api/hse/reports/{report['id']}/status", json={"status": "open"},
                                      headers=headers)
        assert reopened.json()["closedAt"] is None
        assert reopened.json()["closedBy"] is None

    async def test_staff_cannot_change_status(self, client: AsyncClient, staff_user):
        report = await _file_report(client, staff_user)
        res = await client.patch(f"/api/hse/reports/{report['id']}/status", json={"status": "closed"},
                                 headers=get_auth_headers(staff_user))
        assert res.status_code == 403

    async def test_delete_keeps_documents(self, client: AsyncClient, admin_user, staff_user):
        document = await _upload_document(client, staff_user)
        report = await _file_report(client, staff_user, documentIds=document["id"])
        headers = get_auth_headers(admin_user)

        res = await client.delete(f"/api/hse/reports/{report['id']}", headers=headers)
        assert res.status_code == 200

        kept = await client.get(f"/api/hse/documents/{document['id']}", headers=headers)
        assert kept.status_code == 200
        assert kept.json()["reportId"] is None


@pytest.mark.asyncio
class TestDocuments:
    async def test_upload_groups_files(self, client: AsyncClient, staff_user):
        document = await _upload_document(client, staff_user)
        assert document["type"] == "photo"
        assert len(document["urls"]) == 2
        assert document["size"] > 0

    async def test_upload_requires_files(self, client: AsyncClient, staff_user):
        res = await client.post("/api/hse/documents", data={"name": "Empty"}, headers=get_auth_headers(staff_user))
        assert res.status_code == 400

    async def test_filter_by_type(self, client: AsyncClient, staff_user):
        await _upload_document(client, staff_user)
        res = await client.get("/api/hse/documents?type=permit", headers=get_auth_headers(staff_user))
        assert res.json()["items"] == []
        res = await client.get("/api/hse/documents?type=photo", headers=get_auth_headers(staff_user))
        assert len(res.json()["items"]) == 1

    async def test_rename_and_delete(self, client: AsyncClient, staff_user):
        document = await _upload_document(client, staff_user)
        headers = get_auth_headers(staff_user)

        res = await client.put(f"/api/hse/documents/{document['id']}", json={"name": "Bay photo", "type": "evidence"},
                               headers=headers)
        assert res.status_code == 200
        assert res.json()["name"] == "Bay photo"
        assert res.json()["type"] == "evidence"

        assert (await client.delete(f"/api/hse/documents/{document['id']}", headers=headers)).status_code == 200
        assert (await client.get(f"/api/hse/documents/{document['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
class TestAnalytics:
    async def test_counts_trend_and_resolution(self, client: AsyncClient, manager_user, staff_user):
        first = await _file_report(client, staff_user)
        await _file_report(client, staff_user, title="Forklift near miss")
        await client.patch(f"/api/hse/reports/{first['id']}/status", json={"status": "closed"},
                           headers=get_auth_headers(manager_user))

        res = await client.get("/api/hse/analytics", headers=get_auth_headers(manager_user))
        assert res.status_code == 200
        data = res.json()
        assert data["incidents"] == {"total": 2, "open": 1, "pending": 0, "closed": 1}
        trend = data["trends"]["monthlyIncidents"]
        assert len(trend) == 12
        assert trend[-1]["incidents"] == 2
        assert data["resolution"]["closedCount"] == 1
        assert data["resolution"]["averageHoursToClose"] is not None

    async def test_staff_cannot_view_analytics(self, client: AsyncClient, staff_user):
        res = await client.get("/api/hse/analytics", headers=get_auth_headers(staff_user))
        assert res.status_code == 403

    async def test_failed_report_leaves_no_uploads_behind(self, lenient_client: AsyncClient, staff_user, monkeypatch):
        def mail_queue_down(*args, **kwargs):
            raise RuntimeError("mail queue down")

        monkeypatch.setattr("routers.hse.enqueue_mail", mail_queue_down)
        before = stored_files("hse")
        res = await lenient_client.post("/api/hse/reports", data=REPORT_FORM,
                                        files=[("files", png_upload("bay.png"))],
                                        headers=get_auth_headers(staff_user))
        assert res.status_code == 500
        assert stored_files("hse") == before
