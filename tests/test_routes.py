import os
import time

from itsdangerous import TimestampSigner
from pymongo.errors import ServerSelectionTimeoutError

from avocat.models import SAMPLE_DOCX, SAMPLE_PDF, STUDY_MATERIAL_PDF
from avocat.rendering import DOCX_CONTENT_TYPE

from conftest import BASE_URL


def as_user(uid):
    return {"X-User-Id": uid}


def file_path_of(url):
    assert url.startswith(BASE_URL)
    return url[len(BASE_URL):]


def test_identity_is_required(client, paid_purchase):
    assert client.get("/purchases").status_code == 401
    assert client.get(f"/purchases/{paid_purchase.id}").status_code == 401


def test_list_own_purchases(client, paid_purchase):
    response = client.get("/purchases", headers=as_user("user-1"))

    assert response.status_code == 200
    purchases = response.get_json()["purchases"]
    assert [purchase["purchaseId"] for purchase in purchases] == [paid_purchase.id]
    assert purchases[0]["status"] == "completed"
    assert purchases[0]["documentsGenerated"] == 1
    assert client.get("/purchases", headers=as_user("user-2")).get_json() == {"purchases": []}


def test_list_artifacts_of_a_purchase(client, paid_purchase):
    response = client.get(f"/purchases/{paid_purchase.id}", headers=as_user("user-1"))

    assert response.status_code == 200
    listing = response.get_json()
    item = listing["items"][0]
    assert item["status"] == "completed"
    assert set(item["artifacts"]) == {"templatePdf", "templateDocx", "samplePdf", "sampleDocx", "studyMaterialPdf"}
    assert item["documentId"] == item["artifacts"][STUDY_MATERIAL_PDF]["documentId"]
    assert item["artifacts"][SAMPLE_DOCX]["contentType"] == DOCX_CONTENT_TYPE
    assert len(item["units"]) == 1


def test_missing_slots_are_left_out_of_the_listing(client, services, paid_purchase):
    item = paid_purchase.items[0]
    for unit in item.generated_units:
        del unit.artifacts[SAMPLE_DOCX]
    services.ledger.update_items(paid_purchase.id, paid_purchase.items, paid_purchase.status)

    artifacts = client.get(f"/purchases/{paid_purchase.id}", headers=as_user("user-1")).get_json()["items"][0]["artifacts"]
    assert SAMPLE_DOCX not in artifacts
    assert SAMPLE_PDF in artifacts


def test_purchase_access_control(client, paid_purchase, admin_uid):
    assert client.get(f"/purchases/{paid_purchase.id}", headers=as_user("user-2")).status_code == 403
    assert client.get(f"/purchases/{paid_purchase.id}", headers=as_user(admin_uid)).status_code == 200
    assert client.get("/purchases/does-not-exist", headers=as_user("user-1")).status_code == 404


def test_download_document(client, paid_purchase):
    artifact = paid_purchase.items[0].artifact_set[SAMPLE_PDF]

    response = client.get(f"/documents/{artifact.artifact_id}/download", headers=as_user("user-1"))

    assert response.status_code == 200
    assert response.mimetype == "application/pdf"
    assert response.data.startswith(b"%PDF")
    assert artifact.file_name in response.headers["Content-Disposition"]


def test_download_access_control(client, paid_purchase):
    artifact = paid_purchase.items[0].artifact_set[SAMPLE_PDF]
    assert client.get(f"/documents/{artifact.artifact_id}/download", headers=as_user("user-2")).status_code == 403
    assert client.get("/documents/unknown/download", headers=as_user("user-1")).status_code == 404


def test_download_of_a_deleted_file_is_not_found(client, services, paid_purchase):
    artifact = paid_purchase.items[0].artifact_set[SAMPLE_PDF]
    os.remove(os.path.join(services.store.root, artifact.storage_path))

    assert client.get(f"/documents/{artifact.artifact_id}/download", headers=as_user("user-1")).status_code == 404


def test_signed_file_link(client, paid_purchase):
    artifact = paid_purchase.items[0].artifact_set[SAMPLE_DOCX]

    response = client.get(file_path_of(artifact.download_url))

    assert response.status_code == 200
    assert response.mimetype == DOCX_CONTENT_TYPE
    assert response.data.startswith(b"PK")
    assert artifact.file_name in response.headers["Content-Disposition"]


def test_signed_file_link_errors(client, services, monkeypatch):
    assert client.get("/files/not-a-token").status_code == 404

    missing = services.store.signed_url("users/user-1/documents/missing.pdf")
    assert client.get(file_path_of(missing)).status_code == 404

    expiring = services.store.signed_url("users/user-1/documents/missing.pdf", ttl=1)
    now = int(time.time())
    monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: now + 60)
    assert client.get(file_path_of(expiring)).status_code == 410


def test_health_reports_components(client, services, monkeypatch):
    class Admin:
        def command(self, name):
            return {"ok": 1.0}

    monkeypatch.setattr(services, "mongo_client", type("Client", (), {"admin": Admin()})())
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["components"]["database"] == "ok"
    assert body["components"]["stripe_webhook"] == "ok"
    assert body["components"]["openai"] == "not_configured"


def test_health_reports_database_outage(client, services, monkeypatch):
    class Admin:
        def command(self, name):
            raise ServerSelectionTimeoutError("no servers")

    monkeypatch.setattr(services, "mongo_client", type("Client", (), {"admin": Admin()})())
    response = client.get("/health")

    assert response.status_code == 503
    assert response.get_json()["components"]["database"] == "error"


def test_reloaded_timestamps_keep_their_utc_offset(client, paid_purchase):
    listing = client.get(f"/purchases/{paid_purchase.id}", headers=as_user("user-1")).get_json()
    summary = client.get("/purchases", headers=as_user("user-1")).get_json()["purchases"][0]

    assert listing["createdAt"].endswith("+00:00")
    assert summary["createdAt"].endswith("+00:00")
    assert listing["items"][0]["units"][0]["generatedAt"].endswith("+00:00")
