"""
HTTP tests for the site supply API.
"""
from sqlalchemy.exc import OperationalError

from sitesupply_core.app.main import app
from sitesupply_core.app.security import get_db

EVIDENCE = {
    "proof_photo_url": "https://cdn.example.com/grn/1.jpg",
    "latitude": 18.5204,
    "longitude": 73.8567,
    "geo_location": "Hinjewadi Phase 1, Pune",
}


def _create(client, auth, users, project, **overrides):
    body = {
        "project_id": project.id,
        "material_id": "CEM-OPC-53",
        "material_name": "Cement",
        "quantity": 50,
        "unit": "bags",
        "reason": "Slab casting, level 3",
    }
    body.update(overrides)
    return client.post("/api/materials/request", json=body, headers=auth(users.engineer))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requires_bearer_token(client, project):
    assert client.get("/api/materials/pending").status_code == 401
    response = client.get("/api/materials/pending", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_full_flow_over_http(client, auth, users, project, catalog):
    response = _create(client, auth, users, project)
    assert response.status_code == 201
    request = response.json()["data"]
    assert request["status"] == "pending"
    assert request["quantity"] == 50

    response = client.post(f"/api/materials/{request['id']}/approve", headers=auth(users.manager))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "approved"

    approved = client.get("/api/purchase/approved-requests", headers=auth(users.purchase)).json()["data"]
    assert approved[0]["unit_price"] == 350
    assert approved[0]["estimated_total"] == 20650

    response = client.post(f"/api/purchase/send/{request['id']}", json={"gst_rate": 18}, headers=auth(users.purchase))
    assert response.status_code == 200
    history = response.json()["data"]
    assert history["status"] == "PENDING_GRN"
    assert history["base_price"] == 17500
    assert history["gst_amount"] == 3150
    assert history["total_cost"] == 20650

    waiting = client.get("/api/purchase/sent-for-engineer", headers=auth(users.engineer)).json()["data"]
    assert [h["id"] for h in waiting] == [history["id"]]

    response = client.post(f"/api/purchase/receive/{history['id']}", json=EVIDENCE, headers=auth(users.engineer))
    assert response.status_code == 200
    body = response.json()
    assert body["data"]["status"] == "RECEIVED"
    assert body["data"]["grn_generated"] is True
    assert body["invoice"]["total_amount"] == 20650
    assert body["invoice"]["gst_type"] == "CGST_SGST"

    stock = client.get(f"/api/stock/project/{project.id}", headers=auth(users.engineer)).json()["data"]
    assert stock == [{
        "material_id": "CEM-OPC-53", "material_name": "Cement", "unit": "bags",
        "total_in": 50.0, "total_out": 0.0, "balance": 50.0,
    }]

    ledger = client.get(f"/api/stock/ledger/{project.id}", headers=auth(users.manager)).json()["data"]
    assert ledger[0]["source"] == "purchase"
    assert ledger[0]["source_kind"] == "material_request"

    invoices = client.get("/api/purchase-invoices", headers=auth(users.owner)).json()
    assert invoices["pagination"]["total"] == 1
    invoice_id = invoices["data"][0]["id"]
    response = client.get(f"/api/purchase-invoices/{invoice_id}", headers=auth(users.manager))
    assert response.json()["data"]["invoice_number"].startswith("PI/")

    history_page = client.get("/api/purchase/history", params={"status": "RECEIVED"}, headers=auth(users.purchase)).json()
    assert history_page["pagination"]["total"] == 1
    assert history_page["page_total_cost"] == 20650


def test_domain_errors_render_code_and_retryable(client, auth, users, project, catalog):
    request_id = _create(client, auth, users, project).json()["data"]["id"]
    client.post(f"/api/materials/{request_id}/approve", headers=auth(users.manager))
    client.post(f"/api/purchase/send/{request_id}", headers=auth(users.purchase))

    response = client.post(f"/api/purchase/send/{request_id}", headers=auth(users.purchase))
    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "message": response.json()["message"],
        "code": "ALREADY_SENT",
        "retryable": False,
    }

    response = client.post(f"/api/materials/{request_id}/approve", headers=auth(users.manager))
    assert response.status_code == 409
    assert response.json()["code"] == "REQUEST_ALREADY_PROCESSED"


def test_receive_without_evidence_is_400(client, auth, users, project, sent_history):
    response = client.post(
        f"/api/purchase/receive/{sent_history.id}",
        json={"latitude": 18.5, "longitude": 73.8},
        headers=auth(users.engineer),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_EVIDENCE"


def test_validation_and_permission_errors(client, auth, users, project, catalog):
    response = _create(client, auth, users, project, quantity=0)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    # rounds to zero at 3 places
    response = _create(client, auth, users, project, quantity="0.0004")
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    request_id = _create(client, auth, users, project).json()["data"]["id"]
    # role gate
    response = client.post(f"/api/materials/{request_id}/approve", headers=auth(users.engineer))
    assert response.status_code == 403
    # membership check in the service
    response = client.post(f"/api/materials/{request_id}/approve", headers=auth(users.outsider))
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"

    response = client.post(f"/api/materials/{request_id}/reject", json={}, headers=auth(users.manager))
    assert response.status_code == 400

    response = client.post(f"/api/materials/{request_id}/reject", json={"reason": "Duplicate"}, headers=auth(users.manager))
    assert response.json()["data"]["rejection_reason"] == "Duplicate"

    assert client.post("/api/materials/999/approve", headers=auth(users.manager)).status_code == 404


def test_listing_endpoints(client, auth, users, project, catalog):
    _create(client, auth, users, project)

    pending = client.get("/api/materials/pending", headers=auth(users.manager)).json()
    assert pending["pagination"]["total"] == 1

    by_project = client.get(
        f"/api/materials/project/{project.id}", params={"status": "pending"}, headers=auth(users.engineer)
    ).json()
    assert len(by_project["data"]) == 1

    catalog_items = client.get("/api/materials/catalog", headers=auth(users.engineer)).json()
    assert [c["name"] for c in catalog_items] == ["Cement", "Sand"]


def test_notifications_inbox(client, auth, users, project, catalog):
    _create(client, auth, users, project)

    inbox = client.get("/api/notifications", headers=auth(users.manager)).json()
    assert inbox["unread"] == 1
    note = inbox["data"][0]
    assert note["type"] == "material_request"
    assert note["data"]["projectId"] == project.id

    response = client.post("/api/notifications/mark-read", json={"ids": [note["id"]]}, headers=auth(users.manager))
    assert response.json() == {"success": True, "updated": 1}
    inbox = client.get("/api/notifications", params={"unread_only": True}, headers=auth(users.manager)).json()
    assert inbox["data"] == []


def test_stock_adjustment_and_alerts(client, auth, users, project):
    body = {
        "project_id": project.id,
        "material_id": "CEM-OPC-53",
        "material_name": "Cement",
        "direction": "OUT",
        "quantity": 4,
        "unit": "bags",
        "remarks": "Bags damaged in rain",
    }
    response = client.post("/api/stock/adjustments", json=body, headers=auth(users.manager))
    assert response.status_code == 201
    assert response.json()["data"]["source"] == "adjustment"

    assert client.post("/api/stock/adjustments", json=body, headers=auth(users.engineer)).status_code == 403

    alerts = client.get(f"/api/stock/alerts/{project.id}", headers=auth(users.owner)).json()
    assert alerts["count"] == 1
    assert alerts["data"][0]["reasons"] == ["negative_balance"]

    assert client.get(f"/api/stock/alerts/{project.id}", headers=auth(users.outsider)).status_code == 403


def test_invoice_regeneration_endpoint(client, auth, users, sent_history, db, evidence):
    from sitesupply_core.app.services.purchase_service import PurchaseDispatchService

    def no_invoice(*args):
        raise RuntimeError("renderer down")

    PurchaseDispatchService.receive(db, sent_history.id, users.engineer, invoice_issuer=no_invoice, **evidence)

    response = client.post(f"/api/purchase-invoices/generate/{sent_history.id}", headers=auth(users.owner))
    assert response.status_code == 201
    assert response.json()["data"]["total_amount"] == 20650

    response = client.post(f"/api/purchase-invoices/generate/{sent_history.id}", headers=auth(users.owner))
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_INVOICE"


def test_database_outage_is_retryable_503(client, auth, users):
    def broken_db():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))
        yield  # pragma: no cover

    app.dependency_overrides[get_db] = broken_db
    response = client.get("/api/notifications", headers=auth(users.engineer))
    assert response.status_code == 503
    assert response.json()["retryable"] is True
    assert response.json()["code"] == "DATABASE_UNAVAILABLE"
