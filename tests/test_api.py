import pytest
from fastapi.testclient import TestClient

from hms_billing.api.deps import get_db
from hms_billing.main import app
from hms_billing.utils.jwt import create_access_token

from conftest import ACTOR, APPROVER


@pytest.fixture()
def client(session_factory):

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _auth(uid=ACTOR):
    token = create_access_token(f"user{uid}@hospital.test", uid)
    return {"Authorization": f"Bearer {token}"}


def test_requires_bearer_token(client) -> None:
    r = client.get("/api/billing/encounters/1/summary")
    assert r.status_code == 401
    assert r.json()["ok"] is False

    r = client.get("/api/billing/encounters/1/summary",
                   headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_billing_flow_over_http(client) -> None:
    h = _auth()
    r = client.post("/api/billing/accounts",
                    json={"encounter_id": 40, "patient_id": 4},
                    headers=h)
    assert r.status_code == 201
    acc = r.json()["data"]
    assert acc["account_no"] == "BA000040"
    assert acc["total_amount"] == "0.00"

    r = client.post(
        "/api/billing/encounters/40/items",
        json={
            "item_type": "lab",
            "description": "CBC",
            "quantity": 1,
            "unit_price": "5000",
            "reference": {"kind": "lab_order", "id": 88},
        },
        headers=h,
    )
    assert r.status_code == 201
    item_id = r.json()["data"]["item_id"]

    r = client.post(f"/api/billing/accounts/{acc['id']}/discount",
                    json={"amount": "500", "reason": "hardship"},
                    headers=h)
    assert r.json()["data"]["discount_status"] == "proposed"

    r = client.post(f"/api/billing/accounts/{acc['id']}/discount/approve",
                    headers=_auth(APPROVER))
    assert r.json()["data"]["discount_approved_by"] == APPROVER
    assert r.json()["data"]["net_amount"] == "4500.00"

    r = client.post(f"/api/billing/accounts/{acc['id']}/payments",
                    json={"amount": "2000", "method": "mobile-money"},
                    headers=h)
    assert r.status_code == 201
    summary = r.json()["data"]["summary"]
    assert summary["paid"] == "2000.00"
    assert summary["balance"] == "2500.00"

    r = client.get(f"/api/billing/accounts/{acc['id']}/items", headers=h)
    assert [i["id"] for i in r.json()["data"]] == [item_id]

    r = client.get(f"/api/billing/accounts/{acc['id']}/ledger", headers=h)
    heads = {row["account_head"] for row in r.json()["data"]}
    assert {"Mobile Money Account", "Discounts Allowed"} <= heads


def test_errors_use_the_envelope(client) -> None:
    h = _auth()
    r = client.get("/api/billing/accounts/999/summary", headers=h)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "not_found"

    client.post("/api/billing/accounts",
                json={"encounter_id": 41, "patient_id": 4},
                headers=h)
    r = client.post(
        "/api/billing/encounters/41/items",
        json={"item_type": "lab", "description": "CBC", "unit_price": "100"},
        headers=h,
    )
    item_id = r.json()["data"]["item_id"]
    client.post(f"/api/billing/items/{item_id}/cancel",
                json={"reason": "duplicate"},
                headers=h)
    r = client.post(f"/api/billing/items/{item_id}/cancel",
                    json={"reason": "again"},
                    headers=h)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_state"

    r = client.post(
        "/api/billing/encounters/41/items",
        json={"item_type": "spa", "description": "x", "unit_price": "1"},
        headers=h,
    )
    assert r.status_code == 422


def test_claim_flow_and_reports(client) -> None:
    h = _auth()
    acc = client.post("/api/billing/accounts",
                      json={"encounter_id": 42, "patient_id": 4},
                      headers=h).json()["data"]
    client.post("/api/billing/encounters/42/items",
                json={"item_type": "procedure", "description": "Cast",
                      "unit_price": "4500"},
                headers=h)

    r = client.post(f"/api/billing/accounts/{acc['id']}/claims",
                    json={"insurer_name": "NHIF", "policy_number": "N-9",
                          "claim_amount": "6000"},
                    headers=h)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "validation_error"

    r = client.post(f"/api/billing/accounts/{acc['id']}/claims",
                    json={"insurer_name": "NHIF", "policy_number": "N-9",
                          "claim_amount": "4500"},
                    headers=h)
    claim_id = r.json()["data"]["claim_id"]

    r = client.patch(f"/api/billing/claims/{claim_id}/status",
                     json={"status": "paid"},
                     headers=h)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_transition"

    client.patch(f"/api/billing/claims/{claim_id}/status",
                 json={"status": "approved"},
                 headers=h)
    r = client.post(f"/api/billing/accounts/{acc['id']}/close", headers=h)
    assert r.json()["data"]["status"] == "pending"

    r = client.patch(f"/api/billing/claims/{claim_id}/status",
                     json={"status": "paid"},
                     headers=h)
    assert r.json()["data"]["claim_status"] == "paid"

    r = client.get(f"/api/billing/accounts/{acc['id']}/summary", headers=h)
    assert r.json()["data"]["status"] == "closed"

    r = client.get("/api/billing/reports/claims", headers=h)
    assert r.json()["data"]["by_status"]["paid"]["count"] == 1

    r = client.get("/api/billing/reports/trial-balance", headers=h)
    data = r.json()["data"]
    assert data["total_debit"] == data["total_credit"]

    r = client.get("/api/billing/reports/ledger.xlsx", headers=h)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith(
        "application/vnd.openxmlformats")
