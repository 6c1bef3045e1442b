"""
HTTP API tests: onboarding through settlement over the FastAPI app.
"""
import uuid
from decimal import Decimal

import pytest

from carbonex.models.user import UserRole

from conftest import add_trip, auth_headers, make_org, make_user, principal_headers


async def _bank(db):
    return await make_user(db, "bank.example", role=UserRole.BANK)


async def _employer(db, org):
    return await make_user(db, org.domain, role=UserRole.EMPLOYER, organisation_id=org.id)


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_metrics_endpoint(client):
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


async def test_requests_without_token_are_refused(client):
    response = await client.get("/api/marketplace/listings")
    assert response.status_code in (401, 403)

    response = await client.get("/api/marketplace/listings", headers={"Authorization": "Bearer junk"})
    assert response.status_code == 401


async def test_onboarding_flow(client, db):
    bank = await _bank(db)
    employer_id = str(uuid.uuid4())
    employer_headers = principal_headers(employer_id, "alice@acme.com", role="employer")

    response = await client.post(
        "/api/registrations/organisations",
        json={"full_name": "Alice", "organisation_name": "Acme", "domain": "acme.com"},
        headers=employer_headers,
    )
    assert response.status_code == 201
    assert response.json()["status"] == "pending"

    # employee of the pending organisation is stored and flagged pending
    employee_id = str(uuid.uuid4())
    employee_headers = principal_headers(employee_id, "bob@acme.com")
    response = await client.post("/api/registrations/employees", json={"full_name": "Bob"}, headers=employee_headers)
    assert response.status_code == 201
    assert response.json()["pending"] is True

    response = await client.get("/api/registrations/organisations", headers=auth_headers(bank))
    assert [r["id"] for r in response.json()] == [employer_id]

    response = await client.post(
        f"/api/registrations/organisations/{employer_id}/approve",
        headers=auth_headers(bank),
    )
    assert response.status_code == 200
    decision = response.json()
    assert decision["outcome"] == "approved"

    response = await client.post(
        f"/api/registrations/organisations/{employer_id}/approve",
        headers=auth_headers(bank),
    )
    assert response.json()["outcome"] == "already_approved"

    response = await client.get("/api/organisations/me", headers=employer_headers)
    assert response.status_code == 200
    assert Decimal(response.json()["cash_balance"]) == Decimal("1000")

    response = await client.get("/api/registrations/employees", headers=employer_headers)
    assert [r["id"] for r in response.json()] == [employee_id]

    response = await client.post(f"/api/registrations/employees/{employee_id}/approve", headers=employer_headers)
    assert response.json()["outcome"] == "approved"
    assert response.json()["organisation_id"] == decision["organisation_id"]

    response = await client.get("/api/employees", headers=employer_headers)
    assert [e["id"] for e in response.json()] == [employee_id]


async def test_employee_signup_for_unknown_domain(client):
    headers = principal_headers(str(uuid.uuid4()), "eve@nowhere.com")

    response = await client.post("/api/registrations/employees", json={"full_name": "Eve"}, headers=headers)

    assert response.status_code == 404
    assert response.json() == {
        "exists": False,
        "pending": False,
        "registration_id": None,
        "organisation_id": None,
    }


async def test_trade_through_the_api(client, db):
    bank = await _bank(db)
    seller = await make_org(db, name="Org A", earned=100, tradable=100)
    employee = await make_user(db, seller.domain, organisation_id=seller.id)
    await add_trip(db, employee, 100)
    buyer = await make_org(db, name="Org B", cash=1000)
    seller_employer = await _employer(db, seller)
    buyer_employer = await _employer(db, buyer)

    response = await client.post(
        "/api/marketplace/listings",
        json={"credit_amount": "40", "price": "2"},
        headers=auth_headers(seller_employer),
    )
    assert response.status_code == 201
    tx_id = response.json()["id"]

    response = await client.post(f"/api/marketplace/transactions/{tx_id}/approve", headers=auth_headers(bank))
    assert response.json()["status"] == "approved"

    response = await client.get("/api/marketplace/listings", headers=auth_headers(buyer_employer))
    assert [t["id"] for t in response.json()] == [tx_id]

    response = await client.post(f"/api/marketplace/transactions/{tx_id}/claim", headers=auth_headers(buyer_employer))
    assert response.json()["status"] == "pending_purchase"
    assert response.json()["buyer_org_name"] == "Org B"

    response = await client.post(f"/api/marketplace/transactions/{tx_id}/settle", headers=auth_headers(bank))
    assert response.json()["status"] == "completed"
    assert Decimal(response.json()["total_price"]) == Decimal("80")

    response = await client.get("/api/organisations/me", headers=auth_headers(buyer_employer))
    assert Decimal(response.json()["tradable_credits"]) == Decimal("40")
    assert Decimal(response.json()["cash_balance"]) == Decimal("920")

    response = await client.post(f"/api/organisations/{seller.id}/reconcile", headers=auth_headers(seller_employer))
    assert response.status_code == 200
    assert response.json()["changed"] is False
    assert Decimal(response.json()["tradable"]) == Decimal("60")

    # another organisation's books are invisible
    response = await client.post(f"/api/organisations/{seller.id}/reconcile", headers=auth_headers(buyer_employer))
    assert response.status_code == 404

    response = await client.post(f"/api/marketplace/transactions/{tx_id}/claim", headers=auth_headers(buyer_employer))
    assert response.status_code == 409
    assert response.json()["error"] == "illegal_transition"
    assert response.json()["current_status"] == "completed"


async def test_ledger_errors_are_structured(client, db):
    org = await make_org(db, tradable=5, earned=5)
    employer = await _employer(db, org)

    response = await client.post(
        "/api/marketplace/listings",
        json={"credit_amount": "10", "price": "1"},
        headers=auth_headers(employer),
    )

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "insufficient_balance"
    assert Decimal(body["available"]) == Decimal("5")
    assert Decimal(body["requested"]) == Decimal("10")

    response = await client.post(
        "/api/marketplace/transactions/missing/approve",
        headers=auth_headers(await _bank(db)),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.parametrize("credit_amount,price", [("0", "1"), ("1", "1e30"), ("1e10", "1")])
async def test_invalid_listing_is_unprocessable(client, db, credit_amount, price):
    org = await make_org(db, tradable=5, earned=5)
    employer = await _employer(db, org)

    response = await client.post(
        "/api/marketplace/listings",
        json={"credit_amount": credit_amount, "price": price},
        headers=auth_headers(employer),
    )

    assert response.status_code == 422


async def test_deactivated_employer_is_refused(client, db):
    org = await make_org(db)
    employer = await make_user(db, org.domain, role=UserRole.EMPLOYER, organisation_id=org.id, active=False)

    response = await client.get("/api/organisations/me", headers=auth_headers(employer))

    assert response.status_code == 403


async def test_employer_deactivates_and_reactivates_employee(client, db):
    org = await make_org(db)
    employer = await _employer(db, org)
    employee = await make_user(db, org.domain, organisation_id=org.id)

    response = await client.post(f"/api/employees/{employee.id}/deactivate", headers=auth_headers(employer))
    assert response.status_code == 200
    assert response.json()["active"] is False

    response = await client.get("/api/employees?include_inactive=false", headers=auth_headers(employer))
    assert response.json() == []

    response = await client.post(f"/api/employees/{employee.id}/reactivate", headers=auth_headers(employer))
    assert response.json()["active"] is True


async def test_bank_funds_and_arranges_transfer(client, db):
    bank = await _bank(db)
    seller = await make_org(db, earned=30, tradable=30)
    buyer = await make_org(db)

    response = await client.post(f"/api/organisations/{buyer.id}/funds", json={"amount": "100"}, headers=auth_headers(bank))
    assert Decimal(response.json()["cash_balance"]) == Decimal("100")

    response = await client.post(
        "/api/marketplace/transfers",
        json={"seller_org_id": seller.id, "buyer_org_id": buyer.id, "credit_amount": "10", "price": "3"},
        headers=auth_headers(bank),
    )
    assert response.status_code == 201
    tx_id = response.json()["id"]

    response = await client.post(f"/api/marketplace/transactions/{tx_id}/approve", headers=auth_headers(bank))
    assert response.json()["status"] == "completed"

    response = await client.get("/api/organisations", headers=auth_headers(bank))
    balances = {o["id"]: o for o in response.json()}
    assert Decimal(balances[buyer.id]["cash_balance"]) == Decimal("70")
    assert Decimal(balances[buyer.id]["tradable_credits"]) == Decimal("10")
    assert Decimal(balances[seller.id]["cash_balance"]) == Decimal("30")


async def test_funding_beyond_cash_column_is_unprocessable(client, db):
    bank = await _bank(db)
    org = await make_org(db, cash=10)

    response = await client.post(f"/api/organisations/{org.id}/funds", json={"amount": "1e30"}, headers=auth_headers(bank))

    assert response.status_code == 422
    response = await client.get("/api/organisations", headers=auth_headers(bank))
    assert Decimal(response.json()[0]["cash_balance"]) == Decimal("10")
