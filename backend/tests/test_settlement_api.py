"""
Settlement, dividend and commonwealth fund endpoints.
"""

import pytest
from decimal import Decimal
from httpx import AsyncClient

from backend.coopfare.domain.settlement.providers import MemberEligibilityProvider
from backend.coopfare.models.enums import MemberType

TENANT = 7


@pytest.mark.asyncio
async def test_run_period_then_read_status(client: AsyncClient, factory):
    await factory.cooperative(TENANT)

    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run", headers={"X-Actor": "treasurer"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "SETTLED"
    assert Decimal(body["surplus"]) == Decimal("1000.00")
    assert Decimal(body["dividend_pool"]) == Decimal("500.00")
    assert body["locked_by"] is None

    status = await client.get(f"/v1/tenants/{TENANT}/periods/2024-03")
    assert status.json()["status"] == "SETTLED"


@pytest.mark.asyncio
async def test_second_run_is_conflict_and_fund_unchanged(client: AsyncClient, factory):
    await factory.cooperative(TENANT)
    await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")

    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CONCURRENCY_002"

    fund = await client.get(f"/v1/tenants/{TENANT}/commonwealth")
    body = fund.json()
    assert Decimal(body["balance"]) == Decimal("500.00")
    assert len(body["entries"]) == 1
    assert body["entries"][0]["period_id"] == "2024-03"


@pytest.mark.asyncio
async def test_invalid_period_rejected(client: AsyncClient):
    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-13/run")
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_INPUT_002"


@pytest.mark.asyncio
async def test_unknown_period_status(client: AsyncClient):
    response = await client.get(f"/v1/tenants/{TENANT}/periods/2024-03")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_dividends_listed_and_paid(client: AsyncClient, factory):
    await factory.cooperative(TENANT)
    await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")

    dividends = await client.get(f"/v1/tenants/{TENANT}/periods/2024-03/dividends")
    assert [Decimal(d["amount"]) for d in dividends.json()] == [
        Decimal("166.68"), Decimal("166.66"), Decimal("166.66")
    ]
    assert {d["status"] for d in dividends.json()} == {"PENDING"}

    paid = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/mark-paid")
    assert paid.status_code == 200
    assert paid.json()["paid_count"] == 3
    assert Decimal(paid.json()["paid_amount"]) == Decimal("500.00")

    history = await client.get(f"/v1/tenants/{TENANT}/members/{MemberType.CUSTOMER.value}/1/dividends")
    assert history.status_code == 200
    assert history.json()[0]["status"] == "PAID"
    assert history.json()[0]["distribution_id"] is not None

    fund = await client.get(f"/v1/tenants/{TENANT}/commonwealth")
    assert Decimal(fund.json()["balance"]) == Decimal("0.00")
    assert [entry["kind"] for entry in fund.json()["entries"]].count("distribution") == 3


@pytest.mark.asyncio
async def test_run_leaves_audit_trail(client: AsyncClient, factory):
    await factory.cooperative(TENANT)
    await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run", headers={"X-Actor": "treasurer"})

    response = await client.get(f"/v1/tenants/{TENANT}/audit-log", params={"action": "SETTLEMENT_SETTLED"})
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["logs"][0]["actor"] == "treasurer"
    assert body["logs"][0]["meta_data"]["period_id"] == "2024-03"

    everything = await client.get(f"/v1/tenants/{TENANT}/audit-log")
    actions = {log["action"] for log in everything.json()["logs"]}
    assert {"SETTLEMENT_STARTED", "SETTLEMENT_ALLOCATED", "CONTRIBUTION_RECORDED", "TRIP_FARE_CALCULATED"} <= actions


@pytest.mark.asyncio
async def test_settled_period_cannot_be_cancelled(client: AsyncClient, factory):
    await factory.cooperative(TENANT)
    await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")

    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/cancel")
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_CONCURRENCY_003"


@pytest.mark.asyncio
async def test_release_lock_on_unlocked_period_is_noop(client: AsyncClient, factory):
    await factory.cooperative(TENANT)
    await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")

    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/release-lock")
    assert response.status_code == 200
    assert response.json()["status"] == "SETTLED"


@pytest.mark.asyncio
async def test_correction_appends_to_fund(client: AsyncClient):
    response = await client.post(
        f"/v1/tenants/{TENANT}/commonwealth/corrections",
        json={"amount": "12.34", "note": "Bank interest"},
        headers={"X-Actor": "treasurer"},
    )
    assert response.status_code == 201
    body = response.json()
    assert Decimal(body["balance"]) == Decimal("12.34")
    assert body["entries"][0]["source"] == "CORRECTION"
    assert body["entries"][0]["period_id"] is None


@pytest.mark.asyncio
async def test_correction_must_be_positive(client: AsyncClient):
    response = await client.post(
        f"/v1/tenants/{TENANT}/commonwealth/corrections",
        json={"amount": "-5.00", "note": "oops"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_empty_fund_view(client: AsyncClient):
    response = await client.get(f"/v1/tenants/{TENANT}/commonwealth")
    assert response.status_code == 200
    body = response.json()
    assert body["fund_id"] is None
    assert Decimal(body["balance"]) == Decimal("0.00")
    assert body["entries"] == []


@pytest.mark.asyncio
async def test_health_reports_redis(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["redis"] == "up"


@pytest.mark.asyncio
async def test_failure_after_ledger_write_reported_as_pending_resume(client: AsyncClient, factory, monkeypatch):
    await factory.cooperative(TENANT)

    async def unavailable(self, db, tenant_id, period_id, member_types):
        raise RuntimeError("member directory unavailable")

    monkeypatch.setattr(MemberEligibilityProvider, "eligible_members", unavailable)

    response = await client.post(f"/v1/tenants/{TENANT}/periods/2024-03/run")
    assert response.status_code == 500
    body = response.json()
    assert body["error_code"] == "ERR_INVARIANT_003"
    assert body["message"] == "Settlement Failed - pending manual resume: member directory unavailable"

    status = await client.get(f"/v1/tenants/{TENANT}/periods/2024-03")
    assert status.json()["status"] == "FAILED"
    assert status.json()["failure_reason"] == body["message"]
