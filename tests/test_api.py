"""
API tests: contracts, statement runs, previews and lifetime positions.
Routes run in-process through httpx against the test database.
"""

import pytest
import pytest_asyncio
from datetime import date
from httpx import ASGITransport, AsyncClient

from app.core.database import get_db, get_session_factory
from app.main import app
from app.models import SalesFormat, TierCalculationMode
from tests.factories import (
    LIFETIME_TIERS,
    TENANT_ID,
    add_author,
    add_contact,
    add_contract,
    add_sale,
    add_title,
)


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def catalog(session_factory):
    async with session_factory() as db:
        contact = await add_contact(db)
        title = await add_title(db)
        await add_author(db, title, contact, "100", is_primary=True)
        await db.commit()
        return contact, title


def _contract_payload(contact, title, tiers, **extra):
    payload = {
        "tenant_id": str(TENANT_ID),
        "contact_id": str(contact.id),
        "title_id": str(title.id),
        "tiers": tiers,
    }
    payload.update(extra)
    return payload


class TestAuth:
    async def test_wrong_token(self, client):
        response = await client.get(
            "/contracts", params={"tenant_id": str(TENANT_ID)}, headers={"X-Admin-Token": "nope"}
        )
        assert response.status_code == 401

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200


class TestContractsApi:
    async def test_create_contract_and_schedule(self, client, catalog, admin_headers):
        contact, title = catalog
        tiers = [
            {"format": "physical", "min_quantity": 1000, "max_quantity": None, "rate": "0.15"},
            {"format": "physical", "min_quantity": 0, "max_quantity": 999, "rate": "0.10"},
        ]
        response = await client.post(
            "/contracts",
            json=_contract_payload(contact, title, tiers, advance_amount="2000"),
            headers=admin_headers,
        )
        assert response.status_code == 201
        contract = response.json()
        assert contract["status"] == "active"
        assert len(contract["tiers"]) == 2

        response = await client.get(f"/contracts/{contract['id']}/schedule/physical", headers=admin_headers)
        assert response.status_code == 200
        schedule = response.json()
        assert [t["min_quantity"] for t in schedule["tiers"]] == [0, 1000]
        assert schedule["tiers"][1]["max_quantity"] is None

        response = await client.get(f"/contracts/{contract['id']}/schedule/ebook", headers=admin_headers)
        assert response.status_code == 422

    @pytest.mark.parametrize(
        "tiers",
        [
            [{"format": "physical", "min_quantity": 0, "max_quantity": 999, "rate": "0.10"}],
            [
                {"format": "physical", "min_quantity": 0, "max_quantity": 999, "rate": "0.10"},
                {"format": "physical", "min_quantity": 1200, "max_quantity": None, "rate": "0.15"},
            ],
            [{"format": "physical", "min_quantity": 5, "max_quantity": None, "rate": "0.10"}],
            [],
        ],
    )
    async def test_invalid_tiers_rejected(self, client, catalog, admin_headers, tiers):
        contact, title = catalog
        response = await client.post(
            "/contracts", json=_contract_payload(contact, title, tiers), headers=admin_headers
        )
        assert response.status_code == 422

    async def test_recouped_above_advance_rejected(self, client, catalog, admin_headers):
        contact, title = catalog
        tiers = [{"format": "ebook", "min_quantity": 0, "max_quantity": None, "rate": "0.25"}]
        response = await client.post(
            "/contracts",
            json=_contract_payload(contact, title, tiers, advance_amount="100", advance_recouped="200"),
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestStatementsApi:
    async def test_preview_then_run(self, client, session_factory, catalog, admin_headers):
        contact, title = catalog
        async with session_factory() as db:
            await add_contract(db, contact, title, tiers=LIFETIME_TIERS, mode=TierCalculationMode.LIFETIME)
            await add_sale(db, title, SalesFormat.PHYSICAL, 48000, "480000", date(2025, 6, 30))
            await add_sale(db, title, SalesFormat.PHYSICAL, 5000, "50000", date(2026, 2, 10))
            await db.commit()

        period = {"periodStart": "2026-01-01", "periodEnd": "2026-03-31"}

        response = await client.post(
            "/statements/preview",
            json={"tenantId": str(TENANT_ID), "contactId": str(contact.id), **period},
            headers=admin_headers,
        )
        assert response.status_code == 200
        calculation = response.json()["calculation"]
        assert calculation["grossRoyalty"] == "6500.00"
        assert calculation["lifetimeContext"]["lifetimeSalesAfter"] == 53000

        response = await client.post(
            "/statement-runs",
            json={"tenantId": str(TENANT_ID), "authorIds": [str(contact.id)], **period},
            headers=admin_headers,
        )
        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "completed"
        assert run["successCount"] == 1
        statement_id = run["results"][0]["statementId"]

        response = await client.get(f"/statement-runs/{run['runId']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["successCount"] == 1

        response = await client.get(f"/statements/{statement_id}", headers=admin_headers)
        assert response.status_code == 200
        statement = response.json()
        assert statement["calculations"]["grossRoyalty"] == "6500.00"
        assert statement["status"] == "draft"

        response = await client.get(f"/contacts/{contact.id}/statements", headers=admin_headers)
        assert response.json()["totalCount"] == 1

        response = await client.get(
            f"/titles/{title.id}/lifetime", params={"tenant_id": str(TENANT_ID)}, headers=admin_headers
        )
        assert response.status_code == 200
        lifetime = response.json()["formats"]
        assert lifetime[0]["quantity"] == 53000
        assert lifetime[0]["nextTierThreshold"] is None

    async def test_preview_without_contract(self, client, catalog, admin_headers):
        contact, _ = catalog
        response = await client.post(
            "/statements/preview",
            json={
                "tenantId": str(TENANT_ID),
                "contactId": str(contact.id),
                "periodStart": "2026-01-01",
                "periodEnd": "2026-03-31",
            },
            headers=admin_headers,
        )
        assert response.status_code == 404

    async def test_run_rejects_inverted_period(self, client, catalog, admin_headers):
        contact, _ = catalog
        response = await client.post(
            "/statement-runs",
            json={
                "tenantId": str(TENANT_ID),
                "authorIds": [str(contact.id)],
                "periodStart": "2026-03-31",
                "periodEnd": "2026-01-01",
            },
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_unknown_statement(self, client, admin_headers):
        response = await client.get(
            "/statements/00000000-0000-4000-8000-000000000999", headers=admin_headers
        )
        assert response.status_code == 404
