"""
API Integration Tests — shipping quotes and the destination catalog.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import delete

from db.models import ShippingRateBracket

BASE = "/api/v1/shipping"


@pytest.mark.asyncio
class TestShippingQuoteAPI:
    async def test_quote_by_weight(self, client: AsyncClient, seeded_db):
        response = await client.post(
            f"{BASE}/quote",
            json={
                "weight_grams": 2000,
                "reference_price": 100.0,
                "commune_id": str(seeded_db["commune"].commune_id),
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["quotable"] is True
        breakdown = data["breakdown"]
        assert breakdown["china_usa_cost"] == 6.0
        assert breakdown["usa_haiti_cost"] == 8.82
        assert breakdown["insurance_cost"] == 5.0
        assert breakdown["total_shipping_cost"] == 26.82
        assert data["cart_weight"] is None

    async def test_quote_by_cart_lines(self, client: AsyncClient, seeded_db):
        """Three 0.3 kg tees → 0.9 kg → billed as 1 kg."""
        response = await client.post(
            f"{BASE}/quote",
            json={
                "items": [{"product_id": "tee", "quantity": 3, "weight_kg": 0.3}],
                "reference_price": 50.0,
                "commune_id": str(seeded_db["commune"].commune_id),
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["cart_weight"]["total_chargeable_weight"] == 1
        assert data["breakdown"]["weight_kg"] == 1.0
        assert data["breakdown"]["total_shipping_cost"] == 19.01

    async def test_cart_categories_add_surcharge(self, client: AsyncClient, seeded_db):
        response = await client.post(
            f"{BASE}/quote",
            json={
                "items": [{"product_id": "earbuds", "weight_kg": 2.0, "category_id": "electronics"}],
                "reference_price": 100.0,
                "commune_id": str(seeded_db["commune"].commune_id),
            },
        )
        assert response.json()["breakdown"]["category_fees"] == 3.0
        assert response.json()["breakdown"]["total_shipping_cost"] == 29.82

    async def test_without_commune_not_quotable(self, client: AsyncClient, seeded_db):
        response = await client.post(f"{BASE}/quote", json={"weight_grams": 2000, "reference_price": 100.0})
        assert response.status_code == 200
        assert response.json() == {
            "quotable": False,
            "reason": "commune_required",
            "breakdown": None,
            "cart_weight": None,
        }

    async def test_requires_weight_source(self, client: AsyncClient, seeded_db):
        response = await client.post(f"{BASE}/quote", json={"reference_price": 100.0})
        assert response.status_code == 422

    async def test_negative_price_rejected(self, client: AsyncClient, seeded_db):
        response = await client.post(f"{BASE}/quote", json={"weight_grams": 100, "reference_price": -1})
        assert response.status_code == 422

    async def test_no_rate_table_without_commune_is_not_quotable(self, client: AsyncClient):
        response = await client.post(f"{BASE}/quote", json={"weight_grams": 2000, "reference_price": 100})
        assert response.status_code == 200
        assert response.json()["quotable"] is False
        assert response.json()["reason"] == "commune_required"

    async def test_unknown_commune_is_checked_before_brackets(self, client: AsyncClient, test_db, seeded_db):
        await test_db.execute(delete(ShippingRateBracket))
        await test_db.flush()

        response = await client.post(
            f"{BASE}/quote",
            json={"weight_grams": 2000, "reference_price": 100, "commune_id": str(uuid.uuid4())},
        )
        assert response.status_code == 200
        assert response.json()["quotable"] is False

    async def test_missing_rate_table_is_422(self, client: AsyncClient, test_db, seeded_db):
        await test_db.execute(delete(ShippingRateBracket))
        await test_db.flush()

        response = await client.post(
            f"{BASE}/quote",
            json={"weight_grams": 2000, "reference_price": 100, "commune_id": str(seeded_db["commune"].commune_id)},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "InvalidInputError"
        assert response.json()["detail"] == "Shipping rate table is empty"


@pytest.mark.asyncio
class TestShippingCatalogAPI:
    async def test_departments(self, client: AsyncClient, seeded_db):
        response = await client.get(f"{BASE}/departments")
        assert response.status_code == 200
        assert [d["code"] for d in response.json()] == ["OU"]

    async def test_communes_by_department(self, client: AsyncClient, seeded_db):
        department_id = str(seeded_db["department"].department_id)
        response = await client.get(f"{BASE}/communes", params={"department_id": department_id})
        assert response.status_code == 200
        communes = response.json()
        assert len(communes) == 1
        assert communes[0]["code"] == "PAP"
        assert communes[0]["insurance_rate_percent"] == 5.0

    async def test_rate_table(self, client: AsyncClient, seeded_db):
        response = await client.get(f"{BASE}/rates")
        assert response.status_code == 200
        data = response.json()
        assert [b["min_weight_kg"] for b in data["brackets"]] == [0.0, 1.0, 5.0]
        assert data["category_rates"][0]["category_id"] == "electronics"
