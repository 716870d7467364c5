"""
Tests for the PO picking manifest.
"""

import uuid
from datetime import datetime

import pytest

from consolidation import engine
from consolidation.manifest import build_picking_manifest
from core.errors import NotFoundError
from db.models import Order

T0 = datetime(2026, 10, 12, 8, 0, 0)


@pytest.mark.asyncio
class TestPickingManifest:
    async def _linked_po(self, test_db, tenant_id):
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        return po

    async def test_customers_sorted_by_buyer(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._linked_po(test_db, tenant_id)

        manifest = await build_picking_manifest(test_db, tenant_id, po.po_id)

        assert manifest["po"]["po_number"] == po.po_number
        assert [c["buyer_name"] for c in manifest["customers"]] == ["Jean Pierre", "Marie Joseph", "Nadège Louis"]
        jean = manifest["customers"][0]
        assert jean["department_code"] == "OU"
        assert jean["commune_code"] == "PAP"
        assert sorted(i["sku"] for i in jean["items"]) == ["EARBUDS-7", "TSHIRT-001"]
        assert manifest["customers"][2]["items"] == []

    async def test_items_roll_up_by_variant(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._linked_po(test_db, tenant_id)

        manifest = await build_picking_manifest(test_db, tenant_id, po.po_id)

        assert manifest["items"] == [
            {"sku": "EARBUDS-7", "product_name": "Wireless Earbuds", "color": None, "size": None, "quantity": 1},
            {"sku": "TSHIRT-001", "product_name": "Cotton T-Shirt", "color": "Black", "size": "M", "quantity": 3},
        ]

    async def test_hybrid_ids_appear_after_tracking(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._linked_po(test_db, tenant_id)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT5", now=T0)

        manifest = await build_picking_manifest(test_db, tenant_id, po.po_id)
        assert all(c["hybrid_tracking_id"].startswith("OUPAP-") for c in manifest["customers"])

    async def test_unnamed_buyer_placeholder(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        test_db.add(
            Order(
                tenant_id=tenant_id,
                order_type="b2b",
                source_type="siver_match",
                buyer_name=None,
                status="confirmed",
                payment_status="paid",
                total_quantity=4,
                total_amount=80.0,
            )
        )
        await test_db.flush()
        po = await self._linked_po(test_db, tenant_id)

        manifest = await build_picking_manifest(test_db, tenant_id, po.po_id)

        unnamed = [c for c in manifest["customers"] if c["buyer_name"] == "Unnamed"]
        assert len(unnamed) == 1
        assert unnamed[0]["department_code"] is None

    async def test_empty_po(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        manifest = await build_picking_manifest(test_db, tenant_id, po.po_id)
        assert manifest["customers"] == []
        assert manifest["items"] == []

    async def test_unknown_po(self, test_db, seeded_db):
        with pytest.raises(NotFoundError):
            await build_picking_manifest(test_db, seeded_db["tenant_id"], uuid.uuid4())
