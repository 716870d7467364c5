"""
Tests for the Consolidation Engine — PO cycles, linking, tracking and stages.

Uses the seeded tenant: one commune (OU / PAP), three paid orders, one
unpaid order and one cancelled order.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from consolidation import engine
from core.errors import ConflictError, InvalidInputError, InvalidTransitionError, NotFoundError
from db.models import Order, OrderPOLink, POStatusEvent

T0 = datetime(2026, 10, 12, 8, 0, 0)


@pytest.mark.asyncio
class TestCreatePO:
    async def test_create_opens_cycle(self, test_db, seeded_db):
        po = await engine.create_po(test_db, seeded_db["tenant_id"], notes="Weekly cycle", actor="ops", now=T0)

        assert po.status == "open"
        assert po.po_number == "PO-20261012-0001"
        assert po.cycle_start_at == T0
        assert po.total_orders == 0
        assert po.total_amount == 0.0

        events = (await test_db.execute(select(POStatusEvent).where(POStatusEvent.po_id == po.po_id))).scalars().all()
        assert [(e.from_status, e.to_status) for e in events] == [(None, "open")]

    async def test_schedules_next_close(self, test_db, seeded_db):
        await engine.create_po(test_db, seeded_db["tenant_id"], now=T0)
        assert seeded_db["settings"].next_scheduled_close_at == T0 + timedelta(hours=48)

    async def test_second_open_po_conflicts(self, test_db, seeded_db):
        await engine.create_po(test_db, seeded_db["tenant_id"], now=T0)
        with pytest.raises(ConflictError, match="already open"):
            await engine.create_po(test_db, seeded_db["tenant_id"], now=T0)

    async def test_new_cycle_after_close_gets_next_number(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        first = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, first.po_id, now=T0 + timedelta(hours=1))

        second = await engine.create_po(test_db, tenant_id, now=T0 + timedelta(hours=2))
        assert second.po_number == "PO-20261012-0002"
        assert (await engine.get_open_po(test_db, tenant_id)).po_id == second.po_id

    async def test_get_or_create_reuses_open_po(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        created_po, created = await engine.get_or_create_active_po(test_db, tenant_id, now=T0)
        assert created is True

        same_po, created_again = await engine.get_or_create_active_po(test_db, tenant_id, now=T0)
        assert created_again is False
        assert same_po.po_id == created_po.po_id

    async def test_open_po_is_tenant_scoped(self, test_db, seeded_db):
        await engine.create_po(test_db, seeded_db["tenant_id"], now=T0)
        assert await engine.get_open_po(test_db, uuid.uuid4()) is None


@pytest.mark.asyncio
class TestLinkOrders:
    async def test_links_only_paid_live_orders(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)

        result = await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        assert result["linked_count"] == 3
        expected = {str(o.order_id) for o in seeded_db["paid_orders"]}
        assert set(result["order_ids"]) == expected
        assert po.total_orders == 3
        assert po.total_quantity == 6
        assert po.total_amount == pytest.approx(120.0)

    async def test_second_link_is_noop(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        again = await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        assert again["linked_count"] == 0
        assert po.total_orders == 3
        assert po.total_quantity == 6
        link_count = (
            await test_db.execute(select(func.count(OrderPOLink.link_id)).where(OrderPOLink.po_id == po.po_id))
        ).scalar()
        assert link_count == 3

    async def test_link_carries_destination_and_buyer(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        order = seeded_db["paid_orders"][0]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        link = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.order_id == order.order_id))).scalar_one()
        assert link.department_code == "OU"
        assert link.commune_code == "PAP"
        assert link.buyer_name == "Marie Joseph"
        assert link.unit_count == 1
        assert link.short_order_id == str(order.order_id).replace("-", "")[:8].upper()
        assert link.current_status == "open"
        assert link.hybrid_tracking_id is None

    async def test_closed_po_rejects_links(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)

        with pytest.raises(ConflictError, match="no longer accepts orders"):
            await engine.link_orders_to_po(test_db, tenant_id, po.po_id)

    async def test_unknown_po(self, test_db, seeded_db):
        with pytest.raises(NotFoundError):
            await engine.link_orders_to_po(test_db, seeded_db["tenant_id"], uuid.uuid4())

    async def test_other_tenants_po_is_not_found(self, test_db, seeded_db):
        po = await engine.create_po(test_db, seeded_db["tenant_id"], now=T0)
        with pytest.raises(NotFoundError):
            await engine.link_orders_to_po(test_db, uuid.uuid4(), po.po_id)


@pytest.mark.asyncio
class TestManualClose:
    async def test_manual_close_ignores_thresholds(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        result = await engine.manual_close_po(test_db, tenant_id, po.po_id, actor="ops", now=T0 + timedelta(minutes=5))

        assert result["closed"] is True
        assert result["close_reason"] == "manual"
        assert result["orders_at_close"] == 3
        assert po.status == "closed"
        assert po.closed_at == T0 + timedelta(minutes=5)
        assert po.cycle_end_at == po.closed_at

    async def test_close_does_not_touch_orders(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)

        statuses = (
            await test_db.execute(
                select(Order.status).where(Order.order_id.in_([o.order_id for o in seeded_db["paid_orders"]]))
            )
        ).scalars().all()
        assert set(statuses) == {"confirmed"}

    async def test_close_moves_links_to_closed(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        closed_at = T0 + timedelta(hours=2)

        result = await engine.manual_close_po(test_db, tenant_id, po.po_id, now=closed_at)

        assert result["links_synced"] == 3
        links = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))).scalars().all()
        assert {(link.previous_status, link.current_status) for link in links} == {("open", "closed")}
        assert all(link.status_synced_at == closed_at for link in links)

    async def test_closing_twice_is_invalid(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)
        with pytest.raises(InvalidTransitionError):
            await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)


@pytest.mark.asyncio
class TestChinaTracking:
    async def _closed_po(self, test_db, tenant_id):
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0 + timedelta(hours=1))
        return po

    async def test_blank_tracking_rejected(self, test_db, seeded_db):
        po = await self._closed_po(test_db, seeded_db["tenant_id"])
        with pytest.raises(InvalidInputError):
            await engine.enter_china_tracking(test_db, seeded_db["tenant_id"], po.po_id, "   ")
        assert po.status == "closed"

    async def test_open_po_cannot_take_tracking(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        with pytest.raises(InvalidTransitionError):
            await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT1")

    async def test_tracking_generates_hybrid_ids(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._closed_po(test_db, tenant_id)
        entered_at = T0 + timedelta(hours=6)

        result = await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT2610120001", now=entered_at)

        assert result["status"] == "in_transit_china"
        assert result["links_updated"] == 3
        assert po.china_tracking_number == "YT2610120001"
        assert po.china_tracking_entered_at == entered_at
        assert po.shipped_from_china_at == entered_at

        links = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))).scalars().all()
        for link in links:
            assert link.hybrid_tracking_id == f"OUPAP-{po.po_number}-YT2610120001-{link.short_order_id}"
            assert link.previous_status == "closed"
            assert link.current_status == "in_transit_china"

    async def test_tracking_only_once(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._closed_po(test_db, tenant_id)
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT1", now=T0)
        with pytest.raises(InvalidTransitionError):
            await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT2", now=T0)

    async def test_tracking_allowed_after_ordered(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await self._closed_po(test_db, tenant_id)
        await engine.update_po_stage(test_db, tenant_id, po.po_id, "ordered", now=T0 + timedelta(hours=2))

        result = await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT9", now=T0 + timedelta(hours=3))
        assert result["status"] == "in_transit_china"
        assert po.ordered_at == T0 + timedelta(hours=2)


@pytest.mark.asyncio
class TestStageUpdates:
    async def test_walks_to_completed_and_syncs_links(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT1", now=T0)

        stamps = {}
        for hours, status in enumerate(["in_transit_usa", "arrived_hub", "processing", "completed"], start=1):
            at = T0 + timedelta(days=hours)
            result = await engine.update_po_stage(test_db, tenant_id, po.po_id, status, actor="hub", now=at)
            assert result["status"] == status
            assert result["links_synced"] == 3
            stamps[status] = at

        assert po.arrived_usa_at == stamps["in_transit_usa"]
        assert po.arrived_hub_at == stamps["arrived_hub"]
        assert po.processing_at == stamps["processing"]
        assert po.completed_at == stamps["completed"]

        link = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id).limit(1))).scalar_one()
        assert link.previous_status == "processing"
        assert link.current_status == "completed"

    async def test_backwards_move_rejected(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT1", now=T0)
        await engine.update_po_stage(test_db, tenant_id, po.po_id, "in_transit_usa", now=T0)

        with pytest.raises(InvalidTransitionError):
            await engine.update_po_stage(test_db, tenant_id, po.po_id, "in_transit_china", now=T0)
        assert po.status == "in_transit_usa"

    async def test_stage_close_records_manual_reason(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.update_po_stage(test_db, tenant_id, po.po_id, "closed", now=T0)
        assert po.status == "closed"
        assert po.close_reason == "manual"

    async def test_stage_close_matches_manual_close(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)

        result = await engine.update_po_stage(test_db, tenant_id, po.po_id, "closed", now=T0)

        assert result["links_synced"] == 3
        links = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))).scalars().all()
        assert {(link.previous_status, link.current_status) for link in links} == {("open", "closed")}

    async def test_stage_cannot_skip_china_tracking(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)

        with pytest.raises(InvalidTransitionError, match="China tracking"):
            await engine.update_po_stage(test_db, tenant_id, po.po_id, "in_transit_china", now=T0)
        assert po.status == "closed"
        assert po.china_tracking_number is None

        result = await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT5", now=T0 + timedelta(hours=1))
        assert result["status"] == "in_transit_china"
        links = (await test_db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))).scalars().all()
        assert all(link.hybrid_tracking_id.endswith(f"-YT5-{link.short_order_id}") for link in links)

    async def test_history_records_every_change(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, actor="ops", now=T0 + timedelta(hours=1))
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT1", now=T0 + timedelta(hours=2))
        await engine.update_po_stage(test_db, tenant_id, po.po_id, "in_transit_usa", now=T0 + timedelta(hours=3))

        history = await engine.get_po_history(test_db, tenant_id, po.po_id)
        assert [(h["from_status"], h["to_status"]) for h in history] == [
            (None, "open"),
            ("open", "closed"),
            ("closed", "in_transit_china"),
            ("in_transit_china", "in_transit_usa"),
        ]
        assert history[1]["reason"] == "manual"
        assert history[1]["actor"] == "ops"
        assert history[2]["details"] == {"china_tracking_number": "YT1"}


@pytest.mark.asyncio
class TestOrderPOInfo:
    async def test_unlinked_order(self, test_db, seeded_db):
        info = await engine.get_order_po_info(test_db, seeded_db["tenant_id"], seeded_db["unpaid_order"].order_id)
        assert info is None

    async def test_linked_order_reports_po_and_tracking(self, test_db, seeded_db):
        tenant_id = seeded_db["tenant_id"]
        order = seeded_db["paid_orders"][2]
        po = await engine.create_po(test_db, tenant_id, now=T0)
        await engine.link_orders_to_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.manual_close_po(test_db, tenant_id, po.po_id, now=T0)
        await engine.enter_china_tracking(test_db, tenant_id, po.po_id, "YT7", now=T0 + timedelta(hours=4))

        info = await engine.get_order_po_info(test_db, tenant_id, order.order_id)

        assert info["po_number"] == po.po_number
        assert info["po_status"] == "in_transit_china"
        assert info["china_tracking_number"] == "YT7"
        assert info["hybrid_tracking_id"].endswith(f"-YT7-{info['short_order_id']}")
        assert info["shipped_from_china_at"] == T0 + timedelta(hours=4)
