"""
Stock ledger tests.

Verifies:
- IN/OUT/ADJUSTMENT arithmetic and the zero clamp
- Every apply leaves exactly one movement recording what was written
- Movements are append-only
- Malformed requests write nothing
"""

import math

import pytest
from sqlalchemy.exc import OperationalError

from lobbytrace.extensions import db
from lobbytrace.models import StockMovement
from lobbytrace.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT
from lobbytrace.services.concurrency import run_stock_write
from lobbytrace.services.ledger_service import (
    InventoryItemNotFound,
    LedgerError,
    apply_movement,
    compute_new_stock,
    get_inventory_value,
    get_low_stock_items,
    list_stock_movements,
    recipe_units_available,
    update_inventory_item,
)


class TestComputeNewStock:

    def test_in_adds(self):
        assert compute_new_stock(2.0, 3.5, MOVEMENT_IN) == 5.5

    def test_out_clamps_at_zero(self):
        assert compute_new_stock(5.0, 8.0, MOVEMENT_OUT) == 0.0

    def test_adjustment_is_absolute(self):
        assert compute_new_stock(5.0, 12.0, MOVEMENT_ADJUSTMENT) == 12.0

    def test_unknown_type_rejected(self):
        with pytest.raises(LedgerError):
            compute_new_stock(1.0, 1.0, "TRANSFER")


class TestApplyMovement:

    def test_create_writes_opening_movement(self, make_item):
        item = make_item("Oat Milk", stock=4)

        movements = list_stock_movements(item.id)
        assert item.current_physical_stock == 4
        assert len(movements) == 1
        assert movements[0].type == MOVEMENT_IN
        assert movements[0].previous_stock == 0
        assert movements[0].new_stock == 4
        assert movements[0].reason == "Initial stock"

    def test_out_past_zero_records_actual_delta(self, make_item, staff):
        item = make_item(stock=5)

        movement = apply_movement(item.id, 8, MOVEMENT_OUT, "spill", actor=staff)

        assert item.current_physical_stock == 0
        assert movement.previous_stock == 5
        assert movement.new_stock == 0
        assert movement.quantity == 5
        assert movement.delta == -5

    def test_adjustment_sets_absolute_count(self, make_item, staff):
        item = make_item(stock=7)

        movement = apply_movement(item.id, 3, MOVEMENT_ADJUSTMENT, "cycle count", "back room", actor=staff)

        assert item.current_physical_stock == 3
        assert movement.type == MOVEMENT_ADJUSTMENT
        assert movement.delta == -4
        assert movement.notes == "back room"

    def test_in_stamps_last_restocked(self, make_item, staff):
        item = make_item(stock=0)
        item.last_restocked_at = None
        db.session.commit()

        apply_movement(item.id, 2, MOVEMENT_IN, "delivery", actor=staff)

        assert item.last_restocked_at is not None

    def test_movement_records_actor(self, make_item, staff):
        item = make_item(stock=1)

        movement = apply_movement(item.id, 1, MOVEMENT_IN, "delivery", actor=staff)

        assert movement.actor_type == "USER"
        assert movement.actor_id == "staff-1"

    def test_one_movement_per_apply(self, make_item, staff):
        item = make_item(stock=10)

        for _ in range(3):
            apply_movement(item.id, 1, MOVEMENT_OUT, "sale", actor=staff)

        assert db.session.query(StockMovement).filter_by(inventory_item_id=item.id).count() == 4
        assert item.current_physical_stock == 7

    @pytest.mark.parametrize(
        "quantity,movement_type,reason",
        [
            (-1, MOVEMENT_IN, "delivery"),
            (math.nan, MOVEMENT_OUT, "sale"),
            (math.inf, MOVEMENT_IN, "delivery"),
            ("lots", MOVEMENT_IN, "delivery"),
            (1, "TRANSFER", "move"),
            (1, MOVEMENT_ADJUSTMENT, ""),
        ],
    )
    def test_rejects_malformed_requests(self, make_item, staff, quantity, movement_type, reason):
        item = make_item(stock=2)

        with pytest.raises(LedgerError):
            apply_movement(item.id, quantity, movement_type, reason, actor=staff)

        assert item.current_physical_stock == 2
        assert len(list_stock_movements(item.id)) == 1

    def test_unknown_item(self, db_session, staff):
        with pytest.raises(InventoryItemNotFound):
            apply_movement(999, 1, MOVEMENT_IN, "delivery", actor=staff)


class TestMovementImmutability:

    def test_update_rejected(self, make_item):
        item = make_item(stock=3)
        movement = list_stock_movements(item.id)[0]

        movement.quantity = 100
        with pytest.raises(ValueError, match="append-only"):
            db.session.flush()
        db.session.rollback()

    def test_stock_not_patchable(self, make_item):
        item = make_item(stock=3)

        with pytest.raises(LedgerError):
            update_inventory_item(item.id, {"current_physical_stock": 50})

        assert item.current_physical_stock == 3


class TestReports:

    def test_low_stock(self, make_item):
        low = make_item("Beans", stock=1, min_physical_stock_level=2)
        make_item("Cups", stock=10, min_physical_stock_level=2)

        assert [i.id for i in get_low_stock_items()] == [low.id]

    def test_recipe_units_and_value(self, make_item):
        milk = make_item("Milk", stock=2, units_per_physical_item=128, cost_per_physical_unit=4.5)
        make_item("Syrup", stock=1, cost_per_physical_unit=10)

        assert recipe_units_available(milk) == 256
        assert milk.cost_per_recipe_unit == round(4.5 / 128, 4)
        assert get_inventory_value() == 19.0


class TestStockWriteRetry:

    def test_committing_write_retried_after_lock_error(self, db_session, monkeypatch):
        monkeypatch.setattr("lobbytrace.services.concurrency.time.sleep", lambda s: None)
        calls = []

        def write():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return "ok"

        assert run_stock_write(write, owns_commit=True) == "ok"
        assert len(calls) == 3

    def test_batched_write_runs_once(self, db_session):
        calls = []

        def write():
            calls.append(1)
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_stock_write(write, owns_commit=False)
        assert len(calls) == 1
