"""
Sale consumption tests.

Verifies:
- Mapped lines decrement ingredients by recipe quantity x line quantity
- Unmapped lines are skipped without error
- A bad line records an error but never aborts its siblings
- A ledger failure mid-line rolls back that line only
- Products without a recipe are not counted as updated
- Touched mappings get last_synced_at
"""

import time
from decimal import Decimal

import pytest

from lobbytrace.actors import SOURCE_MANUAL_SYNC, SOURCE_SQUARE_WEBHOOK
from lobbytrace.extensions import db
from lobbytrace.models import StockMovement
from lobbytrace.models.square import MAPPING_DISABLED
from lobbytrace.services.consumption_service import (
    CONSUMPTION_REASON,
    STATE_COMPLETED,
    STATE_COMPLETED_WITH_ERRORS,
    ConsumptionError,
    ConsumptionTimeout,
    SaleLine,
    consume_order,
    consume_sale,
    sale_lines_from_order,
)
from lobbytrace.services.products_service import archive_product


def _sale_movements():
    return db.session.query(StockMovement).filter_by(reason=CONSUMPTION_REASON).all()


class TestSaleLines:

    def test_reads_decimal_quantities(self):
        order = {"line_items": [
            {"catalog_object_id": "V1", "quantity": "2", "name": "Latte"},
            {"catalog_object_id": "V2", "quantity": "0.5"},
        ]}

        lines = sale_lines_from_order(order)

        assert lines[0] == SaleLine("V1", Decimal("2"), "Latte")
        assert lines[1].quantity == Decimal("0.5")

    @pytest.mark.parametrize("quantity", ["-1", "abc", "NaN"])
    def test_rejects_bad_quantity(self, quantity):
        with pytest.raises(ConsumptionError):
            sale_lines_from_order({"line_items": [{"catalog_object_id": "V1", "quantity": quantity}]})

    def test_missing_line_items(self):
        assert sale_lines_from_order({"id": "O1"}) == []


class TestConsumeSale:

    def test_decrements_by_recipe_times_quantity(self, make_item, make_product, make_mapping):
        espresso = make_item("Espresso Beans", stock=10)
        milk = make_item("Milk", stock=10)
        latte = make_product("Latte", ingredients=[(espresso, 2), (milk, 1)])
        mapping = make_mapping(latte, "V1")

        result = consume_sale("ORDER-1", [SaleLine("V1", Decimal("3"))], source=SOURCE_SQUARE_WEBHOOK)

        assert result.success is True
        assert result.state == STATE_COMPLETED
        assert result.items_processed == 1
        assert result.items_updated == 1
        assert espresso.current_physical_stock == 4
        assert milk.current_physical_stock == 7
        assert len(result.movement_ids) == 2
        assert mapping.last_synced_at is not None

        movements = _sale_movements()
        assert {m.actor_type for m in movements} == {"SYSTEM"}
        assert {m.actor_id for m in movements} == {SOURCE_SQUARE_WEBHOOK}
        assert all(m.notes == "ORDER-1: 3x Latte" for m in movements)

    def test_unmapped_sale_is_successful_noop(self, make_item, db_session):
        make_item("Milk", stock=5)

        result = consume_sale("ORDER-2", [SaleLine("UNKNOWN", Decimal("1"), "Muffin")], source=SOURCE_MANUAL_SYNC)

        assert result.success is True
        assert result.items_updated == 0
        assert result.unmapped == ["UNKNOWN"]
        assert _sale_movements() == []

    def test_disabled_mapping_is_unmapped(self, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=5)
        make_mapping(make_product("Latte", ingredients=[(milk, 1)]), "V1", status=MAPPING_DISABLED)

        result = consume_sale("ORDER-3", [SaleLine("V1", Decimal("1"))], source=SOURCE_MANUAL_SYNC)

        assert result.unmapped == ["V1"]
        assert milk.current_physical_stock == 5

    def test_bad_line_does_not_abort_siblings(self, make_item, make_product, make_mapping):
        beans = make_item("Beans", stock=10)
        milk = make_item("Milk", stock=10)
        make_mapping(make_product("Espresso", ingredients=[(beans, 1)]), "V1")
        gone = make_product("Old Special", ingredients=[(milk, 1)])
        make_mapping(gone, "V2")
        archive_product(gone.id)
        make_mapping(make_product("Latte", ingredients=[(beans, 1), (milk, 2)]), "V3")

        lines = [SaleLine("V1", Decimal("1")), SaleLine("V2", Decimal("1")), SaleLine("V3", Decimal("2"))]
        result = consume_sale("ORDER-4", lines, source=SOURCE_SQUARE_WEBHOOK)

        assert result.success is False
        assert result.state == STATE_COMPLETED_WITH_ERRORS
        assert result.items_processed == 3
        assert result.items_updated == 2
        assert len(result.errors) == 1
        assert "V2" in result.errors[0]
        assert beans.current_physical_stock == 7
        assert milk.current_physical_stock == 6

    def test_ledger_failure_rolls_back_only_its_line(self, make_item, make_product, make_mapping):
        beans = make_item("Beans", stock=10)
        milk = make_item("Milk", stock=10)
        syrup = make_item("Mocha Syrup", stock=10)
        make_mapping(make_product("Espresso", ingredients=[(beans, 1)]), "V1")
        mocha = make_product("Mocha", ingredients=[(milk, 1), (syrup, 1)])
        # Written straight to the row; the products service refuses non-finite quantities
        mocha.ingredients[1].quantity = float("inf")
        db.session.commit()
        make_mapping(mocha, "V2")
        make_mapping(make_product("Latte", ingredients=[(milk, 2)]), "V3")

        lines = [SaleLine("V1", Decimal("1")), SaleLine("V2", Decimal("1")), SaleLine("V3", Decimal("1"))]
        result = consume_sale("ORDER-8", lines, source=SOURCE_SQUARE_WEBHOOK)

        assert result.success is False
        assert result.items_processed == 3
        assert result.items_updated == 2
        assert len(result.errors) == 1
        assert "V2" in result.errors[0]
        assert "finite" in result.errors[0]
        assert len(result.movement_ids) == 2

        db.session.expire_all()
        assert beans.current_physical_stock == 9
        # Mocha's milk decrement was undone with its line
        assert milk.current_physical_stock == 8
        assert syrup.current_physical_stock == 10
        assert not [m for m in _sale_movements() if "Mocha" in m.notes]

    def test_overflowing_line_quantity_is_a_line_error(self, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=10)
        make_mapping(make_product("Latte", ingredients=[(milk, 1)]), "V1")
        order = {"id": "ORDER-9", "line_items": [
            {"catalog_object_id": "V1", "quantity": "1e400"},
            {"catalog_object_id": "V1", "quantity": "3"},
        ]}

        result = consume_order(order, source=SOURCE_MANUAL_SYNC)

        assert result.success is False
        assert result.items_updated == 1
        assert len(result.errors) == 1
        db.session.expire_all()
        assert milk.current_physical_stock == 7

    def test_product_without_recipe_not_counted(self, make_product, make_mapping):
        mapping = make_mapping(make_product("Gift Card"), "V9")

        result = consume_sale("ORDER-10", [SaleLine("V9", Decimal("1"))], source=SOURCE_MANUAL_SYNC)

        assert result.success is True
        assert result.items_processed == 1
        assert result.items_updated == 0
        assert result.movement_ids == []
        db.session.expire_all()
        assert mapping.last_synced_at is None

    def test_zero_clamp_during_sale(self, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=1)
        make_mapping(make_product("Latte", ingredients=[(milk, 2)]), "V1")

        consume_sale("ORDER-5", [SaleLine("V1", Decimal("1"))], source=SOURCE_SQUARE_WEBHOOK)

        assert milk.current_physical_stock == 0
        assert _sale_movements()[0].quantity == 1

    def test_deadline_exceeded(self, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=5)
        make_mapping(make_product("Latte", ingredients=[(milk, 1)]), "V1")

        with pytest.raises(ConsumptionTimeout):
            consume_sale(
                "ORDER-6", [SaleLine("V1", Decimal("1"))],
                source=SOURCE_SQUARE_WEBHOOK, commit=False, deadline=time.monotonic() - 1,
            )
        db.session.rollback()

        assert milk.current_physical_stock == 5


class TestConsumeOrder:

    def test_manual_order(self, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=5)
        make_mapping(make_product("Latte", ingredients=[(milk, 1)]), "V1")

        result = consume_order(
            {"id": "ORDER-7", "line_items": [{"catalog_object_id": "V1", "quantity": "2"}]},
            source=SOURCE_MANUAL_SYNC,
        )

        assert result.success is True
        assert milk.current_physical_stock == 3

    def test_requires_order_id(self, db_session):
        with pytest.raises(ConsumptionError):
            consume_order({"line_items": []}, source=SOURCE_MANUAL_SYNC)
