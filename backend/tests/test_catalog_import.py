"""
Catalog import tests.

Re-import must refresh Square-owned fields and never touch recipes or
preparation details.
"""

import pytest

from lobbytrace.extensions import db
from lobbytrace.models import Product
from lobbytrace.services.catalog_import_service import (
    import_catalog,
    import_catalog_from_square,
    parse_variation_attributes,
)
from lobbytrace.services.products_service import update_product
from lobbytrace.services.square_config_service import client_from_config


def _catalog(latte_name="Latte", price=450):
    return [
        {"type": "CATEGORY", "id": "CAT-1", "category_data": {"name": "Espresso Drinks"}},
        {
            "type": "ITEM", "id": "ITEM-1",
            "item_data": {
                "name": latte_name,
                "description": "Steamed milk and espresso",
                "category_id": "CAT-1",
                "variations": [
                    {
                        "type": "ITEM_VARIATION", "id": "VAR-1",
                        "item_variation_data": {
                            "item_id": "ITEM-1", "name": "16oz Iced (To Go)", "sku": "LAT-16",
                            "price_money": {"amount": price, "currency": "USD"},
                        },
                    },
                ],
            },
        },
        {
            "type": "ITEM_VARIATION", "id": "VAR-ORPHAN",
            "item_variation_data": {"item_id": "ITEM-GONE", "name": "Regular"},
        },
    ]


class TestParseVariationAttributes:

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("16oz Iced (To Go)", {"size": "16oz", "temperature": "Iced", "to_go_status": "To-Go"}),
            ("12 oz Hot - Here", {"size": "12oz", "temperature": "Hot", "to_go_status": "Here"}),
            ("Takeout", {"size": None, "temperature": None, "to_go_status": "To-Go"}),
            ("Dine-in 20 fl oz", {"size": "20oz", "temperature": None, "to_go_status": "Here"}),
            (None, {"size": None, "temperature": None, "to_go_status": None}),
        ],
    )
    def test_labels(self, label, expected):
        assert parse_variation_attributes(label) == expected


class TestImportCatalog:

    def test_creates_products(self, db_session):
        result = import_catalog(_catalog())

        assert result.imported == 1
        assert result.updated == 0
        assert result.skipped == 1
        assert "VAR-ORPHAN" in result.errors[0]

        product = db.session.query(Product).filter_by(token="VAR-1").one()
        assert product.name == "Latte"
        assert product.variation == "16oz Iced (To Go)"
        assert product.category == "Espresso Drinks"
        assert product.price_cents == 450
        assert product.sku == "LAT-16"
        assert product.size == "16oz"
        assert product.temperature == "Iced"
        assert product.to_go_status == "To-Go"
        assert product.square_item_id == "ITEM-1"
        assert product.ingredients == []
        assert product.created_by == "system:catalog-import"

    def test_reimport_preserves_local_fields(self, db_session, make_item):
        import_catalog(_catalog())
        product = db.session.query(Product).filter_by(token="VAR-1").one()
        milk = make_item("Milk", stock=4)
        update_product(product.id, {
            "preparation_time_minutes": 4,
            "allergens": ["dairy"],
            "ingredients": [{"inventory_item_id": milk.id, "quantity": 2}],
        })

        result = import_catalog(_catalog(latte_name="Caffe Latte", price=500))

        assert result.imported == 0
        assert result.updated == 1
        db.session.expire_all()
        product = db.session.query(Product).filter_by(token="VAR-1").one()
        assert product.name == "Caffe Latte"
        assert product.price_cents == 500
        assert product.preparation_time_minutes == 4
        assert product.allergens == ["dairy"]
        assert [(i.inventory_item_id, i.quantity) for i in product.ingredients] == [(milk.id, 2)]

    def test_nameless_item_skipped(self, db_session):
        objects = [
            {"type": "ITEM", "id": "ITEM-1", "item_data": {"name": ""}},
            {"type": "ITEM_VARIATION", "id": "VAR-1", "item_variation_data": {"item_id": "ITEM-1"}},
        ]

        result = import_catalog(objects)

        assert result.skipped == 1
        assert db.session.query(Product).count() == 0

    def test_from_square(self, db_session, square_config, fake_square):
        fake_square.add("POST", "/v2/catalog/search", {"objects": _catalog()})

        with client_from_config() as client:
            result = import_catalog_from_square(client)

        assert result.imported == 1
        assert fake_square.json_bodies("/v2/catalog/search")[0]["object_types"] == [
            "ITEM", "ITEM_VARIATION", "CATEGORY",
        ]
