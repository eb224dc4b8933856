"""
Flask CLI command tests (square and inventory groups).
"""

from lobbytrace.models import WebhookLog
from lobbytrace.extensions import db
from lobbytrace.services.square_config_service import get_square_config

NOTIFICATION_URL = "https://shop.example.test/squareWebhook"


class TestSquareCommands:

    def test_simulate_sale(self, app, make_item, make_product, make_mapping):
        milk = make_item("Milk", stock=10)
        make_mapping(make_product("Latte", ingredients=[(milk, 2)]), "V1")

        result = app.test_cli_runner().invoke(args=["square", "simulate-sale", "V1", "--quantity", "3"])

        assert result.exit_code == 0
        assert "PASS 200 Processed" in result.output
        assert milk.current_physical_stock == 4
        assert db.session.query(WebhookLog).count() == 1

    def test_simulate_sale_reports_unmapped(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["square", "simulate-sale", "NOPE"])

        assert result.exit_code == 0
        assert "WARN unmapped: NOPE" in result.output

    def test_register_and_remove_webhook(self, app, square_config, fake_square):
        fake_square.add("POST", "/v2/webhooks/subscriptions", {"subscription": {
            "id": "wbhk_cli", "notification_url": NOTIFICATION_URL, "signature_key": "cli-key",
        }})
        fake_square.add("DELETE", "/v2/webhooks/subscriptions/wbhk_cli", {})
        runner = app.test_cli_runner()

        result = runner.invoke(args=["square", "register-webhook", "--url", NOTIFICATION_URL])
        assert result.exit_code == 0
        assert "PASS Subscription wbhk_cli" in result.output
        config = get_square_config()
        assert config.webhook_signature_key == "cli-key"
        assert config.updated_by == "system:cli"

        result = runner.invoke(args=["square", "remove-webhook"])
        assert result.exit_code == 0
        assert get_square_config().webhook_subscription_id is None

    def test_remove_webhook_without_subscription_fails(self, app, square_config):
        result = app.test_cli_runner().invoke(args=["square", "remove-webhook"])

        assert result.exit_code != 0
        assert "No webhook subscription" in result.output


class TestInventoryCommands:

    def test_low_stock(self, app, make_item):
        make_item("Oat Milk", stock=1, min_physical_stock_level=2)

        result = app.test_cli_runner().invoke(args=["inventory", "low-stock"])

        assert result.exit_code == 0
        assert "Oat Milk" in result.output
