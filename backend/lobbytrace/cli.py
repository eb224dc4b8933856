# Overview: Flask CLI command groups for bootstrap, Square sync and inventory inspection.

# backend/lobbytrace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Square:
# - python -m flask square show-config
#   Print the stored connection settings with secrets masked.
# - python -m flask square import-catalog
#   Pull the Square catalog and create/refresh products.
# - python -m flask square suggest-mappings [--min-confidence 0.9] [--apply]
#   Print mapping suggestions for unmapped products; --apply saves them.
# - python -m flask square register-webhook [--url https://host/squareWebhook]
#   Subscribe to Square order events; stores the issued signature key.
# - python -m flask square remove-webhook
#   Delete the registered subscription (the signature key is kept).
# - python -m flask square simulate-sale VARIATION_ID [--quantity 2]
#   Send a COMPLETED test order through webhook intake.
#
# Inventory:
# - python -m flask inventory low-stock
#   List active items at or below their minimum level.

import click
from flask.cli import with_appcontext

from .actors import SOURCE_CATALOG_IMPORT, SOURCE_CLI, Actor
from .extensions import db
from .services.catalog_import_service import import_catalog_from_square
from .services.ledger_service import get_low_stock_items, recipe_units_available
from .services.mapping_service import save_mapping, suggest_unmapped
from .services.products_service import list_products
from .services.square_client import SquareAPIError
from .services.square_config_service import client_from_config, get_square_config
from .services.webhook_service import (
    WebhookError,
    register_webhook_subscription,
    remove_webhook_subscription,
    simulate_webhook_event,
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('square')
def square_group():
    """Square integration commands."""


@square_group.command('show-config')
@with_appcontext
def show_config():
    """Print stored Square settings (secrets masked)."""
    config = get_square_config().to_dict()

    click.echo("\n" + "="*60)
    for key in sorted(config):
        click.echo(f"{key:<26} {config[key] if config[key] is not None else '-'}")
    click.echo("="*60 + "\n")


@square_group.command('import-catalog')
@with_appcontext
def import_catalog_cli():
    """Create or refresh products from the live Square catalog."""
    try:
        with client_from_config() as client:
            result = import_catalog_from_square(client, actor=Actor.system(SOURCE_CATALOG_IMPORT))
    except SquareAPIError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Imported {result.imported}, updated {result.updated}, skipped {result.skipped}")
    for err in result.errors:
        click.echo(f"WARN {err}")


@square_group.command('suggest-mappings')
@click.option('--min-confidence', type=float, default=0.0, help='Only show suggestions at or above this score')
@click.option('--apply', 'apply_', is_flag=True, help='Save the listed suggestions as mappings')
@with_appcontext
def suggest_mappings_cli(min_confidence, apply_):
    """Suggest Square variations for products that have no active mapping."""
    try:
        with client_from_config() as client:
            objects = client.search_catalog()
    except SquareAPIError as e:
        raise click.ClickException(str(e))

    suggestions = [s for s in suggest_unmapped(list_products(), objects) if s.confidence >= min_confidence]
    if not suggestions:
        click.echo("No suggestions.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Conf':<6} {'Product':<30} {'Square item':<30} {'Reason'}")
    click.echo("="*90)
    for s in suggestions:
        click.echo(f"{s.confidence:<6.2f} {s.product.full_name[:30]:<30} {s.square_item_name[:30]:<30} {s.reason}")
    click.echo("="*90 + "\n")

    if not apply_:
        return

    actor = Actor.system(SOURCE_CATALOG_IMPORT)
    created = 0
    for s in suggestions:
        _, was_created = save_mapping(
            product_id=s.product.id,
            square_variation_id=s.square_variation.get("id"),
            square_catalog_object_id=s.square_catalog_object_id,
            square_item_name=s.square_item_name,
            actor=actor,
        )
        created += int(was_created)
    click.echo(f"PASS Saved {len(suggestions)} mappings ({created} new)")


@square_group.command('register-webhook')
@click.option('--url', 'notification_url', default=None, help='Public URL of /squareWebhook (defaults to SQUARE_WEBHOOK_NOTIFICATION_URL)')
@with_appcontext
def register_webhook_cli(notification_url):
    """Subscribe this server to Square order events and store the signature key."""
    try:
        config = register_webhook_subscription(Actor.system(SOURCE_CLI), notification_url)
    except (WebhookError, SquareAPIError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Subscription {config.webhook_subscription_id} -> {config.webhook_notification_url}")
    if not config.webhook_signature_key:
        click.echo("WARN Square returned no signature key; deliveries will not be verified")


@square_group.command('remove-webhook')
@with_appcontext
def remove_webhook_cli():
    """Delete the registered Square webhook subscription."""
    try:
        remove_webhook_subscription(Actor.system(SOURCE_CLI))
    except (WebhookError, SquareAPIError) as e:
        raise click.ClickException(str(e))

    click.echo("PASS Webhook subscription removed.")


@square_group.command('simulate-sale')
@click.argument('variation_id')
@click.option('--quantity', default='1', show_default=True, help='Line quantity as Square sends it')
@with_appcontext
def simulate_sale_cli(variation_id, quantity):
    """Send a COMPLETED test order for one variation through webhook intake."""
    outcome = simulate_webhook_event({
        "line_items": [{"catalog_object_id": variation_id, "quantity": str(quantity)}],
    })

    status = outcome.body.get("status") or outcome.body.get("error")
    label = "PASS" if outcome.status_code == 200 else "WARN"
    click.echo(f"{label} {outcome.status_code} {status}")
    result = outcome.body.get("result") or {}
    for err in result.get("errors", []):
        click.echo(f"WARN {err}")
    for unmapped in result.get("unmapped", []):
        click.echo(f"WARN unmapped: {unmapped}")


@click.group('inventory')
def inventory_group():
    """Inventory inspection commands."""


@inventory_group.command('low-stock')
@with_appcontext
def low_stock_cli():
    """List active items at or below their minimum stock level."""
    items = get_low_stock_items()

    if not items:
        click.echo("No items below minimum stock.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Stock':<10} {'Min':<10} {'Recipe units'}")
    click.echo("="*80)
    for item in items:
        click.echo(
            f"{item.id:<5} {item.name[:30]:<30} {item.current_physical_stock:<10g} "
            f"{item.min_physical_stock_level:<10g} {recipe_units_available(item):g} {item.recipe_unit}"
        )
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(square_group)
    app.cli.add_command(inventory_group)
