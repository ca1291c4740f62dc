"""Command-line interface for manual reconciliation operations."""

import sys
import click

from .bootstrap import build_services
from .models.unit_of_work import ProcessingOutcome
from .utils.config import get_config
from .utils.exceptions import BaseAppException, ConfigurationError


def _services():
    try:
        return build_services()
    except ConfigurationError as e:
        click.echo(click.style(f"✗ Configuration error: {e.message}", fg="red"), err=True)
        sys.exit(1)


def _report(outcome: ProcessingOutcome, success_message: str):
    """Print one outcome and exit non-zero unless it committed."""
    if outcome.committed:
        click.echo(click.style(f"✓ {success_message}", fg="green", bold=True))
        if outcome.local_product_id is not None:
            click.echo(f"Local product:  {outcome.local_product_id}")
        click.echo(f"Action:         {outcome.action}")
        for change in outcome.stock_changes:
            if change.skipped_reason:
                click.echo(click.style(
                    f"  Variant {change.variant_id}: not changed ({change.skipped_reason})", fg="yellow"
                ))
            else:
                click.echo(f"  Variant {change.variant_id}: {change.before} → {change.after}")
        for label in outcome.unmatched:
            click.echo(click.style(f"  No local variant for {label}", fg="yellow"))
        for warning in outcome.warnings:
            click.echo(click.style(f"  Warning: {warning}", fg="yellow"))
        sys.exit(0)

    click.echo(click.style(f"✗ Failed [{outcome.error_kind}]: {outcome.error_message}", fg="red", bold=True))
    sys.exit(1)


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """
    Catalog Sync CLI.

    Reconcile the local product catalog and stock with Shopify.
    """
    pass


@cli.command("init-db")
def init_db():
    """Create the local store tables."""
    services = _services()
    click.echo(click.style(f"✓ Tables ready in {services.config.env.database_url}", fg="green"))
    services.close()


@cli.command("import-product")
@click.argument("external_id", type=int)
def import_product(external_id: int):
    """
    Import a single product from Shopify.

    EXTERNAL_ID: Shopify product id
    """
    click.echo(f"Importing Shopify product {external_id}")
    services = _services()
    outcome = services.reconciliation.import_product(external_id)
    services.close()
    _report(outcome, "Import successful!")


@cli.command("import-all")
def import_all():
    """
    Import every Shopify product into the local store.

    Products that fail are listed; the rest are committed.
    """
    click.echo("╔════════════════════════════════════════════════════════╗")
    click.echo("║  Shopify → Local Catalog Import                        ║")
    click.echo("╚════════════════════════════════════════════════════════╝")
    click.echo()

    services = _services()
    try:
        result = services.reconciliation.import_all_products()
    finally:
        services.close()

    click.echo("─" * 60)

    if result.success:
        click.echo(click.style("✓ Import completed successfully!", fg="green", bold=True))
    else:
        click.echo(click.style("✗ Import completed with errors", fg="red", bold=True))

    click.echo()
    click.echo(f"Total items:    {result.total_items}")
    click.echo(click.style(f"Succeeded:      {result.succeeded_count}", fg="green"))
    click.echo(click.style(f"Failed:         {result.failed_count}", fg="red" if result.failed_count > 0 else None))
    click.echo(f"Created:        {result.created_count}")
    click.echo(f"Updated:        {result.updated_count}")
    click.echo(f"Duration:       {result.duration:.2f}s")
    click.echo(f"Success rate:   {result.success_rate:.2f}%")

    if "aborted" in result.metadata:
        click.echo(click.style(f"Enumeration stopped: {result.metadata['aborted']['message']}", fg="red"))

    if result.errors:
        click.echo()
        click.echo(click.style(f"Errors ({len(result.errors)}):", fg="red", bold=True))
        for i, error in enumerate(result.errors[:10], 1):
            click.echo(f"  {i}. {error.external_id} [{error.error_type}]: {error.message}")

        if len(result.errors) > 10:
            click.echo(f"  ... and {len(result.errors) - 10} more errors")
            click.echo("  Check logs/error.log for full details")

    click.echo("─" * 60)

    sys.exit(0 if result.success else 1)


@cli.command("list-products")
@click.option("--limit", type=click.IntRange(min=1, max=250), default=50, show_default=True)
@click.option("--offset", type=click.IntRange(min=0), default=0)
def list_products(limit: int, offset: int):
    """List local products with per-variant stock."""
    services = _services()
    try:
        products = services.reconciliation.list_products(limit=limit, offset=offset)
    except BaseAppException as e:
        click.echo(click.style(f"✗ {e.kind}: {e.message}", fg="red"), err=True)
        sys.exit(1)
    finally:
        services.close()

    if not products:
        click.echo("No local products")
        return

    for product in products:
        shopify_id = product["external_id"] or "local only"
        click.echo(click.style(f"{product['id']}  {product['name']} ({shopify_id})", bold=True))
        for variant in product["variants"]:
            click.echo(f"    {variant['id']}\t{variant['sku'] or '-'}\tstock={variant['stock']}")


@cli.command("set-stock")
@click.argument("variant_id", type=int)
@click.argument("quantity", type=click.IntRange(min=0))
@click.option("--local-only", is_flag=True, help="Do not update Shopify")
def set_stock(variant_id: int, quantity: int, local_only: bool):
    """
    Set the stock of a local variant.

    VARIANT_ID: Local variant id
    QUANTITY: New on-hand quantity
    """
    services = _services()
    outcome = services.reconciliation.set_stock(variant_id, quantity, sync_remote=not local_only)
    services.close()
    _report(outcome, "Stock set")


@cli.command("adjust-stock")
@click.argument("variant_id", type=int)
@click.argument("delta", type=int)
@click.option("--local-only", is_flag=True, help="Do not update Shopify")
def adjust_stock(variant_id: int, delta: int, local_only: bool):
    """
    Adjust the stock of a local variant by a signed amount.

    VARIANT_ID: Local variant id
    DELTA: Amount to add (negative to subtract); stock never drops below 0
    """
    services = _services()
    outcome = services.reconciliation.adjust_stock(variant_id, delta, sync_remote=not local_only)
    services.close()
    _report(outcome, "Stock adjusted")


@cli.command()
def locations():
    """List Shopify inventory locations."""
    services = _services()
    try:
        found = services.reconciliation.list_locations()
    except BaseAppException as e:
        click.echo(click.style(f"✗ {e.kind}: {e.message}", fg="red"), err=True)
        sys.exit(1)
    finally:
        services.close()

    for location in found:
        click.echo(f"{location.get('id')}\t{location.get('name')}")


@cli.command("test-connection")
def test_connection():
    """
    Test connectivity to the local store and the Shopify API.

    Validates that credentials are correct and the API is accessible.
    """
    click.echo("Testing connections...")
    click.echo()

    services = _services()
    results = services.reconciliation.test_connection()
    services.close()

    click.echo("Local store:")
    if results["database"]["success"]:
        click.echo(click.style("  ✓ Connected successfully", fg="green"))
    else:
        click.echo(click.style(f"  ✗ Connection failed: {results['database']['error']}", fg="red"))

    click.echo()

    click.echo("Shopify Admin API:")
    if results["shopify"]["success"]:
        click.echo(click.style(
            f"  ✓ Connected successfully ({results['shopify']['locations']} locations)", fg="green"
        ))
    else:
        click.echo(click.style(f"  ✗ Connection failed: {results['shopify']['error']}", fg="red"))

    click.echo()

    if all(r["success"] for r in results.values()):
        click.echo(click.style("✓ All connections successful!", fg="green", bold=True))
        sys.exit(0)
    else:
        click.echo(click.style("⚠ Some connections failed", fg="yellow", bold=True))
        sys.exit(1)


@cli.command("config-info")
def config_info():
    """Display current configuration settings."""
    try:
        config = get_config()

        click.echo("Configuration Settings:")
        click.echo("=" * 60)
        click.echo()

        click.echo("Environment:")
        click.echo(f"  Environment:     {config.env.environment}")
        click.echo(f"  Log level:       {config.logging.level}")
        click.echo(f"  Database:        {config.env.database_url}")
        click.echo()

        token = config.env.shopify_access_token
        click.echo("Shopify:")
        click.echo(f"  Shop URL:        {config.env.shopify_shop_url}")
        click.echo(f"  API version:     {config.shopify.api_version}")
        click.echo(f"  Location ID:     {config.env.shopify_location_id}")
        click.echo(f"  Access Token:    {token[:10] + '...' if token else '(not set)'}")
        click.echo(f"  Webhook secret:  {'set' if config.env.shopify_webhook_secret else '(not set)'}")
        click.echo()

        click.echo("Sync Settings:")
        click.echo(f"  Page size:       {config.sync.page_size}")
        click.echo(f"  Lock timeout:    {config.sync.lock_timeout}s")
        click.echo(f"  Low stock at:    {config.sync.low_stock_threshold}")
        click.echo(f"  Max retries:     {config.api.max_retries}")
        click.echo(f"  Nightly import:  {'enabled' if config.scheduler.enabled else 'disabled'}")
        click.echo()

    except Exception as e:
        click.echo(click.style(f"✗ Error loading config: {str(e)}", fg="red"), err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
