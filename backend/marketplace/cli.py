# Overview: Flask CLI command groups for order email retries, catalog archives, and maintenance.

# backend/marketplace/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the package (PowerShell: $env:FLASK_APP="marketplace").
# - Use: python -m flask <group> <command> [options]
#
# Orders:
# - python -m flask orders list [--pending]
#   List orders with their email delivery status.
# - python -m flask orders retry-emails [--max-orders 50]
#   Run the batched email retry sweep once (same as the cron endpoint).
# - python -m flask orders export [--conversion converted|not_converted] [--output orders.csv]
#   Write the order CSV export to a file (or stdout).
#
# Products:
# - python -m flask products export SLUG [SLUG ...] --output products.zip
#   Build a product archive (product.json + images per folder).
# - python -m flask products import products.zip
#   Import an archive; prints imported / skipped / failed per folder.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system check-config
#   Show which integrations (mail, storage, auth, cron secret, visit notifications) are configured.

import sys

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import order_service, retry_service, archive_service, auth_service
from .validation import ValidationError


@click.group('orders')
def orders_group():
    """Order inspection and email retry commands."""


@orders_group.command('list')
@click.option('--pending', is_flag=True, help='Only orders whose email has not been sent')
@with_appcontext
def list_orders(pending):
    """List orders, newest first."""
    orders = order_service.list_orders()
    if pending:
        orders = [o for o in orders if not o["email_sent"]]

    if not orders:
        click.echo("No orders found.")
        return

    click.echo(f"{'ID':<38} {'Product':<30} {'Email':<6} {'Tries':<6} {'Conv':<5} {'Created'}")
    click.echo("-" * 110)
    for o in orders:
        sent = "yes" if o["email_sent"] else "no"
        conv = "yes" if o["is_converted"] else "no"
        title = (o["product_title"] or "")[:29]
        click.echo(f"{o['id']:<38} {title:<30} {sent:<6} {o['email_retry_count']:<6} {conv:<5} {o['created_at']}")


@orders_group.command('retry-emails')
@click.option('--max-orders', type=int, default=None, help='Maximum orders to process (default RETRY_SWEEP_LIMIT)')
@with_appcontext
def retry_emails(max_orders):
    """Retry undelivered order emails once."""
    report = retry_service.run_retry_sweep(max_orders)
    for detail in report.details:
        status = "PASS" if detail.success else "FAIL"
        suffix = f": {detail.error}" if detail.error else ""
        click.echo(f"{status} {detail.order_id}{suffix}")
    click.echo(
        f"\nProcessed {report.processed}: {report.sent} sent, {report.failed} failed, {report.skipped} skipped"
    )


@orders_group.command('export')
@click.option('--conversion', type=click.Choice(['converted', 'not_converted']), default=None)
@click.option('--output', type=click.Path(dir_okay=False, writable=True), default=None,
              help='File to write (default stdout)')
@with_appcontext
def export_orders(conversion, output):
    """Export orders as CSV."""
    csv_text = order_service.export_orders_csv(conversion)
    if output is None:
        click.echo(csv_text, nl=False)
        return
    with open(output, "w", encoding="utf-8", newline="") as fh:
        fh.write(csv_text)
    click.echo(f"PASS Wrote {output}")


@click.group('products')
def products_group():
    """Catalog archive commands."""


@products_group.command('export')
@click.argument('slugs', nargs=-1, required=True)
@click.option('--output', type=click.Path(dir_okay=False, writable=True), default='products.zip')
@with_appcontext
def export_products(slugs, output):
    """Export products (with images) to a ZIP archive."""
    result = archive_service.export_products(list(slugs))
    for error in result.errors:
        click.echo(f"WARN  {error}")
    if not result.processed:
        click.echo("FAIL No products could be exported")
        sys.exit(1)

    with open(output, "wb") as fh:
        fh.write(result.data)
    click.echo(f"PASS Exported {len(result.processed)} product(s) to {output}")


@products_group.command('import')
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_products(archive):
    """Import products from a ZIP archive (upsert by slug)."""
    with open(archive, "rb") as fh:
        data = fh.read()

    try:
        report = archive_service.import_products(data)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)

    for item in report.results:
        label = {"imported": "PASS", "skipped": "SKIP", "failed": "FAIL"}[item.status]
        suffix = f": {item.error}" if item.error else ""
        click.echo(f"{label} {item.folder} ({item.slug or '-'}){suffix}")
        for warning in item.warnings:
            click.echo(f"WARN  {warning}")
    click.echo(f"\nImported {report.imported}, skipped {report.skipped}, failed {report.failed}")


@click.group('system')
def system_group():
    """System maintenance commands."""


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


@system_group.command('check-config')
@with_appcontext
def check_config():
    """Report which integrations are configured (no network calls)."""
    config = current_app.config
    checks = [
        ("Mail transport", current_app.extensions["mailer"].configured),
        ("Object storage", current_app.extensions["storage"].configured),
        ("Auth service", bool(current_app.extensions["auth_client"].base_url)),
        ("Admin allow-list", bool(auth_service.admin_emails())),
        ("Cron secret", bool(config.get("CRON_SECRET"))),
        ("Order inbox", bool(config.get("ORDER_NOTIFICATION_EMAIL"))),
        ("Visit notifications", current_app.extensions["visit_notifier"].configured),
    ]
    for name, ok in checks:
        click.echo(f"{'PASS' if ok else 'WARN'} {name}")

    if config.get("APP_ENV") != "production" and config.get("DISABLE_AUTH_IN_DEV"):
        click.echo("WARN  Admin auth is disabled (DISABLE_AUTH_IN_DEV)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orders_group)
    app.cli.add_command(products_group)
    app.cli.add_command(system_group)
