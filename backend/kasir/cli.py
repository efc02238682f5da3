# Overview: Flask CLI command groups for bootstrap, inspection, sync, and data maintenance.

# backend/kasir/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system wipe --yes
#   Delete every stored collection (catalog, transactions, queue) but keep the schema.
#
# Catalog:
# - python -m flask catalog seed
#   Load the sample products when the catalog is empty.
# - python -m flask catalog list [--query mie]
#   List products with stock.
#
# Sync:
# - python -m flask sync status
#   Show pending/dead-letter counts and the last successful sync.
# - python -m flask sync flush
#   Push queued local changes to the remote backend.
# - python -m flask sync pull products
#   Merge remote reference records into the local store.
# - python -m flask sync requeue
#   Move dead-lettered items back onto the queue.
#
# Data:
# - python -m flask data export --output backup.json
# - python -m flask data import backup.json

import click
from flask.cli import with_appcontext

from .core import current_core
from .errors import DuplicateBarcode
from .extensions import db
from .sample_data import SAMPLE_PRODUCTS
from .services.data_service import clear_all_data, export_data, import_data
from .services.remote_backend import RemoteError
from .services.sync_service import FLUSH_PARTIAL, PULLABLE
from .time_utils import to_utc_z
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed' for sample products.")


@system_group.command('wipe')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def wipe_data(yes):
    """Delete every stored collection, including unsynced queue items."""
    core = current_core()
    pending = len(core.sync.pending())
    if not yes:
        prompt = "WARN This will DELETE ALL DATA"
        if pending:
            prompt += f" including {pending} unsynced change(s)"
        click.confirm(prompt + ". Are you sure?", abort=True)

    clear_all_data(core.store)
    click.echo("PASS All data cleared.")


@click.group('catalog')
def catalog_group():
    """Product catalog inspection and seeding."""


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    added = current_core().catalog.seed(SAMPLE_PRODUCTS)
    if added:
        click.echo(f"PASS Seeded {added} sample products")
    else:
        click.echo("WARN Catalog is not empty, skipping seed")


@catalog_group.command('list')
@click.option('--query', '-q', default=None, help='Name, category or barcode fragment')
@with_appcontext
def list_catalog(query):
    products = current_core().catalog.search(query)
    if not products:
        click.echo("No products found.")
        return
    click.echo(f"{'BARCODE':<16} {'NAME':<32} {'PRICE':>10} {'STOCK':>7}")
    for p in products:
        click.echo(f"{p.barcode:<16} {p.name[:32]:<32} {p.price:>10} {p.stock:>7} {p.unit}")


@click.group('sync')
def sync_group():
    """Outbound sync queue commands."""


@sync_group.command('status')
@with_appcontext
def sync_status():
    sync = current_core().sync
    click.echo(f"Remote configured: {'yes' if sync.remote is not None else 'no'}")
    click.echo(f"Online:            {'yes' if sync.probe.is_online() else 'no'}")
    click.echo(f"Pending items:     {len(sync.pending())}")
    click.echo(f"Dead letters:      {len(sync.dead_letters())}")
    click.echo(f"Last sync:         {to_utc_z(sync.last_sync_time()) or 'never'}")


@sync_group.command('flush')
@with_appcontext
def sync_flush():
    result = current_core().sync.flush()
    if result.status == "skipped":
        click.echo("WARN Offline or no remote configured, nothing sent")
        return
    label = "WARN" if result.status == FLUSH_PARTIAL else "PASS"
    click.echo(f"{label} attempted={result.attempted} acked={len(result.acked)} "
               f"failed={len(result.failed)} dead_lettered={len(result.dead_lettered)}")
    for failure in result.failed:
        click.echo(f"  FAIL {failure['item_id']}: {failure['error']} (attempt {failure['attempts']})")


@sync_group.command('pull')
@click.argument('table', type=click.Choice([t.value for t in PULLABLE]))
@with_appcontext
def sync_pull(table):
    try:
        result = current_core().sync.pull(table)
    except RemoteError as e:
        raise click.ClickException(f"Pull failed: {e}")
    if result.skipped:
        click.echo("WARN Offline or no remote configured, nothing pulled")
        return
    click.echo(f"PASS received={result.received} merged={result.merged} "
               f"kept_local={len(result.kept_local)} rejected={result.rejected}")


@sync_group.command('requeue')
@with_appcontext
def sync_requeue():
    count = current_core().sync.requeue_dead_letters()
    click.echo(f"PASS Requeued {count} item(s)")


@click.group('data')
def data_group():
    """Backup and restore."""


@data_group.command('export')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True), default=None)
@with_appcontext
def data_export(output):
    body = export_data(current_core().store)
    if output is None:
        click.echo(body)
        return
    with open(output, "w", encoding="utf-8") as fh:
        fh.write(body)
    click.echo(f"PASS Exported to {output}")


@data_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def data_import(path, yes):
    if not yes:
        click.confirm("WARN Importing replaces products, customers, categories and discounts. Continue?", abort=True)
    with open(path, encoding="utf-8") as fh:
        try:
            counts = import_data(current_core().store, fh.read())
        except (ValidationError, DuplicateBarcode) as e:
            click.echo(f"FAIL Nothing imported: {e}")
            return
    for name, count in counts.items():
        click.echo(f"PASS {name}: {count}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(data_group)
