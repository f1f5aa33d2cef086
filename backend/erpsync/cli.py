# Overview: Flask CLI command groups for running syncs, inspecting state, and maintenance.

# backend/erpsync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Syncing:
# - python -m flask sync codes --mode import_new|update_existing|full_sync|force_import
#   Pull discount cards from the remote CRM and apply them under the given mode.
# - python -m flask sync catalog
#   Full catalog sync (create/update items, sweep items the remote no longer reports).
# - python -m flask sync stock [--sku ABC-1]
#   Stock/price sync; with --sku only that item is pulled and nothing is swept.
# - python -m flask sync item ABC-1
#   Refresh one item without taking the stock lock.
#
# Inspection:
# - python -m flask sync status
#   Last run per sync type, progress slot.
# - python -m flask sync locks
#   List lock rows (expired ones included).
# - python -m flask sync release-lock stock --yes
#   Force-release a lock left behind by a crashed run.
#
# Audit log:
# - python -m flask audit list [--search ABC] [--limit 20]
# - python -m flask audit cleanup --retention-days 90
# - python -m flask audit clear --yes
#
# Maintenance:
# - python -m flask maintenance purge-expired
#   Delete expired cache slots and lock rows.
# - python -m flask maintenance create-db
#   Create all tables without running migrations (local/dev).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import SyncError
from .extensions import db
from .services import audit_service, cache_service, lock_service, maintenance_service
from .services.discount_service import MODES
from .services.sync_service import SYNC_TYPES, build_orchestrator, last_runs


def _echo_stats(title: str, stats: dict) -> None:
    click.echo(f"PASS {title}")
    for key, value in stats.items():
        click.echo(f"  {key:<15} {value}")


def _run_or_fail(title: str, func):
    try:
        stats = func()
    except SyncError as e:
        click.echo(f"FAIL {title}: {e} ({'retryable' if e.retryable else 'terminal'})")
        raise click.exceptions.Exit(1)
    _echo_stats(title, stats)


@click.group('sync')
def sync_group():
    """Run and inspect syncs with the remote backend."""


@sync_group.command('codes')
@click.option('--mode', type=click.Choice(MODES), default='import_new', show_default=True)
@with_appcontext
def sync_codes_cli(mode):
    """Sync discount codes."""
    _run_or_fail(f"Discount codes ({mode})", lambda: build_orchestrator().sync_codes(mode))


@sync_group.command('catalog')
@with_appcontext
def sync_catalog_cli():
    """Full catalog sync."""
    _run_or_fail("Catalog sync", lambda: build_orchestrator().sync_catalog())


@sync_group.command('stock')
@click.option('--sku', help='Only pull this sku (no orphan sweep)')
@with_appcontext
def sync_stock_cli(sku):
    """Stock and price sync."""
    _run_or_fail("Stock sync", lambda: build_orchestrator().sync_stock(sku))


@sync_group.command('item')
@click.argument('sku')
@with_appcontext
def sync_item_cli(sku):
    """Refresh stock and price of a single item."""
    _run_or_fail(f"Item {sku} refreshed", lambda: build_orchestrator().refresh_item(sku))


@sync_group.command('status')
@with_appcontext
def sync_status_cli():
    """Show the last run per sync type and the progress slot."""
    runs = last_runs()
    click.echo("\n" + "="*90)
    click.echo(f"{'Type':<10} {'Mode':<16} {'Result':<8} {'Finished':<22} {'Duration':<10} {'Stats'}")
    click.echo("="*90)
    for sync_type in SYNC_TYPES:
        run = runs[sync_type]
        if run is None:
            click.echo(f"{sync_type:<10} {'-':<16} {'never':<8}")
            continue
        result = "ok" if run["success"] else "failed"
        click.echo(
            f"{sync_type:<10} {run['mode'] or '-':<16} {result:<8} {run['finished_at']:<22} "
            f"{str(run['duration_ms']) + 'ms':<10} {json.dumps(run['stats'])}"
        )
        if run["error"]:
            click.echo(f"{'':<10} error: {run['error']}")
    click.echo("="*90)
    progress = cache_service.get_progress()
    click.echo(f"Progress: {progress['status']} ({progress['current']}/{progress['total']}, {progress['percent']}%)\n")


@sync_group.command('locks')
@with_appcontext
def sync_locks_cli():
    """List lock rows."""
    locks = lock_service.list_locks()
    if not locks:
        click.echo("No locks held.")
        return
    for lock in locks:
        state = "expired" if lock["expired"] else "held"
        click.echo(f"{lock['resource_key']:<10} {state:<8} holder={lock['holder']} expires={lock['expires_at']}")


@sync_group.command('release-lock')
@click.argument('sync_type', type=click.Choice(SYNC_TYPES))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def release_lock_cli(sync_type, yes):
    """Force-release the lock of a sync type."""
    if not yes:
        click.confirm(f"WARN Releasing the {sync_type} lock while a run is active lets a second run start. Continue?", abort=True)
    lock_service.release_lock(sync_type)
    current_app.logger.warning("Lock %s released from the CLI", sync_type)
    click.echo(f"PASS Lock {sync_type} released.")


@click.group('audit')
def audit_group():
    """Sync audit log commands."""


@audit_group.command('list')
@click.option('--search', help='Substring on sku/code, name or message')
@click.option('--change-type', help='price, sale_price, stock or discount')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def audit_list_cli(search, change_type, limit):
    """Show the newest audit entries."""
    page = audit_service.list_audit_entries(search=search, change_type=change_type, per_page=limit)
    if not page["items"]:
        click.echo("No audit entries found.")
        return
    for entry in page["items"]:
        click.echo(f"{entry['created_at']}  {entry['entity_key'] or '-':<20} {entry['change_type']:<11} {entry['message']}")
    click.echo(f"({len(page['items'])} of {page['total']})")


@audit_group.command('cleanup')
@click.option('--retention-days', type=int, default=None, help='Defaults to ERPSYNC_AUDIT_RETENTION_DAYS')
@with_appcontext
def audit_cleanup_cli(retention_days):
    """Delete audit entries older than the retention window."""
    retention_days = retention_days or int(current_app.config.get("ERPSYNC_AUDIT_RETENTION_DAYS", 90))
    deleted = maintenance_service.cleanup_audit_log(retention_days=retention_days)
    click.echo(f"Deleted {deleted} audit entries older than {retention_days} days.")


@audit_group.command('clear')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def audit_clear_cli(yes):
    """DANGER: delete the whole audit log."""
    if not yes:
        click.confirm("WARN This will DELETE ALL audit entries. Are you sure?", abort=True)
    deleted = audit_service.clear_all_entries()
    click.echo(f"Deleted {deleted} audit entries.")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('purge-expired')
@with_appcontext
def purge_expired_cli():
    """Delete expired cache slots and lock rows."""
    result = maintenance_service.purge_expired()
    click.echo(f"Deleted {result['cache_entries']} cache entries and {result['locks']} expired locks.")


@maintenance_group.command('create-db')
@with_appcontext
def create_db_cli():
    """Create all tables (local setups without migrations)."""
    db.create_all()
    click.echo("PASS Tables created.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(sync_group)
    app.cli.add_command(audit_group)
    app.cli.add_command(maintenance_group)
