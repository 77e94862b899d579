"""SYSARP CLI: operations-center client for the ops core.

Usage:
    sysarp login EMAIL              Sign in (prompts for the password)
    sysarp logout                   Sign out and clear the local session
    sysarp whoami                   Show the current profile
    sysarp register EMAIL           Create a pilot account
    sysarp passwd                   Change the current password
    sysarp list KIND                List records of an entity kind
    sysarp create KIND JSON         Create a record
    sysarp update KIND ID JSON      Merge fields into a record
    sysarp delete KIND ID           Delete a record
    sysarp conflicts                Show unacknowledged airspace conflicts
    sysarp ack ID                   Acknowledge a conflict
    sysarp catalog                  Show or replace the drone catalog
    sysarp diagnose                 Check the remote schema
    sysarp upload FILE              Upload a mission file
    sysarp dashboard                Show the operations dashboard
"""

from __future__ import annotations

import json
import logging
import time
from functools import wraps

import click

from sysarp.client import OpsClient
from sysarp.config import load_config, resolve_settings
from sysarp.data.models import ENTITIES
from sysarp.errors import OpsError
from apps.dashboard.poller import DashboardPoller, DashboardSnapshot


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)-7s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _ops(ctx) -> OpsClient:
    if "ops" not in ctx.obj:
        ops = OpsClient.from_settings(ctx.obj["settings"])
        ctx.obj["ops"] = ops
        ctx.call_on_close(ops.close)
    return ctx.obj["ops"]


def reports_errors(f):
    """Show classified failures verbatim instead of a traceback."""

    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except OpsError as e:
            raise click.ClickException(e.message)

    return wrapper


def _parse_json(raw: str) -> dict:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter("Expected a JSON object")
    return data


KIND = click.Choice(sorted(ENTITIES))


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path, verbose):
    """SYSARP: drone operations center client."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = resolve_settings(load_config(config_path))


# ── Session ──────────────────────────────────────────────────

@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.pass_context
@reports_errors
def login(ctx, email, password):
    """Sign in."""
    profile = _ops(ctx).auth.login(email, password)
    click.echo(f"Signed in as {profile.get('full_name') or profile.get('email')}")
    if profile.get("change_password_required"):
        click.echo("You must change your password: run 'sysarp passwd'.")


@main.command()
@click.pass_context
@reports_errors
def logout(ctx):
    """Sign out."""
    _ops(ctx).auth.logout()
    click.echo("Signed out.")


@main.command()
@click.pass_context
@reports_errors
def whoami(ctx):
    """Show the current profile."""
    ops = _ops(ctx)
    profile = ops.auth.me()
    click.echo(json.dumps(profile, indent=2, default=str))
    click.echo(f"Session: {ops.auth.context.state.value}")


@main.command()
@click.argument("email")
@click.option("--name", "full_name", required=True, help="Full name")
@click.option("--phone", default="", help="Phone number")
@click.option("--unit", default="", help="Unit")
@click.option("--license", "license_", default="", help="Pilot license")
@click.password_option()
@click.pass_context
@reports_errors
def register(ctx, email, full_name, phone, unit, license_, password):
    """Create a pilot account."""
    profile = _ops(ctx).auth.create_account(
        {
            "email": email,
            "full_name": full_name,
            "phone": phone,
            "unit": unit,
            "license": license_,
            "terms_accepted": True,
        },
        password,
    )
    click.echo(f"Account created: {profile['id']}")


@main.command()
@click.password_option(prompt="New password")
@click.pass_context
@reports_errors
def passwd(ctx, password):
    """Change the password of the signed-in pilot."""
    ops = _ops(ctx)
    profile = ops.auth.me()
    ops.auth.change_password(profile["id"], password)
    click.echo("Password updated.")


# ── Entities ─────────────────────────────────────────────────

@main.command("list")
@click.argument("kind", type=KIND)
@click.option("--order", "-o", default=None, help="Order field, '-field' for descending")
@click.option("--where", "-w", multiple=True, help="field=value equality filter")
@click.pass_context
def list_records(ctx, kind, order, where):
    """List records of an entity kind."""
    gateway = _ops(ctx).entities[kind]
    if where:
        criteria = {}
        for clause in where:
            field, _, value = clause.partition("=")
            try:
                criteria[field] = json.loads(value)
            except json.JSONDecodeError:
                criteria[field] = value
        records = gateway.filter(criteria)
    else:
        records = gateway.list(order)

    if not records:
        click.echo(f"No {kind} records found.")
        return
    click.echo(f"=== {kind.upper()} ({len(records)}) ===")
    for r in records:
        click.echo(json.dumps(r, default=str))


@main.command()
@click.argument("kind", type=KIND)
@click.argument("data")
@click.pass_context
@reports_errors
def create(ctx, kind, data):
    """Create a record from a JSON object."""
    record = _ops(ctx).entities[kind].create(_parse_json(data))
    click.echo(f"Created {kind} {record.get('id')}")


@main.command()
@click.argument("kind", type=KIND)
@click.argument("record_id")
@click.argument("data")
@click.pass_context
@reports_errors
def update(ctx, kind, record_id, data):
    """Merge JSON fields into a record."""
    record = _ops(ctx).entities[kind].update(record_id, _parse_json(data))
    click.echo(json.dumps(record, indent=2, default=str))


@main.command()
@click.argument("kind", type=KIND)
@click.argument("record_id")
@click.pass_context
@reports_errors
def delete(ctx, kind, record_id):
    """Delete a record."""
    _ops(ctx).entities[kind].delete(record_id)
    click.echo(f"Deleted {kind} {record_id}")


# ── Conflicts ────────────────────────────────────────────────

@main.command()
@click.pass_context
@reports_errors
def conflicts(ctx):
    """Show unacknowledged airspace conflicts for the signed-in pilot."""
    ops = _ops(ctx)
    profile = ops.auth.me()
    alerts = ops.conflicts.retrieve(profile["id"])
    if not alerts:
        click.echo("No pending conflicts.")
        return
    for a in alerts:
        click.echo(f"  {a['id'][:8]}.. | {a.get('message', '')}")


@main.command()
@click.argument("alert_id")
@click.pass_context
@reports_errors
def ack(ctx, alert_id):
    """Acknowledge an airspace conflict."""
    ops = _ops(ctx)
    profile = ops.auth.me()
    ops.conflicts.retrieve(profile["id"])
    if ops.conflicts.acknowledge(alert_id):
        click.echo(f"Conflict {alert_id} acknowledged.")
    else:
        raise click.ClickException("Acknowledgement not confirmed; the alert is still pending.")


# ── System ───────────────────────────────────────────────────

@main.command()
@click.option("--set", "catalog_file", type=click.Path(exists=True), default=None,
              help="Replace the catalog with a JSON file")
@click.pass_context
@reports_errors
def catalog(ctx, catalog_file):
    """Show or replace the drone manufacturer catalog."""
    system = _ops(ctx).system
    if catalog_file:
        with open(catalog_file) as f:
            system.update_catalog(json.load(f))
        click.echo("Catalog updated.")
        return
    for brand, models in sorted(system.get_catalog().items()):
        click.echo(f"  {brand}: {', '.join(models)}")


@main.command()
@click.pass_context
def diagnose(ctx):
    """Check that the remote schema has the expected columns."""
    for result in _ops(ctx).system.diagnose():
        click.echo(f"  [{result['status']:5s}] {result['check']}: {result['message']}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@reports_errors
def upload(ctx, path):
    """Upload a mission file and print its URL."""
    click.echo(_ops(ctx).system.upload_file(path))


# ── Dashboard ────────────────────────────────────────────────

def _render(snapshot: DashboardSnapshot) -> None:
    click.echo("")
    click.echo(f"=== OPERATIONS CENTER ({snapshot.taken_at}) ===")
    click.echo(f"  Active operations:  {len(snapshot.active_operations)}")
    for op in snapshot.active_operations:
        pos = f"{op.latitude:.5f}, {op.longitude:.5f}" if op.has_position else "no position"
        click.echo(f"    {op.name or op.id} | {op.mission_type} | {pos}")
    click.echo(f"  Live streams:       {len(snapshot.live_streams)}")
    for op in snapshot.live_streams:
        click.echo(f"    {op.name or op.id}: {op.stream_url}")
    click.echo(f"  Open maintenance:   {len(snapshot.maintenance_alerts)}")
    click.echo(f"  Drones:             {len(snapshot.drones)}")
    click.echo(f"  Conflict alerts:    {len(snapshot.conflicts)}")
    for c in snapshot.conflicts:
        click.echo(f"    ! {c.id[:8]}.. {c.message}")


@main.command()
@click.option("--watch", is_flag=True, help="Keep polling until interrupted")
@click.pass_context
def dashboard(ctx, watch):
    """Show the operations dashboard."""
    ops = _ops(ctx)
    poller = DashboardPoller(
        ops, interval_s=ctx.obj["settings"].poll_interval_s, on_snapshot=_render,
    )
    if not watch:
        poller.resolve_user()
        poller.poll_once()
        return

    poller.start()
    try:
        while poller.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    finally:
        poller.stop()


if __name__ == "__main__":
    main()
