# Overview: Flask CLI command groups for register bootstrap and session inspection.

# backend/caja/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "caja:create_app" (PowerShell: $env:FLASK_APP="caja:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Database:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
#
# Register inspection/bootstrap:
# - python -m flask registers create --tenant-id 1 --code CAJA-01 --name "Caja principal"
#   Create a new cash register.
# - python -m flask registers list --tenant-id 1 [--all]
#   List registers (use --all to include inactive) with their open session.
#
# Session inspection:
# - python -m flask sessions list --tenant-id 1 --state CLOSED --discrepancies --limit 20
#   List recent sessions with optional filters.
# - python -m flask sessions summary 42 --tenant-id 1
#   Show a session with totals per payment method and its closure result.

import click
from flask.cli import with_appcontext

from .context import Actor
from .errors import CajaError
from .extensions import db


def _cli_actor(tenant_id: int) -> Actor:
    # CLI runs as an operator with supervisor capability; user 0 is reserved for it
    return Actor(user_id=0, tenant_id=tenant_id, is_supervisor=True)


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"S/ {cents / 100:,.2f}"


@click.group('registers')
def registers_group():
    """Register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--code', required=True, help='Register code (e.g., CAJA-01)')
@click.option('--name', required=True, help='Register name')
@with_appcontext
def create_register_cli(tenant_id, code, name):
    """
    Create a new cash register.

    Example:
        flask registers create --tenant-id 1 --code CAJA-01 --name "Caja principal"
    """
    from .services import register_service

    try:
        register = register_service.create_register(_cli_actor(tenant_id), code, name)
        click.echo(f"PASS Created register: {register.code} - {register.name}")
        click.echo(f"   Tenant ID: {register.tenant_id}")
        click.echo(f"   Register ID: {register.id}")
    except CajaError as e:
        click.echo(f"FAIL Error: {e}")


@registers_group.command('list')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(tenant_id, show_all):
    """
    List registers.

    Example:
        flask registers list --tenant-id 1
        flask registers list --tenant-id 1 --all
    """
    from .services import register_service
    from .services.journal_service import find_open_session

    registers = register_service.list_registers(_cli_actor(tenant_id), include_inactive=show_all)

    if not registers:
        click.echo("No registers found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<12} {'Name':<30} {'Active':<8} {'Session'}")
    click.echo("="*80)

    for register in registers:
        open_session = find_open_session(register.id, tenant_id)
        status = f"OPEN #{open_session.id} (user {open_session.user_id})" if open_session else "CLOSED"
        active = "Yes" if register.is_active else "No"
        click.echo(f"{register.id:<5} {register.code:<12} {register.name:<30} {active:<8} {status}")

    click.echo("="*80 + "\n")


@click.group('sessions')
def sessions_group():
    """Cash session inspection commands."""


@sessions_group.command('list')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@click.option('--register-id', type=int, help='Filter by register ID')
@click.option('--state', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by state')
@click.option('--discrepancies', is_flag=True, help='Only closes with FALTANTE / SOBRANTE')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(tenant_id, register_id, state, discrepancies, limit):
    """
    List cash sessions, newest first.

    Example:
        flask sessions list --tenant-id 1
        flask sessions list --tenant-id 1 --state CLOSED --discrepancies
    """
    from .models import CashSession

    query = db.session.query(CashSession).filter_by(tenant_id=tenant_id)

    if register_id:
        query = query.filter_by(cash_register_id=register_id)

    if state:
        query = query.filter_by(state=state)

    if discrepancies:
        query = query.filter(CashSession.discrepancy_cents != 0)

    sessions = query.order_by(CashSession.opened_at.desc()).limit(limit).all()

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'Register':<9} {'User':<6} {'State':<7} {'Opened':<21} {'Type':<15} {'Result':<10} {'Discrepancy'}")
    click.echo("="*110)

    for session in sessions:
        opened = session.opened_at.strftime("%Y-%m-%d %H:%M:%S") if session.opened_at else "-"
        click.echo(
            f"{session.id:<6} {session.cash_register_id:<9} {session.user_id:<6} {session.state:<7} "
            f"{opened:<21} {session.closure_type or '-':<15} {session.classification or '-':<10} "
            f"{_money(session.discrepancy_cents)}"
        )

    click.echo("="*110 + "\n")


@sessions_group.command('summary')
@click.argument('session_id', type=int)
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def session_summary_cli(session_id, tenant_id):
    """
    Show one session with its totals per payment method.

    Example:
        flask sessions summary 42 --tenant-id 1
    """
    from .services import cash_session_service

    try:
        summary = cash_session_service.session_summary(_cli_actor(tenant_id), session_id)
    except CajaError as e:
        click.echo(f"FAIL Error: {e}")
        return

    session = summary["session"]
    click.echo(f"\nSession #{session['id']} on register {session['cash_register_id']} (user {session['user_id']})")
    click.echo(f"   State: {session['state']}")
    click.echo(f"   Opening: {_money(session['opening_amount_cents'])}")
    click.echo(f"   Theoretical: {_money(summary['theoretical_cents'])}")
    click.echo(f"   Movements: {summary['movement_count']}")

    for method, totals in sorted(summary.get("by_payment_method", {}).items()):
        click.echo(
            f"   {method:<14} in {_money(totals['ingresos_cents']):>14}  "
            f"out {_money(totals['egresos_cents']):>14}  net {_money(totals['net_cents']):>14}"
        )

    if session["state"] == "CLOSED":
        click.echo(f"   Counted: {_money(session['counted_amount_cents'])}")
        click.echo(f"   Discrepancy: {_money(session['discrepancy_cents'])} ({session['classification']})")
        click.echo(f"   Closure: {session['closure_type']} by user {session['closed_by_user_id']}")
        if session["closure_reason"]:
            click.echo(f"   Reason: {session['closure_reason']}")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(registers_group)
    app.cli.add_command(sessions_group)
