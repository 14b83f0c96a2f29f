# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/authenticas/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo platform operator, retailers, a company, users and links.
#
# Sessions:
# - python -m flask sessions issue --user-id 1
#   Print a bearer token for an active user.
# - python -m flask sessions revoke --token <token>
#
# Links:
# - python -m flask links list [--active-only]
#
# Webhooks:
# - python -m flask webhooks ping --retailer-id 1
#   Deliver a synthetic purchase.approved event synchronously and print the outcome.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db, webhooks
from .models import Company, Retailer, User
from .permissions import Role
from .services import directory_service, link_service, session_service
from .services.session_service import Principal
from .services.webhook_service import EVENT_PURCHASE_APPROVED
from .time_utils import to_utc_z, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the audit trail!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@system_group.command('seed-demo')
@click.option('--force', is_flag=True, help='Seed even when DEMO_SEED_ENABLED is false')
@with_appcontext
def seed_demo(force):
    """
    Idempotent demo data: one platform operator, two retailers, one company
    linked to both, a company admin and a member with a 1000.00 monthly limit.
    """
    if not force and not current_app.config.get("DEMO_SEED_ENABLED"):
        raise click.ClickException("Demo seeding is disabled (set DEMO_SEED_ENABLED=true or pass --force)")

    operator = db.session.query(User).filter_by(email="operator@authenticas.local").first()
    if operator is None:
        now = utcnow()
        operator = User(
            email="operator@authenticas.local",
            first_name="Platform",
            last_name="Operator",
            role=Role.PLATFORM_OPERATOR.value,
            last_reset_at=now,
            created_at=now,
        )
        db.session.add(operator)
        db.session.commit()
        click.echo(f"PASS Created platform operator (id={operator.id})")

    actor = Principal(role=Role.PLATFORM_OPERATOR, user_id=operator.id)

    def _party(model, name, webhook_url=None):
        record = db.session.query(model).filter_by(name=name).first()
        if record is None:
            record, api_key = directory_service.create_party(
                model, {"name": name, "webhookUrl": webhook_url}, actor.actor_id
            )
            click.echo(f"PASS Created {model.__name__} {name} (id={record.id}) api key: {api_key}")
        return record

    north = _party(Retailer, "Northside Market")
    south = _party(Retailer, "Southgate Outfitters")
    company = _party(Company, "Acme Logistics")

    for retailer in (north, south):
        if not link_service.is_linked(company.id, retailer.id):
            link, _created = link_service.create_link(company.id, retailer.id, actor.actor_id)
            click.echo(f"PASS Linked {company.name} -> {retailer.name} (link id={link.id})")

    for email, role, limit in (
        ("admin@acme.local", Role.COMPANY_ADMIN, 0),
        ("member@acme.local", Role.COMPANY_MEMBER, 1000),
    ):
        if db.session.query(User).filter_by(email=email).first() is None:
            user = directory_service.create_user(actor, {
                "email": email,
                "role": role.value,
                "companyId": company.id,
                "spendingLimit": limit,
            })
            click.echo(f"PASS Created {role.value} {email} (id={user.id})")

    click.echo("PASS Demo data ready.")


@click.group('sessions')
def sessions_group():
    """Bearer session commands."""


@sessions_group.command('issue')
@click.option('--user-id', type=int, required=True, help='User ID')
@click.option('--ttl-hours', type=int, help='Override SESSION_TTL_HOURS')
@with_appcontext
def issue_session(user_id, ttl_hours):
    """Issue a bearer token for an active user."""
    try:
        session, token = session_service.issue_session(user_id, ttl_hours=ttl_hours)
    except (LookupError, ValueError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Token (shown once): {token}")
    click.echo(f"Expires: {to_utc_z(session.expires_at)}")


@sessions_group.command('revoke')
@click.option('--token', required=True, help='Plaintext bearer token')
@with_appcontext
def revoke_session(token):
    if session_service.revoke_session(token):
        click.echo("PASS Session revoked.")
    else:
        click.echo("Session not found or already revoked.")


@click.group('links')
def links_group():
    """Company-retailer link inspection."""


@links_group.command('list')
@click.option('--active-only', is_flag=True, help='Only show active links')
@with_appcontext
def list_links(active_only):
    links = link_service.list_links(active_only=active_only)
    if not links:
        click.echo("No links found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Company':<25} {'Retailer':<25} {'Status':<10} {'Since'}")
    click.echo("=" * 80)
    for link in links:
        company = db.session.get(Company, link.company_id)
        retailer = db.session.get(Retailer, link.retailer_id)
        click.echo(
            f"{link.id:<5} {(company.name if company else link.company_id)!s:<25} "
            f"{(retailer.name if retailer else link.retailer_id)!s:<25} {link.status:<10} "
            f"{to_utc_z(link.updated_at or link.created_at)}"
        )
    click.echo("=" * 80 + "\n")


@click.group('webhooks')
def webhooks_group():
    """Outbound webhook diagnostics."""


@webhooks_group.command('ping')
@click.option('--retailer-id', type=int, required=True, help='Retailer ID')
@with_appcontext
def ping_webhook(retailer_id):
    """Deliver a synthetic event synchronously, with the normal retry policy."""
    retailer = db.session.get(Retailer, retailer_id)
    if retailer is None:
        raise click.ClickException("Retailer not found")
    if not retailer.webhook_url:
        raise click.ClickException("Retailer has no webhook URL configured")

    result = webhooks.trigger_sync(
        retailer,
        EVENT_PURCHASE_APPROVED,
        data={
            "transactionId": None,
            "retailerId": retailer.id,
            "status": "approved",
            "test": True,
        },
    )
    status = "PASS" if result.success else "FAIL"
    click.echo(
        f"{status} {retailer.webhook_url} attempts={result.attempts} "
        f"status={result.status_code} error={result.error or '-'}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(links_group)
    app.cli.add_command(webhooks_group)
