import json
import click
from flask import current_app
from flask.cli import with_appcontext
from festivio.billing.catalog import CatalogError, current_issue_key, load_catalog_file
from festivio.billing.errors import ReconciliationError
from festivio.services.reconciler import get_reconciler


@click.group()
def catalog():
    """Issue catalog helpers."""


@catalog.command("show")
@with_appcontext
def catalog_show():
    snapshot = current_app.extensions["catalog"].current()
    click.echo(f"source={snapshot.source} issues={len(snapshot.entries)} current={current_issue_key()}")
    click.echo(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False))


@catalog.command("check")
@click.argument("path", type=click.Path(dir_okay=False))
def catalog_check(path):
    """Validate a catalog file without publishing it."""
    try:
        snapshot = load_catalog_file(path)
    except CatalogError as e:
        raise click.ClickException(str(e))
    brackets = sorted({age for by_age in snapshot.entries.values() for age in by_age})
    click.echo(f"OK: {len(snapshot.entries)} issues, age brackets: {', '.join(brackets) or '-'}")


@click.group()
def subscribers():
    """Subscriber entitlement ops."""


@subscribers.command("grant")
@click.option("--email", required=True)
@click.option("--age", default=None, help="Age bracket (defaults to NUM_DEFAULT_AGE)")
@click.option("--issue", default=None, help="Issue key YYYY-MM (defaults to the current month)")
@with_appcontext
def subscribers_grant(email, age, issue):
    reconciler = get_reconciler()
    age = age or current_app.config.get("NUM_DEFAULT_AGE", "6-9")
    issue = issue or current_issue_key()
    try:
        customer = reconciler.find_customer(email)
        added = reconciler.grant_issue(customer["id"], age, issue)
    except ReconciliationError as e:
        raise click.ClickException(str(e))
    if added:
        click.echo(f"Granted {issue}/{age} to {email} (customer {customer['id']})")
    else:
        click.echo(f"{email} already owns {issue}/{age}")


@subscribers.command("inspect")
@click.option("--email", required=True)
@with_appcontext
def subscribers_inspect(email):
    try:
        info = get_reconciler().describe_customer(email)
    except ReconciliationError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(info, indent=2, ensure_ascii=False, default=str))


def register_cli(app):
    app.cli.add_command(catalog)
    app.cli.add_command(subscribers)
