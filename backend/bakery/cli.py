# Overview: Flask CLI command groups for bootstrap and stock maintenance.

# backend/bakery/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to bakery (PowerShell: $env:FLASK_APP="bakery"); Flask finds create_app().
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrated installs).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: two branches, a few products, a package, opening stock and one batch.
#
# Stock maintenance:
# - python -m flask stock levels [--branch-id 1]
#   Print on-hand quantities with high/medium/low status.
# - python -m flask stock reconcile [--branch-id 1] [--fix --performed-by admin1]
#   Report drift between stored quantities and the movement ledger; --fix corrects it.
# - python -m flask stock expire-batches [--as-of 2024-01-05]
#   Expire active batches whose expiry date has passed and remove their stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Product, ProductPackage
from .services import batch_service, reconciliation_service, stock_mutator, stock_reader
from .services.stock_types import StockError
from .time_utils import parse_iso_date, today


@click.group('system')
def system_group():
    """System bootstrap commands."""


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

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_BRANCHES = [
    ("Toko Pusat", "PST"),
    ("Cabang Timur", "TMR"),
]

# sku, name, category, price, shelf_life_days, opening stock per branch
DEMO_PRODUCTS = [
    ("ROTI-TAWAR", "Roti Tawar", "bread", 18000, 3, 40),
    ("ROTI-COKLAT", "Roti Coklat", "bread", 8000, 2, 60),
    ("DONAT-GULA", "Donat Gula", "pastry", 6000, 1, 50),
    ("KUE-LAPIS", "Kue Lapis", "cake", 45000, 4, 10),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo branches, products and opening stock (skips what exists)."""
    branches = []
    for name, code in DEMO_BRANCHES:
        branch = db.session.query(Branch).filter_by(code=code).first()
        if not branch:
            branch = Branch(name=name, code=code)
            db.session.add(branch)
            db.session.flush()
            click.echo(f"PASS Created branch: {name} (ID: {branch.id})")
        branches.append(branch)

    products = {}
    for sku, name, category, price, shelf_life, _ in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(sku=sku).first()
        if not product:
            product = Product(sku=sku, name=name, category=category, price=price, shelf_life_days=shelf_life)
            db.session.add(product)
            db.session.flush()
            click.echo(f"PASS Created product: {name} (ID: {product.id})")
        products[sku] = product

    package = db.session.query(Product).filter_by(sku="PAKET-SARAPAN").first()
    if not package:
        package = Product(sku="PAKET-SARAPAN", name="Paket Sarapan", category="package", price=28000, product_type="package")
        db.session.add(package)
        db.session.flush()
        db.session.add(ProductPackage(parent_product_id=package.id, component_product_id=products["ROTI-COKLAT"].id, quantity=2))
        db.session.add(ProductPackage(parent_product_id=package.id, component_product_id=products["DONAT-GULA"].id, quantity=2))
        click.echo(f"PASS Created package: {package.name} (ID: {package.id})")
    db.session.commit()

    for sku, _, _, _, _, opening in DEMO_PRODUCTS:
        for branch in branches:
            if stock_reader.get_stock_level(products[sku].id, branch.id) is None:
                stock_mutator.record_initial_stock(products[sku].id, branch.id, opening, performed_by="seed")

    main_branch = branches[0]
    batch_number = f"DEMO-{today():%Y%m%d}"
    existing = batch_service.list_batches(branch_id=main_branch.id, product_id=products["ROTI-TAWAR"].id)
    if not any(b.batch_number == batch_number for b in existing):
        batch_service.create_batch(
            products["ROTI-TAWAR"].id,
            main_branch.id,
            batch_number,
            12,
            receive_stock=False,
            performed_by="seed",
        )
        click.echo(f"PASS Labelled 12 units of Roti Tawar as batch {batch_number}")

    click.echo("DONE Demo data ready.")


@click.group('stock')
def stock_group():
    """Stock inspection and maintenance commands."""


@stock_group.command('levels')
@click.option('--branch-id', type=int, default=None, help='Only this branch')
@with_appcontext
def list_levels(branch_id):
    """List on-hand quantities."""
    levels = stock_reader.list_stock_levels(branch_id=branch_id)
    if not levels:
        click.echo("No stock levels found.")
        return

    click.echo(f"{'BRANCH':<18} {'SKU':<16} {'QTY':>7}  STATUS")
    for level in levels:
        product = level.product
        status = stock_reader.get_stock_status(level.quantity, product.reorder_point)
        click.echo(f"{level.branch.name[:18]:<18} {product.sku[:16]:<16} {level.quantity:>7}  {status}")


@stock_group.command('reconcile')
@click.option('--branch-id', type=int, default=None, help='Only this branch')
@click.option('--fix', 'apply_fix', is_flag=True, help='Correct drift by writing reconciliation_fix movements')
@click.option('--performed-by', default='cli', help='Actor recorded on fix movements')
@with_appcontext
def reconcile(branch_id, apply_fix, performed_by):
    """Report (and optionally fix) stock drift."""
    discrepancies = reconciliation_service.reconcile(branch_id=branch_id)
    if not discrepancies:
        click.echo("PASS No discrepancies.")
        return

    for d in discrepancies:
        click.echo(
            f"DRIFT {d.branch_name} / {d.product_name}: stored={d.current_stock} "
            f"ledger={d.calculated_stock} diff={d.difference:+d}"
        )

    if not apply_fix:
        click.echo(f"WARN {len(discrepancies)} discrepancies found. Re-run with --fix to correct.")
        return

    if reconciliation_service.fix(discrepancies, performed_by=performed_by):
        click.echo(f"PASS Fixed {len(discrepancies)} discrepancies.")
    else:
        raise click.ClickException("Some discrepancies could not be fixed; see log.")


@stock_group.command('expire-batches')
@click.option('--as-of', default=None, help='Business date YYYY-MM-DD (default today)')
@click.option('--performed-by', default='cli', help='Actor recorded on expiry movements')
@with_appcontext
def expire_batches(as_of, performed_by):
    """Expire overdue batches and remove their stock."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--as-of")

    try:
        result = batch_service.expire_batches(as_of=as_of_date, performed_by=performed_by)
    except StockError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"PASS Expired {result['expired_batches']} batches as of {result['as_of']}, "
        f"{result['units_removed']} units removed."
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
