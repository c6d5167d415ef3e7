'''
To Run:
python -m fleet_billing.cli --data-dir billing_data sweep
'''
import click
import logging
from datetime import date
from pathlib import Path

from fleet_billing import actions, fleet, ledger, status
from fleet_billing.config import load_config, local_today
from fleet_billing.datatypes import ActionResult, PaymentForm, PortfolioSummary
from fleet_billing.notifier import LoggingNotifier
from fleet_billing.store import CsvStore

logger = logging.getLogger(__name__)

STATUS_NAMES = {
    'al dia': 'Current',
    'adeuda': 'Owing',
    'retirado': 'Withdrawn',
}


def format_portfolio_report(summary: PortfolioSummary, today: date) -> str:
    """
    Format the portfolio summary for the terminal.
    """
    report_lines = []
    report_lines.append(f"=== FLEET BILLING SUMMARY ({today.isoformat()}) ===")
    report_lines.append("")
    report_lines.append(f"Clients: {summary.total_clients}")
    for code, count in sorted(summary.clients_by_status.items()):
        report_lines.append(f"  {STATUS_NAMES.get(code, code)}: {count}")
    report_lines.append(f"Units: {summary.total_units}")
    report_lines.append("")
    report_lines.append(f"Monthly income: ${summary.total_monthly_income:.2f}")
    report_lines.append(f"Overdue value: ${summary.total_overdue_value:.2f}")

    return "\n".join(report_lines)


def _echo_result(result: ActionResult) -> None:
    if result.success:
        click.echo(f"✔ {result.message}")
    else:
        click.echo(f"✘ {result.message}", err=True)
        raise SystemExit(1)


@click.group()
@click.option('--data-dir', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Directory holding the CSV collections (defaults to store.data_dir in the config)')
@click.option('--verbose', is_flag=True, help='Log debug details')
@click.pass_context
def main(ctx, data_dir, verbose):
    """Fleet billing administration: payments, migration and daily notices."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(levelname)s: %(message)s')
    directory = data_dir or Path(load_config()['store']['data_dir'])
    ctx.obj = CsvStore(directory)


@main.command()
@click.option('--date', 'sweep_date', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
              help='Sweep date (defaults to today in the billing time zone)')
@click.option('--force', is_flag=True, help='Run even if today\'s sweep already happened')
@click.pass_obj
def sweep(store, sweep_date, force):
    """Daily notice sweep, meant to be triggered once a day."""
    click.echo("📅 Running notice sweep...")
    today = sweep_date.date() if sweep_date else None
    notifier = LoggingNotifier()
    if force:
        result = actions.send_reminders_now(store, notifier, today=today)
    else:
        result = actions.daily_sweep(store, notifier, today=today)
    _echo_result(result)


@main.command('send-reminders')
@click.pass_obj
def send_reminders(store):
    """Send today's notices now."""
    _echo_result(actions.send_reminders_now(store, LoggingNotifier()))


@main.command()
@click.pass_obj
def migrate(store):
    """Copy nested legacy payments into the flat ledger."""
    click.echo("📦 Migrating nested payments...")
    _echo_result(actions.migrate_nested_payments(store))


@main.command('backfill-owners')
@click.pass_obj
def backfill_owners(store):
    """Tag payments that have no owner with their client's owner."""
    _echo_result(actions.backfill_payment_owner_ids(store))


@main.command()
@click.argument('client_id')
@click.argument('unit_ids', nargs=-1, required=True)
@click.option('--invoice', required=True, help='Invoice number')
@click.option('--method', required=True, help='transferencia or efectivo')
@click.option('--date', 'payment_date', type=click.DateTime(formats=['%Y-%m-%d']), required=True)
@click.option('--months', type=int, default=1, show_default=True, help='Months paid')
@click.pass_obj
def pay(store, client_id, unit_ids, invoice, method, payment_date, months):
    """Register a payment for one or more units of a client."""
    form = PaymentForm(invoice_number=invoice, method=method,
                       payment_date=payment_date.date(), months_paid=months)
    _echo_result(actions.register_payment(store, client_id, list(unit_ids), form,
                                          notifier=LoggingNotifier()))


@main.command('delete-payment')
@click.argument('payment_id')
@click.pass_obj
def delete_payment(store, payment_id):
    """Delete a payment and revert its unit."""
    _echo_result(actions.delete_payment(store, payment_id))


@main.command('delete-units')
@click.argument('unit_ids', nargs=-1, required=True)
@click.pass_obj
def delete_units(store, unit_ids):
    """Delete units and their payments."""
    _echo_result(actions.bulk_delete_units(store, list(unit_ids)))


@main.command()
@click.option('--client', 'client_id', default=None, help='Only this client\'s payments')
@click.pass_obj
def payments(store, client_id):
    """List payments, newest first."""
    rows = ledger.list_by_client(store, client_id) if client_id else ledger.list_all(store)
    if not rows:
        click.echo("No payments recorded")
        return
    for p in rows:
        click.echo(f"{p.payment_date}  {p.invoice_number:<12} {p.unit_plate:<10} "
                   f"${p.amount:.2f}  {p.method}  [{p.id}]")


@main.command()
@click.option('--date', 'summary_date', type=click.DateTime(formats=['%Y-%m-%d']), default=None)
@click.option('--refresh', is_flag=True, help='Write the derived status back onto clients')
@click.pass_obj
def summary(store, summary_date, refresh):
    """Show clients by status, monthly income and overdue value."""
    today = summary_date.date() if summary_date else local_today()
    if refresh:
        fleet.refresh_client_statuses(store, today)
    report = status.portfolio_summary(fleet.load_clients(store), fleet.load_units(store), today)
    click.echo("\n" + format_portfolio_report(report, today))


if __name__ == '__main__':
    main()
