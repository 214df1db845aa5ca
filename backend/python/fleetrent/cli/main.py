"""
Fleet rental CLI - Main entry point.
Built with Click for a rich command-line interface.
"""

import signal
import sys
from datetime import date

import click
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..common.logging_setup import setup_logging, setup_logging_from_config
from ..common.scope import Scope

console = Console()

ANALYTICS_PERIODS = ('daily', 'weekly', 'monthly', 'cleanup')


def get_services(ctx):
    """Services stored on the context, built from config on first use."""
    services = ctx.obj.get('services')
    if services is None:
        from ..services import build_services_from_config
        services = build_services_from_config(ctx.obj.get('db_url'))
        ctx.obj['services'] = services
    return services


def get_scheduler_engine(ctx, with_alerts=False):
    from ..scheduler import AlertManager, SchedulerConfig, SchedulerEngine

    services = get_services(ctx)
    config = ctx.obj.get('scheduler_config') or SchedulerConfig.from_yaml()
    alert_manager = None
    if with_alerts:
        alert_manager = AlertManager(config.alerts)
        alert_manager.connect_signals()
    return SchedulerEngine(config, services.session_manager, services.billing,
                           services.analytics, alert_manager)


def _money(value):
    return f"{value:,.2f}"


@click.group()
@click.version_option(version=__version__, prog_name='fleetrent')
@click.option('--db-url', envvar='DATABASE_URL', help='Database URL (defaults to config/database.yaml)')
@click.option('--log-level', default=None, help='Override the configured log level')
@click.pass_context
def cli(ctx, db_url, log_level):
    """Fleet rental backend - contracts, daily billing and analytics."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault('db_url', db_url)
    if log_level:
        setup_logging(log_level)
    else:
        setup_logging_from_config()


# =============================================================================
# Database Commands
# =============================================================================

@cli.group()
def db():
    """Database maintenance."""


@db.command('init')
@click.pass_context
def db_init(ctx):
    """Create all tables (domain and scheduler history)."""
    from ..common.models import create_tables
    from ..scheduler.models import create_scheduler_tables

    engine = get_services(ctx).session_manager.engine
    create_tables(engine)
    create_scheduler_tables(engine)
    console.print("[green]Database tables created[/green]")


# =============================================================================
# Contract Commands
# =============================================================================

@cli.group()
def contracts():
    """Contract maintenance."""


@contracts.command('update')
@click.argument('contract_id')
@click.option('--end-date', type=click.DateTime(formats=['%Y-%m-%d']), help='New end date (YYYY-MM-DD)')
@click.option('--description', help='New description')
@click.pass_context
def contracts_update(ctx, contract_id, end_date, description):
    """Change a contract's end date or description."""
    from ..contracts import UpdateContractRequest

    if end_date is None and description is None:
        console.print("[red]Nothing to update: pass --end-date and/or --description[/red]")
        sys.exit(1)

    request = UpdateContractRequest(end_date=end_date.date() if end_date else None, description=description)
    contract = get_services(ctx).contracts.update(contract_id, request, Scope.all_companies())
    console.print(
        f"[green]Contract {contract.id} updated[/green] "
        f"(end date: {contract.end_date or 'open'})"
    )


# =============================================================================
# Expense Commands
# =============================================================================

@cli.group()
def expenses():
    """Fleet expenses."""


@expenses.command('add')
@click.option('--company', '-c', 'company_id', required=True, help='Owning company')
@click.option('--type', 'expense_type', required=True,
              type=click.Choice(['MAINTENANCE', 'REPAIR', 'INSURANCE', 'OTHER'], case_sensitive=False))
@click.option('--category', required=True)
@click.option('--amount', required=True)
@click.option('--vehicle', 'vehicle_id', help='Vehicle the expense belongs to')
@click.option('--driver', 'driver_id', help='Driver the expense belongs to')
@click.option('--paid-by', default='COMPANY', type=click.Choice(['COMPANY', 'DRIVER'], case_sensitive=False))
@click.option('--date', 'expense_date', help='Expense date (YYYY-MM-DD, default now)')
@click.option('--description')
@click.pass_context
def expenses_add(ctx, company_id, expense_type, category, amount, vehicle_id, driver_id, paid_by, expense_date,
                 description):
    """Record an expense."""
    from ..expenses import CreateExpenseRequest

    request = CreateExpenseRequest.from_dict({
        'company_id': company_id,
        'type': expense_type,
        'category': category,
        'amount': amount,
        'vehicle_id': vehicle_id,
        'driver_id': driver_id,
        'paid_by': paid_by,
        'date': expense_date,
        'description': description,
    })
    expense = get_services(ctx).expenses.create(request, Scope.all_companies())
    console.print(f"[green]Expense {expense.id} recorded: {_money(expense.amount)}[/green]")


@expenses.command('list')
@click.option('--company', '-c', 'company_id', help='Limit to one company')
@click.option('--page', default=1, type=int)
@click.option('--limit', '-n', default=20, type=int)
@click.pass_context
def expenses_list(ctx, company_id, page, limit):
    """List expenses, newest first."""
    from ..common.date_utils import to_local
    from ..expenses import ExpenseFilters

    service = get_services(ctx).expenses
    result = service.list(
        Scope.all_companies(), ExpenseFilters(company_id=company_id, page=page, limit=limit)
    )

    table = Table(title=f"Expenses (page {result.page}, {result.total} total)")
    table.add_column("Date", style="yellow")
    table.add_column("Type", style="cyan")
    table.add_column("Category")
    table.add_column("Amount", style="green")
    table.add_column("Paid by", style="magenta")
    for expense in result.expenses:
        table.add_row(
            to_local(expense.date, service.timezone).date().isoformat(),
            expense.type,
            expense.category,
            _money(expense.amount),
            expense.paid_by,
        )
    console.print(table)


@expenses.command('summary')
@click.option('--company', '-c', 'company_id', help='Limit to one company')
@click.option('--start', type=click.DateTime(formats=['%Y-%m-%d']), help='First day (default: 30 days ago)')
@click.option('--end', type=click.DateTime(formats=['%Y-%m-%d']), help='Last day (default: today)')
@click.pass_context
def expenses_summary(ctx, company_id, start, end):
    """Company-paid expenses by type and category."""
    summary = get_services(ctx).expenses.get_summary(
        Scope.all_companies(),
        start=start.date() if start else None,
        end=end.date() if end else None,
        company_id=company_id,
    )

    table = Table(title=f"Expenses {summary['start']} .. {summary['end']}")
    table.add_column("Group", style="cyan")
    table.add_column("Key")
    table.add_column("Amount", style="green")
    table.add_column("Count")
    for group in ('by_type', 'by_category'):
        for key, entry in summary[group].items():
            table.add_row(group, key, entry['amount'], str(entry['count']))
    console.print(table)
    console.print(
        f"Total: {summary['total_amount']}  "
        f"Average per month: {summary['average_monthly_expense']}"
    )


@expenses.command('remove')
@click.argument('expense_id')
@click.pass_context
def expenses_remove(ctx, expense_id):
    """Delete an expense."""
    get_services(ctx).expenses.remove(expense_id, Scope.all_companies())
    console.print(f"[green]Expense {expense_id} deleted[/green]")


# =============================================================================
# Billing Commands
# =============================================================================

@cli.group()
def billing():
    """Daily billing runs and billing views."""


@billing.command('run')
@click.pass_context
def billing_run(ctx):
    """Charge every active contract now."""
    console.print("[yellow]Running billing cycle...[/yellow]")
    stats = get_services(ctx).billing.run_billing_cycle(triggered_by='cli')

    table = Table(title="Billing Cycle")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Contracts", str(stats.total))
    table.add_row("Charged", str(stats.successful))
    table.add_row("Failed", f"[red]{stats.failed}[/red]" if stats.failed else "0")
    table.add_row("Total amount", _money(stats.total_amount))
    console.print(table)

    if stats.failed:
        sys.exit(1)


@billing.command('stats')
@click.option('--company', '-c', 'company_id', help='Limit to one company')
@click.pass_context
def billing_stats(ctx, company_id):
    """Show today's billing summary."""
    stats = get_services(ctx).billing_queries.get_today_billing_stats(
        Scope.all_companies(), company_id=company_id
    )

    table = Table(title=f"Billing for {stats.date.isoformat()}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Charges", str(stats.total))
    table.add_row("Successful", str(stats.successful))
    table.add_row("Failed", str(stats.failed))
    table.add_row("Charged amount", _money(stats.total_amount))
    table.add_row("Failed amount", _money(stats.failed_amount))
    console.print(table)


@billing.command('debtors')
@click.option('--company', '-c', 'company_id', help='Limit to one company')
@click.pass_context
def billing_debtors(ctx, company_id):
    """List drivers with a negative balance."""
    debtors = get_services(ctx).billing_queries.get_drivers_in_debt(
        Scope.all_companies(), company_id=company_id
    )
    if not debtors:
        console.print("[green]No drivers in debt[/green]")
        return

    table = Table(title="Drivers in Debt")
    table.add_column("Driver", style="cyan")
    table.add_column("Balance", style="red")
    table.add_column("Daily rate", style="yellow")
    table.add_column("Days in debt", style="magenta")
    for debtor in debtors:
        table.add_row(
            debtor.name,
            _money(debtor.balance),
            _money(debtor.daily_rate),
            str(debtor.days_in_debt),
        )
    console.print(table)


# =============================================================================
# Analytics Commands
# =============================================================================

@cli.group()
def analytics():
    """Analytics recalculation."""


@analytics.command('run')
@click.argument('period', type=click.Choice(ANALYTICS_PERIODS))
@click.option('--as-of', type=click.DateTime(formats=['%Y-%m-%d']),
              help='Run as if today were this date (YYYY-MM-DD)')
@click.pass_context
def analytics_run(ctx, period, as_of):
    """Recalculate daily, weekly or monthly metrics, or clean up old rows."""
    engine = get_services(ctx).analytics
    as_of_date: date = as_of.date() if as_of else None

    console.print(f"[yellow]Running {period} analytics...[/yellow]")
    if period == 'cleanup':
        deleted = engine.cleanup_old_metrics(as_of_date)
        console.print(f"[green]Deleted {deleted} old metric rows[/green]")
        return

    result = getattr(engine, f"run_{period}")(as_of_date)
    console.print(
        f"[green]{period.capitalize()} metrics for {result.start} .. {result.end}: "
        f"{result.companies_processed} companies, {result.metrics_written} rows[/green]"
    )


@analytics.command('recalculate')
@click.option('--company', '-c', 'company_id', required=True, help='Company to recompute')
@click.option('--start', required=True, type=click.DateTime(formats=['%Y-%m-%d']), help='First day')
@click.option('--end', required=True, type=click.DateTime(formats=['%Y-%m-%d']), help='Last day')
@click.pass_context
def analytics_recalculate(ctx, company_id, start, end):
    """Recompute daily metrics of one company for every day in [start, end]."""
    result = get_services(ctx).analytics.recalculate(company_id, start.date(), end.date())
    console.print(
        f"[green]Recalculated {result.start} .. {result.end} for {company_id}: "
        f"{result.metrics_written} rows[/green]"
    )


@analytics.command('latest')
@click.argument('metric_type')
@click.option('--company', '-c', 'company_id', required=True, help='Owning company')
@click.option('--entity', 'entity_id', help="Driver/vehicle id ('' for company-wide rows)")
@click.pass_context
def analytics_latest(ctx, metric_type, company_id, entity_id):
    """Show the most recent cached row of a metric."""
    metric = get_services(ctx).metrics.get_latest_metric(
        Scope.all_companies(), metric_type.upper(), entity_id=entity_id, company_id=company_id
    )
    if metric is None:
        console.print(f"[yellow]No {metric_type.upper()} metrics cached for {company_id}[/yellow]")
        return

    table = Table(title=f"Latest {metric['metric_type']}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key in ('date', 'entity_id', 'value'):
        table.add_row(key, str(metric.get(key)))
    console.print(table)


# =============================================================================
# Scheduler Commands
# =============================================================================

@cli.group()
def scheduler():
    """Run and inspect the job scheduler."""


@scheduler.command('start')
@click.option('--foreground', '-f', is_flag=True, help='Block until interrupted')
@click.pass_context
def scheduler_start(ctx, foreground):
    """Start the scheduler with the configured cron jobs."""
    engine = get_scheduler_engine(ctx, with_alerts=True)

    console.print("[yellow]Starting scheduler...[/yellow]")
    engine.start()

    if not foreground:
        console.print("[green]Scheduler started[/green]")
        return

    console.print("[green]Running in foreground mode. Press Ctrl+C to stop.[/green]")

    def signal_handler(signum, frame):
        console.print("\n[yellow]Shutting down...[/yellow]")
        engine.stop(wait=True)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    engine.wait()


@scheduler.command('jobs')
@click.pass_context
def scheduler_jobs(ctx):
    """List configured jobs."""
    engine = get_scheduler_engine(ctx)

    table = Table(title="Scheduled Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Name")
    table.add_column("Cron", style="yellow")
    table.add_column("Enabled", style="green")
    for job in engine.get_jobs():
        enabled = "[green]Yes[/green]" if job['enabled'] else "[red]No[/red]"
        table.add_row(job['name'], job['display_name'], job['cron'], enabled)
    console.print(table)


@scheduler.command('run')
@click.argument('job_name')
@click.pass_context
def scheduler_run(ctx, job_name):
    """Run one job now, recorded in the job history."""
    engine = get_scheduler_engine(ctx, with_alerts=True)
    if job_name not in engine.job_names:
        engine.alert_manager.disconnect_signals()
        console.print(f"[red]Job not found: {job_name}[/red]")
        console.print(f"Available: {', '.join(engine.job_names)}")
        sys.exit(1)

    console.print(f"[yellow]Running {job_name}...[/yellow]")
    try:
        record = engine.run_job(job_name, triggered_by='cli')
    except Exception as e:
        console.print(f"[red]Job failed: {e}[/red]")
        sys.exit(1)
    finally:
        engine.alert_manager.disconnect_signals()
    console.print(f"[green]Job completed in {record['duration_seconds']}s[/green]")


@scheduler.command('history')
@click.option('--job', '-j', 'job_name', help='Filter by job')
@click.option('--limit', '-n', default=20, help='Number of records')
@click.pass_context
def scheduler_history(ctx, job_name, limit):
    """Show recent job runs."""
    records = get_scheduler_engine(ctx).get_history(limit=limit, job_name=job_name)

    table = Table(title="Job History")
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Started", style="yellow")
    table.add_column("Duration")
    table.add_column("Trigger", style="magenta")
    table.add_column("Error", style="red")
    for record in records:
        color = {'completed': 'green', 'failed': 'red'}.get(record['status'], 'yellow')
        duration = record['duration_seconds']
        table.add_row(
            record['job_name'],
            f"[{color}]{record['status']}[/{color}]",
            record['started_at'],
            f"{duration:.1f}s" if duration is not None else '-',
            record['triggered_by'] or '-',
            (record['error_message'] or '')[:60],
        )
    console.print(table)


@scheduler.command('test-alerts')
@click.pass_context
def scheduler_test_alerts(ctx):
    """Send a test message to every configured alert channel."""
    from ..scheduler import AlertManager, SchedulerConfig

    config = ctx.obj.get('scheduler_config') or SchedulerConfig.from_yaml()
    results = AlertManager(config.alerts).test_alerts()
    if not results:
        console.print("[yellow]No alert channels configured[/yellow]")
    for channel, ok in results.items():
        console.print(f"{channel}: {'[green]OK[/green]' if ok else '[red]FAILED[/red]'}")


# =============================================================================
# Web
# =============================================================================

@cli.command('serve')
@click.option('--host', default='0.0.0.0')
@click.option('--port', default=5000, type=int)
@click.option('--debug', is_flag=True)
@click.pass_context
def serve(ctx, host, port, debug):
    """Run the JSON API with the Flask development server."""
    from ..web.app import run_app
    run_app(host=host, port=port, debug=debug, db_url=ctx.obj.get('db_url'))


if __name__ == '__main__':
    cli()
