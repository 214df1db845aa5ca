from decimal import Decimal

import pytest
from click.testing import CliRunner
from rich.console import Console

from fleetrent.cli import main as cli_main
from fleetrent.cli.main import cli
from fleetrent.common import Contract, Driver, Expense
from fleetrent.scheduler import SchedulerConfig


@pytest.fixture
def invoke(services, monkeypatch):
    # Wide console so table cells are not folded
    monkeypatch.setattr(cli_main, 'console', Console(width=200))
    runner = CliRunner()

    def run(*args):
        return runner.invoke(cli, list(args), obj={'services': services, 'scheduler_config': SchedulerConfig()})

    return run


def test_db_init(invoke):
    result = invoke('db', 'init')
    assert result.exit_code == 0, result.output
    assert 'Database tables created' in result.output


def test_billing_run_and_views(invoke, seed, company):
    driver = seed.driver(company)
    seed.contract(company, driver, seed.vehicle(company), daily_rate='90')

    result = invoke('billing', 'run')
    assert result.exit_code == 0, result.output
    assert seed.get(Driver, driver).balance == Decimal('-90.00')

    result = invoke('billing', 'stats')
    assert result.exit_code == 0, result.output
    assert '90.00' in result.output

    result = invoke('billing', 'debtors', '--company', company)
    assert result.exit_code == 0, result.output
    assert 'Aibek' in result.output


def test_analytics_run(invoke, company):
    result = invoke('analytics', 'run', 'daily', '--as-of', '2026-03-10')
    assert result.exit_code == 0, result.output
    assert '1 companies' in result.output

    result = invoke('analytics', 'run', 'cleanup')
    assert result.exit_code == 0, result.output
    assert 'Deleted 0' in result.output

    assert invoke('analytics', 'run', 'hourly').exit_code != 0


def test_scheduler_jobs_run_and_history(invoke):
    result = invoke('scheduler', 'jobs')
    assert result.exit_code == 0, result.output
    assert 'daily_billing' in result.output

    result = invoke('scheduler', 'run', 'analytics_cleanup')
    assert result.exit_code == 0, result.output

    result = invoke('scheduler', 'history')
    assert result.exit_code == 0, result.output
    assert 'analytics_cleanup' in result.output

    assert invoke('scheduler', 'run', 'nightly_backup').exit_code == 1


def test_contracts_update(invoke, seed, company):
    contract = seed.contract(company, seed.driver(company), seed.vehicle(company))

    result = invoke('contracts', 'update', contract, '--end-date', '2026-05-01', '--description', 'Summer')
    assert result.exit_code == 0, result.output
    assert 'end date: 2026-05-01' in result.output
    assert seed.get(Contract, contract).description == 'Summer'

    assert invoke('contracts', 'update', contract).exit_code == 1


def test_expenses_commands(invoke, seed, company):
    result = invoke('expenses', 'add', '--company', company, '--type', 'repair',
                    '--category', 'Brakes', '--amount', '120', '--date', '2026-03-09')
    assert result.exit_code == 0, result.output
    [expense] = seed.all(Expense)
    assert expense.amount == Decimal('120.00')

    result = invoke('expenses', 'list', '--company', company)
    assert result.exit_code == 0, result.output
    assert 'Brakes' in result.output
    assert '120.00' in result.output
    assert '2026-03-09' in result.output

    result = invoke('expenses', 'summary', '--company', company, '--start', '2026-03-01', '--end', '2026-03-10')
    assert result.exit_code == 0, result.output
    assert 'Total: 120.00' in result.output

    result = invoke('expenses', 'remove', expense.id)
    assert result.exit_code == 0, result.output
    assert seed.all(Expense) == []


def test_analytics_recalculate_and_latest(invoke, company):
    result = invoke('analytics', 'latest', 'daily_revenue', '--company', company)
    assert result.exit_code == 0, result.output
    assert 'No DAILY_REVENUE metrics' in result.output

    result = invoke('analytics', 'recalculate', '--company', company, '--start', '2026-03-08', '--end', '2026-03-09')
    assert result.exit_code == 0, result.output
    assert 'Recalculated 2026-03-08 .. 2026-03-09' in result.output

    result = invoke('analytics', 'latest', 'daily_revenue', '--company', company, '--entity', '')
    assert result.exit_code == 0, result.output
    assert '2026-03-09' in result.output
