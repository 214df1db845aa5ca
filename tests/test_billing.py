from datetime import timedelta
from decimal import Decimal

import pytest

from fleetrent.billing import BillingEngine
from fleetrent.billing.engine import FAILED_PREFIX
from fleetrent.common import (
    BillingConfig, ContractStatus, DatabaseConfig, Driver, Payment, PaymentStatus, PaymentType, Scope,
    SessionManager, create_engine_from_config, create_tables,
)
from fleetrent.common import events
from fleetrent.services import build_services

from conftest import TODAY, Seeder, fixed_clock


@pytest.fixture
def fleet(seed, company):
    """Three drivers on active contracts at 100, 150 and 200 per day."""
    rows = []
    for rate in ('100', '150', '200'):
        driver = seed.driver(company)
        contract = seed.contract(company, driver, seed.vehicle(company, daily_rate=rate), daily_rate=rate)
        rows.append((driver, contract))
    return rows


def balances(seed, fleet):
    return [seed.get(Driver, driver).balance for driver, _ in fleet]


def test_cycle_charges_every_active_contract(services, seed, fleet):
    stats = services.billing.run_billing_cycle()

    assert (stats.total, stats.successful, stats.failed) == (3, 3, 0)
    assert stats.total_amount == Decimal('450.00')
    assert stats.triggered_by == 'manual'
    assert balances(seed, fleet) == [Decimal('-100.00'), Decimal('-150.00'), Decimal('-200.00')]

    entries = seed.all(Payment, type=PaymentType.DAILY_RENT.value)
    assert len(entries) == 3
    assert all(e.status == PaymentStatus.SUCCESS.value for e in entries)
    assert all(e.description.startswith('Daily rent Toyota Camry') for e in entries)


def test_failed_charge_is_isolated_and_recorded(services, seed, fleet, monkeypatch):
    failing_contract = fleet[1][1]
    original = BillingEngine._append_ledger_entry

    def flaky_append(self, session, contract):
        if contract.id == failing_contract:
            raise RuntimeError('ledger unavailable')
        return original(self, session, contract)

    monkeypatch.setattr(BillingEngine, '_append_ledger_entry', flaky_append)
    failures = []

    def on_failed(sender, event):
        failures.append(event)

    with events.billing_payment_failed.connected_to(on_failed):
        stats = services.billing.run_billing_cycle(triggered_by='scheduler')

    assert (stats.total, stats.successful, stats.failed) == (3, 2, 1)
    assert stats.total_amount == Decimal('300.00')
    # The failed contract's debit was rolled back with its transaction
    assert balances(seed, fleet) == [Decimal('-100.00'), Decimal('0.00'), Decimal('-200.00')]

    failed_rows = seed.all(Payment, contract_id=failing_contract)
    assert len(failed_rows) == 1
    assert failed_rows[0].status == PaymentStatus.FAILED.value
    assert failed_rows[0].description.startswith(FAILED_PREFIX)
    assert 'ledger unavailable' in failed_rows[0].description

    assert [e.contract_id for e in failures] == [failing_contract]
    assert failures[0].amount == Decimal('150.00')


def test_today_stats_partition_on_status(services, fleet, monkeypatch):
    failing_contract = fleet[1][1]
    original = BillingEngine._append_ledger_entry

    def flaky_append(self, session, contract):
        if contract.id == failing_contract:
            raise RuntimeError('boom')
        return original(self, session, contract)

    monkeypatch.setattr(BillingEngine, '_append_ledger_entry', flaky_append)
    services.billing.run_billing_cycle()

    today = services.billing_queries.get_today_billing_stats(Scope.all_companies())
    assert today.date == TODAY
    assert (today.total, today.successful, today.failed) == (3, 2, 1)
    assert today.total_amount == Decimal('300.00')
    assert today.failed_amount == Decimal('150.00')
    assert len(today.details['failed_payments']) == 1


def test_second_run_charges_again(services, seed, fleet):
    services.billing.run_billing_cycle()
    stats = services.billing.run_billing_cycle()

    assert stats.total == 3
    assert balances(seed, fleet)[0] == Decimal('-200.00')
    assert len(seed.all(Payment, type=PaymentType.DAILY_RENT.value)) == 6


def test_skip_already_billed_guard(session_manager, seed, fleet):
    engine = BillingEngine(session_manager, BillingConfig(skip_already_billed=True), fixed_clock)

    engine.run_billing_cycle()
    stats = engine.run_billing_cycle()

    assert stats.total == 0
    assert balances(seed, fleet) == [Decimal('-100.00'), Decimal('-150.00'), Decimal('-200.00')]


def test_only_current_active_contracts_are_billed(services, seed, company):
    def contract(**kwargs):
        driver = seed.driver(company)
        seed.contract(company, driver, seed.vehicle(company), start_date=TODAY - timedelta(days=10), **kwargs)
        return driver

    ends_today = contract(end_date=TODAY)
    open_ended = contract()
    expired = contract(end_date=TODAY - timedelta(days=1))
    suspended = contract(status=ContractStatus.SUSPENDED)

    stats = services.billing.run_billing_cycle()

    assert stats.total == 2
    assert seed.get(Driver, ends_today).balance == Decimal('-150.00')
    assert seed.get(Driver, open_ended).balance == Decimal('-150.00')
    assert seed.get(Driver, expired).balance == Decimal('0.00')
    assert seed.get(Driver, suspended).balance == Decimal('0.00')


def test_cycle_emits_completion_summary(services, fleet):
    summaries = []

    def on_completed(sender, event):
        summaries.append(event.stats)

    with events.billing_daily_completed.connected_to(on_completed):
        services.billing.run_billing_cycle(triggered_by='api')

    assert summaries[0]['total'] == 3
    assert summaries[0]['total_amount'] == '450.00'
    assert summaries[0]['triggered_by'] == 'api'


def test_empty_cycle(services):
    stats = services.billing.run_billing_cycle()
    assert (stats.total, stats.successful, stats.failed) == (0, 0, 0)
    assert stats.total_amount == Decimal('0.00')


def test_worker_pool_charges_every_contract(tmp_path):
    engine = create_engine_from_config(DatabaseConfig.from_url(f"sqlite:///{tmp_path / 'fleet.db'}"), retries=1)
    create_tables(engine)
    session_manager = SessionManager(engine)
    seed = Seeder(session_manager)
    company = seed.company()
    drivers = []
    for _ in range(6):
        driver = seed.driver(company)
        seed.contract(company, driver, seed.vehicle(company))
        drivers.append(driver)

    services = build_services(session_manager, billing_config=BillingConfig(max_workers=4), clock=fixed_clock)
    stats = services.billing.run_billing_cycle()

    assert (stats.total, stats.successful, stats.failed) == (6, 6, 0)
    assert stats.total_amount == Decimal('900.00')
    assert [seed.get(Driver, driver).balance for driver in drivers] == [Decimal('-150.00')] * 6
    assert len(seed.all(Payment, type=PaymentType.DAILY_RENT.value)) == 6
    engine.dispose()
