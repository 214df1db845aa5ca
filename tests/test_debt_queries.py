from datetime import timedelta
from decimal import Decimal

import pytest

from fleetrent.common import AccessDeniedError, ContractStatus, Scope

from conftest import TODAY


def test_days_in_debt_rounds_up(services, seed, company, scope):
    exact = seed.driver(company, balance='-450')
    seed.contract(company, exact, seed.vehicle(company), daily_rate='150',
                  start_date=TODAY - timedelta(days=3))
    partial = seed.driver(company, balance='-460')
    seed.contract(company, partial, seed.vehicle(company), daily_rate='150')

    debtors = services.billing_queries.get_drivers_in_debt(scope)

    # Largest debt first
    assert [d.driver_id for d in debtors] == [partial, exact]
    assert debtors[1].days_in_debt == 3
    assert debtors[0].days_in_debt == 4

    record = debtors[1].to_dict()
    assert record['balance'] == '-450.00'
    assert record['debt_amount'] == '450.00'
    assert record['daily_rate'] == '150.00'
    assert record['contracts'][0]['days_since_start'] == 3
    assert record['contracts'][0]['vehicle'].startswith('Toyota Camry')


def test_debtors_need_an_active_contract_and_active_account(services, seed, company, scope):
    seed.driver(company, balance='-100')
    suspended = seed.driver(company, balance='-100')
    seed.contract(company, suspended, seed.vehicle(company), status=ContractStatus.SUSPENDED)
    inactive = seed.driver(company, balance='-100', is_active=False)
    seed.contract(company, inactive, seed.vehicle(company))
    positive = seed.driver(company, balance='25')
    seed.contract(company, positive, seed.vehicle(company))

    assert services.billing_queries.get_drivers_in_debt(scope) == []


def test_debtors_respect_scope(services, seed, company, other_company, scope):
    ours = seed.driver(company, balance='-300')
    seed.contract(company, ours, seed.vehicle(company))
    theirs = seed.driver(other_company, balance='-300')
    seed.contract(other_company, theirs, seed.vehicle(other_company))

    assert [d.driver_id for d in services.billing_queries.get_drivers_in_debt(scope)] == [ours]
    assert len(services.billing_queries.get_drivers_in_debt(Scope.all_companies())) == 2
    assert [d.driver_id for d in services.billing_queries.get_drivers_in_debt(
        Scope.all_companies(), company_id=other_company)] == [theirs]

    with pytest.raises(AccessDeniedError):
        services.billing_queries.get_drivers_in_debt(scope, company_id=other_company)


def test_debt_grows_with_billing(services, seed, company, scope):
    driver = seed.driver(company, balance='-100')
    seed.contract(company, driver, seed.vehicle(company), daily_rate='100')

    services.billing.run_billing_cycle()
    debtors = services.billing_queries.get_drivers_in_debt(scope)

    assert debtors[0].balance == Decimal('-200.00')
    assert debtors[0].days_in_debt == 2
