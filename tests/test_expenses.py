from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from fleetrent.common import (
    AccessDeniedError, Analytics, Expense, ExpensePayer, ExpenseType, MetricType, NotFoundError,
    Scope, ValidationError,
)
from fleetrent.expenses import CreateExpenseRequest, ExpenseFilters

from conftest import FIXED_NOW, TODAY


def expense_request(**overrides):
    data = {
        'type': 'repair',
        'category': 'Brakes',
        'amount': '100',
    }
    data.update(overrides)
    return CreateExpenseRequest.from_dict(data)


def test_create_expense_for_scope_company(services, seed, company, scope):
    vehicle = seed.vehicle(company)

    expense = services.expenses.create(expense_request(vehicleId=vehicle, description='Front pads'), scope)

    assert expense.company_id == company
    assert expense.vehicle_id == vehicle
    assert expense.type == ExpenseType.REPAIR.value
    assert expense.amount == Decimal('100.00')
    assert expense.paid_by == ExpensePayer.COMPANY.value
    # Undated expenses are stamped with the current time
    assert seed.get(Expense, expense.id).date == FIXED_NOW


def test_dated_expense_starts_at_local_midnight(services, seed, scope):
    expense = services.expenses.create(expense_request(date='2026-02-20'), scope)

    # 2026-02-20 00:00 in Asia/Bishkek
    assert seed.get(Expense, expense.id).date == datetime(2026, 2, 19, 18, 0)


def test_expense_vehicle_and_driver_must_belong_to_company(services, seed, other_company, scope):
    with pytest.raises(ValidationError):
        services.expenses.create(expense_request(vehicleId=seed.vehicle(other_company)), scope)
    with pytest.raises(ValidationError):
        services.expenses.create(expense_request(driverId=seed.driver(other_company)), scope)
    with pytest.raises(NotFoundError):
        services.expenses.create(expense_request(vehicleId='missing-vehicle'), scope)

    assert seed.all(Expense) == []


def test_unrestricted_scope_must_name_company(services, company):
    with pytest.raises(ValidationError):
        services.expenses.create(expense_request(), Scope.all_companies())

    expense = services.expenses.create(expense_request(companyId=company), Scope.all_companies())
    assert expense.company_id == company


def test_create_expense_request_validation():
    with pytest.raises(ValidationError):
        expense_request(amount='0')
    with pytest.raises(ValidationError):
        expense_request(category='')
    with pytest.raises(ValidationError):
        expense_request(type='FUEL')
    with pytest.raises(ValidationError):
        expense_request(paidBy='NOBODY')

    request = expense_request(paid_by='driver')
    assert request.paid_by == ExpensePayer.DRIVER


def test_list_pages_newest_first(services, company, other_company, scope):
    for day in ('2026-03-01', '2026-03-05', '2026-03-03'):
        services.expenses.create(expense_request(date=day), scope)
    services.expenses.create(expense_request(companyId=other_company), Scope.all_companies())

    first = services.expenses.list(scope, ExpenseFilters(limit=2))
    second = services.expenses.list(scope, ExpenseFilters(page=2, limit=2))

    assert first.total == 3
    assert [e.date.day for e in first.expenses] == [4, 2]
    assert [e.date.day for e in second.expenses] == [28]
    assert first.to_dict()['meta'] == {'page': 1, 'limit': 2, 'total': 3, 'total_pages': 2}
    assert services.expenses.list(Scope.all_companies()).total == 4


def test_list_filters(services, scope):
    services.expenses.create(expense_request(), scope)
    services.expenses.create(expense_request(type='INSURANCE', category='Policy'), scope)
    services.expenses.create(expense_request(paidBy='DRIVER'), scope)

    by_type = services.expenses.list(scope, ExpenseFilters.from_dict({'type': 'insurance'}))
    assert [e.category for e in by_type.expenses] == ['Policy']

    by_payer = services.expenses.list(scope, ExpenseFilters.from_dict({'paidBy': 'DRIVER'}))
    assert by_payer.total == 1

    with pytest.raises(ValidationError):
        ExpenseFilters.from_dict({'limit': '500'})


def test_summary_counts_company_paid_expenses_in_range(services, scope):
    services.expenses.create(expense_request(date=TODAY.isoformat()), scope)
    services.expenses.create(expense_request(type='INSURANCE', category='Policy', amount='300',
                                             date='2026-02-20'), scope)
    services.expenses.create(expense_request(type='MAINTENANCE', category='Oil', amount='40',
                                             paidBy='DRIVER'), scope)
    # Before the default 30-day window
    services.expenses.create(expense_request(type='OTHER', category='Parking', amount='999',
                                             date='2026-01-01'), scope)

    summary = services.expenses.get_summary(scope)

    assert (summary['start'], summary['end']) == ('2026-02-08', '2026-03-10')
    assert summary['total_amount'] == '400.00'
    assert summary['average_monthly_expense'] == '200.00'
    assert summary['by_type'] == {
        'REPAIR': {'amount': '100.00', 'count': 1},
        'INSURANCE': {'amount': '300.00', 'count': 1},
    }
    assert summary['by_category']['Policy'] == {'amount': '300.00', 'count': 1}
    assert summary['monthly'] == [
        {'month': '2026-02', 'amount': '300.00'},
        {'month': '2026-03', 'amount': '100.00'},
    ]

    january = services.expenses.get_summary(scope, start=date(2026, 1, 1), end=date(2026, 1, 31))
    assert january['total_amount'] == '999.00'

    with pytest.raises(ValidationError):
        services.expenses.get_summary(scope, start=TODAY, end=TODAY - timedelta(days=1))


def test_summary_is_scoped(services, company, other_company, scope):
    services.expenses.create(expense_request(), scope)
    services.expenses.create(expense_request(companyId=other_company, amount='50'), Scope.all_companies())

    assert services.expenses.get_summary(scope)['total_amount'] == '100.00'
    assert services.expenses.get_summary(Scope.all_companies())['total_amount'] == '150.00'
    assert services.expenses.get_summary(Scope.all_companies(), company_id=other_company)['total_amount'] == '50.00'


def test_remove_expense(services, seed, other_company, scope):
    expense = services.expenses.create(expense_request(), scope)

    with pytest.raises(AccessDeniedError):
        services.expenses.remove(expense.id, Scope.for_company(other_company))
    assert seed.get(Expense, expense.id) is not None

    services.expenses.remove(expense.id, scope)
    assert seed.get(Expense, expense.id) is None

    with pytest.raises(NotFoundError):
        services.expenses.remove(expense.id, scope)


def test_recorded_expenses_feed_daily_expense_summary(services, seed, company, scope):
    yesterday = TODAY - timedelta(days=1)
    services.expenses.create(expense_request(amount='75.50', date=yesterday.isoformat()), scope)
    services.expenses.create(expense_request(amount='20', paidBy='DRIVER', date=yesterday.isoformat()), scope)

    services.analytics.run_daily(as_of=TODAY)

    rows = seed.all(Analytics, company_id=company, metric_type=MetricType.EXPENSE_SUMMARY.value, date=yesterday)
    assert [row.value for row in rows] == [Decimal('75.5')]
