from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from fleetrent.common import (
    AccessDeniedError, ConflictError, Contract, ContractStatus, Driver, InsufficientDepositError,
    NotFoundError, Payment, PaymentStatus, PaymentType, Scope, ValidationError, Vehicle, VehicleStatus,
)
from fleetrent.common import events
from fleetrent.contracts import (
    ContractFilters, ContractService, CreateContractRequest, StatusChangeRequest, UpdateContractRequest,
)

from conftest import FIXED_NOW, TODAY


def create_request(driver_id, vehicle_id, **overrides):
    data = {
        'driverId': driver_id,
        'vehicleId': vehicle_id,
        'dailyRate': 150,
        'deposit': 200,
        'startDate': TODAY.isoformat(),
    }
    data.update(overrides)
    return CreateContractRequest.from_dict(data)


@pytest.fixture
def driver(seed, company):
    return seed.driver(company, deposit='300')


@pytest.fixture
def vehicle(seed, company):
    return seed.vehicle(company)


def test_create_contract_holds_deposit(services, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope, created_by='user-1')

    assert contract.status == ContractStatus.ACTIVE.value
    assert contract.daily_rate == Decimal('150.00')
    assert contract.deposit == Decimal('200.00')
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.RENTED.value
    assert seed.get(Driver, driver).deposit == Decimal('100.00')

    entries = seed.all(Payment, contract_id=contract.id)
    assert len(entries) == 1
    assert entries[0].type == PaymentType.DEPOSIT.value
    assert entries[0].amount == Decimal('200.00')
    assert entries[0].date == FIXED_NOW
    assert entries[0].created_by_id == 'user-1'


def test_create_without_deposit_writes_no_ledger_entry(services, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle, deposit=0), scope)

    assert seed.all(Payment, contract_id=contract.id) == []
    assert seed.get(Driver, driver).deposit == Decimal('300.00')


def test_second_active_contract_for_driver_conflicts(services, seed, company, scope, driver, vehicle):
    services.contracts.create(create_request(driver, vehicle), scope)
    second_vehicle = seed.vehicle(company)

    with pytest.raises(ConflictError):
        services.contracts.create(create_request(driver, second_vehicle, deposit=0), scope)

    assert seed.get(Vehicle, second_vehicle).status == VehicleStatus.AVAILABLE.value
    assert len(seed.all(Contract)) == 1


def test_rented_vehicle_conflicts(services, seed, company, scope, driver, vehicle):
    services.contracts.create(create_request(driver, vehicle), scope)
    other_driver = seed.driver(company)

    with pytest.raises(ConflictError):
        services.contracts.create(create_request(other_driver, vehicle, deposit=0), scope)


def test_insufficient_deposit_writes_nothing(services, seed, scope, driver, vehicle):
    with pytest.raises(InsufficientDepositError):
        services.contracts.create(create_request(driver, vehicle, deposit=500), scope)

    assert seed.all(Contract) == []
    assert seed.all(Payment) == []
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.AVAILABLE.value
    assert seed.get(Driver, driver).deposit == Decimal('300.00')


def test_failure_after_insert_rolls_back_every_write(monkeypatch, services, seed, scope, driver, vehicle):
    def fail_hold(session, driver_id, amount):
        raise RuntimeError('ledger unavailable')

    monkeypatch.setattr(ContractService, '_hold_deposit', staticmethod(fail_hold))

    with pytest.raises(RuntimeError):
        services.contracts.create(create_request(driver, vehicle), scope)

    assert seed.all(Contract) == []
    assert seed.all(Payment) == []
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.AVAILABLE.value
    assert seed.get(Driver, driver).deposit == Decimal('300.00')


def test_active_driver_index_rejects_second_contract(monkeypatch, services, seed, company, scope, driver, vehicle):
    seed.contract(company, driver, vehicle)
    second_vehicle = seed.vehicle(company)
    # Skip the read-side check so the insert reaches the partial unique index
    monkeypatch.setattr(ContractService, '_count_active', staticmethod(lambda *args, **kwargs: 0))

    with pytest.raises(ConflictError):
        services.contracts.create(create_request(driver, second_vehicle, deposit=0), scope)

    assert len(seed.all(Contract)) == 1
    assert seed.get(Vehicle, second_vehicle).status == VehicleStatus.AVAILABLE.value


def test_other_integrity_errors_are_not_reported_as_conflicts(services, seed, scope, driver, vehicle):
    # Bypasses from_dict, so only the table's CHECK constraint catches the rate
    request = CreateContractRequest(driver_id=driver, vehicle_id=vehicle,
                                    daily_rate=Decimal('-1'), start_date=TODAY)

    with pytest.raises(IntegrityError):
        services.contracts.create(request, scope)

    assert seed.all(Contract) == []
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.AVAILABLE.value


def test_start_date_in_the_past_is_rejected(services, scope, driver, vehicle):
    yesterday = (TODAY - timedelta(days=1)).isoformat()
    with pytest.raises(ValidationError):
        services.contracts.create(create_request(driver, vehicle, startDate=yesterday), scope)


def test_end_date_must_follow_start_date(services, scope, driver, vehicle):
    with pytest.raises(ValidationError):
        services.contracts.create(create_request(driver, vehicle, endDate=TODAY.isoformat()), scope)


def test_inactive_driver_is_rejected(services, seed, company, scope, vehicle):
    inactive = seed.driver(company, deposit='300', is_active=False)
    with pytest.raises(ValidationError):
        services.contracts.create(create_request(inactive, vehicle), scope)


def test_unknown_vehicle_is_not_found(services, scope, driver):
    with pytest.raises(NotFoundError):
        services.contracts.create(create_request(driver, 'missing-vehicle'), scope)


def test_driver_from_another_company_is_rejected(services, seed, other_company, scope, vehicle):
    foreign_driver = seed.driver(other_company, deposit='300')
    with pytest.raises(ValidationError):
        services.contracts.create(create_request(foreign_driver, vehicle), scope)


def test_unrestricted_scope_must_name_company(services, company, driver, vehicle):
    with pytest.raises(ValidationError):
        services.contracts.create(create_request(driver, vehicle), Scope.all_companies())

    contract = services.contracts.create(
        create_request(driver, vehicle, companyId=company), Scope.all_companies()
    )
    assert contract.company_id == company


def test_create_request_validation():
    with pytest.raises(ValidationError):
        CreateContractRequest.from_dict({'driverId': 'd', 'vehicleId': 'v', 'dailyRate': 0,
                                         'startDate': TODAY.isoformat()})
    with pytest.raises(ValidationError):
        CreateContractRequest.from_dict({'driverId': 'd', 'vehicleId': 'v', 'dailyRate': 10,
                                         'deposit': -1, 'startDate': TODAY.isoformat()})
    with pytest.raises(ValidationError):
        CreateContractRequest.from_dict({'driverId': 'd', 'vehicleId': 'v', 'dailyRate': 10,
                                         'startDate': 'not-a-date'})
    with pytest.raises(ValidationError):
        StatusChangeRequest.from_dict({'status': 'PAUSED'})


def test_create_emits_contract_created(services, scope, driver, vehicle):
    received = []

    def on_created(sender, event):
        received.append(event)

    with events.contract_created.connected_to(on_created):
        contract = services.contracts.create(create_request(driver, vehicle), scope)

    assert [e.contract_id for e in received] == [contract.id]


def test_terminate_releases_vehicle_and_refunds_deposit(services, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)

    updated = services.contracts.transition_status(
        contract.id, StatusChangeRequest.from_dict({'status': 'TERMINATED', 'reason': 'Accident'}), scope
    )

    assert updated.status == ContractStatus.TERMINATED.value
    assert updated.end_date == TODAY
    assert updated.status_reason == 'Accident'
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.AVAILABLE.value
    assert seed.get(Driver, driver).deposit == Decimal('300.00')

    refunds = seed.all(Payment, contract_id=contract.id, type=PaymentType.REFUND.value)
    assert len(refunds) == 1
    assert refunds[0].amount == Decimal('200.00')
    assert 'Accident' in refunds[0].description


@pytest.mark.parametrize('status', [ContractStatus.TERMINATED, ContractStatus.COMPLETED])
def test_ending_a_future_booking_closes_on_its_start_date(services, seed, scope, driver, vehicle, status):
    start = TODAY + timedelta(days=5)
    contract = services.contracts.create(create_request(driver, vehicle, startDate=start.isoformat()), scope)

    ended = services.contracts.transition_status(contract.id, StatusChangeRequest(status), scope)

    assert ended.status == status.value
    assert ended.end_date == start
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.AVAILABLE.value
    assert seed.get(Driver, driver).deposit == Decimal('300.00')
    assert len(seed.all(Payment, contract_id=contract.id, type=PaymentType.REFUND.value)) == 1


def test_explicit_end_date_before_start_is_rejected(services, scope, driver, vehicle):
    start = TODAY + timedelta(days=5)
    contract = services.contracts.create(create_request(driver, vehicle, startDate=start.isoformat()), scope)

    with pytest.raises(ValidationError):
        services.contracts.transition_status(
            contract.id, StatusChangeRequest(ContractStatus.TERMINATED, end_date=TODAY), scope
        )


def test_terminal_contract_cannot_change(services, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.COMPLETED), scope)

    with pytest.raises(ValidationError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)


def test_same_status_is_rejected(services, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    with pytest.raises(ValidationError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)


def test_suspend_keeps_vehicle_and_reactivation_restores_it(services, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)

    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.RENTED.value
    assert seed.get(Driver, driver).deposit == Decimal('100.00')

    reactivated = services.contracts.transition_status(
        contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope
    )
    assert reactivated.status == ContractStatus.ACTIVE.value
    assert seed.get(Vehicle, vehicle).status == VehicleStatus.RENTED.value


def test_reactivation_conflicts_when_driver_took_another_vehicle(services, seed, company, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)
    services.contracts.create(create_request(driver, seed.vehicle(company), deposit=0), scope)

    with pytest.raises(ConflictError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)
    assert seed.get(Contract, contract.id).status == ContractStatus.SUSPENDED.value


def test_reactivation_requires_active_driver(services, session_manager, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)
    with session_manager.session_scope() as session:
        session.get(Driver, driver).is_active = False

    with pytest.raises(ValidationError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)
    assert seed.get(Contract, contract.id).status == ContractStatus.SUSPENDED.value


@pytest.mark.parametrize('vehicle_status', [VehicleStatus.MAINTENANCE, VehicleStatus.INACTIVE])
def test_reactivation_requires_rentable_vehicle(services, session_manager, seed, scope, driver, vehicle,
                                                vehicle_status):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)
    with session_manager.session_scope() as session:
        session.get(Vehicle, vehicle).status = vehicle_status.value

    with pytest.raises(ConflictError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)
    assert seed.get(Contract, contract.id).status == ContractStatus.SUSPENDED.value
    assert seed.get(Vehicle, vehicle).status == vehicle_status.value


def test_active_driver_index_rejects_reactivation(monkeypatch, services, seed, company, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)
    services.contracts.create(create_request(driver, seed.vehicle(company), deposit=0), scope)
    monkeypatch.setattr(ContractService, '_count_active', staticmethod(lambda *args, **kwargs: 0))

    with pytest.raises(ConflictError):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.ACTIVE), scope)
    assert seed.get(Contract, contract.id).status == ContractStatus.SUSPENDED.value


def test_status_change_outside_scope_is_denied(services, seed, other_company, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)

    with pytest.raises(AccessDeniedError):
        services.contracts.transition_status(
            contract.id, StatusChangeRequest(ContractStatus.TERMINATED), Scope.for_company(other_company)
        )
    assert seed.get(Contract, contract.id).status == ContractStatus.ACTIVE.value


def test_status_change_emits_event(services, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    received = []

    def on_changed(sender, event):
        received.append((event.old_status, event.new_status))

    with events.contract_status_changed.connected_to(on_changed):
        services.contracts.transition_status(contract.id, StatusChangeRequest(ContractStatus.SUSPENDED), scope)

    assert received == [('ACTIVE', 'SUSPENDED')]


def test_remove_rules(services, seed, company, scope, driver, vehicle):
    held = services.contracts.create(create_request(driver, vehicle), scope)
    with pytest.raises(ValidationError):
        services.contracts.remove(held.id, scope)

    services.contracts.transition_status(held.id, StatusChangeRequest(ContractStatus.COMPLETED), scope)
    with pytest.raises(ConflictError):
        services.contracts.remove(held.id, scope)

    plain = services.contracts.create(create_request(driver, seed.vehicle(company), deposit=0), scope)
    services.contracts.transition_status(plain.id, StatusChangeRequest(ContractStatus.TERMINATED), scope)
    services.contracts.remove(plain.id, scope)
    assert seed.get(Contract, plain.id) is None


def test_update_changes_end_date_and_description(services, seed, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)
    end = TODAY + timedelta(days=30)

    updated = services.contracts.update(
        contract.id, UpdateContractRequest.from_dict({'endDate': end.isoformat(), 'description': 'Long term'}), scope
    )

    assert updated.end_date == end
    assert updated.description == 'Long term'
    stored = seed.get(Contract, contract.id)
    assert stored.end_date == end
    assert stored.status == ContractStatus.ACTIVE.value
    assert stored.daily_rate == Decimal('150.00')


def test_update_rejects_end_date_on_or_before_start(services, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)

    with pytest.raises(ValidationError):
        services.contracts.update(contract.id, UpdateContractRequest(end_date=TODAY), scope)


def test_update_outside_scope_is_denied(services, seed, other_company, scope, driver, vehicle):
    contract = services.contracts.create(create_request(driver, vehicle), scope)

    with pytest.raises(AccessDeniedError):
        services.contracts.update(contract.id, UpdateContractRequest(description='x'),
                                  Scope.for_company(other_company))
    with pytest.raises(NotFoundError):
        services.contracts.update('missing', UpdateContractRequest(description='x'), scope)
    assert seed.get(Contract, contract.id).description is None


def test_update_request_only_accepts_editable_fields():
    with pytest.raises(ValidationError, match='dailyRate'):
        UpdateContractRequest.from_dict({'dailyRate': 10, 'description': 'cheaper'})
    with pytest.raises(ValidationError, match='status'):
        UpdateContractRequest.from_dict({'status': 'COMPLETED'})
    with pytest.raises(ValidationError, match='Nothing to update'):
        UpdateContractRequest.from_dict({})

    request = UpdateContractRequest.from_dict({'end_date': '2026-04-01'})
    assert request.end_date.isoformat() == '2026-04-01'
    assert request.description is None


def test_list_is_limited_to_scope(services, seed, company, other_company, scope):
    seed.contract(company, seed.driver(company), seed.vehicle(company))
    seed.contract(other_company, seed.driver(other_company), seed.vehicle(other_company))

    assert len(services.contracts.list(scope)) == 1
    assert len(services.contracts.list(Scope.all_companies())) == 2
    assert services.contracts.list(scope, ContractFilters(status=ContractStatus.SUSPENDED)) == []


def test_contract_stats(services, seed, company, scope):
    driver = seed.driver(company)
    contract_id = seed.contract(company, driver, seed.vehicle(company),
                                start_date=TODAY - timedelta(days=4))
    for amount, payment_type, status in (
        ('150', PaymentType.DAILY_RENT, PaymentStatus.SUCCESS),
        ('150', PaymentType.DAILY_RENT, PaymentStatus.SUCCESS),
        ('150', PaymentType.DAILY_RENT, PaymentStatus.FAILED),
        ('500', PaymentType.PAYMENT, PaymentStatus.SUCCESS),
        ('40', PaymentType.FINE, PaymentStatus.SUCCESS),
    ):
        seed.add(Payment(company_id=company, driver_id=driver, contract_id=contract_id,
                         amount=Decimal(amount), type=payment_type.value, status=status.value,
                         date=FIXED_NOW))

    result = services.contracts.get_contract_stats(contract_id, scope)
    stats = result['stats']

    assert stats['days_active'] == 4
    assert stats['total_rent_paid'] == '300.00'
    assert stats['total_payments'] == '500.00'
    assert stats['total_fines'] == '40.00'
    assert stats['expected_rent'] == '600.00'
    assert stats['profitability'] == 50.0
    assert stats['is_active'] is True
