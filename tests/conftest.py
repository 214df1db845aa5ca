import itertools
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from fleetrent.common import (
    Company, Contract, ContractStatus, DatabaseConfig, Driver, Scope, SessionManager,
    Vehicle, VehicleStatus, create_engine_from_config, create_tables,
)
from fleetrent.services import build_services

# 12:00 in Asia/Bishkek (UTC+6)
FIXED_NOW = datetime(2026, 3, 10, 6, 0)
TODAY = date(2026, 3, 10)


def fixed_clock():
    return FIXED_NOW


class Seeder:
    """Inserts fixture rows directly, bypassing the services under test."""

    def __init__(self, session_manager):
        self.session_manager = session_manager
        self._seq = itertools.count(1)

    def _add(self, obj):
        with self.session_manager.session_scope() as session:
            session.add(obj)
            session.flush()
            return obj.id

    def company(self, name='Acme Fleet'):
        n = next(self._seq)
        return self._add(Company(name=name, email=f"fleet{n}@example.com"))

    def driver(self, company_id, balance='0', deposit='0', is_active=True, first_name='Aibek'):
        n = next(self._seq)
        return self._add(Driver(
            company_id=company_id,
            first_name=first_name,
            last_name=f"Driver{n}",
            license_number=f"LIC-{n:05d}",
            balance=Decimal(balance),
            deposit=Decimal(deposit),
            is_active=is_active,
        ))

    def vehicle(self, company_id, daily_rate='150', status=VehicleStatus.AVAILABLE):
        n = next(self._seq)
        return self._add(Vehicle(
            company_id=company_id,
            brand='Toyota',
            model='Camry',
            year=2020,
            plate_number=f"01KG{n:03d}ABC",
            vin=f"VIN{n:014d}",
            status=status.value,
            daily_rate=Decimal(daily_rate),
        ))

    def contract(self, company_id, driver_id, vehicle_id, daily_rate='150', deposit='0',
                 start_date=None, end_date=None, status=ContractStatus.ACTIVE):
        """Contract inserted as-is; an ACTIVE one marks its vehicle RENTED."""
        contract_id = self._add(Contract(
            company_id=company_id,
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            daily_rate=Decimal(daily_rate),
            deposit=Decimal(deposit),
            start_date=start_date or TODAY - timedelta(days=1),
            end_date=end_date,
            status=status.value,
        ))
        if status == ContractStatus.ACTIVE:
            with self.session_manager.session_scope() as session:
                session.get(Vehicle, vehicle_id).status = VehicleStatus.RENTED.value
        return contract_id

    def add(self, obj):
        return self._add(obj)

    def get(self, model, record_id):
        with self.session_manager.session_scope() as session:
            return session.get(model, record_id)

    def all(self, model, **filters):
        with self.session_manager.session_scope() as session:
            return session.query(model).filter_by(**filters).all()


@pytest.fixture
def engine():
    engine = create_engine_from_config(DatabaseConfig.from_url('sqlite://'), retries=1)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_manager(engine):
    return SessionManager(engine)


@pytest.fixture
def services(session_manager):
    return build_services(session_manager, clock=fixed_clock)


@pytest.fixture
def seed(session_manager):
    return Seeder(session_manager)


@pytest.fixture
def company(seed):
    return seed.company()


@pytest.fixture
def other_company(seed):
    return seed.company(name='Other Fleet')


@pytest.fixture
def scope(company):
    return Scope.for_company(company)
