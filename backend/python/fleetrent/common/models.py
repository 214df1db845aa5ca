"""
SQLAlchemy ORM models with base classes and mixins.
Covers the tenant boundary (Company), the rental fleet (Driver, Vehicle),
rental agreements (Contract), the append-only ledger (Payment), fleet costs
(Expense) and the cached analytics store (Analytics).
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Dict, Any
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Boolean, Numeric, Text, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from .date_utils import utcnow


# Declarative base for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), 'postgresql')

# Currency columns: exact fixed-point decimals
Money = Numeric(12, 2)


def new_id() -> str:
    """Generate a string primary key."""
    return str(uuid4())


def _check_in(column: str, enum_cls) -> str:
    values = ', '.join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# ============================================================================
# Enumerations (stored as strings, guarded by CHECK constraints)
# ============================================================================

class VehicleStatus(str, Enum):
    AVAILABLE = 'AVAILABLE'
    RENTED = 'RENTED'
    MAINTENANCE = 'MAINTENANCE'
    INACTIVE = 'INACTIVE'


class ContractStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    TERMINATED = 'TERMINATED'
    SUSPENDED = 'SUSPENDED'

    @property
    def is_terminal(self) -> bool:
        return self in (ContractStatus.COMPLETED, ContractStatus.TERMINATED)


class PaymentType(str, Enum):
    PAYMENT = 'PAYMENT'
    FINE = 'FINE'
    BONUS = 'BONUS'
    DAILY_RENT = 'DAILY_RENT'
    DEPOSIT = 'DEPOSIT'
    REFUND = 'REFUND'


class PaymentStatus(str, Enum):
    """Outcome of a ledger entry. FAILED marks an attempted-but-unwritten charge."""
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class ExpenseType(str, Enum):
    MAINTENANCE = 'MAINTENANCE'
    REPAIR = 'REPAIR'
    INSURANCE = 'INSURANCE'
    OTHER = 'OTHER'


class ExpensePayer(str, Enum):
    COMPANY = 'COMPANY'
    DRIVER = 'DRIVER'


class MetricType(str, Enum):
    DAILY_REVENUE = 'DAILY_REVENUE'
    MONTHLY_REVENUE = 'MONTHLY_REVENUE'
    VEHICLE_UTILIZATION = 'VEHICLE_UTILIZATION'
    DRIVER_KPI = 'DRIVER_KPI'
    FLEET_EFFICIENCY = 'FLEET_EFFICIENCY'
    EXPENSE_SUMMARY = 'EXPENSE_SUMMARY'


# Ledger entry types counted as fleet income
INCOME_PAYMENT_TYPES = (PaymentType.PAYMENT.value, PaymentType.DAILY_RENT.value)


# ============================================================================
# Base classes and mixins
# ============================================================================

class TimestampMixin:
    """Mixin for automatic timestamp tracking"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class BaseModel:
    """Base model with common functionality"""

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            dict: Dictionary representation of the model
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            # Convert datetime/date to ISO format string
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            # Decimals are serialized as strings to keep them exact
            elif isinstance(value, Decimal):
                value = str(value)
            result[column.key] = value
        return result

    def __repr__(self) -> str:
        """String representation of model"""
        return f"<{self.__class__.__name__}(id={getattr(self, 'id', None)})>"


# ============================================================================
# Domain Models
# ============================================================================


class Company(Base, BaseModel, TimestampMixin):
    """Tenant boundary. Every other record carries a company_id."""
    __tablename__ = 'companies'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50))
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    drivers = relationship('Driver', back_populates='company')
    vehicles = relationship('Vehicle', back_populates='company')


class Driver(Base, BaseModel, TimestampMixin):
    """
    Driver account.

    balance may go negative (debt accrued by daily rent).
    deposit is pre-funded escrow and never drops below zero.
    """
    __tablename__ = 'drivers'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    license_number = Column(String(50), nullable=False)
    balance = Column(Money, nullable=False, default=Decimal('0.00'))
    deposit = Column(Money, nullable=False, default=Decimal('0.00'))
    is_active = Column(Boolean, nullable=False, default=True)

    company = relationship('Company', back_populates='drivers')
    contracts = relationship('Contract', back_populates='driver')

    __table_args__ = (
        UniqueConstraint('company_id', 'license_number', name='uq_drivers_company_license'),
        CheckConstraint('deposit >= 0', name='chk_driver_deposit_non_negative'),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Vehicle(Base, BaseModel, TimestampMixin):
    """Fleet vehicle. status is RENTED iff exactly one ACTIVE contract holds it."""
    __tablename__ = 'vehicles'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    year = Column(Integer)
    plate_number = Column(String(20), nullable=False)
    vin = Column(String(32), nullable=False, unique=True)
    color = Column(String(50))
    status = Column(String(20), nullable=False, default=VehicleStatus.AVAILABLE.value)
    daily_rate = Column(Money, nullable=False)

    company = relationship('Company', back_populates='vehicles')
    contracts = relationship('Contract', back_populates='vehicle')

    __table_args__ = (
        UniqueConstraint('company_id', 'plate_number', name='uq_vehicles_company_plate'),
        CheckConstraint(_check_in('status', VehicleStatus), name='chk_vehicle_status'),
    )


class Contract(Base, BaseModel, TimestampMixin):
    """
    Rental agreement binding one driver to one vehicle.

    daily_rate is a snapshot taken at creation. At most one ACTIVE contract
    per driver and per vehicle is enforced by partial unique indexes.
    """
    __tablename__ = 'contracts'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey('drivers.id', ondelete='CASCADE'), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False, index=True)
    daily_rate = Column(Money, nullable=False)
    deposit = Column(Money, nullable=False, default=Decimal('0.00'))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # null for open ended
    status = Column(String(20), nullable=False, default=ContractStatus.ACTIVE.value, index=True)
    description = Column(Text)
    status_reason = Column(Text)

    driver = relationship('Driver', back_populates='contracts')
    vehicle = relationship('Vehicle', back_populates='contracts')
    payments = relationship('Payment', back_populates='contract')

    __table_args__ = (
        CheckConstraint(_check_in('status', ContractStatus), name='chk_contract_status'),
        CheckConstraint('daily_rate > 0', name='chk_contract_daily_rate_positive'),
        CheckConstraint('deposit >= 0', name='chk_contract_deposit_non_negative'),
        Index(
            'uq_contracts_active_driver', 'driver_id', unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index(
            'uq_contracts_active_vehicle', 'vehicle_id', unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )


class Payment(Base, BaseModel, TimestampMixin):
    """
    Append-only ledger entry.

    Never updated or deleted in production operation. A failed billing
    attempt is kept as a DAILY_RENT entry with status FAILED.
    """
    __tablename__ = 'payments'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey('drivers.id', ondelete='CASCADE'), nullable=False, index=True)
    contract_id = Column(String(36), ForeignKey('contracts.id', ondelete='SET NULL'), nullable=True, index=True)
    amount = Column(Money, nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(10), nullable=False, default=PaymentStatus.SUCCESS.value)
    description = Column(Text)
    date = Column(DateTime, nullable=False, default=utcnow)
    created_by_id = Column(String(36))

    contract = relationship('Contract', back_populates='payments')
    driver = relationship('Driver')

    __table_args__ = (
        CheckConstraint(_check_in('type', PaymentType), name='chk_payment_type'),
        CheckConstraint(_check_in('status', PaymentStatus), name='chk_payment_status'),
        Index('idx_payments_type_date', 'type', 'date'),
    )

    @property
    def is_failed(self) -> bool:
        return self.status == PaymentStatus.FAILED.value


class Expense(Base, BaseModel, TimestampMixin):
    """Fleet or driver cost. Feeds analytics only."""
    __tablename__ = 'expenses'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False, index=True)
    vehicle_id = Column(String(36), ForeignKey('vehicles.id', ondelete='SET NULL'), nullable=True)
    driver_id = Column(String(36), ForeignKey('drivers.id', ondelete='SET NULL'), nullable=True)
    type = Column(String(20), nullable=False)
    category = Column(String(100), nullable=False)
    amount = Column(Money, nullable=False)
    description = Column(Text)
    date = Column(DateTime, nullable=False, default=utcnow)
    paid_by = Column(String(10), nullable=False, default=ExpensePayer.COMPANY.value)

    __table_args__ = (
        CheckConstraint(_check_in('type', ExpenseType), name='chk_expense_type'),
        CheckConstraint(_check_in('paid_by', ExpensePayer), name='chk_expense_paid_by'),
    )


class Analytics(Base, BaseModel, TimestampMixin):
    """
    Cached metric row.

    Composite unique key: company_id + metric_type + date + entity_id.
    entity_id is '' for company-wide metrics so the key stays unique
    (NULLs would never conflict).
    """
    __tablename__ = 'analytics'

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    metric_type = Column(String(30), nullable=False)
    date = Column(Date, nullable=False)
    entity_id = Column(String(36), nullable=False, default='')
    value = Column(Numeric(14, 4), nullable=False)
    details = Column('metadata', JSONType, key='details')

    __table_args__ = (
        UniqueConstraint('company_id', 'metric_type', 'date', 'entity_id', name='uq_analytics_key'),
        CheckConstraint(_check_in('metric_type', MetricType), name='chk_analytics_metric_type'),
        Index('idx_analytics_company_type_date', 'company_id', 'metric_type', 'date'),
    )


# Columns that determine uniqueness for analytics upserts
ANALYTICS_KEY_COLUMNS = ['company_id', 'metric_type', 'date', 'entity_id']


def create_tables(engine):
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)
