"""
Common building blocks shared by the contract, billing and analytics layers.

Example Usage:
    from fleetrent.common import DatabaseConfig, create_engine_from_config
    from fleetrent.common import SessionManager, Scope

    engine = create_engine_from_config(DatabaseConfig.from_url(get_database_url()))
    session_manager = SessionManager(engine)

    with session_manager.session_scope() as session:
        ...
"""

# Configuration
from .config import (
    AnalyticsConfig,
    BillingConfig,
    DatabaseConfig,
    DatabaseType,
)

# Database engine and session management
from .engine import (
    create_engine_from_config,
    get_pool_stats,
)
from .session import SessionManager
from .upsert_strategies import UpsertFactory, UpsertStrategy

# Models
from .models import (
    Base, BaseModel, TimestampMixin,
    Company, Driver, Vehicle, Contract, Payment, Expense, Analytics,
    VehicleStatus, ContractStatus, PaymentType, PaymentStatus,
    ExpenseType, ExpensePayer, MetricType,
    create_tables,
)

# Tenancy and errors
from .scope import Scope
from .exceptions import (
    FleetError,
    ValidationError,
    AccessDeniedError,
    NotFoundError,
    ConflictError,
    InsufficientDepositError,
    ChargeError,
)

__all__ = [
    'AnalyticsConfig', 'BillingConfig', 'DatabaseConfig', 'DatabaseType',
    'create_engine_from_config', 'get_pool_stats',
    'SessionManager', 'UpsertFactory', 'UpsertStrategy',
    'Base', 'BaseModel', 'TimestampMixin',
    'Company', 'Driver', 'Vehicle', 'Contract', 'Payment', 'Expense', 'Analytics',
    'VehicleStatus', 'ContractStatus', 'PaymentType', 'PaymentStatus',
    'ExpenseType', 'ExpensePayer', 'MetricType',
    'create_tables',
    'Scope',
    'FleetError', 'ValidationError', 'AccessDeniedError', 'NotFoundError',
    'ConflictError', 'InsufficientDepositError', 'ChargeError',
]
