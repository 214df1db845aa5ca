"""
Wiring for the fleet services.

The web app and the CLI both build one FleetServices from a SessionManager so
that every surface talks to the same contract, expense, billing and analytics objects.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .analytics import AnalyticsEngine, MetricStore
from .billing import BillingEngine, BillingQueries
from .common.config import AnalyticsConfig, BillingConfig, DatabaseConfig
from .common.date_utils import utcnow
from .common.engine import create_engine_from_config
from .common.session import SessionManager
from .contracts import ContractService
from .drivers import DriverAccountService
from .expenses import ExpenseService


@dataclass
class FleetServices:
    session_manager: SessionManager
    contracts: ContractService
    drivers: DriverAccountService
    expenses: ExpenseService
    billing: BillingEngine
    billing_queries: BillingQueries
    analytics: AnalyticsEngine
    metrics: MetricStore


def build_services(
    session_manager: SessionManager,
    billing_config: Optional[BillingConfig] = None,
    analytics_config: Optional[AnalyticsConfig] = None,
    clock: Callable[[], datetime] = utcnow
) -> FleetServices:
    """
    Build every service around one session manager.

    Args:
        session_manager: Transactional session provider
        billing_config: Billing settings (defaults when omitted)
        analytics_config: Analytics settings (defaults when omitted)
        clock: Returns the current naive UTC datetime

    Returns:
        FleetServices
    """
    billing_config = billing_config or BillingConfig()
    analytics_config = analytics_config or AnalyticsConfig(timezone=billing_config.timezone)
    store = MetricStore(session_manager)

    return FleetServices(
        session_manager=session_manager,
        contracts=ContractService(session_manager, billing_config.timezone, clock),
        drivers=DriverAccountService(session_manager, clock),
        expenses=ExpenseService(session_manager, billing_config.timezone, clock),
        billing=BillingEngine(session_manager, billing_config, clock),
        billing_queries=BillingQueries(session_manager, billing_config.timezone, clock),
        analytics=AnalyticsEngine(session_manager, analytics_config, store, clock),
        metrics=store,
    )


def build_services_from_config(db_url: Optional[str] = None) -> FleetServices:
    """Build services from the unified configuration (YAML + environment)."""
    from .common.config import load_analytics_config, load_billing_config
    from .common.config_loader import get_database_url

    engine = create_engine_from_config(DatabaseConfig.from_url(db_url or get_database_url('backend')))
    return build_services(
        SessionManager(engine),
        billing_config=load_billing_config(),
        analytics_config=load_analytics_config(),
    )
