"""
Configuration dataclasses for the database and the billing/analytics engines.
Values come from the unified config system (YAML + environment).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .date_utils import DEFAULT_TIMEZONE


class DatabaseType(Enum):
    """Supported database types"""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


@dataclass
class DatabaseConfig:
    """
    Database connection configuration.
    Either a full SQLAlchemy URL or PostgreSQL connection parts.
    """
    db_type: DatabaseType = DatabaseType.POSTGRESQL
    url: Optional[str] = None
    host: str = 'localhost'
    port: int = 5432
    database: str = 'fleetrent'
    username: str = 'fleetrent'
    password: str = ''
    sslmode: str = 'prefer'

    # Connection pool settings (ignored for SQLite)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True

    @classmethod
    def from_url(cls, url: str) -> 'DatabaseConfig':
        db_type = DatabaseType.SQLITE if url.startswith('sqlite') else DatabaseType.POSTGRESQL
        return cls(db_type=db_type, url=url)

    def __repr__(self) -> str:
        """Safe representation without password"""
        if self.url:
            return f"DatabaseConfig(db_type={self.db_type.value}, url=<set>)"
        return (f"DatabaseConfig(db_type={self.db_type.value}, host={self.host}, "
                f"database={self.database}, username={self.username})")


@dataclass
class BillingConfig:
    """Billing engine settings."""
    timezone: str = DEFAULT_TIMEZONE
    # Contracts charged concurrently; each charge keeps its own transaction
    max_workers: int = 1
    # Skip contracts already charged successfully in the current local day
    skip_already_billed: bool = False
    currency: str = 'KGS'


@dataclass
class AnalyticsConfig:
    """Analytics recalculation settings."""
    timezone: str = DEFAULT_TIMEZONE
    retention_years: int = 2
    weekly_window_days: int = 7
    # Upper bound for one on-demand recalculation
    max_recalculate_days: int = 366


def load_billing_config() -> BillingConfig:
    """Build BillingConfig from app.yaml (section `billing`)."""
    from .config_loader import get_config, get_timezone

    section = get_config().app.billing
    config = BillingConfig(timezone=get_timezone())
    if section:
        config.max_workers = int(section.get('max_workers', config.max_workers))
        config.skip_already_billed = bool(section.get('skip_already_billed', config.skip_already_billed))
        config.currency = section.get('currency', config.currency)
    return config


def load_analytics_config() -> AnalyticsConfig:
    """Build AnalyticsConfig from app.yaml (section `analytics`)."""
    from .config_loader import get_config, get_timezone

    section = get_config().app.analytics
    config = AnalyticsConfig(timezone=get_timezone())
    if section:
        config.retention_years = int(section.get('retention_years', config.retention_years))
        config.weekly_window_days = int(section.get('weekly_window_days', config.weekly_window_days))
        config.max_recalculate_days = int(section.get('max_recalculate_days', config.max_recalculate_days))
    return config
