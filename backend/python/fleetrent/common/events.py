"""
Domain events emitted by the billing, contract and analytics layers.

Signals are blinker signals in a private namespace. Listeners (alerting,
notifications) connect with ``signal.connect(handler)`` and receive the
event dataclass as the ``event`` keyword argument.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from blinker import Namespace

from .date_utils import utcnow

logger = logging.getLogger(__name__)

fleet_signals = Namespace()

billing_daily_completed = fleet_signals.signal('billing.daily.completed')
billing_payment_failed = fleet_signals.signal('billing.payment.failed')
analytics_daily_completed = fleet_signals.signal('analytics.daily.completed')
analytics_daily_failed = fleet_signals.signal('analytics.daily.failed')
contract_created = fleet_signals.signal('contract.created')
contract_status_changed = fleet_signals.signal('contract.status_changed')


def _serialize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


@dataclass
class FleetEvent:
    """Base event. Subclasses add their own payload fields."""

    def to_dict(self) -> Dict[str, Any]:
        return {k: _serialize(v) for k, v in asdict(self).items()}


@dataclass
class DailyBillingCompletedEvent(FleetEvent):
    stats: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PaymentFailedEvent(FleetEvent):
    contract_id: str
    driver_id: str
    amount: Decimal
    reason: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class AnalyticsCompletedEvent(FleetEvent):
    companies_processed: int
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class AnalyticsFailedEvent(FleetEvent):
    error: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ContractCreatedEvent(FleetEvent):
    contract_id: str
    company_id: str
    driver_id: str
    vehicle_id: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class ContractStatusChangedEvent(FleetEvent):
    contract_id: str
    company_id: str
    old_status: str
    new_status: str
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


def emit(signal, sender: Any, event: FleetEvent) -> None:
    """
    Send an event to all connected receivers.

    A failing receiver is logged and never interrupts the emitting operation.
    """
    for receiver in list(signal.receivers_for(sender)):
        try:
            receiver(sender, event=event)
        except Exception as e:
            logger.exception(f"Event receiver for '{signal.name}' failed: {e}")
