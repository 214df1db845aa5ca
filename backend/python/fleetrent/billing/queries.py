"""
Debt and ledger queries derived from the payment ledger.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select

from ..common.data_utils import ZERO, ceil_div, sum_money
from ..common.date_utils import DEFAULT_TIMEZONE, local_day_bounds, local_today, utcnow
from ..common.models import (
    Contract, ContractStatus, Driver, Payment, PaymentStatus, PaymentType, Vehicle,
)
from ..common.scope import Scope
from ..common.session import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class TodayBillingStats:
    date: date
    total: int
    successful: int
    failed: int
    total_amount: Decimal
    failed_amount: Decimal
    details: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'total_amount': str(self.total_amount),
            'failed_amount': str(self.failed_amount),
            'details': self.details,
        }


@dataclass
class DebtorContract:
    contract_id: str
    vehicle: str
    daily_rate: Decimal
    days_since_start: int


@dataclass
class DebtorRecord:
    driver_id: str
    name: str
    balance: Decimal
    debt_amount: Decimal
    daily_rate: Decimal
    days_in_debt: int
    contracts: List[DebtorContract] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'driver_id': self.driver_id,
            'name': self.name,
            'balance': str(self.balance),
            'debt_amount': str(self.debt_amount),
            'daily_rate': str(self.daily_rate),
            'days_in_debt': self.days_in_debt,
            'contracts': [
                {
                    'contract_id': c.contract_id,
                    'vehicle': c.vehicle,
                    'daily_rate': str(c.daily_rate),
                    'days_since_start': c.days_since_start,
                }
                for c in self.contracts
            ],
        }


class BillingQueries:
    """Read-side billing views: today's charges and current debtors."""

    def __init__(
        self,
        session_manager: SessionManager,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_manager = session_manager
        self.timezone = timezone
        self.clock = clock

    def get_today_billing_stats(self, scope: Scope, company_id: Optional[str] = None) -> TodayBillingStats:
        """
        Summarize today's DAILY_RENT ledger entries.

        "Today" is the current calendar day in the operating timezone.
        Entries are partitioned on their status; total_amount covers
        successful charges only.

        Args:
            scope: Caller scope
            company_id: Optional company to narrow an unrestricted scope

        Returns:
            TodayBillingStats
        """
        today = local_today(self.timezone, self.clock())
        start, end = local_day_bounds(today, self.timezone)

        stmt = (
            select(Payment, Driver.first_name, Driver.last_name)
            .join(Driver, Payment.driver_id == Driver.id)
            .where(
                Payment.type == PaymentType.DAILY_RENT.value,
                Payment.date >= start,
                Payment.date < end,
            )
            .order_by(Payment.date)
        )
        target_company = scope.filter_company(company_id)
        if target_company:
            stmt = stmt.where(Payment.company_id == target_company)

        with self.session_manager.session_scope() as session:
            rows = session.execute(stmt).all()

        successful, failed = [], []
        for payment, first_name, last_name in rows:
            summary = {
                'id': payment.id,
                'contract_id': payment.contract_id,
                'amount': payment.amount,
                'description': payment.description,
                'driver_name': f"{first_name} {last_name}",
            }
            (failed if payment.is_failed else successful).append(summary)

        total_amount = sum_money(p['amount'] for p in successful)
        failed_amount = sum_money(p['amount'] for p in failed)
        for summary in successful + failed:
            summary['amount'] = str(summary['amount'])

        return TodayBillingStats(
            date=today,
            total=len(rows),
            successful=len(successful),
            failed=len(failed),
            total_amount=total_amount,
            failed_amount=failed_amount,
            details={'successful_payments': successful, 'failed_payments': failed},
        )

    def get_drivers_in_debt(self, scope: Scope, company_id: Optional[str] = None) -> List[DebtorRecord]:
        """
        Active drivers with a negative balance and at least one ACTIVE contract.

        days_in_debt = ceil(debt / combined daily rate of the active contracts).
        Sorted by balance ascending (largest debt first).
        """
        today = local_today(self.timezone, self.clock())
        stmt = (
            select(Driver, Contract, Vehicle.brand, Vehicle.model, Vehicle.plate_number)
            .join(Contract, Contract.driver_id == Driver.id)
            .join(Vehicle, Contract.vehicle_id == Vehicle.id)
            .where(
                Driver.balance < 0,
                Driver.is_active.is_(True),
                Contract.status == ContractStatus.ACTIVE.value,
            )
            .order_by(Driver.balance, Driver.id, Contract.start_date)
        )
        target_company = scope.filter_company(company_id)
        if target_company:
            stmt = stmt.where(Driver.company_id == target_company)

        with self.session_manager.session_scope() as session:
            rows = session.execute(stmt).all()

        records: Dict[str, DebtorRecord] = {}
        for driver, contract, brand, model, plate in rows:
            record = records.get(driver.id)
            if record is None:
                record = records[driver.id] = DebtorRecord(
                    driver_id=driver.id,
                    name=driver.full_name,
                    balance=driver.balance,
                    debt_amount=abs(driver.balance),
                    daily_rate=ZERO,
                    days_in_debt=0,
                )
            record.contracts.append(DebtorContract(
                contract_id=contract.id,
                vehicle=f"{brand} {model} ({plate})",
                daily_rate=contract.daily_rate,
                days_since_start=max((today - contract.start_date).days, 0),
            ))
            record.daily_rate += contract.daily_rate

        debtors = list(records.values())
        for record in debtors:
            record.days_in_debt = ceil_div(record.debt_amount, record.daily_rate)
        debtors.sort(key=lambda r: r.balance)

        logger.debug(f"Found {len(debtors)} drivers in debt (scope={scope})")
        return debtors
