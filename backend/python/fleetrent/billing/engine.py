"""
Billing Engine - daily rent debits for every active contract.

Each contract is charged in its own transaction: the driver's balance is
decremented SQL-side (it may go negative) and a DAILY_RENT ledger entry is
appended. A failed charge leaves the balance untouched, is recorded as a
FAILED ledger entry and reported through billing.payment.failed; the rest
of the run carries on.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..common.config import BillingConfig
from ..common.data_utils import ZERO
from ..common.date_utils import local_day_bounds, local_today, utcnow
from ..common.events import (
    DailyBillingCompletedEvent, PaymentFailedEvent,
    billing_daily_completed, billing_payment_failed, emit,
)
from ..common.exceptions import ChargeError
from ..common.models import (
    Contract, ContractStatus, Driver, Payment, PaymentStatus, PaymentType, Vehicle,
)
from ..common.session import SessionManager

logger = logging.getLogger(__name__)

FAILED_PREFIX = 'ERROR: '


@dataclass
class BillingStats:
    """Outcome of one billing cycle."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    total_amount: Decimal = ZERO
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    triggered_by: str = 'manual'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'total_amount': str(self.total_amount),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'triggered_by': self.triggered_by,
        }


@dataclass(frozen=True)
class BillableContract:
    """Detached snapshot of the contract fields a charge needs."""
    id: str
    company_id: str
    driver_id: str
    daily_rate: Decimal
    driver_name: str
    vehicle_label: str


@dataclass
class ChargeOutcome:
    contract: BillableContract
    success: bool
    error: Optional[str] = None


class BillingEngine:
    """
    Runs billing cycles.

    run_billing_cycle() is the single entry point for both the scheduler
    and manual triggers.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        config: Optional[BillingConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_manager = session_manager
        self.config = config or BillingConfig()
        self.clock = clock

    def run_billing_cycle(self, triggered_by: str = 'manual') -> BillingStats:
        """
        Charge the daily rate of every active contract once.

        Not idempotent unless skip_already_billed is enabled: a second run on
        the same day charges every contract again.

        Args:
            triggered_by: Who started the run ('scheduler', 'manual', 'api', ...)

        Returns:
            BillingStats: Counts and successful total for this run
        """
        stats = BillingStats(started_at=self.clock(), triggered_by=triggered_by)
        logger.info(f"Starting billing cycle (triggered_by={triggered_by})")

        contracts = self._fetch_active_contracts()
        if self.config.skip_already_billed:
            billed = self._already_billed_today()
            skipped = [c for c in contracts if c.id in billed]
            if skipped:
                logger.info(f"Skipping {len(skipped)} contracts already billed today")
            contracts = [c for c in contracts if c.id not in billed]

        logger.info(f"Found {len(contracts)} active contracts to bill")

        for outcome in self._charge_all(contracts):
            stats.total += 1
            contract = outcome.contract
            if outcome.success:
                stats.successful += 1
                stats.total_amount += contract.daily_rate
                continue

            stats.failed += 1
            emit(billing_payment_failed, self, PaymentFailedEvent(
                contract_id=contract.id,
                driver_id=contract.driver_id,
                amount=contract.daily_rate,
                reason=outcome.error,
            ))

        stats.finished_at = self.clock()
        logger.info(
            f"Billing cycle finished. Contracts: {stats.total}, successful: {stats.successful}, "
            f"failed: {stats.failed}, amount: {stats.total_amount} {self.config.currency}"
        )
        emit(billing_daily_completed, self, DailyBillingCompletedEvent(stats=stats.to_dict()))
        return stats

    def _charge_all(self, contracts: List[BillableContract]) -> List[ChargeOutcome]:
        if self.config.max_workers > 1 and len(contracts) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers,
                                    thread_name_prefix='billing') as pool:
                return list(pool.map(self._process_contract, contracts))
        return [self._process_contract(contract) for contract in contracts]

    def _process_contract(self, contract: BillableContract) -> ChargeOutcome:
        try:
            self._charge_contract(contract)
        except Exception as e:
            # Isolate the failure to this contract; record it and move on
            logger.exception(f"Charge failed for contract {contract.id} ({contract.driver_name}): {e}")
            self._record_failed_charge(contract, str(e))
            return ChargeOutcome(contract=contract, success=False, error=str(e))

        logger.debug(f"Charged {contract.daily_rate} to {contract.driver_name} for contract {contract.id}")
        return ChargeOutcome(contract=contract, success=True)

    # ------------------------------------------------------------------
    # Contract selection
    # ------------------------------------------------------------------

    def _fetch_active_contracts(self) -> List[BillableContract]:
        """ACTIVE contracts that are open-ended or end today or later."""
        today = local_today(self.config.timezone, self.clock())
        stmt = (
            select(Contract, Driver.first_name, Driver.last_name, Vehicle.brand,
                   Vehicle.model, Vehicle.plate_number)
            .join(Driver, Contract.driver_id == Driver.id)
            .join(Vehicle, Contract.vehicle_id == Vehicle.id)
            .where(
                Contract.status == ContractStatus.ACTIVE.value,
                or_(Contract.end_date.is_(None), Contract.end_date >= today),
            )
            .order_by(Contract.created_at)
        )
        with self.session_manager.session_scope() as session:
            rows = session.execute(stmt).all()
            return [
                BillableContract(
                    id=contract.id,
                    company_id=contract.company_id,
                    driver_id=contract.driver_id,
                    daily_rate=contract.daily_rate,
                    driver_name=f"{first_name} {last_name}",
                    vehicle_label=f"{brand} {model} ({plate})",
                )
                for contract, first_name, last_name, brand, model, plate in rows
            ]

    def _already_billed_today(self) -> Set[str]:
        start, end = local_day_bounds(local_today(self.config.timezone, self.clock()), self.config.timezone)
        stmt = select(Payment.contract_id).where(
            Payment.type == PaymentType.DAILY_RENT.value,
            Payment.status == PaymentStatus.SUCCESS.value,
            Payment.contract_id.is_not(None),
            Payment.date >= start,
            Payment.date < end,
        )
        with self.session_manager.session_scope() as session:
            return set(session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Charging
    # ------------------------------------------------------------------

    def _charge_contract(self, contract: BillableContract) -> Decimal:
        """Debit the driver and append the ledger entry in one transaction."""
        with self.session_manager.session_scope() as session:
            self._debit_driver(session, contract)
            self._append_ledger_entry(session, contract)
        return contract.daily_rate

    def _debit_driver(self, session, contract: BillableContract) -> None:
        result = session.execute(
            update(Driver)
            .where(Driver.id == contract.driver_id)
            .values(balance=Driver.balance - contract.daily_rate, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ChargeError(f"Driver {contract.driver_id} not found")

    def _append_ledger_entry(self, session, contract: BillableContract) -> None:
        session.add(Payment(
            company_id=contract.company_id,
            driver_id=contract.driver_id,
            contract_id=contract.id,
            amount=contract.daily_rate,
            type=PaymentType.DAILY_RENT.value,
            status=PaymentStatus.SUCCESS.value,
            description=f"Daily rent {contract.vehicle_label}",
            date=self.clock(),
        ))
        session.flush()

    def _record_failed_charge(self, contract: BillableContract, message: str) -> None:
        """Keep an audit row for the failed attempt. The balance is not touched."""
        try:
            with self.session_manager.session_scope() as session:
                session.add(Payment(
                    company_id=contract.company_id,
                    driver_id=contract.driver_id,
                    contract_id=contract.id,
                    amount=contract.daily_rate,
                    type=PaymentType.DAILY_RENT.value,
                    status=PaymentStatus.FAILED.value,
                    description=f"{FAILED_PREFIX}Daily rent {contract.vehicle_label}. {message}",
                    date=self.clock(),
                ))
        except SQLAlchemyError as e:
            logger.error(f"Could not record failed charge for contract {contract.id}: {e}")
