"""
Contract Lifecycle Manager.

Creates rental contracts, moves them through their status lifecycle and
keeps the vehicle status and the driver's deposit escrow in step with
them. Every precondition is checked before the first write, and all writes
of one operation share a single transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..common.data_utils import ZERO, sum_money
from ..common.date_utils import DEFAULT_TIMEZONE, days_between, local_today, utcnow
from ..common.events import (
    ContractCreatedEvent, ContractStatusChangedEvent,
    contract_created, contract_status_changed, emit,
)
from ..common.exceptions import (
    ConflictError, InsufficientDepositError, NotFoundError, ValidationError,
)
from ..common.models import (
    Contract, ContractStatus, Driver, Payment, PaymentStatus, PaymentType,
    Vehicle, VehicleStatus,
)
from ..common.scope import Scope
from ..common.session import SessionManager
from .schemas import (
    ContractFilters, CreateContractRequest, StatusChangeRequest, UpdateContractRequest,
)

logger = logging.getLogger(__name__)

# PostgreSQL reports the index name, SQLite the indexed column
ACTIVE_CONTRACT_MARKERS = (
    'uq_contracts_active_driver', 'uq_contracts_active_vehicle',
    'UNIQUE constraint failed: contracts.driver_id',
    'UNIQUE constraint failed: contracts.vehicle_id',
)


class ContractService:
    """
    Contract lifecycle operations.

    Args:
        session_manager: Transactional session provider
        timezone: Operating timezone used for "today"
        clock: Returns the current naive UTC datetime
    """

    def __init__(
        self,
        session_manager: SessionManager,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_manager = session_manager
        self.timezone = timezone
        self.clock = clock

    def _today(self):
        return local_today(self.timezone, self.clock())

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: CreateContractRequest, scope: Scope,
               created_by: Optional[str] = None) -> Contract:
        """
        Create an ACTIVE contract and hold the deposit.

        Preconditions (checked in order, nothing is written if one fails):
        1. Driver exists, belongs to the target company and is active
        2. Driver has no ACTIVE contract
        3. Vehicle exists, belongs to the target company and is AVAILABLE
        4. Vehicle has no ACTIVE contract
        5. start_date is not in the past; end_date (if given) is after start_date
        6. Driver deposit covers the requested deposit

        Args:
            request: Validated create request
            scope: Caller scope
            created_by: Optional creator id stored on the ledger entry

        Returns:
            Contract: The new contract (detached)
        """
        company_id = scope.resolve_company(request.company_id)

        try:
            with self.session_manager.session_scope() as session:
                driver = session.get(Driver, request.driver_id)
                if driver is None:
                    raise NotFoundError('Driver not found')
                if driver.company_id != company_id:
                    raise ValidationError('Driver does not belong to this company')
                if not driver.is_active:
                    raise ValidationError('Driver is not active')
                if self._count_active(session, Contract.driver_id, driver.id):
                    raise ConflictError('Driver already has an active contract')

                vehicle = session.get(Vehicle, request.vehicle_id)
                if vehicle is None:
                    raise NotFoundError('Vehicle not found')
                if vehicle.company_id != company_id:
                    raise ValidationError('Vehicle does not belong to this company')
                if vehicle.status != VehicleStatus.AVAILABLE.value:
                    raise ConflictError('Vehicle is not available for rent')
                if self._count_active(session, Contract.vehicle_id, vehicle.id):
                    raise ConflictError('Vehicle already has an active contract')

                if request.start_date < self._today():
                    raise ValidationError('Start date cannot be in the past')
                if request.end_date is not None and request.end_date <= request.start_date:
                    raise ValidationError('End date must be after start date')

                deposit = request.deposit or ZERO
                if deposit > 0 and driver.deposit < deposit:
                    raise InsufficientDepositError(
                        f"Driver deposit ({driver.deposit}) is insufficient for required "
                        f"deposit ({deposit}). Driver needs to top up deposit first."
                    )

                contract = Contract(
                    company_id=company_id,
                    driver_id=driver.id,
                    vehicle_id=vehicle.id,
                    daily_rate=request.daily_rate,
                    deposit=deposit,
                    start_date=request.start_date,
                    end_date=request.end_date,
                    status=ContractStatus.ACTIVE.value,
                    description=request.description,
                )
                session.add(contract)
                session.flush()

                session.execute(
                    update(Vehicle)
                    .where(Vehicle.id == vehicle.id)
                    .values(status=VehicleStatus.RENTED.value, updated_at=utcnow())
                )

                if deposit > 0:
                    self._hold_deposit(session, driver.id, deposit)
                    session.add(Payment(
                        company_id=company_id,
                        driver_id=driver.id,
                        contract_id=contract.id,
                        amount=deposit,
                        type=PaymentType.DEPOSIT.value,
                        description=f"Deposit blocked for contract {contract.id}",
                        date=self.clock(),
                        created_by_id=created_by,
                    ))
                session.flush()
        except IntegrityError as e:
            self._raise_if_exclusivity_violation(e)
            raise

        logger.info(
            f"Contract {contract.id} created: driver={contract.driver_id} "
            f"vehicle={contract.vehicle_id} rate={contract.daily_rate} deposit={contract.deposit}"
        )
        emit(contract_created, self, ContractCreatedEvent(
            contract_id=contract.id,
            company_id=contract.company_id,
            driver_id=contract.driver_id,
            vehicle_id=contract.vehicle_id,
        ))
        return contract

    @staticmethod
    def _count_active(session: Session, column, value: str, exclude_id: Optional[str] = None) -> int:
        stmt = select(func.count(Contract.id)).where(
            column == value,
            Contract.status == ContractStatus.ACTIVE.value,
        )
        if exclude_id:
            stmt = stmt.where(Contract.id != exclude_id)
        return session.execute(stmt).scalar_one()

    @staticmethod
    def _hold_deposit(session: Session, driver_id: str, amount: Decimal) -> None:
        result = session.execute(
            update(Driver)
            .where(Driver.id == driver_id, Driver.deposit >= amount)
            .values(deposit=Driver.deposit - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        # A concurrent hold may have drained the deposit since it was read
        if result.rowcount != 1:
            raise InsufficientDepositError('Driver deposit is insufficient for required deposit')

    @staticmethod
    def _raise_if_exclusivity_violation(error: IntegrityError) -> None:
        """Turn a hit on the one-active-contract indexes into ConflictError; other violations pass through."""
        message = str(error.orig)
        if any(marker in message for marker in ACTIVE_CONTRACT_MARKERS):
            logger.warning(f"Contract write rejected by active-contract index: {message}")
            raise ConflictError('Driver or vehicle already has an active contract')

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def transition_status(self, contract_id: str, request: StatusChangeRequest, scope: Scope,
                          created_by: Optional[str] = None) -> Contract:
        """
        Move a contract to a new status.

        COMPLETED/TERMINATED release the vehicle and refund the held deposit.
        ACTIVE (only from SUSPENDED) marks the vehicle RENTED again.
        SUSPENDED changes the contract only.

        Raises:
            NotFoundError: Unknown contract
            AccessDeniedError: Contract outside the caller's scope
            ValidationError: Terminal contract, same status or invalid path
            ConflictError: Re-activation while another contract holds the driver or vehicle
        """
        new_status = request.status

        try:
            with self.session_manager.session_scope() as session:
                contract = session.get(Contract, contract_id)
                if contract is None:
                    raise NotFoundError(f"Contract with ID {contract_id} not found")
                scope.ensure_access(contract.company_id)

                old_status = ContractStatus(contract.status)
                if old_status.is_terminal:
                    raise ValidationError(f"Cannot change status of {old_status.value.lower()} contract")
                if new_status == old_status:
                    raise ValidationError(f"Contract is already {old_status.value}")

                if new_status == ContractStatus.ACTIVE:
                    # Only SUSPENDED reaches here (ACTIVE -> ACTIVE rejected above)
                    self._check_reactivation(session, contract)

                end_date = request.end_date or contract.end_date
                if end_date is not None and end_date < contract.start_date:
                    raise ValidationError('End date cannot be before start date')
                if new_status.is_terminal and end_date is None:
                    # A booking ended before it started closes on its start date
                    end_date = max(self._today(), contract.start_date)

                contract.status = new_status.value
                contract.end_date = end_date
                if request.reason:
                    contract.status_reason = request.reason

                vehicle_status = None
                if new_status.is_terminal:
                    vehicle_status = VehicleStatus.AVAILABLE.value
                elif new_status == ContractStatus.ACTIVE:
                    vehicle_status = VehicleStatus.RENTED.value
                if vehicle_status:
                    session.execute(
                        update(Vehicle)
                        .where(Vehicle.id == contract.vehicle_id)
                        .values(status=vehicle_status, updated_at=utcnow())
                    )

                if new_status.is_terminal and contract.deposit > 0:
                    session.execute(
                        update(Driver)
                        .where(Driver.id == contract.driver_id)
                        .values(deposit=Driver.deposit + contract.deposit, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    session.add(Payment(
                        company_id=contract.company_id,
                        driver_id=contract.driver_id,
                        contract_id=contract.id,
                        amount=contract.deposit,
                        type=PaymentType.REFUND.value,
                        description=(
                            f"Deposit unblocked for contract {contract.id}. "
                            f"Reason: {request.reason or 'Contract ended'}"
                        ),
                        date=self.clock(),
                        created_by_id=created_by,
                    ))
                session.flush()
        except IntegrityError as e:
            self._raise_if_exclusivity_violation(e)
            raise

        logger.info(f"Contract {contract_id}: {old_status.value} -> {new_status.value}")
        emit(contract_status_changed, self, ContractStatusChangedEvent(
            contract_id=contract.id,
            company_id=contract.company_id,
            old_status=old_status.value,
            new_status=new_status.value,
            reason=request.reason,
        ))
        return contract

    def _check_reactivation(self, session: Session, contract: Contract) -> None:
        driver = session.get(Driver, contract.driver_id)
        if driver is None or not driver.is_active:
            raise ValidationError('Driver is not active')
        vehicle = session.get(Vehicle, contract.vehicle_id)
        if vehicle is None or vehicle.status in (VehicleStatus.MAINTENANCE.value, VehicleStatus.INACTIVE.value):
            raise ConflictError('Vehicle is not available for rent')
        if self._count_active(session, Contract.vehicle_id, contract.vehicle_id, contract.id):
            raise ConflictError('Vehicle already has an active contract')
        if self._count_active(session, Contract.driver_id, contract.driver_id, contract.id):
            raise ConflictError('Driver already has an active contract')

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    def update(self, contract_id: str, request: UpdateContractRequest, scope: Scope) -> Contract:
        """
        Change a contract's end date or description.

        Status, parties, rate and deposit only change through create and
        transition_status.

        Raises:
            NotFoundError: Unknown contract
            AccessDeniedError: Contract outside the caller's scope
            ValidationError: end_date not after start_date
        """
        with self.session_manager.session_scope() as session:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise NotFoundError(f"Contract with ID {contract_id} not found")
            scope.ensure_access(contract.company_id)

            if request.end_date is not None:
                if request.end_date <= contract.start_date:
                    raise ValidationError('End date must be after start date')
                contract.end_date = request.end_date
            if request.description is not None:
                contract.description = request.description
            session.flush()

        logger.info(f"Contract {contract_id} updated")
        return contract

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def remove(self, contract_id: str, scope: Scope) -> None:
        """Delete a non-ACTIVE contract that has no ledger history."""
        with self.session_manager.session_scope() as session:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise NotFoundError(f"Contract with ID {contract_id} not found")
            scope.ensure_access(contract.company_id)

            if contract.status == ContractStatus.ACTIVE.value:
                raise ValidationError('Cannot delete active contract')

            payments = session.execute(
                select(func.count(Payment.id)).where(Payment.contract_id == contract_id)
            ).scalar_one()
            if payments:
                raise ConflictError('Cannot delete contract with payment history')

            session.delete(contract)

        logger.info(f"Contract {contract_id} deleted")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, contract_id: str, scope: Scope) -> Contract:
        with self.session_manager.session_scope() as session:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise NotFoundError(f"Contract with ID {contract_id} not found")
            scope.ensure_access(contract.company_id)
            return contract

    def list(self, scope: Scope, filters: Optional[ContractFilters] = None) -> List[Contract]:
        """Contracts visible to the scope, newest first."""
        filters = filters or ContractFilters()
        stmt = select(Contract).order_by(Contract.created_at.desc())

        company_id = scope.filter_company(filters.company_id)
        if company_id:
            stmt = stmt.where(Contract.company_id == company_id)
        if filters.status:
            stmt = stmt.where(Contract.status == filters.status.value)
        if filters.driver_id:
            stmt = stmt.where(Contract.driver_id == filters.driver_id)
        if filters.vehicle_id:
            stmt = stmt.where(Contract.vehicle_id == filters.vehicle_id)

        with self.session_manager.session_scope() as session:
            return session.execute(stmt).scalars().all()

    def get_contract_stats(self, contract_id: str, scope: Scope) -> Dict[str, Any]:
        """
        Payment totals and rent profitability for one contract.

        days_active runs from start_date to end_date (or today while open).
        Failed billing attempts are excluded from every total.
        """
        with self.session_manager.session_scope() as session:
            contract = session.get(Contract, contract_id)
            if contract is None:
                raise NotFoundError(f"Contract with ID {contract_id} not found")
            scope.ensure_access(contract.company_id)

            rows = session.execute(
                select(Payment.type, func.sum(Payment.amount))
                .where(
                    Payment.contract_id == contract_id,
                    Payment.status == PaymentStatus.SUCCESS.value,
                )
                .group_by(Payment.type)
            ).all()

        totals = {row[0]: row[1] for row in rows}
        total_payments = sum_money([totals.get(PaymentType.PAYMENT.value)])
        total_fines = sum_money([totals.get(PaymentType.FINE.value)])
        total_rent = sum_money([totals.get(PaymentType.DAILY_RENT.value)])

        days_active = days_between(contract.start_date, contract.end_date or self._today())
        expected_rent = (Decimal(days_active) * contract.daily_rate).quantize(Decimal('0.01'))
        profitability = Decimal('0')
        if expected_rent:
            profitability = (total_rent / expected_rent * 100).quantize(
                Decimal('0.01'), rounding=ROUND_HALF_UP
            )

        return {
            'contract': contract.to_dict(),
            'stats': {
                'days_active': days_active,
                'total_payments': str(total_payments),
                'total_fines': str(total_fines),
                'total_rent_paid': str(total_rent),
                'expected_rent': str(expected_rent),
                'profitability': float(profitability),
                'is_active': contract.status == ContractStatus.ACTIVE.value,
            },
        }
