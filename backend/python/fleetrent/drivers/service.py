"""
Driver account adjustments made by company staff.

Balance and deposit are changed with SQL-side expressions inside the same
transaction as the ledger entry describing the change.
"""

import logging
from datetime import datetime
from enum import Enum
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import update

from ..common.data_utils import to_money
from ..common.date_utils import utcnow
from ..common.exceptions import InsufficientDepositError, NotFoundError, ValidationError
from ..common.models import Driver, Payment, PaymentType
from ..common.scope import Scope
from ..common.session import SessionManager

logger = logging.getLogger(__name__)

# Ledger types that reduce the driver's balance; every other type adds to it
DEBIT_PAYMENT_TYPES = (PaymentType.FINE, PaymentType.DAILY_RENT)


class DepositOperation(str, Enum):
    ADD = 'add'
    SUBTRACT = 'subtract'


def _positive_amount(amount) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValidationError('Amount must be at least 0.01')
    return value


class DriverAccountService:
    """Balance and deposit adjustments with a matching ledger entry."""

    def __init__(self, session_manager: SessionManager, clock: Callable[[], datetime] = utcnow):
        self.session_manager = session_manager
        self.clock = clock

    def _load_driver(self, session, driver_id: str, scope: Scope) -> Driver:
        driver = session.get(Driver, driver_id)
        if driver is None:
            raise NotFoundError(f"Driver with ID {driver_id} not found")
        scope.ensure_access(driver.company_id)
        return driver

    def adjust_balance(
        self,
        driver_id: str,
        amount,
        payment_type,
        scope: Scope,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Driver:
        """
        Credit or debit a driver's balance.

        FINE and DAILY_RENT debit the balance (it may go negative);
        every other payment type credits it.

        Args:
            driver_id: Driver to adjust
            amount: Positive amount
            payment_type: PaymentType (or its value) recorded on the ledger entry
            scope: Caller scope
            description: Ledger description (defaults to "Balance <type>")
            created_by: Optional creator id

        Returns:
            Driver: Driver with the updated balance
        """
        value = _positive_amount(amount)
        try:
            payment_type = PaymentType(payment_type)
        except ValueError:
            raise ValidationError(f"Invalid payment type: {payment_type}")

        delta = -value if payment_type in DEBIT_PAYMENT_TYPES else value

        with self.session_manager.session_scope() as session:
            driver = self._load_driver(session, driver_id, scope)
            session.execute(
                update(Driver)
                .where(Driver.id == driver.id)
                .values(balance=Driver.balance + delta, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            session.add(Payment(
                company_id=driver.company_id,
                driver_id=driver.id,
                amount=value,
                type=payment_type.value,
                description=description or f"Balance {payment_type.value.lower()}",
                date=self.clock(),
                created_by_id=created_by,
            ))
            session.flush()
            session.refresh(driver)

        logger.info(f"Driver {driver_id} balance {delta:+} ({payment_type.value}) -> {driver.balance}")
        return driver

    def adjust_deposit(
        self,
        driver_id: str,
        amount,
        operation,
        scope: Scope,
        reason: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Driver:
        """
        Top up or deduct from a driver's deposit escrow.

        'add' is recorded as a PAYMENT entry, 'subtract' as a FINE entry.

        Raises:
            InsufficientDepositError: Subtraction would take the deposit below zero
        """
        value = _positive_amount(amount)
        try:
            operation = DepositOperation(operation)
        except ValueError:
            raise ValidationError(f"Invalid deposit operation: {operation}")

        with self.session_manager.session_scope() as session:
            driver = self._load_driver(session, driver_id, scope)

            if operation == DepositOperation.ADD:
                stmt = (
                    update(Driver)
                    .where(Driver.id == driver.id)
                    .values(deposit=Driver.deposit + value, updated_at=utcnow())
                )
                payment_type = PaymentType.PAYMENT
                description = reason or f"Deposit top-up: +{value}"
            else:
                stmt = (
                    update(Driver)
                    .where(Driver.id == driver.id, Driver.deposit >= value)
                    .values(deposit=Driver.deposit - value, updated_at=utcnow())
                )
                payment_type = PaymentType.FINE
                description = reason or f"Deposit deduction: -{value}"

            result = session.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount != 1:
                raise InsufficientDepositError('Insufficient deposit balance')

            session.add(Payment(
                company_id=driver.company_id,
                driver_id=driver.id,
                amount=value,
                type=payment_type.value,
                description=description,
                date=self.clock(),
                created_by_id=created_by,
            ))
            session.flush()
            session.refresh(driver)

        logger.info(f"Driver {driver_id} deposit {operation.value} {value} -> {driver.deposit}")
        return driver
