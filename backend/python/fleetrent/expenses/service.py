"""
Fleet expenses.

Company-paid expenses feed the EXPENSE_SUMMARY metric and the profit figures
of the daily and monthly analytics runs.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select

from ..common.data_utils import ZERO, sum_money
from ..common.date_utils import (
    DEFAULT_TIMEZONE, local_day_bounds, local_range_bounds, local_today, to_local, utcnow,
)
from ..common.exceptions import NotFoundError, ValidationError
from ..common.models import Driver, Expense, ExpensePayer, Vehicle
from ..common.scope import Scope
from ..common.session import SessionManager
from .schemas import CreateExpenseRequest, ExpenseFilters

logger = logging.getLogger(__name__)

SUMMARY_DEFAULT_DAYS = 30


@dataclass
class ExpensePage:
    expenses: List[Expense]
    total: int
    page: int
    limit: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'expenses': [expense.to_dict() for expense in self.expenses],
            'meta': {
                'page': self.page,
                'limit': self.limit,
                'total': self.total,
                'total_pages': math.ceil(self.total / self.limit) if self.limit else 0,
            },
        }


class ExpenseService:
    """Scoped create, list, summary and delete for expenses."""

    def __init__(
        self,
        session_manager: SessionManager,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_manager = session_manager
        self.timezone = timezone
        self.clock = clock

    def create(self, request: CreateExpenseRequest, scope: Scope) -> Expense:
        """
        Record an expense for the scope's company.

        A given date is stored as the start of that local day; without one
        the expense is dated now.

        Raises:
            NotFoundError: Unknown vehicle or driver
            ValidationError: Vehicle or driver of another company
        """
        company_id = scope.resolve_company(request.company_id)

        with self.session_manager.session_scope() as session:
            for model, record_id, label in ((Vehicle, request.vehicle_id, 'Vehicle'),
                                            (Driver, request.driver_id, 'Driver')):
                if not record_id:
                    continue
                record = session.get(model, record_id)
                if record is None:
                    raise NotFoundError(f"{label} not found")
                if record.company_id != company_id:
                    raise ValidationError(f"{label} does not belong to this company")

            expense = Expense(
                company_id=company_id,
                vehicle_id=request.vehicle_id,
                driver_id=request.driver_id,
                type=request.type.value,
                category=request.category,
                amount=request.amount,
                description=request.description,
                paid_by=request.paid_by.value,
                date=local_day_bounds(request.date, self.timezone)[0] if request.date else self.clock(),
            )
            session.add(expense)
            session.flush()

        logger.info(
            f"Expense {expense.id} recorded: {expense.type}/{expense.category} "
            f"{expense.amount} paid by {expense.paid_by}"
        )
        return expense

    def list(self, scope: Scope, filters: Optional[ExpenseFilters] = None) -> ExpensePage:
        """Expenses visible to the scope, newest first, one page at a time."""
        filters = filters or ExpenseFilters()
        conditions = []
        company_id = scope.filter_company(filters.company_id)
        if company_id:
            conditions.append(Expense.company_id == company_id)
        if filters.type:
            conditions.append(Expense.type == filters.type.value)
        if filters.category:
            conditions.append(Expense.category == filters.category)
        if filters.vehicle_id:
            conditions.append(Expense.vehicle_id == filters.vehicle_id)
        if filters.paid_by:
            conditions.append(Expense.paid_by == filters.paid_by.value)

        with self.session_manager.session_scope() as session:
            total = session.execute(select(func.count(Expense.id)).where(*conditions)).scalar_one()
            expenses = session.execute(
                select(Expense)
                .where(*conditions)
                .order_by(Expense.date.desc(), Expense.id)
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            ).scalars().all()

        return ExpensePage(expenses=expenses, total=total, page=filters.page, limit=filters.limit)

    def get_summary(self, scope: Scope, start: Optional[date] = None, end: Optional[date] = None,
                    company_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Company-paid expenses in the inclusive local date range [start, end].

        end defaults to today and start to SUMMARY_DEFAULT_DAYS before end.

        Returns:
            dict: total_amount, average_monthly_expense, by_type and
            by_category ({key: {amount, count}}), and monthly [{month, amount}]
        """
        end = end or local_today(self.timezone, self.clock())
        start = start or end - timedelta(days=SUMMARY_DEFAULT_DAYS)
        if start > end:
            raise ValidationError('start must not be after end')

        lower, upper = local_range_bounds(start, end + timedelta(days=1), self.timezone)
        conditions = [
            Expense.paid_by == ExpensePayer.COMPANY.value,
            Expense.date >= lower,
            Expense.date < upper,
        ]
        target_company = scope.filter_company(company_id)
        if target_company:
            conditions.append(Expense.company_id == target_company)

        with self.session_manager.session_scope() as session:
            by_type = session.execute(
                select(Expense.type, func.sum(Expense.amount), func.count(Expense.id))
                .where(*conditions).group_by(Expense.type)
            ).all()
            by_category = session.execute(
                select(Expense.category, func.sum(Expense.amount), func.count(Expense.id))
                .where(*conditions).group_by(Expense.category)
            ).all()
            dated = session.execute(
                select(Expense.date, Expense.amount).where(*conditions).order_by(Expense.date)
            ).all()

        monthly: Dict[str, Any] = {}
        for moment, amount in dated:
            month = to_local(moment, self.timezone).strftime('%Y-%m')
            monthly[month] = monthly.get(month, ZERO) + amount

        total = sum_money(amount for _, amount, _ in by_type)
        average = sum_money(monthly.values()) / len(monthly) if monthly else ZERO

        return {
            'start': start.isoformat(),
            'end': end.isoformat(),
            'total_amount': str(total),
            'average_monthly_expense': str(sum_money([average])),
            'by_type': {key: {'amount': str(sum_money([amount])), 'count': count}
                        for key, amount, count in by_type},
            'by_category': {key: {'amount': str(sum_money([amount])), 'count': count}
                            for key, amount, count in by_category},
            'monthly': [{'month': month, 'amount': str(sum_money([amount]))}
                        for month, amount in monthly.items()],
        }

    def remove(self, expense_id: str, scope: Scope) -> None:
        with self.session_manager.session_scope() as session:
            expense = session.get(Expense, expense_id)
            if expense is None:
                raise NotFoundError('Expense not found')
            scope.ensure_access(expense.company_id)
            session.delete(expense)

        logger.info(f"Expense {expense_id} deleted")
