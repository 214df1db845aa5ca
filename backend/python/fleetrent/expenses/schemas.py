"""
Request objects for fleet expenses.

Both accept snake_case keys and the camelCase keys sent by the dashboard.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from ..common.data_utils import convert_to_date, to_money
from ..common.exceptions import ValidationError
from ..common.models import ExpensePayer, ExpenseType


def _pick(data: Dict[str, Any], key: str, alias: str, default: Any = None) -> Any:
    if key in data:
        return data[key]
    return data.get(alias, default)


def _enum(enum_cls, raw, field_name: str):
    if raw in (None, ''):
        return None
    try:
        return enum_cls(str(raw).upper())
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {raw}")


@dataclass
class CreateExpenseRequest:
    type: ExpenseType
    category: str
    amount: Decimal
    description: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    paid_by: ExpensePayer = ExpensePayer.COMPANY
    date: Optional[date] = None
    company_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreateExpenseRequest':
        """
        Parse and validate a create-expense payload.

        Raises:
            ValidationError: Missing type or category, non-positive amount, bad enum or date
        """
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')

        expense_type = _enum(ExpenseType, data.get('type'), 'expense type')
        if expense_type is None:
            raise ValidationError('type is required')

        category = data.get('category')
        if not category or not isinstance(category, str):
            raise ValidationError('category is required')

        amount = to_money(data.get('amount'))
        if amount <= 0:
            raise ValidationError('amount must be positive')

        return cls(
            type=expense_type,
            category=category,
            amount=amount,
            description=data.get('description'),
            vehicle_id=_pick(data, 'vehicle_id', 'vehicleId'),
            driver_id=_pick(data, 'driver_id', 'driverId'),
            paid_by=_enum(ExpensePayer, _pick(data, 'paid_by', 'paidBy'), 'payer') or ExpensePayer.COMPANY,
            date=convert_to_date(data.get('date'), 'date'),
            company_id=_pick(data, 'company_id', 'companyId'),
        )


@dataclass
class ExpenseFilters:
    """Optional narrowing and paging for expense listings."""
    type: Optional[ExpenseType] = None
    category: Optional[str] = None
    vehicle_id: Optional[str] = None
    paid_by: Optional[ExpensePayer] = None
    company_id: Optional[str] = None
    page: int = 1
    limit: int = 20

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExpenseFilters':
        try:
            page = int(data.get('page') or 1)
            limit = int(data.get('limit') or 20)
        except (TypeError, ValueError):
            raise ValidationError('page and limit must be integers')
        if page < 1 or not 1 <= limit <= 100:
            raise ValidationError('page must be >= 1 and limit between 1 and 100')

        return cls(
            type=_enum(ExpenseType, data.get('type'), 'expense type'),
            category=data.get('category') or None,
            vehicle_id=_pick(data, 'vehicle_id', 'vehicleId') or None,
            paid_by=_enum(ExpensePayer, _pick(data, 'paid_by', 'paidBy'), 'payer'),
            company_id=_pick(data, 'company_id', 'companyId') or None,
            page=page,
            limit=limit,
        )
