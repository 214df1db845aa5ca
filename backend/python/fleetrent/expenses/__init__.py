"""Fleet expenses feeding the analytics runs."""

from .schemas import CreateExpenseRequest, ExpenseFilters
from .service import ExpensePage, ExpenseService

__all__ = ['ExpenseService', 'ExpensePage', 'CreateExpenseRequest', 'ExpenseFilters']
