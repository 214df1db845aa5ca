"""Billing Engine and debt/ledger queries."""

from .engine import BillingEngine, BillingStats
from .queries import BillingQueries, DebtorRecord, TodayBillingStats

__all__ = ['BillingEngine', 'BillingStats', 'BillingQueries', 'DebtorRecord', 'TodayBillingStats']
