"""Analytics Recalculation Engine and cached metric store."""

from .engine import AnalyticsEngine, AnalyticsRunResult
from .store import COMPANY_WIDE, MetricStore

__all__ = ['AnalyticsEngine', 'AnalyticsRunResult', 'MetricStore', 'COMPANY_WIDE']
