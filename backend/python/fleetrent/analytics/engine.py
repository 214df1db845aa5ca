"""
Analytics Recalculation Engine.

Folds ledger, contract and expense data into cached metric rows:
- daily:   revenue, expenses, fleet utilization, driver and vehicle KPIs (prior day)
- weekly:  fleet efficiency (average daily utilization over the window)
- monthly: revenue and profit for the prior calendar month
- cleanup: deletes cached rows older than the retention window
- recalculate: daily metrics of one company over a date range, on demand

Every run accepts an explicit as_of date so past periods can be recomputed.
Recomputing a period overwrites its rows.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..common.config import AnalyticsConfig
from ..common.data_utils import ZERO, decimal_to_float, sum_money
from ..common.date_utils import (
    get_previous_month_range, local_range_bounds, local_today, utcnow, years_before,
)
from ..common.events import (
    AnalyticsCompletedEvent, AnalyticsFailedEvent,
    analytics_daily_completed, analytics_daily_failed, emit,
)
from ..common.exceptions import NotFoundError, ValidationError
from ..common.models import (
    INCOME_PAYMENT_TYPES, Analytics, Company, Contract, ContractStatus, Driver,
    Expense, ExpensePayer, MetricType, Payment, PaymentStatus, Vehicle, VehicleStatus,
)
from ..common.session import SessionManager
from .store import COMPANY_WIDE, MetricStore

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsRunResult:
    period: str
    start: date
    end: date
    companies_processed: int = 0
    metrics_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'period': self.period,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'companies_processed': self.companies_processed,
            'metrics_written': self.metrics_written,
        }


class AnalyticsEngine:
    """Periodic metric recalculation for every company."""

    def __init__(
        self,
        session_manager: SessionManager,
        config: Optional[AnalyticsConfig] = None,
        store: Optional[MetricStore] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_manager = session_manager
        self.config = config or AnalyticsConfig()
        self.store = store or MetricStore(session_manager)
        self.clock = clock

    def _as_of(self, as_of: Optional[date]) -> date:
        return as_of or local_today(self.config.timezone, self.clock())

    def _company_ids(self) -> List[str]:
        with self.session_manager.session_scope() as session:
            return list(session.execute(select(Company.id).order_by(Company.id)).scalars().all())

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_daily(self, as_of: Optional[date] = None) -> AnalyticsRunResult:
        """
        Compute daily metrics for the day before as_of (default: today).

        Emits analytics.daily.completed on success, analytics.daily.failed
        (then re-raises) on error.
        """
        day = self._as_of(as_of) - timedelta(days=1)
        result = AnalyticsRunResult(period='daily', start=day, end=day)
        logger.info(f"Starting daily metrics calculation for {day}")

        try:
            for company_id in self._company_ids():
                with self.session_manager.session_scope() as session:
                    result.metrics_written += self.compute_company_daily(session, company_id, day)
                result.companies_processed += 1
        except Exception as e:
            logger.exception(f"Error calculating daily metrics: {e}")
            emit(analytics_daily_failed, self, AnalyticsFailedEvent(error=str(e)))
            raise

        logger.info(
            f"Daily metrics calculated for {result.companies_processed} companies "
            f"({result.metrics_written} rows)"
        )
        emit(analytics_daily_completed, self, AnalyticsCompletedEvent(
            companies_processed=result.companies_processed,
        ))
        return result

    def run_weekly(self, as_of: Optional[date] = None) -> AnalyticsRunResult:
        """FLEET_EFFICIENCY over the window ending at as_of, stored at the window start."""
        end = self._as_of(as_of)
        start = end - timedelta(days=self.config.weekly_window_days)
        result = AnalyticsRunResult(period='weekly', start=start, end=end)
        logger.info(f"Starting weekly KPI calculation for {start} .. {end}")

        for company_id in self._company_ids():
            with self.session_manager.session_scope() as session:
                result.metrics_written += self.compute_company_weekly(session, company_id, start, end)
            result.companies_processed += 1

        logger.info(f"Weekly KPIs calculated for {result.companies_processed} companies")
        return result

    def run_monthly(self, as_of: Optional[date] = None) -> AnalyticsRunResult:
        """MONTHLY_REVENUE for the calendar month before as_of."""
        start, end = get_previous_month_range(self._as_of(as_of))
        result = AnalyticsRunResult(period='monthly', start=start, end=end - timedelta(days=1))
        logger.info(f"Starting monthly metrics calculation for {start:%Y-%m}")

        for company_id in self._company_ids():
            with self.session_manager.session_scope() as session:
                result.metrics_written += self.compute_company_monthly(session, company_id, start, end)
            result.companies_processed += 1

        logger.info(f"Monthly metrics calculated for {result.companies_processed} companies")
        return result

    def recalculate(self, company_id: str, start: date, end: date) -> AnalyticsRunResult:
        """
        Recompute the daily metrics of one company for every day in [start, end].

        Each day is written in its own transaction, so a failure keeps the
        days already recomputed.

        Raises:
            NotFoundError: Unknown company
            ValidationError: start after end or a range over max_recalculate_days
        """
        if start > end:
            raise ValidationError('start must not be after end')
        span = (end - start).days + 1
        if span > self.config.max_recalculate_days:
            raise ValidationError(f"Cannot recalculate more than {self.config.max_recalculate_days} days at once")

        with self.session_manager.session_scope() as session:
            if session.get(Company, company_id) is None:
                raise NotFoundError(f"Company with ID {company_id} not found")

        result = AnalyticsRunResult(period='recalculate', start=start, end=end, companies_processed=1)
        logger.info(f"Recalculating metrics for company {company_id} from {start} to {end}")
        for offset in range(span):
            with self.session_manager.session_scope() as session:
                result.metrics_written += self.compute_company_daily(session, company_id, start + timedelta(days=offset))

        logger.info(f"Metrics recalculated for company {company_id} ({result.metrics_written} rows)")
        return result

    def cleanup_old_metrics(self, as_of: Optional[date] = None) -> int:
        """Delete cached rows older than retention_years before as_of."""
        cutoff = years_before(self._as_of(as_of), self.config.retention_years)
        deleted = self.store.delete_before(cutoff)
        logger.info(f"Cleaned up {deleted} old metric records (before {cutoff})")
        return deleted

    # ------------------------------------------------------------------
    # Per-company computations (run inside the caller's transaction)
    # ------------------------------------------------------------------

    def compute_company_daily(self, session: Session, company_id: str, day: date) -> int:
        """Write the daily metric rows for one company. Returns the number of rows written."""
        next_day = day + timedelta(days=1)
        revenue = self._revenue(session, company_id, day, next_day)
        expenses = self._expenses(session, company_id, day, next_day)
        utilization = self._fleet_utilization(session, company_id, day)

        self.store.save_metric(session, company_id, MetricType.DAILY_REVENUE, day, revenue, metadata={
            'expenses': decimal_to_float(expenses),
            'profit': decimal_to_float(revenue - expenses),
        })
        self.store.save_metric(session, company_id, MetricType.VEHICLE_UTILIZATION, day, utilization)
        self.store.save_metric(session, company_id, MetricType.EXPENSE_SUMMARY, day, expenses)
        written = 3

        for driver_id, driver_revenue in self._driver_revenue(session, company_id, day, next_day).items():
            if driver_revenue > 0:
                self.store.save_metric(session, company_id, MetricType.DRIVER_KPI, day,
                                       driver_revenue, entity_id=driver_id)
                written += 1

        for vehicle_id, (daily_revenue, active_contracts) in self._vehicle_activity(session, company_id, day).items():
            self.store.save_metric(
                session, company_id, MetricType.VEHICLE_UTILIZATION, day,
                100 if active_contracts else 0,
                entity_id=vehicle_id,
                metadata={
                    'daily_revenue': decimal_to_float(daily_revenue),
                    'active_contracts': active_contracts,
                },
            )
            written += 1

        return written

    def compute_company_weekly(self, session: Session, company_id: str, start: date, end: date) -> int:
        average = self._average_utilization(session, company_id, start, end)
        weekly_revenue = self._revenue(session, company_id, start, end)
        self.store.save_metric(session, company_id, MetricType.FLEET_EFFICIENCY, start, average, metadata={
            'weekly_revenue': decimal_to_float(weekly_revenue),
            'period': 'weekly',
        })
        return 1

    def compute_company_monthly(self, session: Session, company_id: str, start: date, end: date) -> int:
        revenue = self._revenue(session, company_id, start, end)
        expenses = self._expenses(session, company_id, start, end)
        self.store.save_metric(session, company_id, MetricType.MONTHLY_REVENUE, start, revenue, metadata={
            'expenses': decimal_to_float(expenses),
            'profit': decimal_to_float(revenue - expenses),
            'period': 'monthly',
        })
        return 1

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    def _bounds(self, start: date, end: date):
        return local_range_bounds(start, end, self.config.timezone)

    def _revenue(self, session: Session, company_id: str, start: date, end: date) -> Decimal:
        """Successful income entries (PAYMENT, DAILY_RENT) dated in [start, end)."""
        lower, upper = self._bounds(start, end)
        total = session.execute(
            select(func.sum(Payment.amount)).where(
                Payment.company_id == company_id,
                Payment.type.in_(INCOME_PAYMENT_TYPES),
                Payment.status == PaymentStatus.SUCCESS.value,
                Payment.date >= lower,
                Payment.date < upper,
            )
        ).scalar()
        return sum_money([total])

    def _expenses(self, session: Session, company_id: str, start: date, end: date) -> Decimal:
        """Company-borne expenses dated in [start, end)."""
        lower, upper = self._bounds(start, end)
        total = session.execute(
            select(func.sum(Expense.amount)).where(
                Expense.company_id == company_id,
                Expense.paid_by == ExpensePayer.COMPANY.value,
                Expense.date >= lower,
                Expense.date < upper,
            )
        ).scalar()
        return sum_money([total])

    def _fleet_utilization(self, session: Session, company_id: str, day: date) -> Decimal:
        """Active contracts covering day as a percentage of non-inactive vehicles."""
        total_vehicles = session.execute(
            select(func.count(Vehicle.id)).where(
                Vehicle.company_id == company_id,
                Vehicle.status != VehicleStatus.INACTIVE.value,
            )
        ).scalar_one()
        if not total_vehicles:
            return ZERO

        active_contracts = session.execute(
            select(func.count(Contract.id)).where(
                Contract.company_id == company_id,
                Contract.status == ContractStatus.ACTIVE.value,
                Contract.start_date <= day,
                or_(Contract.end_date.is_(None), Contract.end_date >= day),
            )
        ).scalar_one()
        return Decimal(active_contracts) * 100 / Decimal(total_vehicles)

    def _driver_revenue(self, session: Session, company_id: str, start: date, end: date) -> Dict[str, Decimal]:
        lower, upper = self._bounds(start, end)
        rows = session.execute(
            select(Payment.driver_id, func.sum(Payment.amount))
            .join(Driver, Payment.driver_id == Driver.id)
            .where(
                Driver.company_id == company_id,
                Payment.type.in_(INCOME_PAYMENT_TYPES),
                Payment.status == PaymentStatus.SUCCESS.value,
                Payment.date >= lower,
                Payment.date < upper,
            )
            .group_by(Payment.driver_id)
        ).all()
        return {driver_id: sum_money([amount]) for driver_id, amount in rows}

    def _vehicle_activity(self, session: Session, company_id: str, day: date) -> Dict[str, tuple]:
        """Per vehicle: (sum of daily rates, number of contracts covering day)."""
        activity = {
            vehicle_id: (ZERO, 0)
            for vehicle_id in session.execute(
                select(Vehicle.id).where(Vehicle.company_id == company_id)
            ).scalars().all()
        }
        rows = session.execute(
            select(Contract.vehicle_id, Contract.daily_rate).where(
                Contract.company_id == company_id,
                Contract.start_date <= day,
                or_(Contract.end_date.is_(None), Contract.end_date >= day),
            )
        ).all()
        for vehicle_id, daily_rate in rows:
            if vehicle_id in activity:
                revenue, count = activity[vehicle_id]
                activity[vehicle_id] = (revenue + daily_rate, count + 1)
        return activity

    def _average_utilization(self, session: Session, company_id: str, start: date, end: date) -> Decimal:
        """Mean of company-wide VEHICLE_UTILIZATION rows dated in [start, end]."""
        values = session.execute(
            select(Analytics.value).where(
                Analytics.company_id == company_id,
                Analytics.metric_type == MetricType.VEHICLE_UTILIZATION.value,
                Analytics.entity_id == COMPANY_WIDE,
                Analytics.date >= start,
                Analytics.date <= end,
            )
        ).scalars().all()
        if not values:
            return ZERO
        return sum(Decimal(v) for v in values) / len(values)
