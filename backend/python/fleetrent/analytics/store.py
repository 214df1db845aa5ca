"""
Cached metric store.

Metric rows are keyed by (company_id, metric_type, date, entity_id) and
written with a dialect-specific upsert, so recomputing a key overwrites
the previous value.
"""

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..common.date_utils import utcnow
from ..common.exceptions import ValidationError
from ..common.models import ANALYTICS_KEY_COLUMNS, Analytics, MetricType, new_id
from ..common.scope import Scope
from ..common.session import SessionManager
from ..common.upsert_strategies import UpsertFactory

logger = logging.getLogger(__name__)

# Company-wide metrics use an empty entity id
COMPANY_WIDE = ''

VALUE_PLACES = Decimal('0.0001')


class MetricStore:
    """Upserts and reads cached analytics rows."""

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager
        self.upsert = UpsertFactory.get_strategy(session_manager.dialect_name)

    def save_metric(
        self,
        session: Session,
        company_id: str,
        metric_type: MetricType,
        day: date,
        value,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Insert or overwrite one metric row inside the caller's transaction.

        Args:
            session: Open session
            company_id: Owning company
            metric_type: Metric kind
            day: Metric date
            value: Numeric value (stored with 4 decimal places)
            entity_id: Driver/vehicle id, or None for a company-wide metric
            metadata: Optional JSON details
        """
        now = utcnow()
        self.upsert.upsert(
            session,
            Analytics,
            {
                'id': new_id(),
                'company_id': company_id,
                'metric_type': MetricType(metric_type).value,
                'date': day,
                'entity_id': entity_id or COMPANY_WIDE,
                'value': Decimal(str(value)).quantize(VALUE_PLACES, rounding=ROUND_HALF_UP),
                'details': metadata,
                'created_at': now,
                'updated_at': now,
            },
            ANALYTICS_KEY_COLUMNS,
        )

    def delete_before(self, cutoff: date) -> int:
        """Delete every metric row dated before cutoff. Returns the row count."""
        with self.session_manager.session_scope() as session:
            result = session.execute(delete(Analytics).where(Analytics.date < cutoff))
            return result.rowcount

    def get_cached_metrics(
        self,
        scope: Scope,
        metric_type,
        start: date,
        end: date,
        entity_id: Optional[str] = None,
        company_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Read cached metrics in the inclusive date range [start, end].

        Args:
            scope: Caller scope
            metric_type: MetricType or its value
            start: First date
            end: Last date
            entity_id: Optional driver/vehicle id; '' selects company-wide rows
            company_id: Optional company to narrow an unrestricted scope

        Returns:
            list: Metric rows as dicts, oldest first
        """
        try:
            metric_type = MetricType(metric_type)
        except ValueError:
            raise ValidationError(f"Invalid metric type: {metric_type}")
        if start > end:
            raise ValidationError('start must not be after end')

        stmt = (
            select(Analytics)
            .where(
                Analytics.metric_type == metric_type.value,
                Analytics.date >= start,
                Analytics.date <= end,
            )
            .order_by(Analytics.date, Analytics.entity_id)
        )
        target_company = scope.filter_company(company_id)
        if target_company:
            stmt = stmt.where(Analytics.company_id == target_company)
        if entity_id is not None:
            stmt = stmt.where(Analytics.entity_id == entity_id)

        with self.session_manager.session_scope() as session:
            rows = session.execute(stmt).scalars().all()
            return [row.to_dict() for row in rows]

    def get_latest_metric(
        self,
        scope: Scope,
        metric_type,
        entity_id: Optional[str] = None,
        company_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Most recent row of one metric for one company, or None if nothing is cached."""
        try:
            metric_type = MetricType(metric_type)
        except ValueError:
            raise ValidationError(f"Invalid metric type: {metric_type}")
        target_company = scope.resolve_company(company_id)

        stmt = (
            select(Analytics)
            .where(
                Analytics.company_id == target_company,
                Analytics.metric_type == metric_type.value,
            )
            .order_by(Analytics.date.desc())
            .limit(1)
        )
        if entity_id is not None:
            stmt = stmt.where(Analytics.entity_id == entity_id)

        with self.session_manager.session_scope() as session:
            row = session.execute(stmt).scalars().first()
            return row.to_dict() if row else None
