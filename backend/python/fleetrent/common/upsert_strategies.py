"""
Database-specific upsert strategies using the Strategy pattern.
Handles differences in upsert syntax across PostgreSQL and SQLite.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Type
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite

from .date_utils import utcnow


logger = logging.getLogger(__name__)


class UpsertStrategy(ABC):
    """Abstract base class for database-specific upsert strategies"""

    # Columns never overwritten on conflict
    EXCLUDED_UPDATE_COLUMNS = {'id', 'created_at'}

    @abstractmethod
    def _insert(self, model: Type):
        """Return the dialect-specific insert construct for model."""

    def upsert(
        self,
        session: Session,
        model: Type,
        values: Dict[str, Any],
        constraint_columns: List[str]
    ) -> None:
        """
        Upsert single record.

        Args:
            session: SQLAlchemy session
            model: SQLAlchemy model class
            values: Dictionary of attribute name -> value
            constraint_columns: Columns that determine uniqueness (for conflict resolution)
        """
        self.bulk_upsert(session, model, [values], constraint_columns)

    def bulk_upsert(
        self,
        session: Session,
        model: Type,
        values_list: List[Dict[str, Any]],
        constraint_columns: List[str]
    ) -> None:
        """
        Bulk upsert multiple records.

        Args:
            session: SQLAlchemy session
            model: SQLAlchemy model class
            values_list: List of dictionaries (each dict is one record)
            constraint_columns: Columns that determine uniqueness
        """
        if not values_list:
            return

        stmt = self._insert(model).values(values_list)

        # ON CONFLICT ... DO UPDATE SET col = EXCLUDED.col
        excluded_cols = set(constraint_columns) | self.EXCLUDED_UPDATE_COLUMNS
        update_dict = {
            k: stmt.excluded[k]
            for k in values_list[0].keys()
            if k not in excluded_cols
        }
        if 'updated_at' in model.__table__.columns:
            update_dict['updated_at'] = utcnow()

        stmt = stmt.on_conflict_do_update(
            index_elements=constraint_columns,
            set_=update_dict
        )

        session.execute(stmt)
        logger.debug(f"{self.__class__.__name__}: {len(values_list)} records into {model.__tablename__}")


class PostgreSQLUpsertStrategy(UpsertStrategy):
    """
    PostgreSQL upsert using ON CONFLICT ... DO UPDATE.

    Syntax:
        INSERT INTO table (col1, col2) VALUES (:val1, :val2)
        ON CONFLICT (col1) DO UPDATE SET col2 = EXCLUDED.col2
    """

    def _insert(self, model: Type):
        return postgresql.insert(model)


class SQLiteUpsertStrategy(UpsertStrategy):
    """SQLite (3.24+) upsert, same ON CONFLICT syntax as PostgreSQL."""

    def _insert(self, model: Type):
        return sqlite.insert(model)


class UpsertFactory:
    """Factory for creating database-specific upsert strategies"""

    _strategies = {
        'postgresql': PostgreSQLUpsertStrategy,
        'sqlite': SQLiteUpsertStrategy,
    }

    @classmethod
    def get_strategy(cls, dialect_name: str) -> UpsertStrategy:
        """
        Get upsert strategy for a SQLAlchemy dialect.

        Args:
            dialect_name: Dialect name (engine.dialect.name)

        Returns:
            UpsertStrategy: Strategy instance

        Raises:
            ValueError: If the dialect has no upsert strategy
        """
        strategy_class = cls._strategies.get(dialect_name)
        if not strategy_class:
            raise ValueError(
                f"Unsupported database dialect for upsert: {dialect_name}. "
                f"Supported: {', '.join(cls._strategies)}"
            )
        return strategy_class()
