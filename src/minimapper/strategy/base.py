"""
Base strategy interface for dialect-specific behavior.

A strategy encapsulates everything the mapper needs to know about one
backend: how to reach it through SQLAlchemy, how its driver spells parameter
markers, how it pages results and how it reports the key of a new row. The
rest of the package talks to every backend through this interface.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

if TYPE_CHECKING:
    from minimapper.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('postgresql')
        class PostgresStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    #: Native parameter marker style, see `minimapper.sql.MARKER_STYLES`
    marker_style: str = 'format'

    #: Default paging rewrite, see `minimapper.paging.PAGING_STYLES`
    paging_style: str = 'limit_offset'

    #: New keys come from a sequence fetched before the INSERT
    uses_sequences: bool = False

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'postgresql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            URL suitable for `sqlalchemy.create_engine`
        """

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect."""
        return {}

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.

        Returns
            List of field names that must have non-None/non-zero values
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Args:
            options: DatabaseOptions to validate

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def configure_connection(self, raw_conn: Any) -> None:
        """Prepare a freshly opened driver connection.

        The mapper runs in auto-commit mode outside explicit transactions.
        """
        self.register_type_adapters(raw_conn)
        self.enable_autocommit(raw_conn)

    def register_type_adapters(self, raw_conn: Any) -> None:
        """Register dialect-specific type adapters. No-op by default."""

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode on a raw DBAPI connection."""
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode on a raw DBAPI connection."""
        raw_conn.autocommit = False

    # Identity retrieval

    def sequence_nextval_sql(self, sequence: str) -> str:
        """SQL fetching the next value of `sequence` before an insert.

        Only implemented by backends with `uses_sequences` set.
        """
        raise NotImplementedError(f'{self.dialect_name} does not key rows from sequences')

    def build_insert_sql(self, table: str, columns: list[str], markers: list[str],
                         primary_key: str | None) -> str:
        """INSERT statement that, when executed, makes the new key available.

        Args:
            table: Target table
            columns: Column names, in the order of `markers`
            markers: Neutral `@N` markers for the values
            primary_key: Generated key column, or None when no key is expected

        Returns
            Neutral SQL text
        """
        if not columns:
            return f'INSERT INTO {table} DEFAULT VALUES'
        return f"INSERT INTO {table} ({','.join(columns)}) VALUES ({','.join(markers)})"

    def fetch_insert_id(self, cursor: Any, primary_key: str) -> Any:
        """Read the generated key after executing `build_insert_sql`."""
        row = cursor.fetchone()
        return row[0] if row else None
