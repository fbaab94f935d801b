"""
SQLite-specific strategy implementation.

SQLite reports no column types in `cursor.description`, so values are
inspected as rows arrive. Dates and datetimes are stored as ISO 8601 text and
parsed back through converters registered for the `date`, `datetime` and
`timestamp` declared types. The key of a new row is `cursor.lastrowid`.
"""
import datetime
import decimal
import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from minimapper.strategy.base import DatabaseStrategy, register_strategy
from minimapper.types import adapt_date, adapt_decimal, convert_date
from minimapper.types import convert_datetime

if TYPE_CHECKING:
    from minimapper.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    marker_style = 'qmark'
    paging_style = 'limit_offset'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        connect_args: dict[str, Any] = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
        }
        if options.timeout:
            connect_args['timeout'] = options.timeout
        return {'connect_args': connect_args}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def configure_connection(self, raw_conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        raw_conn.execute('PRAGMA foreign_keys = ON')
        super().configure_connection(raw_conn)

    def register_type_adapters(self, raw_conn: Any) -> None:
        """Register adapters and converters for SQLite.

        SQLite needs adapters to handle complex types like dict and list,
        and converters to handle date/datetime coming from the database.
        """
        # Adapters (Python -> SQLite)
        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)
        sqlite3.register_adapter(datetime.date, adapt_date)
        sqlite3.register_adapter(datetime.datetime, adapt_date)
        sqlite3.register_adapter(decimal.Decimal, adapt_decimal)

        # Converters (SQLite -> Python)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        sqlite3.register_converter('timestamp', convert_datetime)

    def enable_autocommit(self, raw_conn: Any) -> None:
        """Enable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = None

    def disable_autocommit(self, raw_conn: Any) -> None:
        """Disable auto-commit mode for SQLite.
        """
        raw_conn.isolation_level = 'DEFERRED'

    def fetch_insert_id(self, cursor: Any, primary_key: str) -> Any:
        return cursor.lastrowid
