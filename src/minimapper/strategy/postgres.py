"""
PostgreSQL-specific strategy implementation.

Uses psycopg through SQLAlchemy's `postgresql+psycopg` dialect. New keys are
read back with `INSERT ... RETURNING`, and result column types are resolved
from the type OIDs psycopg reports in `cursor.description`.
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from minimapper.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from minimapper.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    marker_style = 'format'
    paging_style = 'limit_offset'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for PostgreSQL."""
        query = {}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)
        if options.appname:
            query['application_name'] = options.appname

        return sa.URL.create(
            drivername='postgresql+psycopg',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def build_insert_sql(self, table: str, columns: list[str], markers: list[str],
                         primary_key: str | None) -> str:
        sql = super().build_insert_sql(table, columns, markers, primary_key)
        if primary_key is None:
            return sql
        return f'{sql} RETURNING {primary_key}'

    def fetch_insert_id(self, cursor: Any, primary_key: str) -> Any:
        row = cursor.fetchone()
        if row is None:
            logger.warning(f'INSERT ... RETURNING {primary_key} produced no row')
            return None
        return row[0]
