"""
SQL Server-specific strategy implementation.

Connects through pyodbc (`mssql+pyodbc`, ODBC Driver 18 or newer). pyodbc
reports Python types in `cursor.description`, so most columns bind directly.
New keys are returned by an `OUTPUT INSERTED.<pk>` clause. Paging uses
ROW_NUMBER() by default since OFFSET/FETCH needs SQL Server 2012 or later;
set `paging_style='offset_fetch'` on the options to use it instead.
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from minimapper.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from minimapper.options import DatabaseOptions

logger = logging.getLogger(__name__)

ODBC_DRIVER = 'ODBC Driver 18 for SQL Server'


@register_strategy('mssql')
class SQLServerStrategy(DatabaseStrategy):
    """SQL Server-specific operations"""

    marker_style = 'qmark'
    paging_style = 'row_number'

    @property
    def dialect_name(self) -> str:
        return 'mssql'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQL Server."""
        query = {'driver': ODBC_DRIVER, 'TrustServerCertificate': 'yes'}
        if options.appname:
            query['APP'] = options.appname

        return sa.URL.create(
            drivername='mssql+pyodbc',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        if options.timeout:
            return {'connect_args': {'timeout': options.timeout}}
        return {}

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database']

    def build_insert_sql(self, table: str, columns: list[str], markers: list[str],
                         primary_key: str | None) -> str:
        """INSERT with an OUTPUT clause returning the generated key."""
        if primary_key is None:
            return super().build_insert_sql(table, columns, markers, primary_key)
        output = f'OUTPUT INSERTED.{primary_key}'
        if not columns:
            return f'INSERT INTO {table} {output} DEFAULT VALUES'
        return f"INSERT INTO {table} ({','.join(columns)}) {output} VALUES ({','.join(markers)})"
