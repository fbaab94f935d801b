"""
Oracle-specific strategy implementation.

Connects through python-oracledb (`oracle+oracledb`) with numeric `:1`
markers. Oracle has no LIMIT, so pages are cut with ROW_NUMBER(), and
generated keys come from a sequence whose next value is fetched before the
INSERT and bound as the key column.
"""
import logging
from typing import TYPE_CHECKING

import sqlalchemy as sa

from minimapper.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from minimapper.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('oracle')
class OracleStrategy(DatabaseStrategy):
    """Oracle-specific operations"""

    marker_style = 'numeric'
    paging_style = 'row_number'
    uses_sequences = True

    @property
    def dialect_name(self) -> str:
        return 'oracle'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for Oracle.

        `database` is used as the service name.
        """
        return sa.URL.create(
            drivername='oracle+oracledb',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port or None,
            query={'service_name': options.database},
        )

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database']

    def sequence_nextval_sql(self, sequence: str) -> str:
        return f'SELECT {sequence}.nextval FROM dual'
