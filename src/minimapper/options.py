"""
Connection and mapping options.
"""
import os
import sys
from dataclasses import dataclass, fields
from typing import Any

from minimapper.paging import PAGING_STYLES
from minimapper.strategy import get_available_dialects, get_strategy_class
from minimapper.strategy import is_supported_dialect

__all__ = ['DatabaseOptions']


def scriptname() -> str | None:
    """Name of the running script without extension, if any."""
    if not sys.argv or not sys.argv[0]:
        return None
    name = os.path.splitext(os.path.basename(sys.argv[0]))[0]
    return name or None


@dataclass
class DatabaseOptions:
    """Options

    supported driver names: `postgresql`, `sqlite`, `mssql`, `oracle`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Mapping options:
    - force_datetimes_to_utc: Stamp naive datetimes read into `datetime`
      members as UTC (default: True)
    - enable_auto_select: Complete queries that do not start with SELECT
      from the entity's metadata (default: True)
    - paging_style: 'row_number', 'offset_fetch' or 'limit_offset'
      (default: the dialect's choice)
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    # Mapping parameters
    force_datetimes_to_utc: bool = True
    enable_auto_select: bool = True
    paging_style: str = None

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        if self.paging_style is not None and self.paging_style not in PAGING_STYLES:
            raise ValueError(f'paging_style must be one of: {list(PAGING_STYLES)}')
        self.appname = self.appname or scriptname() or 'python_console'
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)

    @classmethod
    def from_dict(cls, values: dict[str, Any], **overrides: Any) -> 'DatabaseOptions':
        """Build options from a mapping, ignoring keys that are not options."""
        names = {f.name for f in fields(cls)}
        merged = {**values, **overrides}
        return cls(**{k: v for k, v in merged.items() if k in names})

