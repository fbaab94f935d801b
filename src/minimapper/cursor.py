"""
Cursor wrapper around a DB-API 2.0 cursor.

Adds statement logging and timing and parameter normalization. Result sets
are read in chunks through `rows()`, which the query loop iterates. The
row-wise interface (`advance`, `value`, `is_null`) is for callers that want
to step through a result set column by column.
"""
import logging
import time
from collections.abc import Iterator, Sequence
from functools import wraps
from typing import Any

from minimapper.types import TypeConverter

logger = logging.getLogger(__name__)

DEFAULT_ARRAYSIZE = 5000


def dumpsql(func):
    """Decorator for logging SQL queries and parameters."""
    @wraps(func)
    def wrapper(self, operation: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{operation}\nargs: {args}')
        try:
            result = func(self, operation, *args, **kwargs)
            if hasattr(self.dbapi_cursor, 'statusmessage'):
                logger.debug(f'Query result: {self.dbapi_cursor.statusmessage}')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{operation}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            if self.database is not None:
                self.database.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def IterChunk(cursor: Any, size: int = DEFAULT_ARRAYSIZE) -> Iterator[tuple]:
    """Iterate through cursor results in chunks."""
    while True:
        chunked = cursor.fetchmany(size)
        if not chunked:
            break
        yield from chunked


class Cursor:
    """DB-API cursor with logging and row-wise access.

    Examples
        with db.cursor() as cur:
            cur.execute('select id, name from person where id > ?', [10])
            while cur.advance():
                print(cur.value(0), cur.is_null(1))
    """

    def __init__(self, cursor: Any, database: Any = None,
                 arraysize: int = DEFAULT_ARRAYSIZE) -> None:
        """Initialize cursor wrapper.

        Args:
            cursor: The underlying database cursor
            database: Owner collecting call statistics (anything with `addcall`)
            arraysize: Rows fetched per round trip when iterating
        """
        self.dbapi_cursor = cursor
        self.database = database
        self.arraysize = arraysize
        self._current: Sequence | None = None

    def __enter__(self) -> 'Cursor':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __getattr__(self, name: str) -> Any:
        """Delegate members to underlying cursor."""
        return getattr(self.dbapi_cursor, name)

    def __iter__(self) -> Iterator:
        return self.rows()

    @property
    def description(self) -> list[tuple] | None:
        """Column descriptions for last query."""
        return self.dbapi_cursor.description

    @property
    def rowcount(self) -> int:
        """Number of rows produced/affected by last operation."""
        return self.dbapi_cursor.rowcount

    def close(self) -> None:
        """Close cursor."""
        self._current = None
        self.dbapi_cursor.close()

    @dumpsql
    def execute(self, operation: str, args: Sequence | None = None) -> int:
        """Execute native SQL with positional arguments.

        NumPy/Pandas scalars, enums and UUIDs are converted to values every
        driver can bind. Pass an empty list rather than None for statements
        without arguments whose text was rendered for the `format` style, so
        escaped `%%` is unescaped by the driver.
        """
        self._current = None
        if args is not None:
            self.dbapi_cursor.execute(operation, TypeConverter.convert_params(list(args)))
        else:
            self.dbapi_cursor.execute(operation)
        return self.dbapi_cursor.rowcount

    def fetchone(self) -> tuple | None:
        """Fetch next row."""
        return self.dbapi_cursor.fetchone()

    def fetchmany(self, size: int | None = None) -> list[tuple]:
        """Fetch next set of rows."""
        return self.dbapi_cursor.fetchmany(size or self.arraysize)

    def fetchall(self) -> list[tuple]:
        """Fetch all remaining rows."""
        return self.dbapi_cursor.fetchall()

    def rows(self) -> Iterator[tuple]:
        """Iterate remaining rows, fetching `arraysize` at a time."""
        return IterChunk(self.dbapi_cursor, self.arraysize)

    # Row-wise access

    @property
    def column_count(self) -> int:
        """Number of columns in the current result set."""
        return len(self.dbapi_cursor.description or ())

    def column_name(self, i: int) -> str:
        return self.dbapi_cursor.description[i][0]

    def advance(self) -> bool:
        """Move to the next row. Returns False once the result set is exhausted."""
        self._current = self.dbapi_cursor.fetchone()
        return self._current is not None

    @property
    def current(self) -> Sequence:
        """The row `advance` moved to."""
        if self._current is None:
            raise IndexError('No current row, call advance() first')
        return self._current

    def is_null(self, i: int) -> bool:
        return self.current[i] is None

    def value(self, i: int) -> Any:
        return self.current[i]
