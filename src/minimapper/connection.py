"""
Data access facade with SQLAlchemy connection management.

This module provides:
1. The `connect()` function for creating new database connections
2. The `Database` class mapping query results onto entity classes
3. Engine creation and management through a thread-safe registry

The Database is the primary client, providing methods like:
- fetch(cls, sql, *args) - Run a query and materialize every row
- query(cls, sql, *args) - Same, lazily
- page(cls, page, items_per_page, sql, *args) - One page plus total counts
- insert(obj) / update(obj) / delete(obj) / save(obj) - Entity writes
- execute(sql, *args) / execute_scalar(sql, *args) - Plain commands

Every query is written with `@` placeholders (see `minimapper.sql`) and
rendered to the driver's native marker style just before execution.
"""
import atexit
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from dataclasses import replace
from decimal import Decimal
from typing import Any, Self, TypeVar

import pandas as pd
import sqlalchemy as sa
from more_itertools import first, one, only
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from minimapper.cursor import Cursor
from minimapper.exceptions import ConnectionFailure, ValidationError
from minimapper.materializer import ResultShape
from minimapper.metadata import EntityMetadata, MetadataRegistry, get_registry
from minimapper.options import DatabaseOptions
from minimapper.paging import Page, build_page_queries
from minimapper.sql import Sql, add_select_clause, to_native
from minimapper.strategy import get_strategy
from minimapper.transaction import Transaction
from minimapper.types import coerce_value

__all__ = [
    'Database',
    'connect',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions) -> sa.URL:
    """Convert DatabaseOptions to SQLAlchemy URL.
    """
    return get_strategy(options.drivername).build_connection_url(options)


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = repr(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = strategy.build_connection_url(options)

        engine_kwargs: dict[str, Any] = {'echo': False}
        engine_kwargs.update(strategy.get_engine_kwargs(options))

        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def _is_default_key(value: Any) -> bool:
    """True when a primary key value means "not saved yet"."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float | Decimal):
        return value == 0
    if isinstance(value, uuid.UUID):
        return value.int == 0
    return False


class Database:
    """Maps query results onto entity classes over one SQLAlchemy connection.

    Outside a transaction every command runs in auto-commit mode. Subclasses
    may override `on_exception`, `modify_sql`, `on_begin_transaction` and
    `on_end_transaction`.
    """

    def __init__(self, sa_connection: sa.engine.Connection, options: DatabaseOptions,
                 registry: MetadataRegistry | None = None) -> None:
        self.sa_connection = sa_connection
        self.engine = sa_connection.engine
        self.options = options
        self.registry = registry or get_registry()
        self.strategy = get_strategy(options.drivername)
        self.dbapi_connection = sa_connection.connection.driver_connection
        self.strategy.configure_connection(self.dbapi_connection)
        self.calls = 0
        self.time = 0
        self._identity = self.engine.url.render_as_string(hide_password=True)
        self._transaction_depth = 0
        self._transaction_cancelled = False
        self._last_sql: str | None = None
        self._last_args: list | None = None

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Return the connection to the pool when exiting the context manager
        """
        self.close()

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    @property
    def paging_style(self) -> str:
        return self.options.paging_style or self.strategy.paging_style

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def close(self) -> None:
        """Close the SQLAlchemy connection. An open transaction is rolled back.
        """
        if self.sa_connection.closed:
            return
        if self._transaction_depth:
            logger.warning(f'Closing connection with {self._transaction_depth} open transaction scope(s), rolling back')
            self.dbapi_connection.rollback()
            self._transaction_depth = 0
        self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')

    def cursor(self) -> Cursor:
        """Get a wrapped cursor for this connection
        """
        if self.sa_connection.closed:
            if self._transaction_depth:
                raise ConnectionFailure('Connection closed inside a transaction')
            self.sa_connection = self.engine.connect()
            self.dbapi_connection = self.sa_connection.connection.driver_connection
            self.strategy.configure_connection(self.dbapi_connection)
            logger.debug('Reopened closed connection')

        return Cursor(self.dbapi_connection.cursor(), self)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    # Diagnostics and hooks

    @property
    def last_sql(self) -> str | None:
        return self._last_sql

    @property
    def last_args(self) -> list | None:
        return self._last_args

    @property
    def last_command(self) -> str:
        """Last SQL text followed by its numbered arguments."""
        if self._last_sql is None:
            return ''
        lines = [self._last_sql]
        if self._last_args:
            lines.append('')
            lines.extend(f'{i} - {arg!r}' for i, arg in enumerate(self._last_args))
        return '\n'.join(lines)

    def on_exception(self, exc: Exception) -> None:
        """Called with any error raised while executing a command, before it propagates."""
        logger.error(f'{type(exc).__name__}: {exc}\n{self.last_command}')

    def modify_sql(self, sql: str) -> str:
        """Final chance to rewrite native SQL before it is sent."""
        return sql

    def on_begin_transaction(self) -> None:
        pass

    def on_end_transaction(self) -> None:
        pass

    # Transactions

    def transaction(self) -> Transaction:
        """Open a (possibly nested) transaction scope."""
        return Transaction(self)

    def begin_transaction(self) -> None:
        """Start a transaction, or join the one in progress.

        Every call must be matched by `complete_transaction` or
        `abort_transaction`.
        """
        self._transaction_depth += 1
        if self._transaction_depth == 1:
            self.strategy.disable_autocommit(self.dbapi_connection)
            self._transaction_cancelled = False
            logger.debug(f'Started transaction for connection {id(self)}')
            self.on_begin_transaction()

    def complete_transaction(self) -> None:
        """Leave a transaction scope; the outermost scope commits."""
        self._leave_transaction()

    def abort_transaction(self) -> None:
        """Leave a transaction scope; the whole transaction will roll back."""
        self._transaction_cancelled = True
        self._leave_transaction()

    def _leave_transaction(self) -> None:
        if self._transaction_depth == 0:
            raise ValidationError('No transaction in progress')
        self._transaction_depth -= 1
        if self._transaction_depth > 0:
            return
        try:
            self.on_end_transaction()
            if self._transaction_cancelled:
                self.dbapi_connection.rollback()
                logger.warning('Rolled back the current transaction')
            else:
                self.dbapi_connection.commit()
                logger.debug(f'Committed transaction for connection {id(self)}')
        finally:
            self.strategy.enable_autocommit(self.dbapi_connection)

    # Command preparation

    @staticmethod
    def _neutral(sql: 'Sql | str', args: tuple) -> tuple[str, list]:
        """Resolve placeholders into `@N` text plus a flat argument list."""
        if not isinstance(sql, Sql):
            sql = Sql(sql, *args)
        elif args:
            raise ValueError('Arguments must be attached to the Sql fragment, not passed separately')
        return sql.sql, sql.arguments

    def _select_text(self, cls: type, sql: 'Sql | str', args: tuple) -> tuple[str, list]:
        text, arguments = self._neutral(sql, args)
        if self.options.enable_auto_select:
            text = add_select_clause(text, self.registry.metadata_for(cls))
        return text, arguments

    def _convert_args(self, args: list) -> list:
        mapper = self.registry.mapper
        converted = []
        for arg in args:
            converter = mapper.get_db_converter(type(arg)) if arg is not None else None
            converted.append(converter(arg) if converter is not None else arg)
        return converted

    def _open_cursor(self, text: str, args: list) -> Cursor:
        """Render `@N` text natively, execute it and return the open cursor."""
        native_sql, native_args = to_native(text, self._convert_args(args),
                                            self.strategy.marker_style)
        self._last_sql = native_sql
        self._last_args = native_args

        cursor = self.cursor()
        try:
            cursor.execute(self.modify_sql(native_sql), native_args)
        except Exception as exc:
            cursor.close()
            self.on_exception(exc)
            raise
        return cursor

    def _execute_text(self, text: str, args: list) -> int:
        with self._open_cursor(text, args) as cursor:
            return cursor.rowcount

    def _scalar_text(self, text: str, args: list, as_type: Any = None) -> Any:
        with self._open_cursor(text, args) as cursor:
            row = cursor.fetchone()
        value = row[0] if row else None
        if value is None or as_type is None:
            return value
        return coerce_value(value, as_type)

    def _query_text(self, cls: type[T], text: str, args: list) -> Iterator[T]:
        cursor = self._open_cursor(text, args)
        with cursor:
            shape = ResultShape.from_cursor_description(cursor.description, self.dialect)
            key = (' '.join(self._last_sql.split()), self._identity)
            materialize = self.registry.materializer_for(
                cls, key, shape, self.options.force_datetimes_to_utc)
            try:
                for row in cursor.rows():
                    yield materialize(row)
            except Exception as exc:
                self.on_exception(exc)
                raise

    def _metadata(self, obj_or_cls: Any) -> EntityMetadata:
        cls = obj_or_cls if isinstance(obj_or_cls, type) else type(obj_or_cls)
        return self.registry.metadata_for(cls)

    # Commands

    def execute(self, sql: 'Sql | str', *args: Any) -> int:
        """Execute a command and return the affected row count.
        """
        return self._execute_text(*self._neutral(sql, args))

    def execute_scalar(self, sql: 'Sql | str', *args: Any, as_type: Any = None) -> Any:
        """Execute a query and return the first column of the first row.

        Returns None when the query produces no row. With `as_type` the value
        is converted like an entity member of that type.
        """
        text, arguments = self._neutral(sql, args)
        return self._scalar_text(text, arguments, as_type)

    # Queries

    def query(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> Iterator[T]:
        """Lazily materialize each row of a query as `cls`.

        With auto-select enabled, SQL that does not begin with SELECT is
        completed from the entity metadata, so `db.query(Article, 'WHERE id > @0', 10)`
        works.
        """
        text, arguments = self._select_text(cls, sql, args)
        return self._query_text(cls, text, arguments)

    def fetch(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> list[T]:
        """Materialize every row of a query as `cls`.
        """
        return list(self.query(cls, sql, *args))

    def page(self, cls: type[T], page: int, items_per_page: int,
             sql: 'Sql | str' = '', *args: Any) -> Page[T]:
        """Fetch one page of results with total item and page counts.

        Parameters
            cls: Entity class
            page: 1-based page number
            items_per_page: Page size
            sql: Query with an ORDER BY clause

        Returns
            Page with the items of the requested page
        """
        text, arguments = self._select_text(cls, sql, args)
        count_sql, page_sql, page_args = build_page_queries(
            page, items_per_page, text, arguments, self.paging_style)

        total = self._scalar_text(count_sql, arguments, as_type=int) or 0
        items = list(self._query_text(cls, page_sql, page_args))
        return Page.create(page, items_per_page, total, items)

    def fetch_page(self, cls: type[T], page: int, items_per_page: int,
                   sql: 'Sql | str' = '', *args: Any) -> list[T]:
        """Fetch one page of results without counting the total.
        """
        text, arguments = self._select_text(cls, sql, args)
        _, page_sql, page_args = build_page_queries(
            page, items_per_page, text, arguments, self.paging_style)
        return list(self._query_text(cls, page_sql, page_args))

    def single(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> T:
        """Return the only row of a query.

        Raises ValidationError if the query returns zero or multiple rows.
        """
        return one(self.fetch(cls, sql, *args),
                   too_short=ValidationError('Expected one row, got none'),
                   too_long=ValidationError('Expected one row, got several'))

    def single_or_none(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> T | None:
        """Return the only row of a query, or None if it returns no rows.

        Raises ValidationError if the query returns multiple rows.
        """
        return only(self.fetch(cls, sql, *args), default=None,
                    too_long=ValidationError('Expected at most one row, got several'))

    def first(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> T:
        """Return the first row of a query.

        Raises ValidationError if the query returns no rows.
        """
        item = first(self.query(cls, sql, *args), None)
        if item is None:
            raise ValidationError(f'Expected a {cls.__name__} row, got none')
        return item

    def first_or_none(self, cls: type[T], sql: 'Sql | str' = '', *args: Any) -> T | None:
        """Return the first row of a query, or None if it returns no rows.
        """
        return first(self.query(cls, sql, *args), None)

    def fetch_frame(self, sql: 'Sql | str', *args: Any) -> pd.DataFrame:
        """Load a query into a DataFrame.

        Always returns a DataFrame, with columns preserved for empty results.
        """
        with self._open_cursor(*self._neutral(sql, args)) as cursor:
            columns = [desc[0] for desc in cursor.description or ()]
            data = cursor.fetchall()
        if not data:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame.from_records(list(data), columns=columns)

    # Entity writes

    def insert(self, obj: Any, table: str | None = None, primary_key: str | None = None) -> Any:
        """Insert an entity and return its key.

        When the key is generated by the database (auto-increment, or a
        sequence on sequence-based backends) the new key is also assigned to
        the entity's primary key member.

        Parameters
            obj: Entity instance
            table: Target table, by default the entity's table
            primary_key: Key column, by default the entity's primary key
        """
        metadata = self._metadata(obj)
        table = table or metadata.table_name
        primary_key = primary_key or metadata.primary_key
        pk_column = metadata.get_column(primary_key)
        generated = metadata.auto_increment and pk_column is not None

        names: list[str] = []
        values: list[Any] = []
        new_id = None
        from_sequence = generated and self.strategy.uses_sequences
        if from_sequence and not metadata.sequence_name:
            raise ValidationError(f'{type(obj).__name__} needs a sequence to generate keys on {self.dialect}')

        for column in metadata.writable_columns():
            value = column.accessor.read(obj)
            if generated and column is pk_column:
                if not from_sequence:
                    continue
                new_id = self._scalar_text(
                    self.strategy.sequence_nextval_sql(metadata.sequence_name), [])
                value = new_id
            names.append(column.column_name)
            values.append(value)

        returning = primary_key if generated and new_id is None else None
        markers = [f'@{i}' for i in range(len(values))]
        text = self.strategy.build_insert_sql(table, names, markers, returning)

        with self._open_cursor(text, values) as cursor:
            if returning is not None:
                new_id = self.strategy.fetch_insert_id(cursor, returning)

        if generated:
            if new_id is not None:
                pk_column.accessor.write(obj, coerce_value(new_id, pk_column.member_type))
                return pk_column.accessor.read(obj)
            return None
        if pk_column is not None:
            return pk_column.accessor.read(obj)
        return new_id

    def update(self, obj: Any, primary_key_value: Any = None, columns: list[str] | None = None,
               table: str | None = None, primary_key: str | None = None) -> int:
        """Update an entity's row and return the affected row count.

        Parameters
            obj: Entity instance
            primary_key_value: Key of the row, by default read from the entity
            columns: Only update these columns, by default every writable column
            table: Target table, by default the entity's table
            primary_key: Key column, by default the entity's primary key
        """
        metadata = self._metadata(obj)
        table = table or metadata.table_name
        primary_key = primary_key or metadata.primary_key

        if primary_key_value is None:
            pk_column = metadata.get_column(primary_key)
            if pk_column is None:
                raise ValidationError(f'{type(obj).__name__} has no member for primary key {primary_key!r}')
            primary_key_value = pk_column.accessor.read(obj)

        wanted = {c.lower() for c in columns} if columns is not None else None
        assignments: list[str] = []
        values: list[Any] = []
        for column in metadata.writable_columns():
            name = column.column_name
            if name.lower() == primary_key.lower():
                continue
            if wanted is not None and name.lower() not in wanted:
                continue
            assignments.append(f'{name} = @{len(values)}')
            values.append(column.accessor.read(obj))

        if not assignments:
            logger.warning(f'Nothing to update for {type(obj).__name__}')
            return 0

        values.append(primary_key_value)
        text = f"UPDATE {table} SET {', '.join(assignments)} WHERE {primary_key} = @{len(values) - 1}"
        return self._execute_text(text, values)

    def update_where(self, cls: type, sql: 'Sql | str', *args: Any) -> int:
        """Run `UPDATE <table> <sql>` for an entity class, e.g. `'SET x = @0 WHERE id = @1'`."""
        return self._write_where(f'UPDATE {self._metadata(cls).table_name}', sql, args)

    def delete(self, obj: Any, primary_key_value: Any = None) -> int:
        """Delete an entity's row and return the affected row count."""
        metadata = self._metadata(obj)
        if primary_key_value is None:
            pk_column = metadata.primary_key_column
            if pk_column is None:
                raise ValidationError(f'{type(obj).__name__} has no member for primary key {metadata.primary_key!r}')
            primary_key_value = pk_column.accessor.read(obj)
        text = f'DELETE FROM {metadata.table_name} WHERE {metadata.primary_key} = @0'
        return self._execute_text(text, [primary_key_value])

    def delete_where(self, cls: type, sql: 'Sql | str', *args: Any) -> int:
        """Run `DELETE FROM <table> <sql>` for an entity class."""
        return self._write_where(f'DELETE FROM {self._metadata(cls).table_name}', sql, args)

    def _write_where(self, head: str, sql: 'Sql | str', args: tuple) -> int:
        # the caller's fragment is rendered, never linked into a chain
        text, arguments = self._neutral(sql, args)
        return self._execute_text(f'{head}\n{text}', arguments)

    def is_new(self, obj: Any) -> bool:
        """True when the entity's key is unset (None, zero, or the nil UUID)."""
        metadata = self._metadata(obj)
        pk_column = metadata.primary_key_column
        if pk_column is not None:
            return _is_default_key(pk_column.accessor.read(obj))
        if not hasattr(obj, metadata.primary_key):
            raise ValidationError(f'{type(obj).__name__} has no member matching primary key {metadata.primary_key!r}')
        return _is_default_key(getattr(obj, metadata.primary_key))

    def save(self, obj: Any) -> None:
        """Insert a new entity or update an existing one."""
        if self.is_new(obj):
            self.insert(obj)
        else:
            self.update(obj)


def connect(options: DatabaseOptions | dict[str, Any] | None = None,
            registry: MetadataRegistry | None = None, **kw: Any) -> Database:
    """Connect to a database using SQLAlchemy for connection management

    Args:
        options: Can be:
                - DatabaseOptions object
                - Dictionary of options
                - None, with options specified as keyword arguments
        registry: Metadata registry, by default the process-wide one
        **kw: Additional keyword arguments to override options

    Connection pooling options:
        use_pool: Whether to use connection pooling (default: False)
        pool_max_connections: Maximum connections in pool (default: 5)
        pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
        pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Returns
        Database object for the connection
    """
    if isinstance(options, DatabaseOptions):
        if kw:
            options = replace(options, **kw)
    elif isinstance(options, dict):
        options = DatabaseOptions.from_dict(options, **kw)
    elif options is None:
        options = DatabaseOptions(**kw)
    else:
        raise TypeError(f'Unsupported options type: {type(options).__name__}')

    engine = get_engine_for_options(options)
    start = time.time()
    try:
        sa_connection = engine.connect()
    except sa.exc.OperationalError as exc:
        raise ConnectionFailure(f'Could not connect to {options.drivername} database {options.database}: {exc}') from exc
    logger.debug(f'Connected to {options.drivername} in {time.time() - start:.3f}s')

    return Database(sa_connection, options, registry)
