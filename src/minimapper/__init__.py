"""
Micro object mapper for PostgreSQL, SQLite, SQL Server and Oracle.

Entities are plain classes; queries are plain SQL with `@` placeholders:

    @entity(table='articles', primary_key='article_id')
    @dataclass
    class Article:
        article_id: int = 0
        title: str = ''

    db = connect(drivername='sqlite', database='blog.db')
    articles = db.fetch(Article, 'WHERE title LIKE @0 ORDER BY title', '%python%')

All query operations can be called either as:
- Module functions: minimapper.fetch(db, Article, sql, *args)
- Database methods: db.fetch(Article, sql, *args)
"""
__version__ = '0.1.0'

from typing import Any

from minimapper.cache import Cache
from minimapper.connection import Database, connect, dispose_all_engines
from minimapper.exceptions import ConnectionFailure, DatabaseError, MappingError
from minimapper.exceptions import DbConnectionError, IntegrityError
from minimapper.exceptions import IntegrityViolationError, OperationalError
from minimapper.exceptions import PlaceholderError, PlaceholderRangeError
from minimapper.exceptions import ProgrammingError, QueryError
from minimapper.exceptions import TypeConversionError, UniqueViolation
from minimapper.exceptions import UnresolvedPlaceholderError
from minimapper.exceptions import UnsupportedStatementError, ValidationError
from minimapper.metadata import Column, DefaultMapper, Ignore, Mapper, ResultColumn
from minimapper.metadata import entity, get_registry, set_mapper
from minimapper.options import DatabaseOptions
from minimapper.paging import Page
from minimapper.sql import Sql, render
from minimapper.transaction import Transaction


def execute(db: Database, sql: 'Sql | str', *args: Any) -> int:
    """Execute a command and return affected row count.
    """
    return db.execute(sql, *args)


def execute_scalar(db: Database, sql: 'Sql | str', *args: Any, as_type: Any = None) -> Any:
    """Execute a query and return the first column of the first row.
    """
    return db.execute_scalar(sql, *args, as_type=as_type)


def fetch(db: Database, cls: type, sql: 'Sql | str' = '', *args: Any) -> list:
    """Materialize every row of a query as `cls`.
    """
    return db.fetch(cls, sql, *args)


def page(db: Database, cls: type, page: int, items_per_page: int,
         sql: 'Sql | str' = '', *args: Any) -> Page:
    """Fetch one page of results with total item and page counts.
    """
    return db.page(cls, page, items_per_page, sql, *args)


def single(db: Database, cls: type, sql: 'Sql | str' = '', *args: Any) -> Any:
    """Return the only row of a query.

    Raises ValidationError if the query returns zero or multiple rows.
    """
    return db.single(cls, sql, *args)


def first(db: Database, cls: type, sql: 'Sql | str' = '', *args: Any) -> Any:
    """Return the first row of a query.

    Raises ValidationError if the query returns no rows.
    """
    return db.first(cls, sql, *args)


def insert(db: Database, obj: Any) -> Any:
    """Insert an entity and return its key.
    """
    return db.insert(obj)


def update(db: Database, obj: Any) -> int:
    """Update an entity's row.
    """
    return db.update(obj)


def delete(db: Database, obj: Any) -> int:
    """Delete an entity's row.
    """
    return db.delete(obj)


def save(db: Database, obj: Any) -> None:
    """Insert a new entity or update an existing one.
    """
    db.save(obj)


transaction = Transaction

__all__ = [
    'connect',
    'Database',
    'DatabaseOptions',
    'transaction',
    'Transaction',
    'dispose_all_engines',
    'entity',
    'Column',
    'ResultColumn',
    'Ignore',
    'Mapper',
    'DefaultMapper',
    'get_registry',
    'set_mapper',
    'Cache',
    'Sql',
    'render',
    'Page',
    'execute',
    'execute_scalar',
    'fetch',
    'page',
    'single',
    'first',
    'insert',
    'update',
    'delete',
    'save',
    'IntegrityError',
    'ProgrammingError',
    'OperationalError',
    'UniqueViolation',
    'DbConnectionError',
    'ConnectionFailure',
    'ValidationError',
    'DatabaseError',
    'IntegrityViolationError',
    'QueryError',
    'PlaceholderError',
    'PlaceholderRangeError',
    'UnresolvedPlaceholderError',
    'UnsupportedStatementError',
    'TypeConversionError',
    'MappingError',
]
