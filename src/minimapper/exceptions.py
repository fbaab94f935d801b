"""
Exception classes for the mapper and its database drivers.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all minimapper errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """


class QueryError(DatabaseError):
    """Error in query composition or execution.
    """


class PlaceholderError(QueryError):
    """A placeholder in SQL text could not be bound to an argument.
    """

    def __init__(self, message: str, placeholder: str, sql: str) -> None:
        super().__init__(message)
        self.placeholder = placeholder
        self.sql = sql


class PlaceholderRangeError(PlaceholderError, IndexError):
    """Numbered placeholder beyond the supplied argument list.
    """


class UnresolvedPlaceholderError(PlaceholderError, LookupError):
    """Named placeholder that no supplied argument provides.
    """


class UnsupportedStatementError(QueryError, ValueError):
    """Statement cannot be rewritten (e.g. paged) by the string rewriter.
    """


class TypeConversionError(DatabaseError):
    """Error converting types between Python and database.
    """


class MappingError(TypeConversionError):
    """A result column value could not be assigned to an entity member.
    """

    def __init__(self, member: str, column: str, cause: BaseException) -> None:
        super().__init__(f'Cannot map column {column!r} to member {member!r}: {cause}')
        self.member = member
        self.column = column
        self.cause = cause


class IntegrityViolationError(DatabaseError):
    """Database constraint violation error.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    IntegrityViolationError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    psycopg.DatabaseError,
    sqlite3.ProgrammingError,
    sqlite3.DatabaseError,
    QueryError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    IntegrityViolationError,
    )
