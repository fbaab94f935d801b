"""
Type handling for database operations.

This module provides:
- TypeConverter: Convert Python values to database-compatible parameters
- coerce_value: Convert database values to the Python type of an entity member
- Type maps: Resolve driver type codes to Python types
- SQLite converters for date/datetime columns
"""
import datetime
import decimal
import enum
import json
import logging
import math
import types
import typing
import uuid
from typing import Any

import dateutil.parser
import numpy as np
import pandas as pd
from psycopg.postgres import types as pg_types

logger = logging.getLogger(__name__)

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)
TRUE_STRINGS = {'1', 't', 'true', 'y', 'yes', 'on'}
FALSE_STRINGS = {'0', 'f', 'false', 'n', 'no', 'off', ''}


# Type Converter - Handles Python -> Database value conversion

def _convert_numpy_value(val: Any) -> Any:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    if isinstance(val, (np.floating, np.integer, np.bool_)):
        return val.item()

    return val


class TypeConverter:
    """Conversion of outgoing parameter values.

    Handles NumPy and Pandas scalars plus the handful of Python types that
    DB-API drivers do not bind natively.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if value is pd.NaT:
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        if isinstance(value, enum.Enum):
            return value.value

        if isinstance(value, uuid.UUID):
            return str(value)

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of parameters for database operations."""
        if params is None:
            return None

        if isinstance(params, dict):
            return {k: TypeConverter.convert_value(v) for k, v in params.items()}

        if isinstance(params, list | tuple):
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


# Type Resolution - Database type codes -> Python types

_oid = lambda x: pg_types.get(x).oid

postgres_types: dict[int, type] = {}

for v in [_oid('"char"'), _oid('bpchar'), _oid('character varying'), _oid('character'),
          _oid('name'), _oid('text'), _oid('varchar')]:
    postgres_types[v] = str

for v in [_oid('bigint'), _oid('int2'), _oid('int4'), _oid('int8'), _oid('integer')]:
    postgres_types[v] = int

for v in [_oid('float4'), _oid('float8'), _oid('double precision')]:
    postgres_types[v] = float

postgres_types[_oid('numeric')] = decimal.Decimal
postgres_types[_oid('date')] = datetime.date
postgres_types[_oid('uuid')] = uuid.UUID

for v in [_oid('time'), _oid('timetz')]:
    postgres_types[v] = datetime.time

for v in [_oid('timestamp'), _oid('timestamptz')]:
    postgres_types[v] = datetime.datetime

for v in [_oid('bool'), _oid('boolean')]:
    postgres_types[v] = bool

postgres_types[_oid('bytea')] = bytes


def resolve_type(dialect: str, type_code: Any) -> type | None:
    """Resolve a driver type code to a Python type.

    Returns None when the driver does not report a usable type, in which case
    values are inspected when rows arrive.
    """
    if isinstance(type_code, type):
        return type_code

    if dialect == 'postgresql':
        return postgres_types.get(type_code)

    return None


# Member types

def unwrap_member_type(annotation: Any) -> tuple[Any, bool]:
    """Strip `Annotated` and `Optional` from a member annotation.

    Returns the bare type and whether None was part of the annotation.
    """
    if typing.get_origin(annotation) is typing.Annotated:
        annotation = typing.get_args(annotation)[0]

    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        nullable = len(args) != len(typing.get_args(annotation))
        if len(args) == 1:
            return args[0], nullable
        return Any, nullable

    return annotation, False


def is_concrete_type(tp: Any) -> bool:
    """True if values can be checked against `tp` with isinstance."""
    # typing.Any is a class on 3.11+ but rejects isinstance checks
    return isinstance(tp, type) and tp not in {object, Any}


# Coercion - Database values -> Python types

def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise ValueError(f'Cannot interpret {value!r} as a boolean')
    return bool(value)


def _to_int(value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f'Cannot convert {value!r} to int without losing precision')
    if isinstance(value, decimal.Decimal) and value != value.to_integral_value():
        raise ValueError(f'Cannot convert {value!r} to int without losing precision')
    if isinstance(value, str):
        return int(value.strip())
    return int(value)


def _to_decimal(value: Any) -> decimal.Decimal:
    if isinstance(value, float):
        return decimal.Decimal(repr(value))
    return decimal.Decimal(value)


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, str):
        return dateutil.parser.parse(value)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)
    if isinstance(value, int | float):
        return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)
    raise TypeError(f'Cannot convert {type(value).__name__} to datetime')


def _to_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    return _to_datetime(value).date()


def _to_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time()
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, str):
        return datetime.time.fromisoformat(value.strip())
    raise TypeError(f'Cannot convert {type(value).__name__} to time')


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode()
    return bytes(value)


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, bytes) and len(value) == 16:
        return uuid.UUID(bytes=value)
    return uuid.UUID(str(value))


def _from_json(value: Any) -> Any:
    if isinstance(value, bytes):
        value = value.decode()
    return json.loads(value)


_COERCIONS: dict[type, Any] = {
    bool: _to_bool,
    int: _to_int,
    float: float,
    decimal.Decimal: _to_decimal,
    str: str,
    bytes: _to_bytes,
    datetime.datetime: _to_datetime,
    datetime.date: _to_date,
    datetime.time: _to_time,
    uuid.UUID: _to_uuid,
}


def coerce_value(value: Any, target: Any) -> Any:
    """Convert `value` to `target` type.

    Values that already are an instance of the target pass through unchanged,
    except bool for int and datetime for date, which are subclasses in Python
    but different column types.
    """
    if not is_concrete_type(target):
        return value

    if isinstance(value, target):
        if target is int and isinstance(value, bool):
            return int(value)
        if target is datetime.date and isinstance(value, datetime.datetime):
            return value.date()
        return value

    if issubclass(target, enum.Enum):
        if isinstance(value, str) and value in target.__members__:
            return target[value]
        return target(value)

    if target in {dict, list}:
        result = _from_json(value)
        if not isinstance(result, target):
            raise TypeError(f'Expected JSON {target.__name__}, got {type(result).__name__}')
        return result

    if target is tuple:
        return tuple(value)

    for base in target.__mro__:
        if base in _COERCIONS:
            converted = _COERCIONS[base](value)
            return converted if base is target else target(converted)

    return target(value)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Stamp a naive datetime as UTC without shifting the clock value."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


# SQLite Adapters - Database value converters

def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


def adapt_date(val: datetime.date) -> str:
    """Store dates and datetimes as ISO 8601 text."""
    return val.isoformat()


def adapt_decimal(val: decimal.Decimal) -> str:
    return str(val)
