"""
Row materializers: functions converting one result row into one entity.

A materializer is built for a single result shape (column names, order and
reported types). For each result column that maps onto an entity member the
binding is decided once, when the materializer is built:

- direct: the driver reports the member's type, so the value is assigned as is
- converted: a Mapper converter, UTC stamping for datetimes, or `coerce_value`

Rows are then converted with a tight loop over precomputed bindings.
"""
import datetime
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from minimapper.exceptions import MappingError
from minimapper.types import as_utc, coerce_value, is_concrete_type, resolve_type

if TYPE_CHECKING:
    from minimapper.metadata import ColumnInfo, EntityMetadata, Mapper

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResultField:
    """One column of a result set."""
    name: str
    type_code: Any = None
    python_type: type | None = None


@dataclass(frozen=True, slots=True)
class ResultShape:
    """Ordered columns of a result set."""
    fields: tuple[ResultField, ...]

    @classmethod
    def from_cursor_description(cls, description: Sequence | None, dialect: str) -> 'ResultShape':
        """Create a shape from a DB-API `cursor.description`."""
        if not description:
            return cls(())
        return cls(tuple(
            ResultField(name=desc[0], type_code=desc[1],
                        python_type=resolve_type(dialect, desc[1]))
            for desc in description))

    @classmethod
    def from_names(cls, names: Sequence[str]) -> 'ResultShape':
        return cls(tuple(ResultField(name=name) for name in names))

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.fields)


@dataclass(frozen=True, slots=True)
class Binding:
    """Assignment of one result column to one entity member."""
    index: int
    column: 'ColumnInfo'
    converter: Callable[[Any], Any] | None

    @property
    def is_direct(self) -> bool:
        return self.converter is None


def _utc_converter(target: Any, source_known: bool) -> Callable[[Any], Any]:
    if source_known:
        return as_utc

    def convert(value: Any) -> Any:
        return as_utc(coerce_value(value, target))
    return convert


def _coercer(target: Any) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        return coerce_value(value, target)
    return convert


def choose_converter(column: 'ColumnInfo', source_type: type | None, force_utc: bool,
                     mapper: 'Mapper | None' = None) -> Callable[[Any], Any] | None:
    """Pick the conversion for one column, None meaning direct assignment.

    Priority: mapper converter, UTC stamping, direct when the reported source
    type already is the member type, generic coercion otherwise.
    """
    if mapper is not None:
        converter = mapper.get_value_converter(column, source_type)
        if converter is not None:
            return converter

    target = column.member_type
    if not is_concrete_type(target):
        return None

    if force_utc and target is datetime.datetime:
        if source_type is None or source_type is datetime.datetime:
            return _utc_converter(target, source_known=source_type is not None)

    if source_type is not None and issubclass(source_type, target):
        if not (target is int and source_type is bool):
            if not (target is datetime.date and source_type is datetime.datetime):
                return None

    return _coercer(target)


def build_bindings(metadata: 'EntityMetadata', shape: ResultShape, force_utc: bool,
                   mapper: 'Mapper | None' = None) -> list[Binding]:
    """Match result columns to entity members. Unknown columns are skipped."""
    bindings = []
    for index, result_field in enumerate(shape.fields):
        column = metadata.get_column(result_field.name)
        if column is None:
            logger.debug(f'Column {result_field.name} not mapped on {metadata.entity_type.__name__}')
            continue
        converter = choose_converter(column, result_field.python_type, force_utc, mapper)
        bindings.append(Binding(index=index, column=column, converter=converter))
    return bindings


def build_materializer(metadata: 'EntityMetadata', shape: ResultShape, force_utc: bool,
                       mapper: 'Mapper | None' = None) -> Callable[[Sequence], Any]:
    """Build the row -> entity function for one result shape.

    Parameters
        metadata: Entity metadata
        shape: Result columns, in cursor order
        force_utc: Stamp naive datetimes as UTC when the member is a datetime
        mapper: Optional mapping policy supplying converters

    Returns
        Callable taking a row sequence (indexed like `shape`) and returning an entity
    """
    entity_type = metadata.entity_type
    bindings = build_bindings(metadata, shape, force_utc, mapper)
    direct = [(b.index, b.column.accessor.write) for b in bindings if b.is_direct]
    converted = [(b.index, b.column.accessor.write, b.converter, b.column)
                 for b in bindings if not b.is_direct]

    logger.debug(f'Materializer for {entity_type.__name__}: '
                 f'{len(direct)} direct, {len(converted)} converted, '
                 f'{len(shape) - len(bindings)} unmapped')

    def materialize(row: Sequence) -> Any:
        instance = entity_type()
        for index, write in direct:
            value = row[index]
            if value is not None:
                write(instance, value)
        for index, write, converter, column in converted:
            value = row[index]
            if value is None:
                continue
            try:
                value = converter(value)
            except Exception as exc:
                raise MappingError(column.member_name, column.column_name, exc) from exc
            write(instance, value)
        return instance

    materialize.bindings = bindings
    return materialize
