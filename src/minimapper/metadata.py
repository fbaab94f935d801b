"""
Entity metadata: how a Python class maps onto a table.

Entities are plain classes (dataclasses work well) whose annotated members
become columns. Table-level settings come from the `entity` decorator and
member-level settings from `typing.Annotated` markers:

    @entity(table='articles', primary_key='article_id')
    @dataclass
    class Article:
        article_id: int = 0
        title: str = ''
        body: Annotated[str, Column('content')] = ''
        comment_count: Annotated[int, ResultColumn()] = 0
        scratch: Annotated[str, Ignore] = ''

Without the decorator the table is named after the class and the primary key
is `ID` (matched case-insensitively). A `Mapper` can override both, rename or
skip members, and supply value converters.
"""
import logging
import operator
import threading
import typing
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from minimapper.cache import MATERIALIZER_CACHE, METADATA_CACHE, Cache
from minimapper.types import unwrap_member_type

if TYPE_CHECKING:
    from minimapper.materializer import ResultShape

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_KEY = 'ID'

__all__ = [
    'entity',
    'Column',
    'ResultColumn',
    'Ignore',
    'TableInfo',
    'ColumnInfo',
    'MemberAccessor',
    'EntityMetadata',
    'Mapper',
    'DefaultMapper',
    'MetadataRegistry',
    'get_registry',
    'set_mapper',
]


# =============================================================================
# Declarations
# =============================================================================

@dataclass(frozen=True, slots=True)
class EntityDeclaration:
    """Table-level settings attached to a class by `entity`."""
    table: str | None = None
    primary_key: str = DEFAULT_PRIMARY_KEY
    sequence: str | None = None
    auto_increment: bool = True
    explicit_columns: bool = False


def entity(cls: type | None = None, *, table: str | None = None,
           primary_key: str = DEFAULT_PRIMARY_KEY, sequence: str | None = None,
           auto_increment: bool = True, explicit_columns: bool = False):
    """Class decorator declaring table name, primary key and column policy.

    Supports both @entity and @entity(...) syntax.

    Args:
        table: Table name, by default the class name
        primary_key: Primary key column, by default 'ID'
        sequence: Sequence supplying new keys on sequence-based backends
        auto_increment: Whether the database generates the primary key
        explicit_columns: Only map members marked with Column/ResultColumn
    """
    declaration = EntityDeclaration(table=table, primary_key=primary_key,
                                    sequence=sequence, auto_increment=auto_increment,
                                    explicit_columns=explicit_columns)

    def decorator(klass: type) -> type:
        klass.__entity__ = declaration
        return klass

    if cls is None:
        return decorator
    return decorator(cls)


@dataclass(frozen=True, slots=True)
class Column:
    """Marks a member as a column, optionally under another name."""
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ResultColumn(Column):
    """Column that is read from queries but never written.

    Result columns are skipped by INSERT, UPDATE and the automatic SELECT
    list, so they are only populated when a query selects them explicitly.
    """


class _IgnoreMarker:
    def __repr__(self) -> str:
        return 'Ignore'


Ignore = _IgnoreMarker()


# =============================================================================
# Descriptors
# =============================================================================

@dataclass(slots=True)
class TableInfo:
    """Table-level mapping, mutable so a Mapper can adjust it."""
    table_name: str
    primary_key: str
    sequence_name: str = ''
    auto_increment: bool = True


class MemberAccessor:
    """Read/write access to one member, bound once per column."""

    __slots__ = ('name', 'read', 'write')

    def __init__(self, name: str) -> None:
        self.name = name
        self.read: Callable[[Any], Any] = operator.attrgetter(name)

        def write(instance: Any, value: Any) -> None:
            setattr(instance, name, value)

        self.write: Callable[[Any, Any], None] = write

    def __repr__(self) -> str:
        return f'MemberAccessor({self.name!r})'


@dataclass(slots=True)
class ColumnInfo:
    """Mapping of one entity member to one column."""
    column_name: str
    member_name: str
    member_type: Any
    accessor: MemberAccessor
    result_only: bool = False
    nullable: bool = False


@dataclass(slots=True)
class EntityMetadata:
    """Mapping of an entity class to its table."""
    entity_type: type
    table_name: str
    primary_key: str
    sequence_name: str = ''
    auto_increment: bool = True
    columns: dict[str, ColumnInfo] = field(default_factory=dict)
    query_columns: str = ''
    _lookup: dict[str, ColumnInfo] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._lookup = {name.lower(): col for name, col in self.columns.items()}
        self.query_columns = ', '.join(
            name for name, col in self.columns.items() if not col.result_only)

    def get_column(self, name: str) -> ColumnInfo | None:
        """Look up a column case-insensitively."""
        return self._lookup.get(name.lower())

    @property
    def primary_key_column(self) -> ColumnInfo | None:
        return self.get_column(self.primary_key)

    def writable_columns(self) -> list[ColumnInfo]:
        """Columns that INSERT and UPDATE may assign."""
        return [col for col in self.columns.values() if not col.result_only]

    @classmethod
    def for_type(cls, entity_type: type, mapper: 'Mapper | None' = None) -> 'EntityMetadata':
        """Build metadata for a class. Uncached; see MetadataRegistry.
        """
        mapper = mapper or DefaultMapper()
        declaration = getattr(entity_type, '__entity__', None) or EntityDeclaration()

        info = TableInfo(
            table_name=declaration.table or entity_type.__name__,
            primary_key=declaration.primary_key,
            sequence_name=declaration.sequence or '',
            auto_increment=declaration.auto_increment,
        )
        info = mapper.resolve_table_info(entity_type, info)

        columns: dict[str, ColumnInfo] = {}
        hints = typing.get_type_hints(entity_type, include_extras=True)
        for member_name, annotation in hints.items():
            if member_name.startswith('_') or typing.get_origin(annotation) is typing.ClassVar:
                continue

            markers = _markers(annotation)
            column_marker = next((m for m in markers if isinstance(m, Column)), None)

            if declaration.explicit_columns:
                if column_marker is None:
                    continue
            elif any(m is Ignore for m in markers):
                continue

            member_type, nullable = unwrap_member_type(annotation)
            column_name = column_marker.name if column_marker else None
            result_only = isinstance(column_marker, ResultColumn)

            if column_name is None:
                column_name = member_name
                if column_marker is None:
                    mapped = mapper.map_member_to_column(entity_type, member_name, member_type)
                    if mapped is None:
                        continue
                    column_name, result_only = mapped

            if column_name.lower() in {c.lower() for c in columns}:
                raise ValueError(f'Duplicate column {column_name!r} on {entity_type.__name__}')

            columns[column_name] = ColumnInfo(
                column_name=column_name,
                member_name=member_name,
                member_type=member_type,
                accessor=MemberAccessor(member_name),
                result_only=result_only,
                nullable=nullable,
            )

        metadata = cls(
            entity_type=entity_type,
            table_name=info.table_name,
            primary_key=info.primary_key,
            sequence_name=info.sequence_name,
            auto_increment=info.auto_increment,
            columns=columns,
        )
        logger.debug(f'Built metadata for {entity_type.__name__}: table={metadata.table_name} '
                     f'pk={metadata.primary_key} columns={list(columns)}')
        return metadata


def _markers(annotation: Any) -> tuple:
    if typing.get_origin(annotation) is typing.Annotated:
        return typing.get_args(annotation)[1:]
    return ()


# =============================================================================
# Mapping Policy
# =============================================================================

class Mapper:
    """Pluggable mapping policy.

    Subclass and override the hooks you need; the base implementation keeps
    the conventions.
    """

    def resolve_table_info(self, entity_type: type, info: TableInfo) -> TableInfo:
        """Adjust table name, primary key or sequence for a class."""
        return info

    def map_member_to_column(self, entity_type: type, member_name: str,
                             member_type: Any) -> tuple[str, bool] | None:
        """Return (column name, result only) for an unmarked member, or None to skip it."""
        return member_name, False

    def get_value_converter(self, column: ColumnInfo,
                            source_type: type | None) -> Callable[[Any], Any] | None:
        """Converter for values read from `column`, or None for the default."""
        return None

    def get_db_converter(self, source_type: type) -> Callable[[Any], Any] | None:
        """Converter for outgoing parameter values of `source_type`."""
        return None


class DefaultMapper(Mapper):
    """Convention-only mapping."""


# =============================================================================
# Registry
# =============================================================================

class MetadataRegistry:
    """Owner of the metadata and materializer caches.

    The module-level default registry (`get_registry`) uses the process-wide
    Cache singleton. Pass a fresh `Cache()` for isolated instances.
    """

    def __init__(self, cache: Cache | None = None, mapper: Mapper | None = None) -> None:
        self.cache = cache if cache is not None else Cache.get_instance()
        self.mapper = mapper or DefaultMapper()

    def metadata_for(self, entity_type: type) -> EntityMetadata:
        """Return the (cached) metadata for an entity class."""
        return self.cache.get_or_create(
            METADATA_CACHE, (entity_type, self.mapper),
            lambda: EntityMetadata.for_type(entity_type, self.mapper))

    def materializer_for(self, entity_type: type, key: Hashable, shape: 'ResultShape',
                         force_utc: bool) -> Callable[[Any], Any]:
        """Return the (cached) row materializer for a query shape.

        Parameters
            entity_type: Class to materialize
            key: Query fingerprint, normalized SQL plus connection identity
            shape: Result columns of the executed statement
            force_utc: Stamp naive datetimes as UTC
        """
        from minimapper.materializer import build_materializer

        metadata = self.metadata_for(entity_type)
        return self.cache.get_or_create(
            MATERIALIZER_CACHE, (entity_type, key, force_utc, self.mapper),
            lambda: build_materializer(metadata, shape, force_utc, self.mapper))

    def clear(self) -> None:
        self.cache.clear_cache(METADATA_CACHE)
        self.cache.clear_cache(MATERIALIZER_CACHE)


_default_registry: MetadataRegistry | None = None
_default_registry_lock = threading.Lock()


def get_registry() -> MetadataRegistry:
    """Process-wide registry, created on first use."""
    global _default_registry
    if _default_registry is None:
        with _default_registry_lock:
            if _default_registry is None:
                _default_registry = MetadataRegistry()
    return _default_registry


def set_mapper(mapper: Mapper | None) -> None:
    """Install a mapping policy on the default registry.

    Cached metadata built under the previous policy is dropped.
    """
    registry = get_registry()
    registry.mapper = mapper or DefaultMapper()
    registry.clear()
