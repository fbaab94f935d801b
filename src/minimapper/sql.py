"""
SQL fragment composition and parameter templating.

SQL is written with `@` placeholders that are independent of the backend:

    SQL + Args → process_params → `@N` neutral text → render → native markers
                 (per fragment)    (shared arg list)    (per dialect)

- `@0`, `@1`, ... refer to the arguments passed with the fragment
- `@name` is looked up as an attribute (or mapping key) of those arguments
- `@@` is a literal `@`
- Collection values expand to one placeholder per element, for `IN (@ids)`

Main entry points:
- `Sql` - chainable fragment builder with `where`/`order_by` merging
- `process_params(sql, args_src, args_dest)` - resolve placeholders
- `render(sql, *args, marker_style=...)` - final text and argument list
- `add_select_clause(sql, metadata)` - synthesize `SELECT cols FROM table`
"""
import logging
import re
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from minimapper.exceptions import PlaceholderError, PlaceholderRangeError
from minimapper.exceptions import UnresolvedPlaceholderError, ValidationError

if TYPE_CHECKING:
    from minimapper.metadata import EntityMetadata

logger = logging.getLogger(__name__)

# =============================================================================
# Regex Patterns
# =============================================================================

_PARAM = re.compile(r'(?<!@)@(\w+)')
_NUMBERED_PARAM = re.compile(r'(?<!@)@(\d+)')
_ESCAPED_AT = re.compile(r'@@')
_ESCAPED_MARKER = re.compile(r'(?<!@)(?:@@)+\d+')
_SELECT = re.compile(r'^\s*SELECT\s', re.IGNORECASE | re.DOTALL)
_FROM = re.compile(r'^\s*FROM\s', re.IGNORECASE | re.DOTALL)

MARKER_STYLES = ('at', 'qmark', 'format', 'numeric')

# Values that are iterable but bind as a single parameter
_SCALAR_ITERABLES = (str, bytes, bytearray, memoryview, Mapping)


# =============================================================================
# Placeholder Resolution
# =============================================================================

def _is_expandable(value: Any) -> bool:
    """True for collections that stand in for a list of parameters."""
    return isinstance(value, Iterable) and not isinstance(value, _SCALAR_ITERABLES)


def _lookup_named(name: str, args_src: tuple | list, sql: str) -> Any:
    """Find the first argument that provides `name`.
    """
    for arg in args_src:
        if isinstance(arg, Mapping):
            if name in arg:
                return arg[name]
        elif hasattr(arg, name):
            return getattr(arg, name)

    raise UnresolvedPlaceholderError(
        f"Parameter '@{name}' specified but none of the passed arguments have "
        f"a property with this name (in '{sql}')", placeholder=name, sql=sql)


def process_params(sql: str, args_src: tuple | list, args_dest: list) -> str:
    """Resolve `@` placeholders against `args_src`, appending to `args_dest`.

    Every placeholder is replaced by `@<index into args_dest>` so that several
    fragments can share one argument list.

    Parameters
        sql: SQL text with `@N`/`@name` placeholders
        args_src: Arguments local to this SQL text
        args_dest: Shared argument list, extended in place

    Returns
        SQL with placeholders renumbered against `args_dest`
    """
    def replace(match: re.Match) -> str:
        param = match.group(1)

        if param.isdigit():
            index = int(param)
            if index >= len(args_src):
                raise PlaceholderRangeError(
                    f"Parameter '@{index}' specified but only {len(args_src)} "
                    f"parameters supplied (in `{sql}`)", placeholder=param, sql=sql)
            value = args_src[index]
        else:
            value = _lookup_named(param, args_src, sql)

        if _is_expandable(value):
            markers = []
            for item in value:
                markers.append(f'@{len(args_dest)}')
                args_dest.append(item)
            return ','.join(markers)

        args_dest.append(value)
        return f'@{len(args_dest) - 1}'

    return _PARAM.sub(replace, sql)


# =============================================================================
# Native Marker Rendering
# =============================================================================

def to_native(sql: str, args: list | tuple, marker_style: str = 'at') -> tuple[str, list]:
    """Translate neutral `@N` markers into a driver's parameter style.

    Parameters
        sql: SQL with `@N` markers, as produced by `process_params`
        args: Argument list the markers index into
        marker_style: One of 'at' (@N), 'qmark' (?), 'format' (%s), 'numeric' (:1)

    Returns
        Tuple of native SQL and the argument list in binding order
    """
    if marker_style not in MARKER_STYLES:
        raise ValueError(f'Unknown marker style: {marker_style}. Available: {MARKER_STYLES}')

    if marker_style == 'at':
        # an unescaped `@@0` would read as a live marker
        escaped = _ESCAPED_MARKER.search(sql)
        if escaped:
            raise PlaceholderError(
                f"Literal '{escaped.group(0)}' cannot be rendered in the 'at' marker style "
                f"(in `{sql}`)", placeholder=escaped.group(0).lstrip('@'), sql=sql)
        return _ESCAPED_AT.sub('@', sql), list(args)

    if marker_style == 'format':
        sql = sql.replace('%', '%%')

    ordered: list[Any] = []

    def replace(match: re.Match) -> str:
        index = int(match.group(1))
        if index >= len(args):
            raise PlaceholderRangeError(
                f"Parameter '@{index}' specified but only {len(args)} "
                f"parameters supplied (in `{sql}`)", placeholder=match.group(1), sql=sql)
        ordered.append(args[index])
        if marker_style == 'qmark':
            return '?'
        if marker_style == 'format':
            return '%s'
        return f':{len(ordered)}'

    native = _NUMBERED_PARAM.sub(replace, sql)
    return _ESCAPED_AT.sub('@', native), ordered


def render(sql: 'Sql | str', *args: Any, marker_style: str = 'at') -> tuple[str, list]:
    """Render a fragment chain (or SQL text plus arguments) to final form.
    """
    if not isinstance(sql, Sql):
        sql = Sql(sql, *args)
    return to_native(sql.sql, sql.arguments, marker_style)


# =============================================================================
# Fragment Builder
# =============================================================================

class Sql:
    """A chain of SQL text fragments, each with its own arguments.

    Fragments are joined with newlines when rendered. Consecutive `WHERE`
    fragments merge into one clause joined with `AND`, and consecutive
    `ORDER BY` fragments into one comma separated list:

        sql = (Sql.builder()
               .select('id', 'title')
               .from_('articles')
               .where('author_id = @0', 7)
               .where('published = @Published', {'Published': True})
               .order_by('posted DESC'))
    """

    __slots__ = ('_sql', '_args', '_rhs', '_lhs', '_sql_final', '_args_final')

    def __init__(self, sql: str = '', *args: Any) -> None:
        self._sql = sql
        self._args = args
        self._rhs: Sql | None = None
        self._lhs: Sql | None = None
        self._sql_final: str | None = None
        self._args_final: list | None = None

    @classmethod
    def builder(cls) -> 'Sql':
        """Start an empty chain."""
        return cls()

    def __repr__(self) -> str:
        return f'Sql({self.sql!r}, args={self.arguments!r})'

    def __str__(self) -> str:
        return self.sql

    @property
    def sql(self) -> str:
        """Rendered SQL text with `@N` markers."""
        self._build()
        return self._sql_final

    @property
    def arguments(self) -> list:
        """Rendered argument list."""
        self._build()
        return list(self._args_final)

    def _build(self) -> None:
        if self._sql_final is not None:
            return
        parts: list[str] = []
        args: list[Any] = []
        self.build(parts, args, None)
        self._sql_final = '\n'.join(parts)
        self._args_final = args

    def _invalidate(self) -> None:
        """Drop memoized output here and in every fragment upstream."""
        node = self
        while node is not None:
            node._sql_final = None
            node._args_final = None
            node = node._lhs

    def append(self, sql: 'Sql | str', *args: Any) -> 'Sql':
        """Append a fragment to the end of the chain.
        """
        if not isinstance(sql, Sql):
            sql = Sql(sql, *args)
        if sql._lhs is not None or sql is self:
            raise ValidationError('Fragment is already part of another Sql chain')

        tail = self
        while tail._rhs is not None:
            tail = tail._rhs
        if tail is sql:
            raise ValidationError('Fragment is already part of this Sql chain')
        tail._rhs = sql
        sql._lhs = tail
        tail._invalidate()
        return self

    def where(self, sql: str, *args: Any) -> 'Sql':
        return self.append(Sql(f'WHERE {sql}', *args))

    def order_by(self, *columns: Any) -> 'Sql':
        return self.append(Sql('ORDER BY ' + ', '.join(str(c) for c in columns)))

    def select(self, *columns: Any) -> 'Sql':
        return self.append(Sql('SELECT ' + ', '.join(str(c) for c in columns)))

    def from_(self, *tables: Any) -> 'Sql':
        return self.append(Sql('FROM ' + ', '.join(str(t) for t in tables)))

    def group_by(self, *columns: Any) -> 'Sql':
        return self.append(Sql('GROUP BY ' + ', '.join(str(c) for c in columns)))

    def inner_join(self, table: str) -> 'Sql':
        return self.append(Sql(f'INNER JOIN {table}'))

    def left_join(self, table: str) -> 'Sql':
        return self.append(Sql(f'LEFT JOIN {table}'))

    def on(self, sql: str, *args: Any) -> 'Sql':
        return self.append(Sql(f'ON {sql}', *args))

    def _is(self, keyword: str) -> bool:
        return self._sql[:len(keyword)].upper() == keyword

    def build(self, parts: list[str], args: list, lhs: 'Sql | None') -> None:
        """Render this fragment and the rest of the chain into `parts`/`args`.

        `lhs` is the previous fragment, used for the clause merging rule.
        """
        node, prev = self, lhs
        while node is not None:
            if node._sql:
                sql = process_params(node._sql, node._args, args)

                if prev is not None and prev._is('WHERE ') and node._is('WHERE '):
                    sql = 'AND ' + sql[6:]
                if prev is not None and prev._is('ORDER BY ') and node._is('ORDER BY '):
                    sql = ', ' + sql[9:]

                parts.append(sql)
            node, prev = node._rhs, node


# =============================================================================
# Auto Select
# =============================================================================

def has_select(sql: str) -> bool:
    """Check if SQL already starts with SELECT."""
    return bool(_SELECT.match(sql))


def has_from(sql: str) -> bool:
    """Check if SQL starts with FROM."""
    return bool(_FROM.match(sql))


def add_select_clause(sql: str, metadata: 'EntityMetadata') -> str:
    """Prefix a WHERE/ORDER BY style suffix with the entity's default SELECT.
    """
    if has_select(sql):
        return sql

    if has_from(sql):
        return f'SELECT {metadata.query_columns} {sql}'.rstrip()

    return f'SELECT {metadata.query_columns} FROM {metadata.table_name} {sql}'.rstrip()
