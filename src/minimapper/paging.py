"""
Pagination by rewriting SELECT statements.

A paged query is split into a row count query and a windowed page query:

    SELECT a, b FROM t WHERE x = @0 ORDER BY a
      → count: SELECT COUNT(*) FROM t WHERE x = @0
      → page:  dialect specific window over the same statement

The column list and the ORDER BY clause are found with a small scanner that
skips string literals, quoted identifiers and comments and only considers
tokens at parenthesis depth zero, so subqueries and function calls in the
column list do not confuse the boundaries. An ORDER BY is required since a
page window over an unordered result is not deterministic.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from minimapper.exceptions import UnsupportedStatementError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar('T')

PAGING_STYLES = ('row_number', 'offset_fetch', 'limit_offset')

# Order of alternatives matters: skippable regions first
_TOKEN = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<quoted>"(?:[^"]|"")*"|\[[^\]]*\]|`[^`]*`)
    |(?P<comment>--[^\n]*|/\*.*?\*/)
    |(?P<open>\()
    |(?P<close>\))
    |(?P<word>[A-Za-z_][\w$]*)
    """, re.VERBOSE | re.DOTALL)

_LEADING_SELECT = re.compile(r'\s*SELECT\s+', re.IGNORECASE)
_ORDER_BY_HEAD = re.compile(r'ORDER\s+BY\s+', re.IGNORECASE)
_DIRECTION = re.compile(r'\s+(ASC|DESC)\b', re.IGNORECASE)
_LIST_SEPARATOR = re.compile(r'\s*,\s*')
_EXPR_ATOM = re.compile(r"""[\w.]+|"(?:[^"]|"")*"|\[[^\]]*\]|`[^`]*`""")


@dataclass(frozen=True, slots=True)
class PagingParts:
    """Pieces of a statement split for paging."""
    count_sql: str
    select_removed: str
    order_by: str


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of results."""
    current_page: int
    items_per_page: int
    total_items: int
    total_pages: int
    items: list[T] = field(default_factory=list)

    @classmethod
    def create(cls, page: int, items_per_page: int, total_items: int,
               items: list[T]) -> 'Page[T]':
        return cls(current_page=page, items_per_page=items_per_page,
                   total_items=total_items,
                   total_pages=total_pages(total_items, items_per_page),
                   items=items)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def total_pages(total_items: int, items_per_page: int) -> int:
    """Number of pages needed for `total_items`."""
    validate_page_request(1, items_per_page)
    return math.ceil(total_items / items_per_page)


def validate_page_request(page: int, items_per_page: int) -> None:
    if page is None or page < 1:
        raise ValidationError(f'Page numbers start at 1, got {page}')
    if items_per_page is None or items_per_page < 1:
        raise ValidationError(f'Items per page must be positive, got {items_per_page}')


# =============================================================================
# Scanner
# =============================================================================

def _top_level_words(sql: str, start: int = 0):
    """Yield (word, start, end) for words at parenthesis depth zero."""
    depth = 0
    for match in _TOKEN.finditer(sql, start):
        kind = match.lastgroup
        if kind == 'open':
            depth += 1
        elif kind == 'close':
            depth = max(depth - 1, 0)
        elif kind == 'word' and depth == 0:
            yield match.group(), match.start(), match.end()


def _balanced_group_end(sql: str, pos: int) -> int:
    """Return the index after the parenthesis group opening at `pos`, or -1."""
    depth = 0
    for match in _TOKEN.finditer(sql, pos):
        kind = match.lastgroup
        if kind == 'open':
            depth += 1
        elif kind == 'close':
            depth -= 1
            if depth == 0:
                return match.end()
    return -1


def _find_column_list(sql: str) -> tuple[int, int] | None:
    """Span of the column list between a leading SELECT and its FROM."""
    head = _LEADING_SELECT.match(sql)
    if not head:
        return None
    for word, start, _ in _top_level_words(sql, head.end()):
        if word.upper() == 'FROM':
            return head.end(), start
    return None


def _parse_expression(sql: str, pos: int) -> int:
    """Parse one ORDER BY expression starting at `pos`; return its end or -1."""
    end = pos
    while end < len(sql):
        if sql[end] == '(':
            group_end = _balanced_group_end(sql, end)
            if group_end < 0:
                return -1
            end = group_end
            continue
        atom = _EXPR_ATOM.match(sql, end)
        if not atom or atom.end() == end:
            break
        end = atom.end()
    return end if end > pos else -1


def _find_order_by(sql: str) -> tuple[int, int] | None:
    """Span of the top-level `ORDER BY expr [ASC|DESC] [, ...]` clause."""
    words = list(_top_level_words(sql))
    for i, (word, start, _) in enumerate(words):
        if word.upper() != 'ORDER' or i + 1 >= len(words) or words[i + 1][0].upper() != 'BY':
            continue
        head = _ORDER_BY_HEAD.match(sql, start)
        if not head:
            continue

        end = _parse_expression(sql, head.end())
        if end < 0:
            continue
        while True:
            direction = _DIRECTION.match(sql, end)
            if direction:
                end = direction.end()
            separator = _LIST_SEPARATOR.match(sql, end)
            if not separator:
                break
            next_end = _parse_expression(sql, separator.end())
            if next_end < 0:
                break
            end = next_end
        return start, end
    return None


# =============================================================================
# Rewriting
# =============================================================================

def split_sql_for_paging(sql: str) -> PagingParts:
    """Split a SELECT statement into count query, column-less tail and ORDER BY.

    Parameters
        sql: Statement of the form `SELECT <columns> FROM ... ORDER BY ...`

    Returns
        PagingParts with
        - count_sql: the statement with COUNT(*) as column list and no ORDER BY
        - select_removed: the statement from the column list onward
        - order_by: the ORDER BY clause

    Raises
        UnsupportedStatementError: no SELECT ... FROM boundary or no ORDER BY
    """
    columns = _find_column_list(sql)
    if columns is None:
        raise UnsupportedStatementError(f'Unable to parse SQL statement for paged query: no SELECT ... FROM in `{sql}`')
    col_start, col_end = columns

    count_sql = sql[:col_start] + 'COUNT(*) ' + sql[col_end:]
    select_removed = sql[col_start:]

    order_by = _find_order_by(count_sql)
    if order_by is None:
        raise UnsupportedStatementError(f'Unable to parse SQL statement for paged query: no ORDER BY in `{sql}`')
    ob_start, ob_end = order_by

    order_by_clause = count_sql[ob_start:ob_end]
    count_sql = (count_sql[:ob_start].rstrip() + count_sql[ob_end:]).strip()

    return PagingParts(count_sql=count_sql, select_removed=select_removed,
                       order_by=order_by_clause)


def remove_order_by(sql: str) -> str:
    """Strip the top-level ORDER BY clause, if any."""
    order_by = _find_order_by(sql)
    if order_by is None:
        return sql
    start, end = order_by
    return (sql[:start].rstrip() + sql[end:]).rstrip()


def build_page_queries(page: int, items_per_page: int, sql: str, args: list | tuple,
                       paging_style: str) -> tuple[str, str, list[Any]]:
    """Build count and page queries in neutral `@N` form.

    `sql` must already have its placeholders resolved (as produced by
    `Sql.sql`), so the window bounds are referenced by their position in the
    extended argument list.

    Parameters
        page: 1-based page number
        items_per_page: Page size
        sql: Statement with ORDER BY
        args: Arguments referenced by `sql`
        paging_style: 'row_number', 'offset_fetch' or 'limit_offset'

    Returns
        Tuple of (count SQL, page SQL, page arguments). The count SQL uses the
        original `args`.
    """
    validate_page_request(page, items_per_page)
    if paging_style not in PAGING_STYLES:
        raise ValueError(f'Unknown paging style: {paging_style}. Available: {PAGING_STYLES}')

    parts = split_sql_for_paging(sql)
    skip = (page - 1) * items_per_page
    first, second = len(args), len(args) + 1

    if paging_style == 'row_number':
        select_removed = remove_order_by(parts.select_removed)
        page_sql = (f'SELECT * FROM (SELECT ROW_NUMBER() OVER ({parts.order_by}) AS rn, '
                    f'{select_removed}) paged WHERE rn > @{first} AND rn <= @{second}')
        page_args = [*args, skip, page * items_per_page]
    elif paging_style == 'offset_fetch':
        page_sql = f'{sql}\nOFFSET @{first} ROWS FETCH NEXT @{second} ROWS ONLY'
        page_args = [*args, skip, items_per_page]
    else:
        page_sql = f'{sql}\nLIMIT @{first} OFFSET @{second}'
        page_args = [*args, items_per_page, skip]

    logger.debug(f'Paged query ({paging_style}) page={page} size={items_per_page}:\n{page_sql}')
    return parts.count_sql, page_sql, page_args
