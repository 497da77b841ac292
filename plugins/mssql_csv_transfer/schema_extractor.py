"""
SQL Server Schema Discovery Module

This module discovers the tables and columns taking part in a transfer using
SQL Server catalog views, and decodes column default expressions into
Python values.
"""

from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple
import logging
import re

import pyodbc

from mssql_csv_transfer.odbc_helper import get_records
from mssql_csv_transfer.options import BulkExportOptions

logger = logging.getLogger(__name__)

BOOLEAN_TYPES = {'bit'}

_INTEGER_LITERAL = re.compile(r'^[+-]?\d+$')
_STRING_LITERAL = re.compile(r"^N?'((?:[^']|'')*)'$", re.DOTALL)


class ColumnInfo(NamedTuple):
    """A discovered column: name, declared type name and parsed default."""
    name: str
    data_type: str
    default_value: Any = None


class DestinationColumn(NamedTuple):
    """
    A destination column as seen by the import engine.

    default_expression keeps the default's SQL text as stored in the catalog
    so the server can evaluate defaults that are not literals.
    """
    name: str
    data_type: str
    is_identity: bool
    default_value: Any = None
    has_literal_default: bool = False
    default_expression: Optional[str] = None


def get_table_names(
    conn: pyodbc.Connection,
    options: Optional[BulkExportOptions] = None
) -> List[str]:
    """
    Get the user tables of the database ordered by name.

    System-shipped objects are excluded; the table filter of the options is
    applied here and nowhere else.

    Args:
        conn: Open pyodbc connection
        options: Export options carrying the table filter

    Returns:
        List of table names
    """
    options = options or BulkExportOptions()
    query = """
    SELECT name FROM sys.tables
    WHERE type = 'U' AND is_ms_shipped = 0
    ORDER BY name
    """
    tables = [row[0] for row in get_records(conn, query)]
    result = [table for table in tables if options.include_table(table)]

    skipped = len(tables) - len(result)
    if skipped:
        logger.info(f"Table filter excluded {skipped} of {len(tables)} tables")
    return result


def get_table_columns(
    conn: pyodbc.Connection,
    table_names: Sequence[str],
    options: Optional[BulkExportOptions] = None
) -> List[Tuple[str, List[ColumnInfo]]]:
    """
    Get the columns of the given tables with a single catalog query.

    Primary key columns come first, the rest follow in column_id order. The
    column filter is applied per (table, column); tables left without any
    column are dropped.

    Args:
        conn: Open pyodbc connection
        table_names: Tables to describe, in the order they should be returned
        options: Export options carrying the column filter

    Returns:
        List of (table name, columns) pairs in the order of table_names
    """
    options = options or BulkExportOptions()
    query = """
    SELECT t.name, c.name, type.name, OBJECT_DEFINITION(c.default_object_id)
    FROM sys.columns c
    INNER JOIN sys.tables t ON t.object_id = c.object_id
    INNER JOIN sys.types type ON type.user_type_id = c.user_type_id
    OUTER APPLY (
        SELECT TOP 1 1 is_pk
        FROM sys.index_columns ic
        INNER JOIN sys.indexes ix ON ix.object_id = ic.object_id AND ix.index_id = ic.index_id
        WHERE ix.is_primary_key = 1 AND ic.object_id = c.object_id AND ic.column_id = c.column_id
    ) ix
    ORDER BY t.name, c.object_id, IIF(ix.is_pk = 1, 0, 1), c.column_id
    """

    wanted = set(table_names)
    columns_by_table: Dict[str, List[ColumnInfo]] = {}
    for table, column, data_type, default in get_records(conn, query):
        if table not in wanted:
            continue
        if not options.include_column(table, column):
            continue
        columns_by_table.setdefault(table, []).append(
            ColumnInfo(column, data_type, parse_default(data_type, default))
        )

    result = []
    for table in table_names:
        columns = columns_by_table.get(table)
        if not columns:
            logger.info(f"Skipping table {table}: no columns selected")
            continue
        result.append((table, columns))
    return result


def get_destination_columns(conn: pyodbc.Connection, table_name: str) -> List[DestinationColumn]:
    """
    Get the columns of an import destination table.

    Args:
        conn: Open pyodbc connection
        table_name: Table name, optionally schema-qualified

    Returns:
        Columns in column_id order; empty if the table does not exist
    """
    query = """
    SELECT c.name, type.name, c.is_identity, OBJECT_DEFINITION(c.default_object_id)
    FROM sys.columns c
    INNER JOIN sys.types type ON type.user_type_id = c.user_type_id
    WHERE c.object_id = OBJECT_ID(?)
    ORDER BY c.column_id
    """
    result = []
    for name, data_type, is_identity, default in get_records(conn, query, [table_name]):
        value, is_literal = _parse_default(data_type, default)
        result.append(DestinationColumn(
            name, data_type, bool(is_identity), value, is_literal,
            default.strip() if default else None,
        ))
    return result


def parse_default(type_name: str, default_text: Optional[str]) -> Any:
    """
    Decode a SQL Server default expression into a Python value.

    Outer parentheses are stripped, integer literals become int (bool for
    bit columns) and quoted string literals lose their quotes. Anything else,
    such as a function call, is returned as the unwrapped expression text.

    Examples:
        >>> parse_default('bit', '((1))')
        True
        >>> parse_default('int', '((42))')
        42
        >>> parse_default('nvarchar', "('abc')")
        'abc'
        >>> parse_default('datetime', '(getdate())')
        'getdate()'
    """
    return _parse_default(type_name, default_text)[0]


def _parse_default(type_name: str, default_text: Optional[str]) -> Tuple[Any, bool]:
    """Return (value, is_literal) for a default expression."""
    if default_text is None:
        return None, False

    text = default_text.strip()
    while _is_wrapped(text):
        text = text[1:-1].strip()

    if _INTEGER_LITERAL.match(text):
        value = int(text)
        if type_name and type_name.lower() in BOOLEAN_TYPES:
            return value != 0, True
        return value, True

    match = _STRING_LITERAL.match(text)
    if match:
        return match.group(1).replace("''", "'"), True

    return text, False


def _is_wrapped(text: str) -> bool:
    """True if the whole text is enclosed by one matching pair of parentheses."""
    if len(text) < 2 or text[0] != '(' or text[-1] != ')':
        return False

    depth = 0
    in_string = False
    for i, ch in enumerate(text):
        if ch == "'":
            in_string = not in_string
        elif in_string:
            continue
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth == 0 and i < len(text) - 1:
                return False
    return depth == 0
