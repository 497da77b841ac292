"""
Bulk Export Module

This module streams every selected table of a SQL Server database out of a
single multi-statement batch. The batch runs under snapshot isolation inside
a transaction that is always rolled back, so all tables are read from one
consistent point in time without blocking writers.

Results are exposed as a lazy sequence of ExportTable objects sharing one
forward-only cursor. Tables must be consumed in order; the engine drains any
rows a consumer did not read before it moves the cursor to the next result
set.
"""

from enum import Enum
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence, Tuple
import logging
import time

import pyodbc

from mssql_csv_transfer.odbc_helper import ConnectionLike, connection_scope
from mssql_csv_transfer.options import BulkExportOptions
from mssql_csv_transfer.schema_extractor import ColumnInfo, get_table_columns, get_table_names
from mssql_csv_transfer.utils import quote_identifier, truncate_string

logger = logging.getLogger(__name__)

# Undoes the session settings of the export batch; also ends a transaction
# left open when the consumer stopped before the end of the batch
RESET_SESSION = (
    "IF @@TRANCOUNT > 0 ROLLBACK TRANSACTION;\n"
    "SET TRANSACTION ISOLATION LEVEL READ COMMITTED;\n"
    "SET XACT_ABORT OFF;\n"
    "SET NOCOUNT OFF;"
)


class ExportColumn(NamedTuple):
    """
    Column of an exported table.

    Attributes:
        name: Column name
        type: Python type the row stream yields for this column
        default_value: Parsed column default (metadata only, never applied)
    """
    name: str
    type: type
    default_value: Any = None


class TableState(Enum):
    UNSTARTED = 'unstarted'
    STREAMING = 'streaming'
    DRAINED = 'drained'


class ExportTable:
    """
    One table's result set on the shared export cursor.

    The row stream moves through UNSTARTED -> STREAMING -> DRAINED. drain()
    reads and discards whatever is left so the cursor can advance to the next
    result set; it is called by the engine for every table, however much of
    it the consumer read.
    """

    def __init__(
        self,
        cursor: pyodbc.Cursor,
        name: str,
        columns: Sequence[ExportColumn],
        first_row: Optional[Tuple[Any, ...]],
    ):
        self._cursor = cursor
        self._name = name
        self._columns = tuple(columns)
        self._pending = first_row
        self._state = TableState.UNSTARTED if first_row is not None else TableState.DRAINED
        self.rows_read = 0
        self.rows_discarded = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def columns(self) -> Tuple[ExportColumn, ...]:
        return self._columns

    @property
    def state(self) -> TableState:
        return self._state

    def rows(self) -> Iterator[List[Any]]:
        """Yield the remaining rows of the table in cursor order."""
        while self._state is not TableState.DRAINED:
            row = self._next_row()
            if row is None:
                break
            self.rows_read += 1
            yield list(row)

    def drain(self) -> int:
        """
        Discard all unread rows of the result set.

        Returns:
            Number of rows discarded
        """
        discarded = 0
        while self._state is not TableState.DRAINED:
            if self._next_row() is None:
                break
            discarded += 1
        self.rows_discarded += discarded
        return discarded

    def _next_row(self) -> Optional[Tuple[Any, ...]]:
        self._state = TableState.STREAMING
        if self._pending is not None:
            row, self._pending = self._pending, None
            return row
        row = self._cursor.fetchone()
        if row is None:
            self._state = TableState.DRAINED
        return row


def build_export_batch(tables: Sequence[Tuple[str, Sequence[ColumnInfo]]]) -> str:
    """
    Build the export batch for the given tables.

    The batch selects every table inside one snapshot transaction which it
    rolls back at the end; the transaction never persists anything.

    Args:
        tables: (table name, columns) pairs in export order

    Returns:
        SQL batch text
    """
    parts = [
        "SET TRANSACTION ISOLATION LEVEL SNAPSHOT;",
        "SET NOCOUNT ON;",
        "SET XACT_ABORT ON;",
        "BEGIN TRANSACTION;",
    ]
    for table, columns in tables:
        column_list = ', '.join(quote_identifier(col.name) for col in columns)
        parts.append(f"SELECT {column_list} FROM {quote_identifier(table)} WITH (NOLOCK);")
    parts.append("ROLLBACK TRANSACTION")
    return '\n'.join(parts)


def bulk_export(
    connection: ConnectionLike,
    options: Optional[BulkExportOptions] = None
) -> Iterator[ExportTable]:
    """
    Export all selected tables as a lazy sequence of table results.

    Table and column discovery completes before any row is read. Each yielded
    ExportTable must be consumed (or abandoned) before the next one is
    requested; abandoned rows are drained automatically.

    Args:
        connection: Open pyodbc connection (left open) or OdbcConnectionHelper
            (a connection is opened and closed by this call)
        options: Table and column filters

    Yields:
        ExportTable per table, in table name order
    """
    options = options or BulkExportOptions()

    with connection_scope(connection, 'bulk export') as conn:
        logger.debug("Retrieving table names for bulk export")
        table_names = get_table_names(conn, options)
        tables = get_table_columns(conn, table_names, options)
        logger.info(f"Going to export data for {len(tables)} tables")

        if not tables:
            return

        batch = build_export_batch(tables)
        previous_autocommit = conn.autocommit
        conn.autocommit = True
        cursor = conn.cursor()
        batch_started = False
        try:
            start_time = time.time()
            try:
                cursor.execute(batch)
            except Exception as e:
                logger.error(f"Error executing export batch: {e}")
                logger.error(f"Batch: {truncate_string(batch, 500)}")
                raise
            batch_started = True

            for index, (table_name, columns) in enumerate(tables):
                if index > 0 and not cursor.nextset():
                    raise RuntimeError(
                        f"Export batch returned no result set for table {table_name}"
                    )

                table = _open_table(cursor, table_name, columns)
                yield table
                discarded = table.drain()
                if discarded:
                    logger.debug(f"Discarded {discarded:,} unread rows of {table_name}")
                logger.debug(
                    f"Finished {table_name}: {table.rows_read:,} rows read"
                )

            # Run the rest of the batch so ROLLBACK TRANSACTION executes
            while cursor.nextset():
                pass

            logger.info(
                f"Exported {len(tables)} tables in {time.time() - start_time:.2f} seconds"
            )
        finally:
            try:
                if batch_started:
                    cursor.execute(RESET_SESSION)
            finally:
                cursor.close()
                conn.autocommit = previous_autocommit


def _open_table(cursor: pyodbc.Cursor, table_name: str, columns: Sequence[ColumnInfo]) -> ExportTable:
    """Peek the first row of the current result set and describe its columns."""
    first_row = cursor.fetchone()
    description = cursor.description or []

    export_columns = []
    for i, column in enumerate(columns):
        value = first_row[i] if first_row is not None else None
        if value is not None:
            runtime_type = type(value)
        elif i < len(description):
            runtime_type = description[i][1]
        else:
            runtime_type = object
        export_columns.append(ExportColumn(column.name, runtime_type, column.default_value))

    return ExportTable(cursor, table_name, export_columns, first_row)
