"""
Bulk Import Module

This module loads a sequence of named row sources into SQL Server tables.
All tables are loaded inside one transaction: either every source is
committed or the database is left exactly as it was.

Rows are streamed through BulkCopy, which converts values to the destination
column types and sends them in fixed-size chunks with pyodbc's
fast_executemany, so memory use is bounded by the batch size rather than the
table size.
"""

from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
import logging
import time

import pyodbc

from mssql_csv_transfer.csv_reader import CsvValue
from mssql_csv_transfer.exceptions import BulkLoadError, ColumnMappingError
from mssql_csv_transfer.odbc_helper import ConnectionLike, connection_scope, run
from mssql_csv_transfer.options import BulkImportOptions
from mssql_csv_transfer.schema_extractor import DestinationColumn, get_destination_columns
from mssql_csv_transfer.utils import quote_identifier, quote_table_name

logger = logging.getLogger(__name__)


# Python type requested from CSV values for each SQL Server type
SQL_TYPE_CONVERSIONS = {
    "bit": bool,
    "tinyint": int,
    "smallint": int,
    "int": int,
    "bigint": int,
    "decimal": Decimal,
    "numeric": Decimal,
    "money": Decimal,
    "smallmoney": Decimal,
    "float": float,
    "real": float,
    "date": date,
    "time": dt_time,
    "datetime": datetime,
    "datetime2": datetime,
    "smalldatetime": datetime,
    "binary": bytes,
    "varbinary": bytes,
    "image": bytes,
    "timestamp": bytes,
    "rowversion": bytes,
}


class ImportSource(Protocol):
    """A named row source: column names are read once, rows consumed once."""

    @property
    def name(self) -> str: ...

    def column_names(self) -> Sequence[str]: ...

    def rows(self) -> Iterable[Sequence[Any]]: ...


def python_type_for(sql_type: str) -> type:
    """Python type a CSV value is converted to for a SQL Server column type."""
    return SQL_TYPE_CONVERSIONS.get(sql_type.lower().strip(), str)


def map_columns(
    table_name: str,
    source_columns: Sequence[str],
    destination_columns: Sequence[DestinationColumn],
) -> List[Tuple[int, DestinationColumn]]:
    """
    Map source columns to destination columns by name.

    Names are compared case-insensitively, as with the default SQL Server
    collations.

    Returns:
        (source index, destination column) pairs in source order

    Raises:
        ColumnMappingError: If a source column has no destination column
    """
    by_name = {col.name.lower(): col for col in destination_columns}
    mapping = []
    seen = set()
    for index, name in enumerate(source_columns):
        key = name.lower()
        column = by_name.get(key)
        if column is None:
            raise ColumnMappingError(
                f"Column '{name}' of source {table_name} does not exist in the destination table"
            )
        if key in seen:
            raise ColumnMappingError(f"Column '{name}' appears more than once in source {table_name}")
        seen.add(key)
        mapping.append((index, column))
    return mapping


class BulkCopy:
    """
    Streams rows into one destination table in fixed-size chunks.

    The caller owns the transaction; BulkCopy only issues statements on the
    connection it is given.
    """

    def __init__(
        self,
        conn: pyodbc.Connection,
        table_name: str,
        columns: Sequence[Tuple[int, DestinationColumn]],
        options: BulkImportOptions,
    ):
        """
        Initialize the bulk loader.

        Args:
            conn: Open connection with an active transaction
            table_name: Destination table
            columns: (source index, destination column) pairs to load
            options: Batch size, timeout, identity and null handling
        """
        self.conn = conn
        self.table_name = table_name
        self.options = options
        self.columns = [
            (index, column) for index, column in columns
            if not (options.skip_identity and column.is_identity)
        ]
        self._converters = [
            python_type_for(column.data_type) for _, column in self.columns
        ]
        self.rows_copied = 0

    @property
    def insert_sql(self) -> str:
        column_list = ', '.join(quote_identifier(column.name) for _, column in self.columns)
        placeholders = ', '.join(self._placeholder(column) for _, column in self.columns)
        return f"INSERT INTO {quote_table_name(self.table_name)} ({column_list}) VALUES ({placeholders})"

    @property
    def keeps_identity(self) -> bool:
        return any(column.is_identity for _, column in self.columns)

    def write_to_server(self, rows: Iterable[Sequence[Any]]) -> int:
        """
        Load all rows, flushing every batch_size rows.

        Returns:
            Number of rows copied
        """
        if not self.columns:
            raise ColumnMappingError(f"No columns to load into {self.table_name}")

        previous_timeout = self.conn.timeout
        self.conn.timeout = int(self.options.timeout.total_seconds())
        identity_insert = self.keeps_identity
        if identity_insert:
            run(self.conn, f"SET IDENTITY_INSERT {quote_table_name(self.table_name)} ON")

        cursor = self.conn.cursor()
        cursor.fast_executemany = True
        try:
            batch: List[List[Any]] = []
            for row in rows:
                batch.append(self._convert_row(row))
                if len(batch) >= self.options.batch_size:
                    self._flush(cursor, batch)
                    batch = []
            if batch:
                self._flush(cursor, batch)
        except Exception:
            if identity_insert:
                self._reset_identity_insert()
            raise
        finally:
            cursor.close()
            self.conn.timeout = previous_timeout

        if identity_insert:
            run(self.conn, f"SET IDENTITY_INSERT {quote_table_name(self.table_name)} OFF")
        return self.rows_copied

    def _placeholder(self, column: DestinationColumn) -> str:
        # Expression defaults (getdate(), newid(), ...) are evaluated by the server
        if self.options.keep_nulls or column.has_literal_default or not column.default_expression:
            return '?'
        return f"ISNULL(?, {column.default_expression})"

    def _convert_row(self, row: Sequence[Any]) -> List[Any]:
        values = []
        for (index, column), target_type in zip(self.columns, self._converters):
            value = row[index]
            if value is None:
                if not self.options.keep_nulls and column.has_literal_default:
                    value = column.default_value
            elif isinstance(value, CsvValue):
                value = value.convert(target_type)
            values.append(value)
        return values

    def _flush(self, cursor: pyodbc.Cursor, batch: List[List[Any]]) -> None:
        try:
            cursor.executemany(self.insert_sql, batch)
        except pyodbc.Error as e:
            logger.error(f"Error loading batch into {self.table_name}: {e}")
            raise BulkLoadError(self.table_name, str(e)) from e
        self.rows_copied += len(batch)
        logger.info(f"{self.table_name}: {self.rows_copied:,} rows copied")

    def _reset_identity_insert(self) -> None:
        try:
            run(self.conn, f"SET IDENTITY_INSERT {quote_table_name(self.table_name)} OFF")
        except Exception:
            logger.exception(f"Exception occurred resetting IDENTITY_INSERT on {self.table_name}")


def bulk_import(
    connection: ConnectionLike,
    sources: Iterable[ImportSource],
    options: Optional[BulkImportOptions] = None
) -> Dict[str, Any]:
    """
    Load every source into the table it names, in one transaction.

    Args:
        connection: Open pyodbc connection (left open) or OdbcConnectionHelper
            (a connection is opened and closed by this call)
        sources: Named row sources, loaded in the order given
        options: Import options

    Returns:
        Result dictionary with per-table row counts and timing

    Raises:
        ColumnMappingError: If a source column cannot be mapped
        BulkLoadError: If the destination rejects rows
    """
    options = options or BulkImportOptions()
    start_time = time.time()
    tables: Dict[str, int] = {}

    source_iter = iter(sources)
    try:
        with connection_scope(connection, 'bulk import') as conn:
            previous_autocommit = conn.autocommit
            conn.autocommit = False
            try:
                for source in source_iter:
                    try:
                        tables[source.name] = _import_source(conn, source, options)
                    finally:
                        _close_if_closable(source)
                conn.commit()
            except Exception:
                logger.error("Bulk import failed, rolling back all tables")
                conn.rollback()
                raise
            finally:
                conn.autocommit = previous_autocommit
    finally:
        _close_if_closable(source_iter)

    elapsed_time = time.time() - start_time
    total_rows = sum(tables.values())
    logger.info(
        f"Imported {total_rows:,} rows into {len(tables)} tables in {elapsed_time:.2f} seconds"
    )
    return {
        'tables': tables,
        'total_rows': total_rows,
        'elapsed_time_seconds': elapsed_time,
    }


def _import_source(conn: pyodbc.Connection, source: ImportSource, options: BulkImportOptions) -> int:
    table_name = source.name

    if options.truncate:
        logger.warning(f"Replacing data in {table_name}")
        run(conn, f"TRUNCATE TABLE {quote_table_name(table_name)}")
    else:
        logger.debug(f"Importing data into {table_name}")

    fields = list(source.column_names())
    destination = get_destination_columns(conn, table_name)
    if not destination:
        raise ColumnMappingError(f"Destination table {table_name} does not exist")

    bulk_copy = BulkCopy(conn, table_name, map_columns(table_name, fields, destination), options)
    rows = bulk_copy.write_to_server(source.rows())
    logger.info(f"Loaded {rows:,} rows into {table_name}")
    return rows


def _close_if_closable(obj: Any) -> None:
    close = getattr(obj, 'close', None)
    if close is not None:
        close()
