"""
SQL Server <-> CSV Bulk Transfer

This package streams tables between a SQL Server database and a directory of
CSV files, in both directions.

Modules:
- bulk_export: Export all tables from one consistent snapshot read
- bulk_import: Load CSV sources into tables inside one transaction
- csv_reader / csv_writer: Lossless CSV codec (nulls, quotes, multiline text, blobs)
- csv_directory: One <table>.csv file per table
- schema_extractor: Table/column discovery and default expression parsing
- odbc_helper: pyodbc connection handling

Configuration:
- MSSQL_CONNECTION_STRING: ODBC connection string for OdbcConnectionHelper.from_env()
- BULK_IMPORT_BATCH_SIZE, BULK_IMPORT_TIMEOUT, BULK_IMPORT_TRUNCATE,
  BULK_IMPORT_SKIP_IDENTITY, BULK_IMPORT_KEEP_NULLS: import defaults
"""

__version__ = "1.0.0"

from mssql_csv_transfer.bulk_export import ExportColumn, ExportTable, bulk_export
from mssql_csv_transfer.bulk_import import BulkCopy, bulk_import
from mssql_csv_transfer.csv_directory import export_to_directory, sources_from_directory
from mssql_csv_transfer.csv_reader import CsvSource, CsvValue
from mssql_csv_transfer.csv_writer import CsvWriter, default_formatter
from mssql_csv_transfer.odbc_helper import OdbcConnectionHelper
from mssql_csv_transfer.options import BulkExportOptions, BulkImportOptions

__all__ = [
    "bulk_export",
    "bulk_import",
    "export_to_directory",
    "sources_from_directory",
    "BulkCopy",
    "BulkExportOptions",
    "BulkImportOptions",
    "CsvSource",
    "CsvValue",
    "CsvWriter",
    "ExportColumn",
    "ExportTable",
    "OdbcConnectionHelper",
    "default_formatter",
]
