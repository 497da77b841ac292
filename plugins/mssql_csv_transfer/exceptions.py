"""
Transfer Error Types

Every failure raised by the export/import engines and the CSV codec derives
from TransferError. Nothing here is retried; callers decide whether to re-run
the whole transfer.
"""


class TransferError(Exception):
    """Base class for all transfer failures."""


class DatabaseConnectionError(TransferError):
    """The database connection could not be opened or used."""


class CsvFormatError(TransferError, ValueError):
    """A CSV record is malformed (bad quoting, unexpected end of file, ...)."""


class TypeConversionError(TransferError, TypeError):
    """A value cannot be coerced to the type requested by its consumer."""


class ColumnMappingError(TypeConversionError):
    """A source column cannot be mapped to a destination column by name."""


class BulkLoadError(TransferError):
    """The destination rejected rows during a bulk load."""

    def __init__(self, table_name: str, message: str):
        super().__init__(f"Bulk load into {table_name} failed: {message}")
        self.table_name = table_name
