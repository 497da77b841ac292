"""
Transfer Options

Option objects for the export and import engines. Import options can also be
read from environment variables so a deployment can tune batching without
code changes.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional
import os

DEFAULT_TIMEOUT = timedelta(minutes=5)
DEFAULT_BATCH_SIZE = 1000

TableFilter = Callable[[str], bool]
ColumnFilter = Callable[[str, str], bool]


@dataclass(frozen=True)
class BulkExportOptions:
    """
    Options for bulk export.

    Attributes:
        table_filter: Called with each table name; False drops the table
        column_filter: Called with (table, column); False drops the column
    """
    table_filter: Optional[TableFilter] = None
    column_filter: Optional[ColumnFilter] = None

    def include_table(self, table: str) -> bool:
        return self.table_filter is None or bool(self.table_filter(table))

    def include_column(self, table: str, column: str) -> bool:
        return self.column_filter is None or bool(self.column_filter(table, column))


@dataclass(frozen=True)
class BulkImportOptions:
    """
    Options for bulk import.

    Attributes:
        timeout: Server-side time limit for each table load
        batch_size: Rows per flushed chunk (bounds memory use)
        truncate: Clear each destination table before loading it
        skip_identity: Let the server generate identity values
        keep_nulls: Insert nulls as nulls instead of column defaults
    """
    timeout: timedelta = DEFAULT_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE
    truncate: bool = False
    skip_identity: bool = False
    keep_nulls: bool = True

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.timeout.total_seconds() < 0:
            raise ValueError(f"timeout cannot be negative, got {self.timeout}")

    @classmethod
    def from_env(cls) -> 'BulkImportOptions':
        """
        Read options from BULK_IMPORT_* environment variables.

        BULK_IMPORT_TIMEOUT is in seconds; boolean flags accept
        1/0, true/false and yes/no.
        """
        return cls(
            timeout=timedelta(seconds=float(
                os.environ.get('BULK_IMPORT_TIMEOUT', DEFAULT_TIMEOUT.total_seconds())
            )),
            batch_size=int(os.environ.get('BULK_IMPORT_BATCH_SIZE', str(DEFAULT_BATCH_SIZE))),
            truncate=_env_flag('BULK_IMPORT_TRUNCATE', False),
            skip_identity=_env_flag('BULK_IMPORT_SKIP_IDENTITY', False),
            keep_nulls=_env_flag('BULK_IMPORT_KEEP_NULLS', True),
        )


def _env_flag(name: str, default: bool) -> bool:
    val = os.environ.get(name, '').strip().lower()
    if not val:
        return default
    return val in ('1', 'true', 'yes', 'on')
