"""
CSV Directory Adapters

Bridges between the transfer engines and a directory holding one
<table>.csv file per table.
"""

from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Union
import logging
import os

from mssql_csv_transfer.bulk_export import ExportTable
from mssql_csv_transfer.csv_reader import CsvSource
from mssql_csv_transfer.csv_writer import CsvWriter, Formatter

logger = logging.getLogger(__name__)


def sources_from_directory(
    path: Union[str, os.PathLike],
    pattern: str = '*.csv'
) -> Iterator[CsvSource]:
    """
    Yield one import source per CSV file, ordered by file name.

    The table name is the file name without extension. Each source opens
    its file on first read and closes it once its rows are consumed.

    Args:
        path: Directory to read
        pattern: Glob pattern selecting the files

    Yields:
        CsvSource per file
    """
    directory = Path(path)
    if not directory.is_dir():
        raise FileNotFoundError(f"Input directory not found: {directory}")

    files = sorted((f for f in directory.glob(pattern) if f.is_file()), key=lambda f: f.name)
    logger.info(f"Found {len(files)} CSV files in {directory}")

    for file in files:
        yield CsvSource(file.stem, file)


def export_to_directory(
    tables: Iterable[ExportTable],
    output_directory: Union[str, os.PathLike],
    include_empty_tables: bool = False,
    formatter: Optional[Formatter] = None,
) -> Dict[str, int]:
    """
    Write each exported table to <output_directory>/<table>.csv.

    The directory is created when the first file is written. Tables without
    rows produce no file unless include_empty_tables is set.

    Args:
        tables: Table results from bulk_export
        output_directory: Target directory
        include_empty_tables: Write header-only files for empty tables
        formatter: Value formatter passed to CsvWriter

    Returns:
        Dictionary of table name to rows written (files written only)
    """
    directory = Path(output_directory)
    written: Dict[str, int] = {}

    for table in tables:
        writer: Optional[CsvWriter] = None

        def require_writer() -> CsvWriter:
            nonlocal writer
            if writer is None:
                directory.mkdir(parents=True, exist_ok=True)
                writer = CsvWriter(
                    directory / f"{table.name}.csv",
                    [column.name for column in table.columns],
                    formatter,
                )
            return writer

        try:
            for row in table.rows():
                require_writer().write_record(row)

            if include_empty_tables:
                require_writer()
        except Exception:
            if writer is not None:
                writer.close()
                partial = directory / f"{table.name}.csv"
                logger.warning(f"Removing partially written {partial}")
                partial.unlink(missing_ok=True)
            raise
        finally:
            if writer is not None:
                writer.close()

        if writer is not None:
            written[table.name] = writer.records_written
            logger.info(f"Wrote {writer.records_written:,} rows to {table.name}.csv")
        else:
            logger.debug(f"Skipping empty table {table.name}")

    return written
