"""
CSV Writer Module

This module writes records in the CSV dialect read by CsvSource. A null
becomes an empty unquoted field; a field is quoted when its text is empty or
contains the separator, a quote or a line break, with embedded quotes
doubled.
"""

from datetime import datetime
from typing import Any, Callable, IO, Iterable, Optional, Sequence, Union
import logging
import os

logger = logging.getLogger(__name__)

SEPARATOR = ','
QUOTE = '"'
_QUOTE_IF = frozenset([QUOTE, SEPARATOR, '\r', '\n'])

Formatter = Callable[[Any], Optional[str]]


def default_formatter(value: Any) -> Optional[str]:
    """
    Format a value to its SQL-style text representation.

    Examples:
        >>> default_formatter(None) is None
        True
        >>> default_formatter(True)
        '1'
        >>> default_formatter(b'\\x01\\xab')
        '0x01AB'
        >>> default_formatter(datetime(2024, 1, 2, 3, 4, 5))
        '2024-01-02 03:04:05'
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d %H:%M:%S')
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, (bytes, bytearray, memoryview)):
        return '0x' + bytes(value).hex().upper()
    return str(value)


def format_field(value: Optional[str]) -> str:
    """Quote a formatted field if needed; None becomes an empty field."""
    if value is None:
        return ''
    if value == '' or any(ch in _QUOTE_IF for ch in value):
        return QUOTE + value.replace(QUOTE, QUOTE + QUOTE) + QUOTE
    return value


class CsvWriter:
    """
    Writes a header followed by records to a text file or stream.

    The header is written before the first record, or on flush if no record
    is ever written. Use as a context manager: the writer is flushed and
    closed on every exit path.
    """

    def __init__(
        self,
        target: Union[str, os.PathLike, IO[str]],
        header: Iterable[str],
        formatter: Optional[Formatter] = None,
    ):
        """
        Initialize the writer.

        Args:
            target: File path (opened UTF-8) or an open text stream
            header: Column names written as the first record
            formatter: value -> text or None; defaults to default_formatter
        """
        if isinstance(target, (str, os.PathLike)):
            self._stream = open(target, 'w', encoding='utf-8')
        else:
            self._stream = target
        self._header: Optional[Sequence[str]] = list(header)
        self._formatter = formatter or default_formatter
        self._closed = False
        self.records_written = 0

    def write_record(self, record: Iterable[Any]) -> None:
        self._require_header()
        self._write_fields(self._formatter(item) for item in record)
        self.records_written += 1

    def flush(self) -> None:
        self._require_header()
        self._stream.flush()

    def close(self) -> None:
        if self._closed:
            return
        try:
            self.flush()
        finally:
            self._closed = True
            self._stream.close()
            logger.debug(f"Closed CSV writer after {self.records_written:,} records")

    def __enter__(self) -> 'CsvWriter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_header(self) -> None:
        if self._closed:
            raise ValueError("CsvWriter is closed")
        if self._header is not None:
            header, self._header = self._header, None
            self._write_fields(header)

    def _write_fields(self, values: Iterable[Optional[str]]) -> None:
        self._stream.write(SEPARATOR.join(format_field(value) for value in values))
        self._stream.write('\n')
