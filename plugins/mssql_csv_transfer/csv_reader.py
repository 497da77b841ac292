"""
CSV Reader Module

This module parses the line-oriented CSV dialect written by CsvWriter into
lazily decoded values. Quoted fields may contain the delimiter, doubled
quotes and line breaks; an unquoted empty field is a null, while a quoted
empty field ("") is an empty string.
"""

from datetime import date, datetime, time as dt_time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterator, List, Optional, TextIO, Union
import binascii
import logging
import os

from mssql_csv_transfer.exceptions import CsvFormatError, TypeConversionError
from mssql_csv_transfer.utils import truncate_string

logger = logging.getLogger(__name__)

SEPARATOR = ','
QUOTE = '"'


class CsvValue:
    """
    A field value whose decoding is deferred until a consumer asks for it.

    Holds either the raw text still containing doubled quotes, or the
    resolved string. Unescaping happens at most once.
    """

    __slots__ = ('_text', '_has_escaped_quotes')

    def __init__(self, raw: str, has_escaped_quotes: bool = False):
        self._text = raw
        self._has_escaped_quotes = has_escaped_quotes

    def __str__(self) -> str:
        if self._has_escaped_quotes:
            self._text = _collapse_quotes(self._text)
            self._has_escaped_quotes = False
        return self._text

    def __repr__(self) -> str:
        return f"CsvValue({str(self)!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, CsvValue):
            return str(self) == str(other)
        if isinstance(other, str):
            return str(self) == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(str(self))

    @property
    def is_resolved(self) -> bool:
        """True once the string form no longer needs unescaping."""
        return not self._has_escaped_quotes

    def to_bool(self) -> bool:
        """Integer text is true when nonzero; otherwise true/false literals."""
        text = str(self).strip()
        try:
            return int(text) != 0
        except ValueError:
            pass
        lowered = text.lower()
        if lowered == 'true':
            return True
        if lowered == 'false':
            return False
        raise TypeConversionError(f"Cannot convert {text!r} to bool")

    def to_int(self) -> int:
        return self._parse(int, 'int')

    def to_float(self) -> float:
        return self._parse(float, 'float')

    def to_decimal(self) -> Decimal:
        return self._parse(Decimal, 'Decimal')

    def to_datetime(self) -> datetime:
        return self._parse(datetime.fromisoformat, 'datetime')

    def to_date(self) -> date:
        text = str(self).strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            # datetime text for a date column
            return self.to_datetime().date()

    def to_time(self) -> dt_time:
        return self._parse(dt_time.fromisoformat, 'time')

    def to_bytes(self) -> bytes:
        """Decode 0x-prefixed hexadecimal text."""
        text = str(self).strip()
        if not text[:2].lower() == '0x':
            raise TypeConversionError(f"Cannot convert {truncate_string(text, 40)!r} to bytes: missing 0x prefix")
        try:
            return binascii.unhexlify(text[2:])
        except (binascii.Error, ValueError) as e:
            raise TypeConversionError(f"Cannot convert {truncate_string(text, 40)!r} to bytes: {e}") from e

    def convert(self, target_type: type) -> Any:
        """
        Convert to the given Python type.

        Raises:
            TypeConversionError: If the type is unsupported or the text does
                not parse
        """
        converter = _CONVERTERS.get(target_type)
        if converter is None:
            raise TypeConversionError(f"Unsupported conversion of CSV value to {target_type.__name__}")
        return converter(self)

    def _parse(self, parser: Callable[[str], Any], type_name: str) -> Any:
        text = str(self).strip()
        try:
            return parser(text)
        except (ValueError, InvalidOperation) as e:
            raise TypeConversionError(f"Cannot convert {truncate_string(text, 40)!r} to {type_name}") from e


_CONVERTERS: Dict[type, Callable[[CsvValue], Any]] = {
    str: str,
    bool: CsvValue.to_bool,
    int: CsvValue.to_int,
    float: CsvValue.to_float,
    Decimal: CsvValue.to_decimal,
    datetime: CsvValue.to_datetime,
    date: CsvValue.to_date,
    dt_time: CsvValue.to_time,
    bytes: CsvValue.to_bytes,
}


def _collapse_quotes(text: str) -> str:
    """Turn each doubled quote into a single one; a lone quote is an error."""
    parts = []
    pos = 0
    while True:
        q = text.find(QUOTE, pos)
        if q < 0:
            parts.append(text[pos:])
            break
        if q + 1 >= len(text) or text[q + 1] != QUOTE:
            raise CsvFormatError("Unexpected single quote in quoted field")
        parts.append(text[pos:q + 1])
        pos = q + 2
    return ''.join(parts)


class CsvSource:
    """
    Import source reading one CSV file or stream.

    The first record is the header; column_names() reads it once. rows()
    yields the remaining records as lists aligned with the header, holding
    CsvValue or None (null) items. The data can only be consumed once.

    Given a path, the source opens the file (UTF-8) on first read and closes
    it when rows() is exhausted or abandoned, or on close(). A stream passed
    in by the caller is never closed here.
    """

    def __init__(self, name: str, reader: Union[str, os.PathLike, TextIO]):
        self._name = name
        if isinstance(reader, (str, os.PathLike)):
            self._path: Optional[str] = os.fspath(reader)
            self._reader: Optional[TextIO] = None
        else:
            self._path = None
            self._reader = reader
        self._fields: Optional[List[str]] = None
        self._line_number = 0

    @property
    def name(self) -> str:
        return self._name

    def column_names(self) -> List[str]:
        if self._fields is None:
            self._fields = self._read_header()
        return list(self._fields)

    def rows(self) -> Iterator[List[Optional[CsvValue]]]:
        try:
            while True:
                record = self._read_record()
                if record is None:
                    return
                yield record
        finally:
            self.close()

    def close(self) -> None:
        """Close the file if this source opened it."""
        if self._path is not None and self._reader is not None and not self._reader.closed:
            self._reader.close()
            logger.debug(f"Closed {self._path} after {self._line_number} lines")

    def __enter__(self) -> 'CsvSource':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _read_line(self) -> Optional[str]:
        if self._reader is None:
            self._reader = open(self._path, 'r', encoding='utf-8', newline='')
        line = self._reader.readline()
        if not line:
            return None
        self._line_number += 1
        if line.endswith('\n'):
            line = line[:-1]
            if line.endswith('\r'):
                line = line[:-1]
        return line

    def _read_header(self) -> List[str]:
        line = self._read_line()
        if line is None:
            raise CsvFormatError(f"Empty CSV file for {self._name}")
        fields = ['' if value is None else str(value) for value in self._parse_line(line)]
        logger.debug(f"Read header of {self._name}: {len(fields)} columns")
        return fields

    def _read_record(self) -> Optional[List[Optional[CsvValue]]]:
        fields = self._fields if self._fields is not None else self.column_names()
        line = self._read_line()
        if line is None:
            return None

        record: List[Optional[CsvValue]] = [None] * len(fields)
        for i, value in enumerate(self._parse_line(line)):
            if i >= len(fields):
                raise CsvFormatError(
                    f"{self._name} line {self._line_number}: record has more fields "
                    f"than the header ({len(fields)})"
                )
            record[i] = value
        return record

    def _parse_line(self, line: str) -> Iterator[Optional[CsvValue]]:
        pos = 0
        while pos < len(line):
            if line[pos] == QUOTE:
                value, line, pos = self._parse_quoted(line, pos)
                yield value
                if pos < len(line) and line[pos] != SEPARATOR:
                    raise CsvFormatError(
                        f"{self._name} line {self._line_number}: expected separator after quoted field"
                    )
                pos += 1
            else:
                end = line.find(SEPARATOR, pos)
                if end < 0:
                    end = len(line)
                yield CsvValue(line[pos:end]) if end > pos else None
                pos = end + 1

    def _parse_quoted(self, line: str, pos: int):
        """
        Parse a quoted field starting at line[pos].

        Returns:
            (value, current line, position just after the closing quote);
            the current line differs from the input for multiline fields
        """
        chunks: List[str] = []
        start = pos + 1
        search = start
        has_escaped_quotes = False
        while True:
            end = line.find(QUOTE, search)
            if end < 0:
                chunks.append(line[start:])
                next_line = self._read_line()
                if next_line is None:
                    raise CsvFormatError(
                        f"Unexpected end of CSV file {self._name} inside a multiline quoted field"
                    )
                line = next_line
                start = search = 0
                continue
            if end + 1 < len(line) and line[end + 1] == QUOTE:
                has_escaped_quotes = True
                search = end + 2
                continue
            break

        chunks.append(line[start:end])
        return CsvValue('\n'.join(chunks), has_escaped_quotes), line, end + 1
