"""
Utility functions for the transfer engines.

This module provides SQL Server identifier quoting and the table name
pattern matching used for export exclusions.
"""

import fnmatch
from typing import Iterable


def quote_identifier(identifier: str) -> str:
    """
    Quote a SQL Server identifier with brackets.

    Closing brackets inside the name are doubled so the identifier can never
    terminate the quoting early.

    Args:
        identifier: Table or column name

    Returns:
        Bracket-quoted identifier

    Raises:
        ValueError: If the identifier is empty

    Examples:
        >>> quote_identifier("Users")
        '[Users]'
        >>> quote_identifier("odd]name")
        '[odd]]name]'
    """
    if not identifier:
        raise ValueError("Invalid identifier: cannot be empty")
    return "[" + identifier.replace("]", "]]") + "]"


def quote_table_name(table_name: str) -> str:
    """
    Quote a table name that may be schema-qualified.

    Dots separate schema and table, matching how OBJECT_ID() resolves the
    same text.

    Examples:
        >>> quote_table_name("Users")
        '[Users]'
        >>> quote_table_name("sales.Orders")
        '[sales].[Orders]'
    """
    return '.'.join(quote_identifier(part) for part in table_name.split('.'))


def matches_any_pattern(name: str, patterns: Iterable[str]) -> bool:
    """
    Check if a name matches any of the given wildcard patterns (case-insensitive).

    Examples:
        >>> matches_any_pattern("sysdiagrams", ["sys*"])
        True
        >>> matches_any_pattern("Users", ["Post*"])
        False
    """
    lowered = name.lower()
    return any(fnmatch.fnmatch(lowered, pattern.lower()) for pattern in patterns)


def truncate_string(s: str, max_length: int = 100, suffix: str = "...") -> str:
    """
    Truncate a string to a maximum length.

    Examples:
        >>> truncate_string("short")
        'short'
        >>> truncate_string("a" * 150, max_length=20)
        'aaaaaaaaaaaaaaaaa...'
    """
    if len(s) <= max_length:
        return s
    return s[:max_length - len(suffix)] + suffix
