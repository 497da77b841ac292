"""
ODBC Connection Helper

This module wraps pyodbc for the transfer engines: a connection factory built
from an ODBC connection string (or environment variables), scoped acquisition
that only closes connections it opened itself, and small query helpers that
log the failing statement before re-raising.
"""

from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union
import contextlib
import logging
import os

import pyodbc

from mssql_csv_transfer.exceptions import DatabaseConnectionError
from mssql_csv_transfer.utils import truncate_string

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = '{ODBC Driver 18 for SQL Server}'


class OdbcConnectionHelper:
    """
    Connection factory for SQL Server ODBC connections.

    Passing a helper (rather than an open pyodbc connection) to an engine lets
    the engine open a connection for the duration of the call and close it
    afterwards.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the ODBC connection helper.

        Args:
            connection_string: ODBC connection string for the database
        """
        if not connection_string:
            raise ValueError("Connection string cannot be empty")
        self.connection_string = connection_string

    @classmethod
    def from_env(cls) -> 'OdbcConnectionHelper':
        """
        Build a helper from environment variables.

        MSSQL_CONNECTION_STRING wins when set. Otherwise the connection string
        is assembled from MSSQL_HOST, MSSQL_PORT, MSSQL_DATABASE,
        MSSQL_USERNAME and MSSQL_PASSWORD.
        """
        conn_str = os.environ.get('MSSQL_CONNECTION_STRING')
        if conn_str:
            return cls(conn_str)

        config = build_connection_config(
            host=os.environ.get('MSSQL_HOST', 'localhost'),
            port=int(os.environ.get('MSSQL_PORT', '1433')),
            database=os.environ.get('MSSQL_DATABASE'),
            login=os.environ.get('MSSQL_USERNAME'),
            password=os.environ.get('MSSQL_PASSWORD'),
        )
        return cls(';'.join([f"{k}={v}" for k, v in config.items() if v]))

    def get_conn(self) -> pyodbc.Connection:
        """
        Open a new pyodbc connection.

        Raises:
            DatabaseConnectionError: If the driver cannot connect
        """
        try:
            return pyodbc.connect(self.connection_string)
        except pyodbc.Error as e:
            logger.error(f"Error opening connection: {e}")
            raise DatabaseConnectionError(str(e)) from e

    def release_conn(self, conn: Optional[pyodbc.Connection]) -> None:
        """Close a connection opened by get_conn."""
        if conn is None:
            return
        conn.close()


def build_connection_config(
    host: str,
    port: Optional[int] = None,
    database: Optional[str] = None,
    login: Optional[str] = None,
    password: Optional[str] = None,
) -> dict:
    """
    Build ODBC connection parameters.

    Args:
        host: Server host name
        port: Server port (1433 is not appended)
        database: Database name
        login: SQL Server login; Windows authentication is used when empty
        password: Password for the login

    Returns:
        Dictionary of ODBC connection string keywords
    """
    port = port or 1433
    server = f"{host},{port}" if port != 1433 else host

    config = {
        'DRIVER': DEFAULT_DRIVER,
        'SERVER': server,
        'DATABASE': database,
        'TrustServerCertificate': 'yes',
    }

    if login:
        # SQL Server Authentication
        config['UID'] = login
        config['PWD'] = password or ''
        config['Trusted_Connection'] = 'no'
    else:
        # Windows Authentication (Kerberos)
        config['Trusted_Connection'] = 'yes'

    return config


ConnectionLike = Union[pyodbc.Connection, OdbcConnectionHelper]


@contextlib.contextmanager
def connection_scope(connection: ConnectionLike, purpose: str) -> Iterator[pyodbc.Connection]:
    """
    Yield an open connection for the duration of an operation.

    A helper gets a fresh connection that is closed on every exit path. An
    already-open connection is yielded as-is and left open.

    Args:
        connection: Open pyodbc connection or OdbcConnectionHelper
        purpose: Operation name used in log messages
    """
    if not isinstance(connection, OdbcConnectionHelper):
        yield connection
        return

    logger.debug(f"Opening connection for {purpose}")
    conn = connection.get_conn()
    try:
        yield conn
    finally:
        logger.debug(f"Closing connection after {purpose}")
        connection.release_conn(conn)


def get_records(
    conn: pyodbc.Connection,
    sql: str,
    parameters: Optional[Sequence[Any]] = None
) -> List[Tuple[Any, ...]]:
    """
    Execute a query on an open connection and return all rows.

    Args:
        conn: Open pyodbc connection
        sql: SQL query to execute
        parameters: Optional parameters for the query

    Returns:
        List of rows
    """
    cursor = conn.cursor()
    try:
        if parameters:
            cursor.execute(sql, parameters)
        else:
            cursor.execute(sql)
        return cursor.fetchall()
    except Exception as e:
        logger.error(f"Error executing query: {e}")
        logger.error(f"Query: {truncate_string(sql, 500)}")
        if parameters:
            logger.error(f"Parameters: {parameters}")
        raise
    finally:
        cursor.close()


def run(
    conn: pyodbc.Connection,
    sql: str,
    parameters: Optional[Sequence[Any]] = None
) -> int:
    """
    Execute a statement on an open connection without committing.

    Returns:
        Number of affected rows reported by the driver
    """
    cursor = conn.cursor()
    try:
        if parameters:
            cursor.execute(sql, parameters)
        else:
            cursor.execute(sql)
        return cursor.rowcount
    except Exception as e:
        logger.error(f"Error executing statement: {e}")
        logger.error(f"SQL: {truncate_string(sql, 500)}")
        if parameters:
            logger.error(f"Parameters: {parameters}")
        raise
    finally:
        cursor.close()
