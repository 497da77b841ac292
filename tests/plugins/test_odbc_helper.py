"""
Tests for ODBC Connection Helper Module

These tests validate connection string building, scoped connection
ownership and the query helpers' error handling.
"""

import pytest
from unittest.mock import MagicMock, patch
import pyodbc
from mssql_csv_transfer.exceptions import DatabaseConnectionError
from mssql_csv_transfer.odbc_helper import (
    OdbcConnectionHelper,
    build_connection_config,
    connection_scope,
    get_records,
    run,
)


class TestBuildConnectionConfig:
    """Test ODBC connection parameters."""

    def test_sql_auth(self):
        config = build_connection_config('localhost', 1433, 'TestDB', 'sa', 'TestPassword123')

        assert config['DRIVER'] == '{ODBC Driver 18 for SQL Server}'
        # Port 1433 is default, so not appended to server string
        assert config['SERVER'] == 'localhost'
        assert config['DATABASE'] == 'TestDB'
        assert config['UID'] == 'sa'
        assert config['PWD'] == 'TestPassword123'
        assert config['Trusted_Connection'] == 'no'
        assert config['TrustServerCertificate'] == 'yes'

    def test_windows_auth(self):
        config = build_connection_config('localhost', 1433, 'TestDB')

        assert config['Trusted_Connection'] == 'yes'
        assert 'UID' not in config
        assert 'PWD' not in config

    def test_non_standard_port(self):
        config = build_connection_config('sqlserver.example.com', 14330, 'TestDB', 'user', 'pass')

        assert config['SERVER'] == 'sqlserver.example.com,14330'

    def test_default_port(self):
        config = build_connection_config('sqlserver.example.com', None, 'TestDB')

        assert config['SERVER'] == 'sqlserver.example.com'


class TestOdbcConnectionHelper:
    """Test the connection factory."""

    def test_empty_connection_string(self):
        with pytest.raises(ValueError):
            OdbcConnectionHelper('')

    def test_from_env_connection_string(self, monkeypatch):
        monkeypatch.setenv('MSSQL_CONNECTION_STRING', 'DSN=prod')

        assert OdbcConnectionHelper.from_env().connection_string == 'DSN=prod'

    def test_from_env_parts(self, monkeypatch):
        monkeypatch.delenv('MSSQL_CONNECTION_STRING', raising=False)
        monkeypatch.setenv('MSSQL_HOST', 'db.local')
        monkeypatch.setenv('MSSQL_PORT', '1500')
        monkeypatch.setenv('MSSQL_DATABASE', 'Sales')
        monkeypatch.setenv('MSSQL_USERNAME', 'loader')
        monkeypatch.setenv('MSSQL_PASSWORD', 'secret')

        conn_str = OdbcConnectionHelper.from_env().connection_string

        assert 'DRIVER={ODBC Driver 18 for SQL Server}' in conn_str
        assert 'SERVER=db.local,1500' in conn_str
        assert 'DATABASE=Sales' in conn_str
        assert 'UID=loader' in conn_str
        assert 'PWD=secret' in conn_str

    @patch('mssql_csv_transfer.odbc_helper.pyodbc.connect')
    def test_get_conn(self, mock_connect):
        helper = OdbcConnectionHelper('DSN=x')

        assert helper.get_conn() is mock_connect.return_value
        mock_connect.assert_called_once_with('DSN=x')

    @patch('mssql_csv_transfer.odbc_helper.pyodbc.connect')
    def test_get_conn_failure_wrapped(self, mock_connect):
        mock_connect.side_effect = pyodbc.Error('08001', 'server not found')

        with pytest.raises(DatabaseConnectionError, match='server not found'):
            OdbcConnectionHelper('DSN=x').get_conn()

    def test_release_none(self):
        OdbcConnectionHelper('DSN=x').release_conn(None)


class TestConnectionScope:
    """Test scoped connection ownership."""

    def test_open_connection_left_open(self):
        conn = MagicMock()

        with connection_scope(conn, 'test') as scoped:
            assert scoped is conn

        conn.close.assert_not_called()

    @patch('mssql_csv_transfer.odbc_helper.pyodbc.connect')
    def test_helper_connection_closed_on_error(self, mock_connect):
        conn = MagicMock()
        mock_connect.return_value = conn

        with pytest.raises(RuntimeError):
            with connection_scope(OdbcConnectionHelper('DSN=x'), 'test'):
                raise RuntimeError('boom')

        conn.close.assert_called_once()

    @patch('mssql_csv_transfer.odbc_helper.pyodbc.connect')
    def test_connection_error_propagates(self, mock_connect):
        mock_connect.side_effect = pyodbc.Error('08001', 'login failed')

        with pytest.raises(DatabaseConnectionError):
            with connection_scope(OdbcConnectionHelper('DSN=x'), 'test'):
                pytest.fail('body must not run')


class TestQueryHelpers:
    """Test get_records and run on an open connection."""

    @pytest.fixture
    def conn(self):
        connection = MagicMock()
        connection.cursor.return_value.fetchall.return_value = [(1, 'Alice'), (2, 'Bob')]
        connection.cursor.return_value.rowcount = 3
        return connection

    def test_get_records(self, conn):
        result = get_records(conn, 'SELECT id, name FROM users')

        assert result == [(1, 'Alice'), (2, 'Bob')]
        conn.cursor.return_value.execute.assert_called_once_with('SELECT id, name FROM users')
        conn.cursor.return_value.close.assert_called_once()

    def test_get_records_with_parameters(self, conn):
        get_records(conn, 'SELECT * FROM users WHERE id = ?', [1])

        conn.cursor.return_value.execute.assert_called_once_with(
            'SELECT * FROM users WHERE id = ?', [1]
        )

    def test_run_does_not_commit(self, conn):
        assert run(conn, 'TRUNCATE TABLE [Users]') == 3

        conn.commit.assert_not_called()

    def test_run_logs_and_raises(self, conn):
        conn.cursor.return_value.execute.side_effect = pyodbc.Error('42000', 'syntax error')

        with patch('mssql_csv_transfer.odbc_helper.logger') as mock_logger:
            with pytest.raises(pyodbc.Error):
                run(conn, 'BROKEN SQL')

        logged = ' '.join(str(c) for c in mock_logger.error.call_args_list)
        assert 'BROKEN SQL' in logged
        conn.cursor.return_value.close.assert_called_once()
