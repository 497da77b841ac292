"""
Tests for Transfer Options

These tests validate option defaults, filter helpers and environment loading.
"""

from datetime import timedelta

import pytest
from mssql_csv_transfer.options import BulkExportOptions, BulkImportOptions


class TestBulkExportOptions:

    def test_no_filters_include_everything(self):
        options = BulkExportOptions()

        assert options.include_table('Users')
        assert options.include_column('Users', 'Id')

    def test_filters(self):
        options = BulkExportOptions(
            table_filter=lambda t: t != 'Audit',
            column_filter=lambda t, c: c != 'Password',
        )

        assert not options.include_table('Audit')
        assert not options.include_column('Users', 'Password')
        assert options.include_column('Users', 'Name')


class TestBulkImportOptions:

    def test_defaults(self):
        options = BulkImportOptions()

        assert options.timeout == timedelta(minutes=5)
        assert options.batch_size == 1000
        assert options.truncate is False
        assert options.skip_identity is False
        assert options.keep_nulls is True

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BulkImportOptions(batch_size=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('BULK_IMPORT_TIMEOUT', '30')
        monkeypatch.setenv('BULK_IMPORT_BATCH_SIZE', '250')
        monkeypatch.setenv('BULK_IMPORT_TRUNCATE', 'true')
        monkeypatch.setenv('BULK_IMPORT_SKIP_IDENTITY', 'yes')
        monkeypatch.setenv('BULK_IMPORT_KEEP_NULLS', '0')

        options = BulkImportOptions.from_env()

        assert options.timeout == timedelta(seconds=30)
        assert options.batch_size == 250
        assert options.truncate is True
        assert options.skip_identity is True
        assert options.keep_nulls is False

    def test_from_env_defaults(self, monkeypatch):
        for name in ('BULK_IMPORT_TIMEOUT', 'BULK_IMPORT_BATCH_SIZE', 'BULK_IMPORT_TRUNCATE',
                     'BULK_IMPORT_SKIP_IDENTITY', 'BULK_IMPORT_KEEP_NULLS'):
            monkeypatch.delenv(name, raising=False)

        assert BulkImportOptions.from_env() == BulkImportOptions()
