"""CLI entry point for SQL Server <-> CSV bulk transfer."""

from datetime import timedelta
import logging

import click
import pyodbc
from dotenv import load_dotenv

from mssql_csv_transfer import __version__
from mssql_csv_transfer.bulk_export import bulk_export
from mssql_csv_transfer.bulk_import import bulk_import
from mssql_csv_transfer.csv_directory import export_to_directory, sources_from_directory
from mssql_csv_transfer.exceptions import TransferError
from mssql_csv_transfer.odbc_helper import OdbcConnectionHelper
from mssql_csv_transfer.options import BulkExportOptions, BulkImportOptions
from mssql_csv_transfer.utils import matches_any_pattern


@click.group()
@click.version_option(version=__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging.')
def cli(verbose):
    """Bulk export/import of SQL Server tables as CSV files."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@cli.command('export')
@click.argument('connection_string')
@click.argument('output_directory', type=click.Path(file_okay=False))
@click.option('--include-empty-tables', is_flag=True, help='Write header-only files for empty tables.')
@click.option('--exclude', 'exclude_patterns', multiple=True, metavar='PATTERN',
              help='Skip tables matching the wildcard pattern (repeatable).')
def export_command(connection_string, output_directory, include_empty_tables, exclude_patterns):
    """Export data from the database to CSV files."""
    options = BulkExportOptions(
        table_filter=(lambda table: not matches_any_pattern(table, exclude_patterns))
        if exclude_patterns else None,
    )
    helper = OdbcConnectionHelper(connection_string)

    try:
        written = export_to_directory(
            bulk_export(helper, options),
            output_directory,
            include_empty_tables=include_empty_tables,
        )
    except (TransferError, pyodbc.Error) as e:
        raise click.ClickException(f"Export failed: {e}") from e

    click.echo(f"Exported {len(written)} tables to {output_directory}")


@cli.command('import')
@click.argument('connection_string')
@click.argument('input_directory', type=click.Path(exists=True, file_okay=False))
@click.option('--truncate', is_flag=True, help='Clear each table before loading it.')
@click.option('--batch-size', type=click.IntRange(min=1), default=None, help='Rows per flushed batch.')
@click.option('--timeout', type=click.FloatRange(min=0), default=None, help='Load timeout in seconds.')
@click.option('--skip-identity', is_flag=True, help='Let the server generate identity values.')
@click.option('--no-keep-nulls', is_flag=True, help='Replace nulls with literal column defaults.')
def import_command(connection_string, input_directory, truncate, batch_size, timeout,
                   skip_identity, no_keep_nulls):
    """Import data to the database from CSV files."""
    # BULK_IMPORT_* environment settings apply where no option is given
    defaults = BulkImportOptions.from_env()
    options = BulkImportOptions(
        timeout=timedelta(seconds=timeout) if timeout is not None else defaults.timeout,
        batch_size=batch_size if batch_size is not None else defaults.batch_size,
        truncate=truncate or defaults.truncate,
        skip_identity=skip_identity or defaults.skip_identity,
        keep_nulls=defaults.keep_nulls and not no_keep_nulls,
    )
    helper = OdbcConnectionHelper(connection_string)

    try:
        result = bulk_import(helper, sources_from_directory(input_directory), options)
    except (TransferError, pyodbc.Error) as e:
        raise click.ClickException(f"Import failed: {e}") from e

    click.echo(
        f"Imported {result['total_rows']:,} rows into {len(result['tables'])} tables"
    )


def main():
    cli()


if __name__ == '__main__':
    main()
