"""
Tests for CSV Directory Adapters

These tests validate writing exported tables to a directory and reading a
directory back as ordered import sources.
"""

import pytest
from mssql_csv_transfer.bulk_export import ExportColumn
from mssql_csv_transfer.csv_directory import export_to_directory, sources_from_directory


class StubTable:
    """Stand-in for ExportTable."""

    def __init__(self, name, columns, rows, fail_after=None):
        self.name = name
        self.columns = tuple(ExportColumn(c, str) for c in columns)
        self._rows = rows
        self._fail_after = fail_after

    def rows(self):
        for i, row in enumerate(self._rows):
            if self._fail_after is not None and i == self._fail_after:
                raise RuntimeError('connection lost')
            yield row


class TestExportToDirectory:
    """Test the export side adapter."""

    def test_writes_one_file_per_table(self, tmp_path):
        out = tmp_path / 'out'
        tables = [
            StubTable('Users', ['Id', 'Name'], [[1, 'Alice'], [2, 'multi\nline']]),
            StubTable('Orders', ['Id'], [[10]]),
        ]

        written = export_to_directory(tables, out)

        assert written == {'Users': 2, 'Orders': 1}
        assert (out / 'Users.csv').read_text(encoding='utf-8') == 'Id,Name\n1,Alice\n2,"multi\nline"\n'
        assert (out / 'Orders.csv').read_text(encoding='utf-8') == 'Id\n10\n'

    def test_empty_tables_skipped_by_default(self, tmp_path):
        out = tmp_path / 'out'

        written = export_to_directory([StubTable('Empty', ['Id'], [])], out)

        assert written == {}
        assert not out.exists()

    def test_empty_tables_included_on_request(self, tmp_path):
        written = export_to_directory([StubTable('Empty', ['Id', 'Name'], [])], tmp_path,
                                      include_empty_tables=True)

        assert written == {'Empty': 0}
        assert (tmp_path / 'Empty.csv').read_text(encoding='utf-8') == 'Id,Name\n'

    def test_custom_formatter(self, tmp_path):
        export_to_directory([StubTable('T', ['V'], [[None], [3]])], tmp_path,
                            formatter=lambda v: 'NULL' if v is None else str(v))

        assert (tmp_path / 'T.csv').read_text(encoding='utf-8') == 'V\nNULL\n3\n'

    def test_failure_removes_partial_file(self, tmp_path):
        tables = [
            StubTable('Done', ['Id'], [[1]]),
            StubTable('Broken', ['Id'], [[1], [2], [3]], fail_after=2),
        ]

        with pytest.raises(RuntimeError, match='connection lost'):
            export_to_directory(tables, tmp_path)

        assert (tmp_path / 'Done.csv').exists()
        assert not (tmp_path / 'Broken.csv').exists()


class TestSourcesFromDirectory:
    """Test the import side adapter."""

    def test_sources_sorted_by_file_name(self, tmp_path):
        (tmp_path / 'b.csv').write_text('Id\n2\n', encoding='utf-8')
        (tmp_path / 'a.csv').write_text('Id\n1\n', encoding='utf-8')
        (tmp_path / 'notes.txt').write_text('ignored', encoding='utf-8')

        result = []
        for source in sources_from_directory(tmp_path):
            result.append((source.name, source.column_names(), [str(r[0]) for r in source.rows()]))

        assert result == [('a', ['Id'], ['1']), ('b', ['Id'], ['2'])]

    def test_sources_usable_after_listing(self, tmp_path):
        (tmp_path / 'a.csv').write_text('Id,Name\n1,x\n', encoding='utf-8')
        (tmp_path / 'b.csv').write_text('Id\n2\n3\n', encoding='utf-8')

        sources = list(sources_from_directory(tmp_path))

        assert [s.name for s in sources] == ['a', 'b']
        assert [[str(v) for v in row] for row in sources[1].rows()] == [['2'], ['3']]
        assert sources[0].column_names() == ['Id', 'Name']
        assert [[str(v) for v in row] for row in sources[0].rows()] == [['1', 'x']]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list(sources_from_directory(tmp_path / 'missing'))

    def test_round_trip_through_directory(self, tmp_path):
        rows = [[1, 'x,y', None], [2, '', 'quote "q"'], [3, 'a\nb', 'plain']]
        export_to_directory([StubTable('T', ['Id', 'A', 'B'], rows)], tmp_path)

        source = next(sources_from_directory(tmp_path))
        read_back = [[None if v is None else str(v) for v in row] for row in source.rows()]

        assert read_back == [
            ['1', 'x,y', None],
            ['2', '', 'quote "q"'],
            ['3', 'a\nb', 'plain'],
        ]
