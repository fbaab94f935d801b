"""Tests for the cursor wrapper.
"""
import sqlite3

import numpy as np
import pytest
from minimapper.cursor import Cursor, IterChunk


@pytest.fixture
def raw_cursor():
    conn = sqlite3.connect(':memory:')
    conn.execute('CREATE TABLE numbers (n INTEGER, label TEXT)')
    conn.executemany('INSERT INTO numbers VALUES (?, ?)', [(i, None if i % 2 else f'n{i}') for i in range(10)])
    yield conn.cursor()
    conn.close()


class TestCursor:

    def test_row_wise_access(self, raw_cursor):
        cursor = Cursor(raw_cursor)
        cursor.execute('SELECT n, label FROM numbers WHERE n < ? ORDER BY n', [2])
        assert cursor.column_count == 2
        assert cursor.column_name(1) == 'label'

        assert cursor.advance() is True
        assert cursor.value(0) == 0
        assert cursor.is_null(1) is False
        assert cursor.advance() is True
        assert cursor.is_null(1) is True
        assert cursor.advance() is False

    def test_current_before_advance(self, raw_cursor):
        cursor = Cursor(raw_cursor)
        cursor.execute('SELECT n FROM numbers')
        with pytest.raises(IndexError):
            cursor.value(0)

    def test_numpy_arguments_converted(self, raw_cursor):
        cursor = Cursor(raw_cursor)
        cursor.execute('SELECT COUNT(*) FROM numbers WHERE n >= ?', [np.int64(5)])
        assert cursor.fetchone() == (5,)

    def test_rows_in_chunks(self, raw_cursor):
        cursor = Cursor(raw_cursor, arraysize=3)
        cursor.execute('SELECT n FROM numbers ORDER BY n')
        assert [row[0] for row in cursor] == list(range(10))

    def test_fetch_methods(self, raw_cursor):
        cursor = Cursor(raw_cursor, arraysize=4)
        cursor.execute('SELECT n FROM numbers ORDER BY n')
        assert cursor.fetchone() == (0,)
        assert len(cursor.fetchmany()) == 4
        assert len(cursor.fetchall()) == 5

    def test_delegates_to_driver_cursor(self, raw_cursor):
        cursor = Cursor(raw_cursor)
        cursor.execute('INSERT INTO numbers VALUES (?, ?)', [100, 'x'])
        assert cursor.lastrowid == 11
        assert cursor.rowcount == 1

    def test_statistics_recorded(self, raw_cursor, mocker):
        database = mocker.MagicMock()
        cursor = Cursor(raw_cursor, database)
        cursor.execute('SELECT 1')
        database.addcall.assert_called_once()

    def test_statistics_recorded_on_error(self, raw_cursor, mocker):
        database = mocker.MagicMock()
        cursor = Cursor(raw_cursor, database)
        with pytest.raises(sqlite3.OperationalError):
            cursor.execute('SELECT * FROM missing')
        database.addcall.assert_called_once()

    def test_context_manager_closes(self, raw_cursor):
        with Cursor(raw_cursor) as cursor:
            cursor.execute('SELECT 1')
        with pytest.raises(sqlite3.ProgrammingError):
            raw_cursor.execute('SELECT 1')


def test_iter_chunk(mocker):
    cursor = mocker.MagicMock()
    cursor.fetchmany.side_effect = [[1, 2], [3], []]
    assert list(IterChunk(cursor, 2)) == [1, 2, 3]
    cursor.fetchmany.assert_called_with(2)
