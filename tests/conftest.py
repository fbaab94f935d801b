import pathlib
import site

import minimapper as mm
import pytest
from entities import create_schema
from minimapper.cache import Cache

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_caches():
    """Clear all caches before and after each test to ensure test isolation."""
    Cache.get_instance().clear_all()
    yield
    Cache.get_instance().clear_all()


@pytest.fixture
def sqlite_options():
    """Options for an in-memory SQLite database"""
    return mm.DatabaseOptions(drivername='sqlite', database=':memory:')


@pytest.fixture
def sqlite_db():
    """Create an in-memory SQLite database with the test schema"""
    conn = mm.connect({
        'drivername': 'sqlite',
        'database': ':memory:'
    })
    create_schema(conn)

    yield conn
    conn.close()


@pytest.fixture
def sqlite_articles(sqlite_db):
    """SQLite database holding 25 articles, `views` equal to the id"""
    for i in range(1, 26):
        sqlite_db.execute('INSERT INTO articles (title, views) VALUES (@0, @1)',
                          f'Article {i:02d}', i)
    return sqlite_db
