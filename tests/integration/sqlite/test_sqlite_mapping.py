"""
Value mapping, mapper hooks and diagnostics against SQLite.
"""
import datetime
import sqlite3
from decimal import Decimal

import minimapper as mm
import numpy as np
import pytest
from entities import Account, Article, Status, create_schema
from minimapper import Cache, MappingError, Mapper, materializer
from minimapper.connection import get_engine_for_options
from minimapper.metadata import MetadataRegistry

UTC = datetime.timezone.utc


class TestValueMapping:

    def test_datetime_stamped_utc(self, sqlite_db):
        article = Article(title='dated', posted=datetime.datetime(2024, 1, 2, 3, 4, 5))
        sqlite_db.insert(article)
        stored = sqlite_db.single(Article, 'WHERE article_id = @0', article.article_id)
        assert stored.posted == datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)

    def test_datetime_left_naive(self):
        with mm.connect(drivername='sqlite', database=':memory:', force_datetimes_to_utc=False) as conn:
            create_schema(conn)
            conn.insert(Article(title='dated', posted=datetime.datetime(2024, 1, 2, 3, 4, 5)))
            stored = conn.single(Article, 'WHERE article_id = @0', 1)
            assert stored.posted == datetime.datetime(2024, 1, 2, 3, 4, 5)
            assert stored.posted.tzinfo is None

    def test_decimal(self, sqlite_db):
        sqlite_db.insert(Article(title='rated', rating=Decimal('4.5')))
        assert sqlite_db.single(Article, 'WHERE article_id = @0', 1).rating == Decimal('4.5')

    def test_numpy_arguments(self, sqlite_articles):
        articles = sqlite_articles.fetch(Article, 'WHERE views = @0', np.int64(12))
        assert [a.views for a in articles] == [12]

    def test_enum_argument(self, sqlite_db):
        sqlite_db.execute("INSERT INTO accounts (email_address, active, status) VALUES ('a', 0, 'closed')")
        accounts = sqlite_db.fetch(Account, 'WHERE status = @0', Status.CLOSED)
        assert [a.status for a in accounts] == [Status.CLOSED]
        assert accounts[0].active is False

    def test_mapping_error(self, sqlite_db):
        sqlite_db.execute("INSERT INTO articles (title, views) VALUES ('bad', 'lots')")
        with pytest.raises(MappingError) as exc_info:
            sqlite_db.fetch(Article)
        assert exc_info.value.member == 'views'

    def test_materializer_reused(self, sqlite_articles, mocker):
        spy = mocker.spy(materializer, 'build_materializer')
        for views in (1, 2, 3):
            sqlite_articles.fetch(Article, 'WHERE views = @0', views)
        assert spy.call_count == 1

    def test_materializer_per_statement(self, sqlite_articles, mocker):
        spy = mocker.spy(materializer, 'build_materializer')
        sqlite_articles.fetch(Article, 'WHERE views = @0', 1)
        sqlite_articles.fetch(Article, 'SELECT title FROM articles WHERE views = @0', 1)
        assert spy.call_count == 2


class YesNoMapper(Mapper):
    """Stores booleans as 'Y'/'N' text."""

    def get_db_converter(self, source_type):
        if source_type is bool:
            return lambda value: 'Y' if value else 'N'
        return None

    def get_value_converter(self, column, source_type):
        if column.member_type is bool:
            return lambda value: value == 'Y'
        return None


class TestMapperHooks:

    @pytest.fixture
    def yes_no_db(self):
        registry = MetadataRegistry(Cache(), YesNoMapper())
        conn = mm.connect({'drivername': 'sqlite', 'database': ':memory:'}, registry=registry)
        create_schema(conn)
        yield conn
        conn.close()

    def test_converters(self, yes_no_db):
        account = Account()
        account.active = True
        yes_no_db.insert(account)
        assert yes_no_db.execute_scalar('SELECT active FROM accounts') == 'Y'
        assert yes_no_db.single(Account, 'WHERE active = @0', True).active is True


class TestHooks:

    def test_on_exception(self, sqlite_db, mocker):
        spy = mocker.spy(sqlite_db, 'on_exception')
        with pytest.raises(sqlite3.OperationalError):
            sqlite_db.execute('SELECT * FROM missing_table WHERE id = @0', 1)
        spy.assert_called_once()
        assert isinstance(spy.call_args.args[0], sqlite3.OperationalError)
        assert sqlite_db.last_command == 'SELECT * FROM missing_table WHERE id = ?\n\n0 - 1'

    def test_modify_sql(self, sqlite_articles, mocker):
        mocker.patch.object(sqlite_articles, 'modify_sql', side_effect=lambda sql: f'{sql} LIMIT 2')
        assert len(sqlite_articles.fetch(Article, 'ORDER BY article_id')) == 2

    def test_subclass_hooks(self, sqlite_options):
        seen = []

        class AuditedDatabase(mm.Database):
            def modify_sql(self, sql):
                seen.append(sql)
                return sql

        engine = get_engine_for_options(sqlite_options)
        with AuditedDatabase(engine.connect(), sqlite_options) as conn:
            conn.execute_scalar('SELECT @0', 5)
        assert seen == ['SELECT ?']

    def test_reopen_closed_connection(self, sqlite_db):
        sqlite_db.close()
        assert sqlite_db.execute_scalar('SELECT 1') == 1
