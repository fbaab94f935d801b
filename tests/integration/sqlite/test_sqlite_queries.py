"""
Query tests against an in-memory SQLite database.
"""
import sqlite3

import minimapper as mm
import pandas as pd
import pytest
from entities import Article
from minimapper import Sql, ValidationError


# =============================================================================
# Fetching entities
# =============================================================================

class TestFetch:
    """Materializing rows as entities."""

    def test_auto_select(self, sqlite_articles):
        articles = sqlite_articles.fetch(Article, 'WHERE views > @0 ORDER BY article_id', 22)
        assert [a.title for a in articles] == ['Article 23', 'Article 24', 'Article 25']
        assert all(isinstance(a, Article) for a in articles)
        assert sqlite_articles.last_sql.startswith(
            'SELECT article_id, title, content, posted, views, rating FROM articles WHERE views > ?')

    def test_empty_sql_selects_all(self, sqlite_articles):
        assert len(sqlite_articles.fetch(Article)) == 25

    def test_from_clause_completed(self, sqlite_articles):
        articles = sqlite_articles.fetch(Article, 'FROM articles WHERE article_id = @0', 3)
        assert [a.article_id for a in articles] == [3]

    def test_explicit_select(self, sqlite_articles):
        articles = sqlite_articles.fetch(Article, 'SELECT title FROM articles WHERE article_id = @0', 4)
        assert articles[0].title == 'Article 04'
        assert articles[0].article_id == 0

    def test_auto_select_disabled(self, sqlite_articles):
        sqlite_articles.options.enable_auto_select = False
        with pytest.raises(sqlite3.OperationalError):
            sqlite_articles.fetch(Article, 'WHERE views > @0', 1)

    def test_named_parameters(self, sqlite_articles):
        criteria = {'low': 3, 'high': 5}
        articles = sqlite_articles.fetch(
            Article, 'WHERE views BETWEEN @low AND @high ORDER BY views', criteria)
        assert [a.views for a in articles] == [3, 4, 5]

    def test_in_list(self, sqlite_articles):
        articles = sqlite_articles.fetch(Article, 'WHERE article_id IN (@0) ORDER BY article_id', [2, 4, 6])
        assert [a.article_id for a in articles] == [2, 4, 6]
        assert sqlite_articles.last_args == [2, 4, 6]

    def test_sql_builder(self, sqlite_articles):
        sql = (Sql.builder()
               .where('views > @0', 10)
               .where('views < @0', 14)
               .order_by('views DESC'))
        articles = sqlite_articles.fetch(Article, sql)
        assert [a.views for a in articles] == [13, 12, 11]

    def test_sql_builder_with_separate_args(self, sqlite_articles):
        with pytest.raises(ValueError, match='Arguments must be attached'):
            sqlite_articles.fetch(Article, Sql('WHERE views > @0', 1), 2)

    def test_result_only_column(self, sqlite_articles):
        article = sqlite_articles.single(
            Article, 'SELECT article_id, title, 3 AS comment_count FROM articles WHERE article_id = @0', 1)
        assert article.comment_count == 3

    def test_unmapped_columns_ignored(self, sqlite_articles):
        article = sqlite_articles.single(
            Article, "SELECT article_id, 'x' AS something_else FROM articles WHERE article_id = @0", 2)
        assert article.article_id == 2

    def test_query_is_lazy(self, sqlite_articles):
        rows = sqlite_articles.query(Article, 'ORDER BY article_id')
        assert next(rows).article_id == 1
        assert next(rows).article_id == 2
        rows.close()

    def test_module_functions(self, sqlite_articles):
        assert len(mm.fetch(sqlite_articles, Article, 'WHERE views <= @0', 2)) == 2
        assert mm.first(sqlite_articles, Article, 'ORDER BY views DESC').views == 25
        assert mm.single(sqlite_articles, Article, 'WHERE views = @0', 7).views == 7


class TestSingleAndFirst:

    def test_single(self, sqlite_articles):
        assert sqlite_articles.single(Article, 'WHERE article_id = @0', 5).title == 'Article 05'

    def test_single_none(self, sqlite_articles):
        with pytest.raises(ValidationError, match='got none'):
            sqlite_articles.single(Article, 'WHERE article_id = @0', 99)

    def test_single_several(self, sqlite_articles):
        with pytest.raises(ValidationError, match='got several'):
            sqlite_articles.single(Article, 'WHERE views < @0', 3)

    def test_single_or_none(self, sqlite_articles):
        assert sqlite_articles.single_or_none(Article, 'WHERE article_id = @0', 99) is None
        assert sqlite_articles.single_or_none(Article, 'WHERE article_id = @0', 9).views == 9
        with pytest.raises(ValidationError):
            sqlite_articles.single_or_none(Article, 'WHERE views < @0', 3)

    def test_first(self, sqlite_articles):
        assert sqlite_articles.first(Article, 'WHERE views > @0 ORDER BY views', 20).views == 21

    def test_first_none(self, sqlite_articles):
        with pytest.raises(ValidationError):
            sqlite_articles.first(Article, 'WHERE views > @0', 100)

    def test_first_or_none(self, sqlite_articles):
        assert sqlite_articles.first_or_none(Article, 'WHERE views > @0', 100) is None


# =============================================================================
# Plain commands
# =============================================================================

class TestCommands:

    def test_execute_returns_rowcount(self, sqlite_articles):
        assert sqlite_articles.execute('UPDATE articles SET views = 0 WHERE views < @0', 6) == 5

    def test_execute_scalar(self, sqlite_articles):
        assert sqlite_articles.execute_scalar('SELECT COUNT(*) FROM articles') == 25
        assert sqlite_articles.execute_scalar('SELECT MAX(views) FROM articles WHERE views < @0', 10) == 9

    def test_execute_scalar_as_type(self, sqlite_articles):
        assert sqlite_articles.execute_scalar('SELECT COUNT(*) FROM articles', as_type=str) == '25'

    def test_execute_scalar_no_row(self, sqlite_articles):
        assert sqlite_articles.execute_scalar('SELECT views FROM articles WHERE article_id = @0', 99) is None

    def test_escaped_at(self, sqlite_db):
        assert sqlite_db.execute_scalar("SELECT 'user@@example.com'") == 'user@example.com'

    def test_fetch_frame(self, sqlite_articles):
        df = sqlite_articles.fetch_frame('SELECT article_id, title FROM articles WHERE views <= @0 ORDER BY views', 3)
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ['article_id', 'title']
        assert df['title'].tolist() == ['Article 01', 'Article 02', 'Article 03']

    def test_fetch_frame_empty(self, sqlite_articles):
        df = sqlite_articles.fetch_frame('SELECT article_id, title FROM articles WHERE views > @0', 100)
        assert df.empty
        assert list(df.columns) == ['article_id', 'title']

    def test_last_command(self, sqlite_articles):
        sqlite_articles.fetch(Article, 'WHERE views = @0 AND title = @1', 3, 'Article 03')
        command = sqlite_articles.last_command
        assert command.startswith('SELECT ')
        assert command.endswith("\n\n0 - 3\n1 - 'Article 03'")

    def test_statistics(self, sqlite_db):
        calls = sqlite_db.calls
        sqlite_db.execute_scalar('SELECT 1')
        assert sqlite_db.calls == calls + 1
