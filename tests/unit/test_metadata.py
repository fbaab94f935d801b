"""Tests for entity metadata and the metadata registry.
"""
import datetime
import gc
import weakref
from dataclasses import dataclass
from decimal import Decimal
from typing import Annotated

import pytest
from entities import Account, Article, Person, Status, Tag
from minimapper.cache import METADATA_CACHE, Cache
from minimapper.metadata import Column, DefaultMapper, EntityMetadata, Mapper
from minimapper.metadata import MetadataRegistry, TableInfo, get_registry, set_mapper


# =============================================================================
# Declarations and conventions
# =============================================================================

class TestEntityMetadata:
    """Building metadata from class declarations."""

    def test_declared_table_and_key(self):
        metadata = EntityMetadata.for_type(Article)
        assert metadata.table_name == 'articles'
        assert metadata.primary_key == 'article_id'
        assert metadata.auto_increment is True
        assert metadata.sequence_name == ''

    def test_columns(self):
        metadata = EntityMetadata.for_type(Article)
        assert list(metadata.columns) == [
            'article_id', 'title', 'content', 'posted', 'views', 'rating', 'comment_count']

    def test_renamed_column(self):
        column = EntityMetadata.for_type(Article).columns['content']
        assert column.member_name == 'body'
        assert column.member_type is str
        assert column.nullable is True

    def test_member_types_unwrapped(self):
        columns = EntityMetadata.for_type(Article).columns
        assert columns['posted'].member_type is datetime.datetime
        assert columns['rating'].member_type is Decimal
        assert columns['views'].member_type is int
        assert columns['views'].nullable is False

    def test_result_column(self):
        metadata = EntityMetadata.for_type(Article)
        assert metadata.columns['comment_count'].result_only is True
        assert 'comment_count' not in metadata.query_columns
        assert 'comment_count' not in [c.column_name for c in metadata.writable_columns()]

    def test_ignored_member(self):
        metadata = EntityMetadata.for_type(Article)
        assert metadata.get_column('scratch') is None

    def test_conventions_without_decorator(self):
        metadata = EntityMetadata.for_type(Person)
        assert metadata.table_name == 'Person'
        assert metadata.primary_key == 'ID'
        assert metadata.primary_key_column.member_name == 'ID'

    def test_class_vars_and_private_members_skipped(self):
        metadata = EntityMetadata.for_type(Person)
        assert list(metadata.columns) == ['ID', 'name', 'birthday']

    def test_explicit_columns(self):
        metadata = EntityMetadata.for_type(Account)
        assert list(metadata.columns) == ['id', 'email_address', 'active', 'status']
        assert metadata.get_column('nickname') is None
        assert metadata.columns['status'].member_type is Status

    def test_natural_key(self):
        metadata = EntityMetadata.for_type(Tag)
        assert metadata.auto_increment is False
        assert metadata.primary_key_column.member_name == 'name'

    @pytest.mark.parametrize('name', ['TITLE', 'Title', 'title'])
    def test_case_insensitive_lookup(self, name):
        assert EntityMetadata.for_type(Article).get_column(name).member_name == 'title'

    def test_accessor(self):
        column = EntityMetadata.for_type(Article).columns['content']
        article = Article(body='text')
        assert column.accessor.read(article) == 'text'
        column.accessor.write(article, 'changed')
        assert article.body == 'changed'

    def test_duplicate_column(self):
        @dataclass
        class Clash:
            ID: int = 0
            a: Annotated[int, Column('b')] = 0
            b: int = 0

        with pytest.raises(ValueError, match='Duplicate column'):
            EntityMetadata.for_type(Clash)


# =============================================================================
# Mapper hooks
# =============================================================================

class PrefixMapper(Mapper):
    """Tables prefixed with `app_`, members starting with `tmp` skipped."""

    def resolve_table_info(self, entity_type, info):
        return TableInfo(table_name=f'app_{info.table_name.lower()}',
                         primary_key=info.primary_key, sequence_name='app_seq',
                         auto_increment=info.auto_increment)

    def map_member_to_column(self, entity_type, member_name, member_type):
        if member_name.startswith('tmp'):
            return None
        return member_name.upper(), member_name == 'total'


@dataclass
class Order:
    ID: int = 0
    customer: str = ''
    total: int = 0
    tmp_note: str = ''
    label: Annotated[str, Column('order_label')] = ''


class TestMapper:
    """Overriding conventions through a Mapper."""

    def test_table_info_override(self):
        metadata = EntityMetadata.for_type(Order, PrefixMapper())
        assert metadata.table_name == 'app_order'
        assert metadata.sequence_name == 'app_seq'

    def test_member_mapping(self):
        metadata = EntityMetadata.for_type(Order, PrefixMapper())
        assert list(metadata.columns) == ['ID', 'CUSTOMER', 'TOTAL', 'order_label']
        assert metadata.columns['TOTAL'].result_only is True

    def test_marked_members_bypass_mapper(self):
        metadata = EntityMetadata.for_type(Order, PrefixMapper())
        assert metadata.get_column('order_label').member_name == 'label'

    def test_default_mapper_hooks(self):
        mapper = DefaultMapper()
        column = EntityMetadata.for_type(Order).columns['customer']
        assert mapper.get_value_converter(column, str) is None
        assert mapper.get_db_converter(str) is None


# =============================================================================
# Registry
# =============================================================================

class TestMetadataRegistry:
    """Caching of metadata per entity class."""

    def test_same_instance_returned(self):
        registry = MetadataRegistry(Cache())
        assert registry.metadata_for(Article) is registry.metadata_for(Article)

    def test_built_once(self, mocker):
        registry = MetadataRegistry(Cache())
        spy = mocker.spy(EntityMetadata, 'for_type')
        registry.metadata_for(Tag)
        registry.metadata_for(Tag)
        assert spy.call_count == 1

    def test_isolated_caches(self):
        first = MetadataRegistry(Cache())
        second = MetadataRegistry(Cache())
        assert first.metadata_for(Article) is not second.metadata_for(Article)

    def test_mapper_is_part_of_key(self):
        cache = Cache()
        plain = MetadataRegistry(cache)
        mapped = MetadataRegistry(cache, PrefixMapper())
        assert plain.metadata_for(Order).table_name == 'Order'
        assert mapped.metadata_for(Order).table_name == 'app_order'

    def test_cache_holds_mapper(self):
        """Entries keep their mapper alive, so a new mapper never inherits them."""
        cache = Cache()
        mapper = PrefixMapper()
        mapper_ref = weakref.ref(mapper)
        MetadataRegistry(cache, mapper).metadata_for(Order)
        del mapper
        gc.collect()
        assert mapper_ref() is not None
        assert list(cache.get_cache(METADATA_CACHE)) == [(Order, mapper_ref())]

    def test_clear(self):
        cache = Cache()
        registry = MetadataRegistry(cache)
        registry.metadata_for(Article)
        assert cache.size(METADATA_CACHE) == 1
        registry.clear()
        assert cache.size(METADATA_CACHE) == 0

    def test_default_registry_uses_singleton_cache(self):
        assert get_registry() is get_registry()
        assert get_registry().cache is Cache.get_instance()

    def test_set_mapper(self):
        try:
            set_mapper(PrefixMapper())
            assert get_registry().metadata_for(Order).table_name == 'app_order'
        finally:
            set_mapper(None)
        assert isinstance(get_registry().mapper, DefaultMapper)
        assert get_registry().metadata_for(Order).table_name == 'Order'
