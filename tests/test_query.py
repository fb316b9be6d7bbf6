import logging
import pytest
import sys
import os

# Add scripts directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

from errors import HrefFormatError
from query import (
    FilterClause, ResourceQuery, all_of, any_of, assemble_query, build_filter, build_href,
    contains, equals, href_collection, quote, resolve_href, scoped,
)


class TestBuildFilter:

    def test_clauses_keep_order(self):
        clauses = [equals('name_label', 'web01'), any_of('tags', ['prod', 'db']), scoped('$pool', 'p1')]
        assert build_filter(clauses) == 'name_label:web01 tags:(prod|db) $pool:p1'

    def test_all_empty_gives_empty_string(self):
        clauses = [equals('name_label', None), any_of('tags', []), any_of('tags', ['']), scoped('$pool', None), None]
        assert build_filter(clauses) == ''
        assert build_filter([]) == ''
        assert build_filter(None) == ''

    def test_empty_clauses_are_skipped(self):
        assert build_filter([any_of('tags', None), equals('uuid', 'abc')]) == 'uuid:abc'

    def test_conjunction(self):
        assert build_filter([all_of('tags', ['prod', 'db'])]) == 'tags:(prod&db)'

    def test_power_state_uses_space_separator(self):
        assert build_filter([any_of('power_state', ['Running', 'Halted'])]) == 'power_state:(Running Halted)'

    def test_explicit_separator(self):
        assert any_of('tags', ['a', 'b'], separator=' ').render() == 'tags:(a b)'

    def test_unknown_field_defaults_to_pipe(self):
        assert any_of('name_label', ['a', 'b']).render() == 'name_label:(a|b)'

    def test_scope_prefix_not_doubled(self):
        assert scoped('pool', 'p1').render() == '$pool:p1'
        assert scoped('$container', 'h1').render() == '$container:h1'

    def test_values_with_spaces_are_quoted(self):
        assert equals('name_label', 'my vm').render() == 'name_label:"my vm"'
        assert any_of('tags', ['prod env', 'db']).render() == 'tags:("prod env"|db)'

    def test_contains(self):
        assert contains('name_label', 'web').render() == 'name_label:*web*'

    def test_quote(self):
        assert quote('plain') == 'plain'
        assert quote('with\ttab') == '"with\ttab"'

    def test_numeric_values(self):
        assert build_filter([equals('CPUs', 4)]) == 'CPUs:4'
        assert equals('CPUs', 0).render() == 'CPUs:0'
        assert any_of('CPUs', [2, 4]).render() == 'CPUs:(2|4)'

    def test_boolean_values(self):
        assert equals('is_template', False).render() == 'is_template:false'
        assert equals('is_template', True).render() == 'is_template:true'
        assert any_of('tags', [1, True]).render() == 'tags:(1|true)'

    def test_none_and_blank_values_stay_empty(self):
        assert equals('CPUs', None).is_empty
        assert equals('name_label', '').is_empty
        assert any_of('tags', [None, '']).render() == ''
        assert any_of('tags', [None, 'prod']).render() == 'tags:(prod)'

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            FilterClause(field='tags', kind='regex', values=['a'])


class TestAssembleQuery:

    def test_limit_zero_is_omitted(self):
        query = assemble_query(['uuid'], limit=0)
        assert 'limit' not in query.to_params()
        assert not query.used_default

    def test_positive_limit_is_verbatim(self):
        assert assemble_query(['uuid'], limit=42).to_params()['limit'] == '42'

    def test_default_limit_used_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            query = assemble_query(['uuid'], [any_of('tags', ['prod', 'db'])], default_limit=25)

        assert query.used_default
        assert query.limit == 25
        assert list(query.to_params().items()) == [
            ('fields', 'uuid'), ('filter', 'tags:(prod|db)'), ('limit', '25')]
        assert 'session default' in caplog.text

    def test_unlimited_default_still_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            query = assemble_query(['uuid'], default_limit=0)

        assert query.to_params() == {'fields': 'uuid'}
        assert 'session default' in caplog.text

    def test_empty_filter_is_omitted(self):
        query = assemble_query(['uuid'], [equals('name_label', '')], limit=5)
        assert query.filter is None
        assert 'filter' not in query.to_params()

    def test_fields_keep_order_and_duplicates(self):
        query = assemble_query(['name_label', 'uuid', 'name_label'], limit=0)
        assert query.to_params()['fields'] == 'name_label,uuid,name_label'

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            assemble_query(['uuid'], limit=-1)

    def test_no_fields(self):
        assert ResourceQuery(limit=0).to_params() == {}


class TestResolveHref:

    @pytest.mark.parametrize('href,expected', [
        ('/rest/v0/tasks/abc123', 'abc123'),
        ('rest/v0/vms/613f541c-4bed-fc77-7ca8-2db6b68f079c', '613f541c-4bed-fc77-7ca8-2db6b68f079c'),
        ('https://xo.example/rest/v0/hosts/h1', 'h1'),
        ('https://xo.example/prefix/rest/v0/srs/s1/', 's1'),
        ('/rest/v0/tasks/abc123?fields=id', 'abc123'),
    ])
    def test_valid(self, href, expected):
        assert resolve_href(href) == expected

    @pytest.mark.parametrize('href', [
        '',
        'abc123',
        '/rest/v0/tasks',
        '/rest/v1/tasks/abc',
        '/rest/v0/vms/abc/actions/start',
        None,
    ])
    def test_invalid(self, href):
        with pytest.raises(HrefFormatError) as exc:
            resolve_href(href)
        assert exc.value.href == href

    def test_collection(self):
        assert href_collection('https://xo.example/rest/v0/vm-snapshots/s1') == 'vm-snapshots'

    def test_build_href(self):
        assert build_href('tasks', 'abc123') == '/rest/v0/tasks/abc123'
        assert resolve_href(build_href('tasks', 'abc123')) == 'abc123'
