"""Tests for path, host list and formatting helpers."""

from datetime import datetime, timezone

import pytest

from instacollector.errors import ArgumentValidationError
from instacollector.utils import EPOCH, epoch_ms_to_utc, expand, human_size, join_to_set, parse_timestamp


class TestJoinToSet:
    def test_merges_and_deduplicates(self):
        assert join_to_set(['a', 'b'], ['b', 'c']) == ['a', 'b', 'c']

    def test_trims_and_drops_empty_items(self):
        assert join_to_set([' 10.0.0.1 ', ''], ['10.0.0.1', '  ', '10.0.0.2']) == ['10.0.0.1', '10.0.0.2']

    def test_empty(self):
        assert join_to_set([], []) == []
        assert join_to_set(None, ['a']) == ['a']


class TestExpand:
    @pytest.fixture(autouse=True)
    def home(self, monkeypatch):
        monkeypatch.setenv('HOME', '/home/tester')

    def test_home_prefix(self):
        assert expand('~/.ssh/id_rsa') == '/home/tester/.ssh/id_rsa'

    def test_home_only(self):
        assert expand('~') == '/home/tester'
        assert expand('~/') == '/home/tester'

    def test_untouched(self):
        assert expand('') == ''
        assert expand('/etc/cassandra') == '/etc/cassandra'
        assert expand('~other/file') == '~other/file'
        assert expand('relative/~/path') == 'relative/~/path'


def test_human_size():
    assert human_size(0) == '0 B'
    assert human_size(999) == '999 B'
    assert human_size(1000) == '1 kB'
    assert human_size(2746000) == '2.746 MB'
    assert human_size(1234567) == '1.235 MB'


class TestParseTimestamp:
    def test_utc(self):
        assert parse_timestamp('2020-03-23T00:00:00Z') == datetime(2020, 3, 23, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        value = parse_timestamp('2020-03-23T02:00:00+02:00')

        assert value == datetime(2020, 3, 23, tzinfo=timezone.utc)
        assert value.tzinfo == timezone.utc

    def test_invalid(self):
        with pytest.raises(ArgumentValidationError):
            parse_timestamp('yesterday')

    def test_missing_offset(self):
        with pytest.raises(ArgumentValidationError, match='missing time zone offset'):
            parse_timestamp('2020-03-23T00:00:00')


def test_epoch_ms_to_utc():
    assert epoch_ms_to_utc(0) == EPOCH
    assert epoch_ms_to_utc(1584957600000) == datetime(2020, 3, 23, 10, tzinfo=timezone.utc)


class TestParseTimestampVariants:
    def test_fraction_of_any_length(self):
        assert parse_timestamp('2020-03-23T00:00:00.5Z') == datetime(2020, 3, 23, 0, 0, 0, 500000, tzinfo=timezone.utc)
        assert parse_timestamp('2020-03-23T00:00:00.123456789Z') == \
            datetime(2020, 3, 23, 0, 0, 0, 123456, tzinfo=timezone.utc)
        assert parse_timestamp('2020-03-23T02:00:00.25+02:00') == \
            datetime(2020, 3, 23, 0, 0, 0, 250000, tzinfo=timezone.utc)

    def test_lowercase_separators(self):
        assert parse_timestamp('2020-03-23t00:00:00z') == datetime(2020, 3, 23, tzinfo=timezone.utc)
        assert parse_timestamp('2020-03-23 00:00:00Z') == datetime(2020, 3, 23, tzinfo=timezone.utc)
