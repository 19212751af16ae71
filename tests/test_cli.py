"""Tests for command line parsing and validation."""

from datetime import datetime, timezone

import pytest
import yaml

from instacollector.__main__ import build_parser, main, split_list, validate_arguments
from instacollector.errors import ArgumentValidationError
from instacollector.utils import EPOCH

NOW = datetime(2020, 3, 25, 12, tzinfo=timezone.utc)


def parse(*argv):
    return build_parser().parse_args(list(argv))


class TestParser:
    def test_defaults(self):
        args = parse('-l', 'ubuntu')

        assert args.user == 'ubuntu'
        assert args.port == 22
        assert args.metrics_hosts == []
        assert args.node_hosts == []
        assert args.disable_known_hosts is False
        assert args.log_level == 'INFO'

    def test_single_dash_options(self):
        args = parse('-l', 'ubuntu', '-p', '2222', '-mc', '10.0.0.10',
                     '-nc', '10.0.0.1,10.0.0.2', '-nc', '10.0.0.3',
                     '-pk', '~/.ssh/a,~/.ssh/b', '-mc-from', '2020-03-23T00:00:00Z',
                     '-disable_known_hosts', '-log-level', 'DEBUG')

        assert args.port == 2222
        assert args.metrics_hosts == ['10.0.0.10']
        assert split_list(args.node_hosts) == ['10.0.0.1', '10.0.0.2', '10.0.0.3']
        assert split_list(args.private_keys) == ['~/.ssh/a', '~/.ssh/b']
        assert args.mc_from == '2020-03-23T00:00:00Z'
        assert args.disable_known_hosts is True
        assert args.log_level == 'DEBUG'


class TestValidateArguments:
    def test_default_time_span(self):
        assert validate_arguments(parse('-l', 'ubuntu'), now=NOW) == (EPOCH, NOW)

    def test_time_span(self):
        time_from, time_to = validate_arguments(parse(
            '-l', 'ubuntu', '-mc-from', '2020-03-23T00:00:00Z', '-mc-to', '2020-03-24T02:00:00+02:00'), now=NOW)

        assert time_from == datetime(2020, 3, 23, tzinfo=timezone.utc)
        assert time_to == datetime(2020, 3, 24, tzinfo=timezone.utc)

    def test_missing_user(self):
        with pytest.raises(ArgumentValidationError, match='Missing required parameter -l'):
            validate_arguments(parse(), now=NOW)

    def test_invalid_from(self):
        with pytest.raises(ArgumentValidationError, match="Failed to parse 'from' datetime"):
            validate_arguments(parse('-l', 'ubuntu', '-mc-from', '23/03/2020'), now=NOW)

    def test_from_after_to(self):
        with pytest.raises(ArgumentValidationError, match='Incorrect metrics collecting time span'):
            validate_arguments(parse('-l', 'ubuntu', '-mc-from', '2020-03-24T00:00:00Z',
                                     '-mc-to', '2020-03-23T00:00:00Z'), now=NOW)


class TestMain:
    def test_missing_user_fails(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert main([]) == 1
        assert 'Missing required parameter -l' in (tmp_path / 'agent.log').read_text()

    def test_generate_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / 'generated.yml'

        assert main(['-generate_config', '-config', str(path)]) == 0

        data = yaml.safe_load(path.read_text())
        assert data['metrics']['prometheus']['port'] == 9090
        assert data['node']['cassandra']['config-path'] == '/etc/cassandra'

    def test_known_hosts_failure(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('HOME', str(tmp_path))
        monkeypatch.delenv('SSH_AUTH_SOCK', raising=False)

        assert main(['-l', 'ubuntu', '-nc', '10.0.0.1']) == 1
        assert 'Failed to load known hosts' in (tmp_path / 'agent.log').read_text()
        assert not (tmp_path / '.instaclustr').exists()
