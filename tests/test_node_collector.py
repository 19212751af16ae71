"""Tests for the Cassandra node collector."""

import os
from unittest.mock import ANY, call

import pytest

from conftest import make_session
from instacollector.errors import CommandError, RemoteFilesystemError, SSHConnectError, TransferError
from instacollector.node_collector import IO_STATS_COMMAND, NodeCollector, info_file_name
from instacollector.session import FileInfo
from instacollector.settings import NodeCollectorSettings
from instacollector.stats import CollectionStats

HOST = '10.0.0.1'
GC_LISTING = [
    FileInfo('/var/log/cassandra/system.log', False),
    FileInfo('/var/log/cassandra/debug.log', False),
    FileInfo('/var/log/cassandra/gc.log.0.current', False),
    FileInfo('/var/log/cassandra/gc.log.1', False),
    FileInfo('/var/log/cassandra/gc.log.2', False),
    FileInfo('/var/log/cassandra/gc.log.3', False),
    FileInfo('/var/log/cassandra/gc_archive', True),
]


def command_output(cmd):
    if cmd == IO_STATS_COMMAND:
        raise CommandError('timed out', command=cmd, stdout=b'iostat output', exit_status=124)
    return f'output of {cmd}'.encode(), b''


@pytest.fixture
def session():
    session = make_session(HOST)
    session.execute.side_effect = command_output
    session.list_directory.return_value = GC_LISTING
    return session


@pytest.fixture
def settings():
    return NodeCollectorSettings()


def read(path):
    with open(path, 'rb') as f:
        return f.read()


class TestCollect:
    @pytest.mark.asyncio
    async def test_collects_all_artifacts(self, session, settings, tmp_path):
        stats = CollectionStats('20200325T120000')
        await NodeCollector(settings, str(tmp_path), stats).collect(session)

        node_path = tmp_path / HOST
        info_path = node_path / 'info'
        assert sorted(os.listdir(info_path)) == sorted([
            'nodetool_info.info',
            'nodetool_version.info',
            'nodetool_status.info',
            'nodetool_tpstats.info',
            'nodetool_compactionstats_-H.info',
            'nodetool_gossipinfo.info',
            'nodetool_cfstats_-H.info',
            'nodetool_ring.info',
            'io_stat.info',
            'disk.info',
            'ulimit_-a.info',
            'free_-m.info',
        ])
        assert read(info_path / 'nodetool_status.info') == b'output of nodetool status'
        assert read(info_path / 'io_stat.info') == b'iostat output'
        assert read(info_path / 'free_-m.info') == b'output of free -m'

        config_path = str(node_path / 'config')
        log_path = str(node_path / 'logs')
        gc_path = str(node_path / 'gc_logs')
        received = session.receive_file.await_args_list
        assert received[:4] == [
            call('/etc/cassandra/cassandra.yaml', config_path),
            call('/etc/cassandra/cassandra-env.sh', config_path),
            call('/etc/cassandra/jvm.options', config_path),
            call('/etc/cassandra/logback.xml', config_path),
        ]
        assert received[4:] == [
            call('/var/log/cassandra/system.log', log_path, ANY),
            call('/var/log/cassandra/gc.log.0.current', gc_path, ANY),
            call('/var/log/cassandra/gc.log.1', gc_path, ANY),
            call('/var/log/cassandra/gc.log.2', gc_path, ANY),
            call('/var/log/cassandra/gc.log.3', gc_path, ANY),
        ]
        session.list_directory.assert_awaited_once_with('/var/log/cassandra')

        labels = {'run': '20200325T120000', 'host': HOST}
        assert stats.registry.get_sample_value(
            'instacollector_artifacts_total', dict(labels, kind='info', result='ok')) == 12
        assert stats.registry.get_sample_value(
            'instacollector_artifacts_total', dict(labels, kind='gc_log', result='ok')) == 4

    @pytest.mark.asyncio
    async def test_connect_failure(self, session, settings, tmp_path):
        session.connect.side_effect = SSHConnectError('no route to host')

        with pytest.raises(SSHConnectError):
            await NodeCollector(settings, str(tmp_path)).collect(session)

        session.execute.assert_not_awaited()
        session.receive_file.assert_not_awaited()
        assert not (tmp_path / HOST).exists()

    @pytest.mark.asyncio
    async def test_artifact_failures_do_not_stop_collection(self, session, settings, tmp_path):
        def receive_file(src, dest, progress=None):
            if src.endswith('jvm.options') or src.endswith('system.log'):
                raise TransferError('no such file')
        session.receive_file.side_effect = receive_file

        def execute(cmd):
            if cmd == 'nodetool tpstats':
                raise CommandError('nodetool failed', command=cmd, exit_status=1)
            return command_output(cmd)
        session.execute.side_effect = execute

        await NodeCollector(settings, str(tmp_path)).collect(session)

        info_path = tmp_path / HOST / 'info'
        assert not (info_path / 'nodetool_tpstats.info').exists()
        assert (info_path / 'nodetool_ring.info').exists()
        assert session.receive_file.await_count == 9

    @pytest.mark.asyncio
    async def test_gc_listing_failure(self, session, settings, tmp_path):
        session.list_directory.side_effect = RemoteFilesystemError('permission denied')

        await NodeCollector(settings, str(tmp_path)).collect(session)

        assert session.receive_file.await_count == 5
        assert (tmp_path / HOST / 'info' / 'disk.info').exists()


class TestInfo:
    @pytest.mark.asyncio
    async def test_disk_info(self, session, settings, tmp_path):
        settings.cassandra.data_path = ['/data1', '/data2']

        await NodeCollector(settings, str(tmp_path)).collect_disk_info(session)

        assert read(tmp_path / HOST / 'info' / 'disk.info') == (
            b'df -h /data1\noutput of df -h /data1\n'
            b'df -h /data2\noutput of df -h /data2\n'
            b'du -h /data1\noutput of du -h /data1\n'
            b'du -h /data2\noutput of du -h /data2\n'
        )

    @pytest.mark.asyncio
    async def test_disk_info_skips_failed_commands(self, session, settings, tmp_path):
        def execute(cmd):
            if cmd.startswith('du'):
                raise CommandError('du failed', command=cmd, exit_status=1)
            return command_output(cmd)
        session.execute.side_effect = execute

        await NodeCollector(settings, str(tmp_path)).collect_disk_info(session)

        assert read(tmp_path / HOST / 'info' / 'disk.info') == (
            b'df -h /var/lib/cassandra/data\noutput of df -h /var/lib/cassandra/data\n'
        )

    @pytest.mark.asyncio
    async def test_io_stats_other_failure_keeps_output(self, session, settings, tmp_path):
        session.execute.side_effect = CommandError(
            'iostat: command not found', stdout=b'', exit_status=127)

        await NodeCollector(settings, str(tmp_path)).collect_io_stats(session)

        assert read(tmp_path / HOST / 'info' / 'io_stat.info') == b''

    @pytest.mark.asyncio
    async def test_nodetool_credentials(self, session, settings, tmp_path):
        settings.cassandra.username = 'cassandra'
        settings.cassandra.password = 'secret'

        await NodeCollector(settings, str(tmp_path)).collect_nodetool_info(session)

        commands = [c.args[0] for c in session.execute.await_args_list]
        assert commands[0] == 'nodetool -u cassandra -pw secret info'
        assert 'nodetool -u cassandra -pw secret compactionstats -H' in commands
        assert len(commands) == 8


class TestHelpers:
    def test_info_file_name(self):
        assert info_file_name('nodetool cfstats -H') == 'nodetool_cfstats_-H.info'
        assert info_file_name('ulimit -a') == 'ulimit_-a.info'

    def test_is_gc_log(self, settings):
        collector = NodeCollector(settings, '/tmp')

        assert collector.is_gc_log('gc.log.0.current')
        assert not collector.is_gc_log('system.log')

        settings.collecting.gc_log_patterns = ['*.gc', 'gc-*.log']
        assert collector.is_gc_log('cassandra.gc')
        assert collector.is_gc_log('gc-2020.log')
        assert not collector.is_gc_log('gc.log')
