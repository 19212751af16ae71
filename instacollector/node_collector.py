#!/usr/bin/env python3
"""
Node Collector - Cassandra node diagnostics over SSH

Gathers nodetool introspection, I/O, disk and system information into the
info bucket of a node while configuration files, logs and GC logs are
downloaded over the same session. A failure on one artifact is logged and
never stops the rest of the node from being collected.
"""

import asyncio
import fnmatch
import logging
import os
import posixpath
from typing import List, Optional

from .errors import CollectorError, CommandError, LocalFilesystemError
from .log import collector_logger
from .progress import log_progress
from .session import Session
from .settings import NodeCollectorSettings
from .stats import CollectionStats

NODETOOL_COMMANDS = [
    'info',
    'version',
    'status',
    'tpstats',
    'compactionstats -H',
    'gossipinfo',
    'cfstats -H',
    'ring',
]

IO_STATS_COMMAND = 'eval timeout -sHUP 60s iostat -x -m -t -y -z 30 < /dev/null'
# Exit status of 'timeout' when the time limit was hit, the normal case for iostat
TIMEOUT_EXIT_STATUS = 124

DISK_COMMANDS = ['df -h', 'du -h']
SYSTEM_COMMANDS = ['ulimit -a', 'free -m']


def info_file_name(command: str) -> str:
    return command.replace(' ', '_') + '.info'


class NodeCollector:
    """Collects diagnostics of one Cassandra node"""

    def __init__(self, settings: NodeCollectorSettings, path: str,
                 stats: Optional[CollectionStats] = None):
        """
        Args:
            settings: Cassandra locations and lists of files to collect
            path: Local nodes folder of the run directory
            stats: Optional run statistics to report artifacts to
        """
        self.settings = settings
        self.path = path
        self.stats = stats

    async def collect(self, session: Session):
        host = session.get_host()
        log = collector_logger(__name__, f"NC {host}")
        log.info("Node collector started")

        try:
            await session.connect()
        except CollectorError as e:
            log.error(e)
            raise

        info_tasks = asyncio.gather(
            self._step(log, "nodetool info", self.collect_nodetool_info(session, log)),
            self._step(log, "IO stats", self.collect_io_stats(session, log)),
            self._step(log, "disk info", self.collect_disk_info(session, log)),
            self._step(log, "system info", self.collect_system_info(session, log)),
        )

        try:
            await self._step(log, "configuration files", self.download_configuration_files(session, log))
            await self._step(log, "log files", self.download_log_files(session, log))
            await self._step(log, "gc log files", self.download_gc_log_files(session, log))
        finally:
            await info_tasks

        log.info("Node collector completed")

    async def _step(self, log, name: str, coro):
        log.info(f"Collecting {name}...")
        try:
            await coro
        except CollectorError as e:
            log.error(e)
            return
        log.info(f"Collecting {name} completed.")

    def _folder(self, host: str, name: str) -> str:
        path = os.path.join(self.path, host, name)
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise LocalFilesystemError(f"Failed to create {name} folder '{path}' ({e})") from e
        return path

    def _save(self, path: str, data: bytes):
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise LocalFilesystemError(f"Failed to save '{path}' ({e})") from e

    def _record(self, host: str, kind: str, ok: bool):
        if self.stats is not None:
            self.stats.record_artifact(host, kind, ok)

    def nodetool_command(self, command: str) -> str:
        cassandra = self.settings.cassandra
        parts = ['nodetool']
        if cassandra.username:
            parts += ['-u', cassandra.username]
        if cassandra.password:
            parts += ['-pw', cassandra.password]
        parts.append(command)
        return ' '.join(parts)

    async def collect_nodetool_info(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        path = self._folder(host, 'info')

        for command in NODETOOL_COMMANDS:
            try:
                stdout, _ = await session.execute(self.nodetool_command(command))
                self._save(os.path.join(path, info_file_name(f"nodetool {command}")), stdout)
                self._record(host, 'info', True)
            except CommandError as e:
                # The command line may hold credentials, name the subcommand only
                log.error(f"Failed to execute 'nodetool {command}' (exit status {e.exit_status})")
                self._record(host, 'info', False)
            except CollectorError as e:
                log.error(f"Failed to save 'nodetool {command}' data ({e})")
                self._record(host, 'info', False)

    async def collect_io_stats(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        path = self._folder(host, 'info')

        try:
            stdout, _ = await session.execute(IO_STATS_COMMAND)
        except CommandError as e:
            if e.exit_status == TIMEOUT_EXIT_STATUS:
                log.debug("iostat stopped by timeout")
            else:
                # TODO hint to install sysstat when iostat is missing (exit status 127)
                log.warning(e)
            stdout = e.stdout

        try:
            self._save(os.path.join(path, 'io_stat.info'), stdout)
        except CollectorError:
            self._record(host, 'info', False)
            raise
        self._record(host, 'info', True)

    async def collect_disk_info(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        path = self._folder(host, 'info')

        report: List[bytes] = []
        for command in DISK_COMMANDS:
            for data_path in self.settings.cassandra.data_path:
                command_line = f"{command} {data_path}"
                try:
                    stdout, _ = await session.execute(command_line)
                except CommandError as e:
                    log.error(f"Failed to execute '{command_line}' ({e})")
                    continue
                report.append(command_line.encode() + b'\n' + stdout + b'\n')

        try:
            self._save(os.path.join(path, 'disk.info'), b''.join(report))
        except CollectorError:
            self._record(host, 'info', False)
            raise
        self._record(host, 'info', True)

    async def collect_system_info(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        path = self._folder(host, 'info')

        for command in SYSTEM_COMMANDS:
            try:
                stdout, _ = await session.execute(command)
                self._save(os.path.join(path, info_file_name(command)), stdout)
                self._record(host, 'info', True)
            except CollectorError as e:
                log.error(f"Failed to collect '{command}' ({e})")
                self._record(host, 'info', False)

    async def download_configuration_files(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        dest = self._folder(host, 'config')

        for name in self.settings.collecting.configs:
            src = posixpath.join(self.settings.cassandra.config_path, name)
            try:
                await session.receive_file(src, dest)
                self._record(host, 'config', True)
            except CollectorError as e:
                log.warning(f"Failed to receive config file '{src}' ({e})")
                self._record(host, 'config', False)

    async def download_log_files(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        dest = self._folder(host, 'logs')

        for name in self.settings.collecting.logs:
            src = posixpath.join(self.settings.cassandra.log_path, name)
            try:
                await session.receive_file(src, dest, log_progress(log, f"Downloading '{src}'"))
                self._record(host, 'log', True)
            except CollectorError as e:
                log.warning(f"Failed to receive log file '{src}' ({e})")
                self._record(host, 'log', False)

    async def download_gc_log_files(self, session: Session, log=None):
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        dest = self._folder(host, 'gc_logs')

        entries = await session.list_directory(self.settings.cassandra.gc_path)
        for entry in entries:
            if entry.is_dir or not self.is_gc_log(posixpath.basename(entry.path)):
                continue
            try:
                await session.receive_file(entry.path, dest, log_progress(log, f"Downloading '{entry.path}'"))
                self._record(host, 'gc_log', True)
            except CollectorError as e:
                log.warning(f"Failed to receive gc log file '{entry.path}' ({e})")
                self._record(host, 'gc_log', False)

    def is_gc_log(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.settings.collecting.gc_log_patterns)
