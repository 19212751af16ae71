#!/usr/bin/env python3
"""
Metrics Collector - Prometheus snapshot collection over SSH

Asks Prometheus on the remote host for a TSDB snapshot, deletes the
snapshot blocks that fall outside the requested time window ("lightening"),
optionally packs what is left into a tarball and downloads the result.
The remote snapshot (or tarball) is always removed afterwards.
"""

import json
import logging
import os
import posixpath
from datetime import datetime, timezone
from typing import Optional

from .errors import CollectorError, SnapshotAPIError, SnapshotDecodeError
from .log import collector_logger
from .progress import log_progress
from .session import Session
from .settings import MetricsCollectorSettings
from .stats import CollectionStats
from .utils import EPOCH, epoch_ms_to_utc

PROMETHEUS_SNAPSHOT_SUCCESS = 'success'
PROMETHEUS_SNAPSHOT_FOLDER = 'snapshots'
PROMETHEUS_CREATE_SNAPSHOT_TEMPLATE = 'curl -s -XPOST http://localhost:{port}/api/v1/admin/tsdb/snapshot'
TEMPORAL_SNAPSHOT_TARBALL_PATH = '/tmp/InstaclustrCollection.tar'
CREATE_SNAPSHOT_TARBALL_TEMPLATE = 'tar -cf {dest} -C {src} .'
BLOCK_META_FILE = 'meta.json'
SUPPORTED_BLOCK_VERSION = 1


class BlockMetadata:
    """Subset of a Prometheus block meta.json"""

    def __init__(self, ulid: str, version: int, min_time: int, max_time: int,
                 num_samples: int = 0, num_series: int = 0, num_chunks: int = 0):
        self.ulid = ulid
        self.version = version
        self.min_time = min_time
        self.max_time = max_time
        self.num_samples = num_samples
        self.num_series = num_series
        self.num_chunks = num_chunks

    @classmethod
    def parse(cls, content: bytes) -> 'BlockMetadata':
        try:
            data = json.loads(content)
        except ValueError as e:
            raise SnapshotDecodeError(f"Failed to unmarshal block metadata ({e})") from e
        if not isinstance(data, dict):
            raise SnapshotDecodeError("Failed to unmarshal block metadata (not a JSON object)")

        stats = data.get('stats') or {}
        if not isinstance(stats, dict):
            raise SnapshotDecodeError("Failed to unmarshal block metadata ('stats' is not a JSON object)")
        try:
            return cls(
                ulid=str(data.get('ulid', '')),
                version=int(data.get('version', 0)),
                min_time=int(data['minTime']),
                max_time=int(data['maxTime']),
                num_samples=int(stats.get('numSamples', 0)),
                num_series=int(stats.get('numSeries', 0)),
                num_chunks=int(stats.get('numChunks', 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotDecodeError(f"Failed to unmarshal block metadata (invalid field {e})") from e

    def overlaps(self, time_from: datetime, time_to: datetime) -> bool:
        """
        Whether the block carries samples of the [time_from, time_to] window.

        Comparisons are strict on both sides: a block ending exactly at
        time_from (or starting exactly at time_to) does not overlap.
        """
        block_min = epoch_ms_to_utc(self.min_time)
        block_max = epoch_ms_to_utc(self.max_time)
        return ((block_min > time_from or block_max > time_from) and
                (block_min < time_to or block_max < time_to))


class MetricsCollector:
    """Collects a time bounded Prometheus snapshot from one host"""

    def __init__(self, settings: MetricsCollectorSettings, path: str,
                 time_from: datetime = EPOCH, time_to: Optional[datetime] = None,
                 stats: Optional[CollectionStats] = None):
        """
        Args:
            settings: Prometheus location and transfer options
            path: Local metrics folder of the run directory
            time_from: Start of the collected time window (UTC)
            time_to: End of the collected time window (UTC), defaults to now
            stats: Optional run statistics to report block decisions to
        """
        self.settings = settings
        self.path = path
        self.time_from = time_from
        self.time_to = time_to or datetime.now(timezone.utc)
        self.stats = stats

    async def collect(self, session: Session):
        host = session.get_host()
        log = collector_logger(__name__, f"MC {host}")
        log.info("Metrics collecting started")

        try:
            await session.connect()
        except CollectorError as e:
            log.error(e)
            raise

        log.info("Creating snapshot...")
        try:
            snapshot = await self.create_snapshot(session)
        except CollectorError as e:
            log.error(e)
            raise
        log.info("Creating snapshot  OK")
        log.info(f"Snapshot name: {snapshot}")

        src = posixpath.join(self.settings.prometheus.data_path, PROMETHEUS_SNAPSHOT_FOLDER, snapshot)

        log.info("Lightening snapshot...")
        await self.lighten_snapshot(session, src, log)
        log.info("Lightening snapshot  OK")

        resource_name = 'snapshot'
        if self.settings.copy_compressed:
            log.info("Creating snapshot tarball...")
            tarball_error = None
            try:
                await self.tarball_snapshot(session, src, TEMPORAL_SNAPSHOT_TARBALL_PATH)
                log.info("Creating snapshot tarball  OK")
            except CollectorError as e:
                log.error(e)
                tarball_error = e

            log.info("Cleanup snapshot...")
            try:
                await self.remove_resource(session, src)
                log.info("Cleanup snapshot  OK")
            except CollectorError as e:
                log.error(e)

            if tarball_error is not None:
                raise tarball_error

            src = TEMPORAL_SNAPSHOT_TARBALL_PATH
            resource_name = 'snapshot tarball'

        dest = os.path.join(self.path, 'snapshot')

        log.info("Downloading snapshot...")
        download_error = None
        try:
            await self.download_snapshot(session, src, dest, log)
            log.info("Downloading snapshot  OK")
        except CollectorError as e:
            log.error(e)
            download_error = e

        log.info(f"Cleanup {resource_name}...")
        try:
            await self.remove_resource(session, src)
        except CollectorError as e:
            log.error(e)
            raise
        log.info(f"Cleanup {resource_name}  OK")

        if download_error is not None:
            raise download_error

        log.info("Metrics collecting completed")

    async def create_snapshot(self, session: Session) -> str:
        """Trigger a TSDB snapshot and return its name"""
        command = PROMETHEUS_CREATE_SNAPSHOT_TEMPLATE.format(port=self.settings.prometheus.port)
        stdout, stderr = await session.execute(command)
        if stderr:
            raise SnapshotAPIError(
                f"Failed to create prometheus snapshot: {stderr.decode('utf-8', errors='replace')}")

        try:
            response = json.loads(stdout)
        except ValueError as e:
            raise SnapshotDecodeError(f"Failed to unmarshal snapshot command output ({e})") from e
        if not isinstance(response, dict):
            raise SnapshotDecodeError("Failed to unmarshal snapshot command output (not a JSON object)")

        status = response.get('status') or ''
        if status != PROMETHEUS_SNAPSHOT_SUCCESS:
            error = response.get('error') or ''
            raise SnapshotAPIError(f"Failed to create prometheus snapshot (status: '{status}', error: '{error}')")

        data = response.get('data') or {}
        if not isinstance(data, dict):
            raise SnapshotDecodeError("Failed to unmarshal snapshot command output ('data' is not a JSON object)")
        name = data.get('name') or ''
        if not isinstance(name, str):
            raise SnapshotDecodeError("Failed to unmarshal snapshot command output ('name' is not a string)")
        if not name:
            raise SnapshotAPIError("Failed to create prometheus snapshot (empty snapshot name)")
        return name

    async def lighten_snapshot(self, session: Session, snapshot_path: str, log=None):
        """
        Delete blocks outside the collected time window on the remote host.

        Failures on a single block are logged and the block is left in place.
        """
        log = log or logging.getLogger(__name__)
        host = session.get_host()
        try:
            entries = await session.list_directory(snapshot_path)
        except CollectorError as e:
            log.warning(f"Failed to list snapshot blocks, downloading full snapshot ({e})")
            return

        for entry in entries:
            if not entry.is_dir:
                continue

            block_name = posixpath.basename(entry.path)
            try:
                content = await session.get_content(posixpath.join(entry.path, BLOCK_META_FILE))
                meta = BlockMetadata.parse(content)
            except CollectorError as e:
                log.warning(f"Failed to read metadata of block '{block_name}' ({e})")
                self._record_block(host, 'failed')
                continue

            if meta.version != SUPPORTED_BLOCK_VERSION:
                log.warning(f"Skipping block '{block_name}' with unsupported metadata version {meta.version}")
                self._record_block(host, 'skipped')
                continue

            if meta.overlaps(self.time_from, self.time_to):
                log.debug(f"Keeping block '{block_name}' ({meta.num_samples} samples)")
                self._record_block(host, 'kept')
                continue

            log.info(f"Removing block '{block_name}' "
                     f"({epoch_ms_to_utc(meta.min_time)} ... {epoch_ms_to_utc(meta.max_time)}) "
                     f"outside of time span {self.time_from} ... {self.time_to}")
            try:
                await session.remove(entry.path)
                self._record_block(host, 'deleted')
            except CollectorError as e:
                log.warning(f"Failed to remove block '{block_name}' ({e})")
                self._record_block(host, 'failed')

    async def tarball_snapshot(self, session: Session, src: str, dest: str):
        command = CREATE_SNAPSHOT_TARBALL_TEMPLATE.format(dest=dest, src=src)
        _, stderr = await session.execute(command)
        if stderr:
            raise SnapshotAPIError(
                f"Failed to create snapshot tarball: {stderr.decode('utf-8', errors='replace')}")

    async def download_snapshot(self, session: Session, src: str, dest: str, log=None):
        log = log or logging.getLogger(__name__)
        try:
            await session.receive_directory(src, dest, log_progress(log, 'Downloading snapshot'))
        except CollectorError as e:
            raise type(e)(f"Failed to receive snapshot ({e})") from e

    async def remove_resource(self, session: Session, path: str):
        try:
            await session.remove(path)
        except CollectorError as e:
            raise type(e)(f"Failed to remove resource '{path}' ({e})") from e

    def _record_block(self, host: str, decision: str):
        if self.stats is not None:
            self.stats.record_block(host, decision)
