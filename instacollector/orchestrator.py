#!/usr/bin/env python3
"""
Orchestrator - Runs all collectors of one invocation

Builds the SSH client configuration shared by every session, creates the
timestamped run directory, collects from all metrics and node hosts in
parallel and finally packs the run directory into a single ZIP archive.
"""

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import asyncssh

from .archive import zip_directory
from .errors import SSHConnectError
from .log import stop_file_logging
from .metrics_collector import MetricsCollector
from .node_collector import NodeCollector
from .session import RemoteSession, Session, SSHClientConfig
from .settings import Settings
from .stats import CollectionStats
from .utils import EPOCH, copy_file, expand, join_to_set

TIMESTAMP_PATTERN = '%Y%m%dT%H%M%S'
KNOWN_HOSTS_PATH = '~/.ssh/known_hosts'
DEFAULT_PRIVATE_KEY_PATH = '~/.ssh/id_rsa'
SSH_HANDSHAKE_TIMEOUT = 2.0
AGENT_LOG_NAME = 'agent.log'
STATS_FILE_NAME = 'collection.prom'

logger = logging.getLogger(__name__)


def collecting_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime(TIMESTAMP_PATTERN)


def resolve_targets(settings: Settings, metrics_hosts: List[str], node_hosts: List[str]) -> Tuple[List[str], List[str]]:
    """Merge host lists from settings and command line; only one metrics host is used"""
    metrics_targets = join_to_set(settings.target.metrics, metrics_hosts)
    node_targets = join_to_set(settings.target.nodes, node_hosts)

    if len(metrics_targets) > 1:
        logger.warning(f"Only one metrics host is supported, ignoring {metrics_targets[1:]}")
        metrics_targets = metrics_targets[:1]
    return metrics_targets, node_targets


def load_known_hosts(disable_known_hosts: bool):
    """
    Host key verification policy.

    Returns parsed known hosts for strict verification, or None to accept
    any host key. Raises SSHConnectError when the known hosts file can not
    be loaded.
    """
    if disable_known_hosts:
        logger.warning("Host key verification is disabled")
        return None

    path = expand(KNOWN_HOSTS_PATH)
    logger.info(f"Loading known hosts '{path}'...")
    try:
        return asyncssh.read_known_hosts(path)
    except (OSError, ValueError, asyncssh.Error) as e:
        raise SSHConnectError(f"Failed to load known hosts ({e})") from e


def load_private_keys(extra_keys: List[str]) -> list:
    """Load the default private key plus extra key files, skipping unusable ones"""
    keys = []
    for key_path in [expand(DEFAULT_PRIVATE_KEY_PATH)] + [expand(k) for k in extra_keys]:
        logger.info(f"Loading private key '{key_path}'...")
        try:
            keys.append(asyncssh.read_private_key(key_path))
        except OSError as e:
            logger.warning(f"Failed to read key '{key_path}' ({e})")
        except (asyncssh.KeyImportError, ValueError) as e:
            logger.error(f"Failed to parse private key '{key_path}' ({e})")
    return keys


async def load_agent_keys(socket_path: Optional[str]):
    """
    Keys offered by a forwarded SSH agent.

    Returns (agent, keys); the agent stays connected because its keys sign
    through it, and must be closed by the caller.
    """
    if not socket_path:
        logger.warning("SSH_AUTH_SOCK is not set, agent forwarded keys are not used")
        return None, []

    try:
        agent = await asyncssh.connect_agent(socket_path)
    except (asyncssh.Error, OSError) as e:
        logger.warning(f"Failed to open SSH_AUTH_SOCK: {e}")
        return None, []
    if agent is None:
        logger.warning(f"Failed to open SSH_AUTH_SOCK: no agent at '{socket_path}'")
        return None, []

    try:
        keys = await agent.get_keys()
    except (asyncssh.Error, OSError) as e:
        logger.warning(f"Failed to provide agent forwarded keys: {e}")
        agent.close()
        await agent.wait_closed()
        return None, []

    logger.info(f"Using {len(keys)} agent forwarded key(s)")
    return agent, list(keys)


class Orchestrator:
    """Collects from all targets of one run into a single run directory"""

    def __init__(self, settings: Settings, ssh_config: SSHClientConfig, timestamp: str,
                 metrics_hosts: List[str], node_hosts: List[str],
                 time_from: datetime = EPOCH, time_to: Optional[datetime] = None,
                 session_factory: Callable[[], Session] = RemoteSession):
        self.settings = settings
        self.ssh_config = ssh_config
        self.timestamp = timestamp
        self.metrics_hosts = metrics_hosts
        self.node_hosts = node_hosts
        self.time_from = time_from
        self.time_to = time_to or datetime.now(timezone.utc)
        self.session_factory = session_factory

        self.root_path = expand(settings.agent.collected_data_path)
        self.run_path = os.path.join(self.root_path, timestamp)
        self.stats = CollectionStats(timestamp)

    def prepare_run_directory(self):
        try:
            os.makedirs(self.run_path, exist_ok=True)
        except OSError as e:
            logger.warning(f"Failed to create collecting folder '{self.run_path}' ({e})")

    async def collect(self):
        """Run one task per (host, role) and wait for all of them"""
        logger.info(f"Collecting timestamp: {self.timestamp}")
        logger.info(f"Metrics collecting hosts are: {self.metrics_hosts}")
        logger.info(f"Metrics collecting time span: {self.time_from} ... {self.time_to}")
        logger.info(f"Node collecting hosts are: {self.node_hosts}")

        metrics_collector = MetricsCollector(
            settings=self.settings.metrics,
            path=os.path.join(self.run_path, 'metrics'),
            time_from=self.time_from,
            time_to=self.time_to,
            stats=self.stats,
        )
        node_collector = NodeCollector(
            settings=self.settings.node,
            path=os.path.join(self.run_path, 'nodes'),
            stats=self.stats,
        )

        tasks = [self._collect_host(host, 'metrics', metrics_collector) for host in self.metrics_hosts]
        tasks += [self._collect_host(host, 'node', node_collector) for host in self.node_hosts]

        start_time = time.time()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        elapsed = time.time() - start_time

        success_count = sum(1 for r in results if r is True)
        logger.info(f"Collected from {success_count}/{len(tasks)} targets in {elapsed:.2f}s")

    async def _collect_host(self, host: str, role: str, collector) -> bool:
        session = self.session_factory()
        session.set_target(host, self.ssh_config.port)
        session.set_config(self.ssh_config)

        start_time = time.time()
        success = False
        try:
            await collector.collect(session)
            success = True
        except Exception as e:
            logger.error(f"Failed to collect {role} on '{host}' ({type(e).__name__}: {e})")
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Failed to close session to '{host}' ({e})")
            self.stats.record_collection(host, role, time.time() - start_time, success)
        return success

    def package(self, log_file: Optional[str] = None, file_handler=None) -> Optional[str]:
        """
        Seal the run directory and pack it into <root>/<timestamp>-data.zip.

        The live run log is closed and copied into the run directory first,
        so messages logged from here on only reach stdout.
        """
        logger.info(f"Compressing collected data ({self.run_path})...")

        try:
            self.stats.write(os.path.join(self.run_path, STATS_FILE_NAME))
        except OSError as e:
            logger.warning(f"Failed to write collection stats ({e})")

        stop_file_logging(file_handler)
        if log_file:
            try:
                copy_file(log_file, os.path.join(self.run_path, AGENT_LOG_NAME))
            except OSError as e:
                logger.warning(f"Failed to copy agent log to collecting folder: {e}")

        tarball = os.path.join(self.root_path, f"{self.timestamp}-data.zip")
        try:
            zip_directory(self.run_path, tarball)
        except OSError as e:
            logger.error(f"Failed to compress collected data ({e})")
            return None

        logger.info("Compressing collected data  OK")
        logger.info(f"Tarball: {tarball}")
        return tarball


async def build_ssh_config(user: str, port: int, disable_known_hosts: bool,
                           extra_keys: List[str], agent_socket: Optional[str]):
    """
    Assemble the shared SSH client configuration.

    Returns (config, agent); the agent, when present, must be closed after
    the run.
    """
    known_hosts = load_known_hosts(disable_known_hosts)
    client_keys = load_private_keys(extra_keys)
    agent, agent_keys = await load_agent_keys(agent_socket)

    config = SSHClientConfig(
        username=user,
        port=port,
        timeout=SSH_HANDSHAKE_TIMEOUT,
        client_keys=client_keys + agent_keys,
        known_hosts=known_hosts,
    )
    return config, agent
