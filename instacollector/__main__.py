#!/usr/bin/env python3
"""
Instacollector CLI - Main entry point

Collects diagnostics from Cassandra nodes and a Prometheus snapshot from the
metrics server over SSH, and packs everything into a single ZIP archive for
the support team.
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .errors import ArgumentValidationError, CollectorError
from .log import setup_logging, stop_file_logging
from .orchestrator import (Orchestrator, build_ssh_config, collecting_timestamp,
                           resolve_targets)
from .settings import Settings, search_settings_path
from .utils import EPOCH, expand, exists, parse_timestamp

AGENT_LOG_PATH = os.path.join('.', 'agent.log')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='instacollector',
        description='Collect Cassandra node and Prometheus diagnostics over SSH',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Examples:
  # Collect two nodes and the metrics server
  %(prog)s -l ubuntu -nc 10.0.0.1,10.0.0.2 -mc 10.0.0.10

  # Restrict metrics to a time span
  %(prog)s -l ubuntu -mc 10.0.0.10 -mc-from 2020-03-23T00:00:00Z -mc-to 2020-03-24T00:00:00Z

  # Write the default settings file
  %(prog)s -generate_config -config settings.yml
        """
    )

    parser.add_argument('-l', dest='user', default='',
                        help='User to log in as on the remote machine')
    parser.add_argument('-p', dest='port', type=int, default=22,
                        help='Port to connect to on the remote host (default: 22)')
    parser.add_argument('-mc', dest='metrics_hosts', action='append', default=[],
                        help='Metrics collecting hostname (comma separated, repeatable)')
    parser.add_argument('-nc', dest='node_hosts', action='append', default=[],
                        help='Node collecting hostnames (comma separated, repeatable)')
    parser.add_argument('-pk', dest='private_keys', action='append', default=[],
                        help='Private key files for public key authentication, in addition '
                             'to the default one ([HOME]/.ssh/id_rsa)')
    parser.add_argument('-mc-from', dest='mc_from', default='',
                        help='Datetime (RFC3339, 2006-01-02T15:04:05Z07:00) to fetch metrics from '
                             '(default: 1970-01-01T00:00:00Z)')
    parser.add_argument('-mc-to', dest='mc_to', default='',
                        help='Datetime (RFC3339, 2006-01-02T15:04:05Z07:00) to fetch metrics to '
                             '(default: current datetime)')
    parser.add_argument('-disable_known_hosts', dest='disable_known_hosts', action='store_true',
                        help="Skip loading the user's known-hosts file")
    parser.add_argument('-config', dest='config', default='',
                        help='The path to the configuration file')
    parser.add_argument('-generate_config', dest='generate_config', action='store_true',
                        help='Write the default configuration file and exit')
    parser.add_argument('-log-level', dest='log_level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')
    return parser


def split_list(values: List[str]) -> List[str]:
    """Flatten repeated, comma separated option values"""
    items = []
    for value in values:
        items.extend(value.split(','))
    return items


def validate_arguments(args, now: Optional[datetime] = None):
    """
    Check required arguments and resolve the metrics time span.

    Returns (time_from, time_to); raises ArgumentValidationError.
    """
    if not args.user and not args.generate_config:
        raise ArgumentValidationError("Missing required parameter -l")

    time_from = EPOCH
    time_to = now or datetime.now(timezone.utc)

    if args.mc_from.strip():
        try:
            time_from = parse_timestamp(args.mc_from)
        except ArgumentValidationError as e:
            raise ArgumentValidationError(f"Failed to parse 'from' datetime ({args.mc_from}): {e}") from e

    if args.mc_to.strip():
        try:
            time_to = parse_timestamp(args.mc_to)
        except ArgumentValidationError as e:
            raise ArgumentValidationError(f"Failed to parse 'to' datetime ({args.mc_to}): {e}") from e

    if time_from > time_to:
        raise ArgumentValidationError(
            f"Incorrect metrics collecting time span {time_from} after {time_to}")

    return time_from, time_to


def load_settings(config_path: str) -> Settings:
    logger = logging.getLogger(__name__)
    settings = Settings()

    settings_path = expand(search_settings_path(config_path))
    if exists(settings_path):
        logger.info(f"Loading settings from '{settings_path}'...")
        try:
            settings.load(settings_path)
        except CollectorError as e:
            logger.warning(e)
    else:
        logger.warning(f"The settings file '{settings_path}' does not exist")
    return settings


async def collect(args, settings: Settings, timestamp: str, time_from: datetime, time_to: datetime):
    """Collect from all targets; returns the orchestrator for packaging"""
    ssh_config, agent = await build_ssh_config(
        user=args.user,
        port=args.port,
        disable_known_hosts=args.disable_known_hosts,
        extra_keys=split_list(args.private_keys),
        agent_socket=os.environ.get('SSH_AUTH_SOCK'),
    )

    metrics_hosts, node_hosts = resolve_targets(
        settings, split_list(args.metrics_hosts), split_list(args.node_hosts))

    orchestrator = Orchestrator(
        settings=settings,
        ssh_config=ssh_config,
        timestamp=timestamp,
        metrics_hosts=metrics_hosts,
        node_hosts=node_hosts,
        time_from=time_from,
        time_to=time_to,
    )
    orchestrator.prepare_run_directory()

    try:
        await orchestrator.collect()
    finally:
        if agent is not None:
            agent.close()
            await agent.wait_closed()
    return orchestrator


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    timestamp = collecting_timestamp()
    file_handler = setup_logging(args.log_level, AGENT_LOG_PATH)
    logger = logging.getLogger(__name__)
    logger.info("Instaclustr Agent")

    try:
        time_from, time_to = validate_arguments(args)
    except ArgumentValidationError as e:
        logger.error(e)
        parser.print_usage(sys.stderr)
        stop_file_logging(file_handler)
        return 1

    if args.generate_config:
        settings_path = expand(args.config or search_settings_path(''))
        try:
            Settings().save(settings_path)
        except CollectorError as e:
            logger.error(e)
            stop_file_logging(file_handler)
            return 1
        logger.info(f"Default settings written to '{settings_path}'")
        stop_file_logging(file_handler)
        return 0

    settings = load_settings(args.config)

    try:
        orchestrator = asyncio.run(collect(args, settings, timestamp, time_from, time_to))
    except CollectorError as e:
        # Known hosts could not be loaded, nothing was collected
        logger.error(e)
        stop_file_logging(file_handler)
        return 1

    orchestrator.package(AGENT_LOG_PATH, file_handler)
    return 0


if __name__ == '__main__':
    sys.exit(main())
