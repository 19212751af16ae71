#!/usr/bin/env python3
"""
Instacollector - Diagnostic bundle collector for Cassandra clusters

Connects to Cassandra nodes and the Prometheus metrics server over SSH,
gathers node diagnostics and a time bounded metrics snapshot, and packs
them into a single archive for the support team.
"""

__version__ = '1.0.0'

__all__ = ['MetricsCollector', 'NodeCollector', 'Orchestrator', 'RemoteSession', 'Settings']

from .metrics_collector import MetricsCollector
from .node_collector import NodeCollector
from .orchestrator import Orchestrator
from .session import RemoteSession
from .settings import Settings
