#!/usr/bin/env python3
"""
Collection Stats - Prometheus record of what a run gathered

Collectors report artifact and snapshot block outcomes here; the
orchestrator adds per task duration and success. The registry is written
in Prometheus text format next to the collected data so the support
engineer can see at a glance what is missing from a bundle.
"""

import logging
import threading
from typing import Dict, List

from prometheus_client import Counter, Gauge, Info, write_to_textfile
from prometheus_client.core import CollectorRegistry


class LabeledMetric:
    """Metric wrapper merging default labels into every operation"""

    def __init__(self, metric, default_labels: Dict[str, str]):
        self._metric = metric
        self._default_labels = default_labels

    def labels(self, **labels):
        merged = self._default_labels.copy()
        merged.update(labels)
        return self._metric.labels(**merged)


class MetricFactory:
    """Create metrics that all carry the same default labels"""

    def __init__(self, default_labels: Dict[str, str], registry: CollectorRegistry):
        self.default_labels = default_labels
        self.registry = registry

    def _labelnames(self, labelnames: List[str]) -> List[str]:
        return list(self.default_labels.keys()) + labelnames

    def counter(self, name: str, documentation: str, labelnames: List[str]) -> LabeledMetric:
        metric = Counter(name, documentation, self._labelnames(labelnames), registry=self.registry)
        return LabeledMetric(metric, self.default_labels)

    def gauge(self, name: str, documentation: str, labelnames: List[str]) -> LabeledMetric:
        metric = Gauge(name, documentation, self._labelnames(labelnames), registry=self.registry)
        return LabeledMetric(metric, self.default_labels)

    def info(self, name: str, documentation: str, labelnames: List[str] = None) -> LabeledMetric:
        metric = Info(name, documentation, self._labelnames(labelnames or []), registry=self.registry)
        return LabeledMetric(metric, self.default_labels)


class CollectionStats:
    """
    Thread-safe statistics of one collection run.

    Every metric carries a 'run' label holding the run timestamp.
    """

    def __init__(self, timestamp: str):
        self.timestamp = timestamp
        self.registry = CollectorRegistry()
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

        factory = MetricFactory({'run': timestamp}, self.registry)
        self.run_info = factory.info('instacollector_run', 'Collection run')
        self.collection_duration = factory.gauge(
            'instacollector_collection_duration_seconds',
            'Time spent collecting from a host',
            ['host', 'role'])
        self.collection_success = factory.gauge(
            'instacollector_collection_success',
            'Whether collection from a host completed (1) or failed (0)',
            ['host', 'role'])
        self.artifacts = factory.counter(
            'instacollector_artifacts',
            'Collected node artifacts by kind and result',
            ['host', 'kind', 'result'])
        self.snapshot_blocks = factory.counter(
            'instacollector_snapshot_blocks',
            'Prometheus snapshot blocks by lightening decision',
            ['host', 'decision'])

        self.run_info.labels().info({'timestamp': timestamp})

    def record_collection(self, host: str, role: str, duration: float, success: bool):
        with self._lock:
            self.collection_duration.labels(host=host, role=role).set(duration)
            self.collection_success.labels(host=host, role=role).set(1 if success else 0)

    def record_artifact(self, host: str, kind: str, ok: bool):
        with self._lock:
            self.artifacts.labels(host=host, kind=kind, result='ok' if ok else 'failed').inc()

    def record_block(self, host: str, decision: str):
        with self._lock:
            self.snapshot_blocks.labels(host=host, decision=decision).inc()

    def write(self, path: str):
        """Write the registry in Prometheus text format"""
        with self._lock:
            write_to_textfile(path, self.registry)
        self.logger.debug(f"Collection stats written to {path}")
