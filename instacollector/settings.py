#!/usr/bin/env python3
"""
Settings - YAML configuration of the support collector

Every section is a dataclass carrying its built-in defaults. Loading a file
overlays only the keys it contains, so a partial settings file is valid.
YAML key names are given by the 'yaml' field metadata.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigLoadError
from .utils import exists, expand

DEFAULT_AGENT_HOME_PATH = '~/.instaclustr/supportcenter'
DEFAULT_PROFILE_CONTAINER_NAME = 'DEFAULT'
DEFAULT_SETTINGS_FILE = 'settings.yml'


def _key(name: str, **kwargs):
    return field(metadata={'yaml': name}, **kwargs)


@dataclass
class AgentSettings:
    collected_data_path: str = _key('collected-data-path', default='~/.instaclustr/supportcenter/DATA')


@dataclass
class CassandraSettings:
    config_path: str = _key('config-path', default='/etc/cassandra')
    log_path: str = _key('log-path', default='/var/log/cassandra')
    gc_path: str = _key('gc-path', default='/var/log/cassandra')
    data_path: List[str] = _key('data-path', default_factory=lambda: ['/var/lib/cassandra/data'])
    username: Optional[str] = _key('username', default=None)
    password: Optional[str] = _key('password', default=None)


@dataclass
class CollectingSettings:
    configs: List[str] = _key('configs', default_factory=lambda: [
        'cassandra.yaml',
        'cassandra-env.sh',
        'jvm.options',
        'logback.xml',
    ])
    logs: List[str] = _key('logs', default_factory=lambda: ['system.log'])
    gc_log_patterns: List[str] = _key('gc-log-patterns', default_factory=lambda: ['gc*'])


@dataclass
class NodeCollectorSettings:
    cassandra: CassandraSettings = _key('cassandra', default_factory=CassandraSettings)
    collecting: CollectingSettings = _key('collecting', default_factory=CollectingSettings)


@dataclass
class PrometheusSettings:
    port: int = _key('port', default=9090)
    data_path: str = _key('data-path', default='/var/data')


@dataclass
class MetricsCollectorSettings:
    prometheus: PrometheusSettings = _key('prometheus', default_factory=PrometheusSettings)
    copy_compressed: bool = _key('copy_compressed', default=True)


@dataclass
class TargetSettings:
    nodes: List[str] = _key('nodes', default_factory=list)
    metrics: List[str] = _key('metrics', default_factory=list)


@dataclass
class Settings:
    agent: AgentSettings = _key('agent', default_factory=AgentSettings)
    node: NodeCollectorSettings = _key('node', default_factory=NodeCollectorSettings)
    metrics: MetricsCollectorSettings = _key('metrics', default_factory=MetricsCollectorSettings)
    target: TargetSettings = _key('target', default_factory=TargetSettings)

    def load(self, path: str):
        """Overlay the settings found in a YAML file"""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigLoadError(f"Failed to load settings file ({e})") from e
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to unmarshal settings file ({e})") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigLoadError(f"Failed to unmarshal settings file ('{path}' is not a mapping)")
        _update(self, data, '')

    def save(self, path: str):
        """Write the full effective settings as YAML"""
        try:
            with open(path, 'w') as f:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigLoadError(f"Failed to save settings file ({e})") from e
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to marshal settings file ({e})") from e

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)


def _update(section, data: Dict[str, Any], where: str):
    for f in dataclasses.fields(section):
        name = f.metadata['yaml']
        if name not in data:
            continue
        value = data[name]
        current = getattr(section, f.name)
        if dataclasses.is_dataclass(current):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ConfigLoadError(f"Failed to unmarshal settings file ('{where}{name}' must be a mapping)")
            _update(current, value, f"{where}{name}.")
        elif isinstance(current, list):
            if value is None:
                value = []
            elif isinstance(value, str):
                value = [value]
            elif not isinstance(value, list):
                raise ConfigLoadError(f"Failed to unmarshal settings file ('{where}{name}' must be a list)")
            setattr(section, f.name, [str(item) for item in value])
        elif isinstance(current, bool):
            if not isinstance(value, bool):
                raise ConfigLoadError(f"Failed to unmarshal settings file ('{where}{name}' must be a boolean)")
            setattr(section, f.name, value)
        elif isinstance(current, int):
            try:
                setattr(section, f.name, int(value))
            except (TypeError, ValueError):
                raise ConfigLoadError(f"Failed to unmarshal settings file ('{where}{name}' must be an integer)")
        else:
            setattr(section, f.name, None if value is None else str(value))


def _to_dict(section) -> Dict[str, Any]:
    result = {}
    for f in dataclasses.fields(section):
        value = getattr(section, f.name)
        if dataclasses.is_dataclass(value):
            value = _to_dict(value)
        elif isinstance(value, list):
            value = list(value)
        result[f.metadata['yaml']] = value
    return result


def search_settings_path(config_path: str) -> str:
    """
    Resolve which settings file to use.

    An explicit path wins. Otherwise the DEFAULT profile file in the agent
    home names the settings file to use; failing that, settings.yml in the
    working directory.
    """
    if config_path:
        return config_path

    profile_path = expand(os.path.join(DEFAULT_AGENT_HOME_PATH, DEFAULT_PROFILE_CONTAINER_NAME))
    if exists(profile_path):
        try:
            with open(profile_path, 'r') as f:
                config_name = f.read().strip()
        except OSError:
            config_name = ''
        if config_name:
            return os.path.join(DEFAULT_AGENT_HOME_PATH, config_name)

    return DEFAULT_SETTINGS_FILE
