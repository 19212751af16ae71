"""Shared fixtures and session doubles for collector tests."""

import logging
from typing import Dict, Union
from unittest.mock import AsyncMock

import pytest

from instacollector.session import Session


def make_session(host: str) -> AsyncMock:
    """Session double: async operations are AsyncMocks, get_host returns host."""
    session = AsyncMock(spec=Session)
    session.get_host.return_value = host
    return session


def respond(responses: Dict[str, Union[tuple, Exception]]):
    """side_effect for execute() mapping command lines to (stdout, stderr) or an error."""
    def execute(cmd):
        if cmd not in responses:
            raise AssertionError(f"Unexpected command: {cmd}")
        response = responses[cmd]
        if isinstance(response, Exception):
            raise response
        return response
    return execute


def content(files: Dict[str, bytes]):
    """side_effect for get_content() serving files by remote path."""
    def get_content(path):
        if path not in files:
            raise AssertionError(f"Unexpected file: {path}")
        value = files[path]
        if isinstance(value, Exception):
            raise value
        return value
    return get_content


@pytest.fixture(autouse=True)
def reset_root_logger():
    """Drop handlers installed by setup_logging() between tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
