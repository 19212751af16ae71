#!/usr/bin/env python3
"""
Logging - Run log configuration

The run log is the only user facing channel: every record goes both to
stdout and to a live log file which is later copied into the run directory.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> Optional[logging.FileHandler]:
    """
    Configure the process wide run log.

    Args:
        level: Log level name
        log_file: Path of the live run log, or None for stdout only

    Returns:
        The file handler, so it can be detached with stop_file_logging()
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level))
    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    file_handler = None
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Reduce asyncssh verbose logging (connection/channel events)
    logging.getLogger('asyncssh').setLevel(logging.WARNING)

    return file_handler


def stop_file_logging(handler: Optional[logging.FileHandler]):
    """Flush and close the file sink; stdout logging keeps working"""
    if handler is None:
        return
    handler.flush()
    logging.getLogger().removeHandler(handler)
    handler.close()


class PrefixAdapter(logging.LoggerAdapter):
    """Prefix each message with collector kind and host, e.g. 'NC 10.0.0.1'"""

    def process(self, msg, kwargs):
        return f"[{self.extra['prefix']}] {msg}", kwargs


def collector_logger(name: str, prefix: str) -> PrefixAdapter:
    return PrefixAdapter(logging.getLogger(name), {'prefix': prefix})
