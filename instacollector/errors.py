#!/usr/bin/env python3
"""
Errors - Exception hierarchy for the support collector

Every failure raised by a session, a collector or the orchestrator is a
CollectorError subclass. Messages are meant for the run log, so they always
name the host and the failed step together with the underlying cause.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for all collector failures"""


class ConfigLoadError(CollectorError):
    """Settings file could not be read, parsed or written"""


class ArgumentValidationError(CollectorError):
    """Invalid command line arguments"""


class SSHConnectError(CollectorError):
    """SSH connection to a remote host could not be established"""


class CommandError(CollectorError):
    """
    Remote command failed to start or exited with non-zero status.

    Whatever the command printed before failing is kept on the exception
    so callers that tolerate the failure can still use the output.
    """

    def __init__(self, message: str, command: str = '', stdout: bytes = b'',
                 stderr: bytes = b'', exit_status: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status


class TransferError(CollectorError):
    """SFTP transfer failed"""


class RemoteFilesystemError(CollectorError):
    """Remote file or directory could not be listed, inspected or removed"""


class LocalFilesystemError(CollectorError):
    """Local file or directory could not be created or written"""


class SnapshotDecodeError(CollectorError):
    """Snapshot API output or block metadata is not valid JSON"""


class SnapshotAPIError(CollectorError):
    """Prometheus refused or failed to create a snapshot"""
