#!/usr/bin/env python3
"""
Remote Session - SSH connection to a single collected host

Wraps one asyncssh connection and exposes the small set of operations the
collectors need: command execution and SFTP based file transfer. Each
transfer opens its own SFTP subsession, so the same session can be used by
several concurrent tasks. The connection lives until close() is called.
"""

import abc
import asyncio
import logging
import os
import posixpath
import stat
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import asyncssh

from .errors import (CommandError, LocalFilesystemError, RemoteFilesystemError,
                     SSHConnectError, TransferError)
from .progress import ByteCounter, ProgressFunc, ProgressTicker

# SFTP read block size
BLOCK_SIZE = 32768


@dataclass
class FileInfo:
    """Entry of a remote directory listing"""
    path: str
    is_dir: bool


@dataclass
class SSHClientConfig:
    """SSH client settings shared by all sessions of a run"""
    username: str
    port: int = 22
    timeout: float = 2.0
    # Loaded private keys followed by agent offered keys
    client_keys: List[Any] = field(default_factory=list)
    # Parsed known hosts for strict verification, None to accept any host key
    known_hosts: Any = None


class Session(abc.ABC):
    """Operations a collector may perform on a remote host"""

    @abc.abstractmethod
    def set_target(self, host: str, port: int):
        ...

    @abc.abstractmethod
    def set_config(self, config: SSHClientConfig):
        ...

    @abc.abstractmethod
    def get_host(self) -> str:
        ...

    @abc.abstractmethod
    async def connect(self):
        ...

    @abc.abstractmethod
    async def execute(self, cmd: str) -> Tuple[bytes, bytes]:
        ...

    @abc.abstractmethod
    async def get_content(self, path: str) -> bytes:
        ...

    @abc.abstractmethod
    async def list_directory(self, path: str) -> List[FileInfo]:
        ...

    @abc.abstractmethod
    async def receive_file(self, src: str, dest: str, progress: Optional[ProgressFunc] = None):
        ...

    @abc.abstractmethod
    async def receive_directory(self, src: str, dest: str, progress: Optional[ProgressFunc] = None):
        ...

    @abc.abstractmethod
    async def remove(self, path: str):
        ...

    @abc.abstractmethod
    async def close(self):
        ...


def _is_dir(attrs) -> bool:
    return stat.S_ISDIR(attrs.permissions or 0)


def create_directory_if_not_exists(dest: str):
    try:
        # TODO restrict directory permissions once support engineers agree on a mode
        os.makedirs(dest, mode=0o777, exist_ok=True)
    except OSError as e:
        raise LocalFilesystemError(f"SSH agent: Failed to create destination directory '{dest}' ({e})")


class RemoteSession(Session):
    """asyncssh backed session"""

    def __init__(self, host: str = '', port: int = 22, config: Optional[SSHClientConfig] = None):
        self.host = host
        self.port = port
        self.config = config
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self.logger = logging.getLogger(__name__)

    def set_target(self, host: str, port: int):
        self.host = host
        self.port = port

    def set_config(self, config: SSHClientConfig):
        self.config = config

    def get_host(self) -> str:
        return self.host

    async def connect(self):
        try:
            self._conn = await asyncssh.connect(
                self.host,
                port=self.port,
                username=self.config.username,
                client_keys=self.config.client_keys,
                known_hosts=self.config.known_hosts,
                agent_path=None,
                connect_timeout=self.config.timeout,
            )
        except (asyncssh.Error, OSError) as e:
            raise SSHConnectError(
                f"SSH agent: Failed to establish connection to remote host '{self.host}' ({e})") from e
        self.logger.debug(f"Connected to {self.host}:{self.port} as {self.config.username}")

    async def close(self):
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        conn.close()
        await conn.wait_closed()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _connection(self) -> asyncssh.SSHClientConnection:
        if self._conn is None:
            raise SSHConnectError(f"SSH agent: Not connected to remote host '{self.host}'")
        return self._conn

    async def execute(self, cmd: str) -> Tuple[bytes, bytes]:
        """
        Run a command and capture its output.

        Raises CommandError when the command could not be run or exited with
        non-zero status; the error carries the captured stdout and stderr.
        """
        conn = self._connection()
        try:
            result = await conn.run(cmd, check=False, encoding=None)
        except (asyncssh.Error, OSError) as e:
            raise CommandError(
                f"SSH agent: Failed to create SSH session to '{self.host}' ({e})", command=cmd) from e

        stdout = result.stdout or b''
        stderr = result.stderr or b''
        if result.exit_status != 0:
            reason = (f"exit status {result.exit_status}" if result.exit_status is not None
                      else f"signal {result.exit_signal}")
            raise CommandError(
                f"SSH agent: Failed to run command '{cmd}' on '{self.host}'. (Process exited with {reason})",
                command=cmd, stdout=stdout, stderr=stderr, exit_status=result.exit_status)
        return stdout, stderr

    async def get_content(self, path: str) -> bytes:
        path = posixpath.normpath(path)
        try:
            async with self._connection().start_sftp_client() as sftp:
                async with sftp.open(path, 'rb') as f:
                    return await f.read()
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"SSH agent: Failed to read file '{path}' on '{self.host}' over SFTP ({e})") from e

    async def list_directory(self, path: str) -> List[FileInfo]:
        path = posixpath.normpath(path)
        try:
            async with self._connection().start_sftp_client() as sftp:
                names = await sftp.readdir(path)
        except (asyncssh.Error, OSError) as e:
            raise RemoteFilesystemError(
                f"SSH agent: Failed to read directory '{path}' on '{self.host}' over SFTP ({e})") from e

        return [FileInfo(posixpath.join(path, name.filename), _is_dir(name.attrs))
                for name in names if name.filename not in ('.', '..')]

    async def receive_file(self, src: str, dest: str, progress: Optional[ProgressFunc] = None):
        src = posixpath.normpath(src)
        dest = os.path.normpath(dest)
        try:
            async with self._connection().start_sftp_client() as sftp:
                await self._receive_file(sftp, src, dest, progress)
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"SSH agent: Failed to create SFTP session to '{self.host}' ({e})") from e

    async def _receive_file(self, sftp, src: str, dest: str, progress: Optional[ProgressFunc],
                            counter: Optional[ByteCounter] = None):
        if os.path.isdir(dest):
            dest = os.path.join(dest, posixpath.basename(src))

        try:
            size = (await sftp.stat(src)).size or 0
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"SSH agent: Failed to stat source file '{src}' over SFTP ({e})") from e

        counter = counter or ByteCounter()
        ticker = ProgressTicker(counter, size, progress) if progress is not None else None
        if ticker:
            ticker.start()
        try:
            try:
                out = os.fdopen(os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600), 'wb')
            except OSError as e:
                raise LocalFilesystemError(f"SSH agent: Failed to open destination file '{dest}' ({e})") from e

            loop = asyncio.get_running_loop()
            with out:
                try:
                    async with sftp.open(src, 'rb') as f:
                        while True:
                            data = await f.read(BLOCK_SIZE)
                            if not data:
                                break
                            await loop.run_in_executor(None, out.write, data)
                            counter.add(len(data))
                except (asyncssh.Error, OSError) as e:
                    raise TransferError(
                        f"SSH agent: Failed to copy file '{src}' from '{self.host}' over SFTP ({e})") from e
        finally:
            if ticker:
                await ticker.stop()

    async def receive_directory(self, src: str, dest: str, progress: Optional[ProgressFunc] = None):
        """
        Copy a remote tree below dest.

        A regular file src is handled like receive_file(). For a directory the
        total size is computed first, then the skeleton is created locally and
        files are copied in walk order while a single ticker reports progress.
        """
        src = posixpath.normpath(src)
        dest = os.path.normpath(dest)
        create_directory_if_not_exists(dest)

        try:
            async with self._connection().start_sftp_client() as sftp:
                try:
                    is_dir = await sftp.isdir(src)
                except (asyncssh.Error, OSError) as e:
                    raise RemoteFilesystemError(
                        f"SSH agent: Failed to receive source file info '{src}' over SFTP ({e})") from e

                if not is_dir:
                    await self._receive_file(sftp, src, dest, progress)
                    return

                entries = await self._walk(sftp, src)
                total = sum(size for _, is_dir, size in entries if not is_dir)
                self.logger.debug(f"Receiving {len(entries)} entries ({total} bytes) from {self.host}:{src}")

                counter = ByteCounter()
                ticker = ProgressTicker(counter, total, progress) if progress is not None else None
                if ticker:
                    ticker.start()
                try:
                    for path, is_dir, size in entries:
                        target = os.path.join(dest, posixpath.relpath(path, src))
                        if is_dir:
                            create_directory_if_not_exists(target)
                        else:
                            await self._receive_file(sftp, path, target, None)
                            counter.add(size)
                finally:
                    if ticker:
                        await ticker.stop()
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"SSH agent: Failed to create SFTP session to '{self.host}' ({e})") from e

    async def _walk(self, sftp, root: str) -> List[Tuple[str, bool, int]]:
        """Pre-order listing of (path, is_dir, size) below root"""
        entries = []
        try:
            names = await sftp.readdir(root)
        except (asyncssh.Error, OSError) as e:
            raise RemoteFilesystemError(f"SSH agent: Failed to read directory '{root}' over SFTP ({e})") from e

        for name in sorted(names, key=lambda n: n.filename):
            if name.filename in ('.', '..'):
                continue
            path = posixpath.join(root, name.filename)
            if _is_dir(name.attrs):
                entries.append((path, True, 0))
                entries.extend(await self._walk(sftp, path))
            else:
                entries.append((path, False, name.attrs.size or 0))
        return entries

    async def remove(self, path: str):
        """Recursively delete a remote file or directory"""
        path = posixpath.normpath(path)
        try:
            async with self._connection().start_sftp_client() as sftp:
                if await sftp.isdir(path):
                    await sftp.rmtree(path)
                else:
                    await sftp.remove(path)
        except (asyncssh.Error, OSError) as e:
            raise RemoteFilesystemError(f"SSH agent: Failed to remove '{path}' on '{self.host}' over SFTP ({e})") from e
