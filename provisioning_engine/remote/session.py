"""SSH session management built on Paramiko."""

from __future__ import annotations

import io
import logging
import re
import shlex
import socket
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

import paramiko

from provisioning_engine.core.errors import (
    CommandTimeoutError,
    RemoteCommandError,
    RemoteConnectionError,
)
from provisioning_engine.remote.credentials import SSHCredentials

logger = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]

FILE_MODE_RE = re.compile(r"^[0-7]{3,4}$")


def build_command(command: Command) -> str:
    """Turn an argv list into a shell-safe command line. Strings pass through untouched."""
    if isinstance(command, str):
        return command
    return " ".join(shlex.quote(str(part)) for part in command)


def load_private_key(key_text: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Parse OpenSSH/PEM key material of any supported type."""
    for key_class in (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey):
        try:
            return key_class.from_private_key(io.StringIO(key_text), password=passphrase)
        except paramiko.PasswordRequiredException:
            raise RemoteConnectionError("Private key is encrypted and no passphrase was provided")
        except (paramiko.SSHException, ValueError, IndexError):
            continue
    raise RemoteConnectionError("Unsupported or invalid private key")


@dataclass
class CommandResult:
    label: str
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


class RemoteSession:
    """
    One live SSH connection to a single (host, port, username, key) target.

    Commands are independent: no working directory or environment is
    carried between `run` calls, so combined effects must be chained in a
    single command line. Every channel is closed when `run` returns or
    raises, including on timeout.
    """

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        key_loader: Callable[[str, Optional[str]], paramiko.PKey] | None = None,
        default_timeout: float = 15.0,
        poll_interval: float = 0.05,
    ) -> None:
        self.credentials = credentials
        self._client_factory = client_factory or paramiko.SSHClient
        self._key_loader = key_loader or load_private_key
        self._client: Optional[paramiko.SSHClient] = None
        self.default_timeout = default_timeout
        self._poll_interval = poll_interval

    def __enter__(self) -> "RemoteSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # -------------------------
    # CONNECT / CLOSE
    # -------------------------

    def connect(self) -> None:
        if self._client:
            return
        creds = self.credentials
        logger.info(f"[ssh] Connecting to {creds.target}")
        pkey = self._key_loader(creds.private_key, creds.passphrase)
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=creds.host,
                port=creds.port,
                username=creds.username,
                pkey=pkey,
                timeout=creds.ready_timeout,
                banner_timeout=creds.ready_timeout,
                auth_timeout=creds.ready_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, OSError, EOFError) as exc:
            client.close()
            logger.error(f"[ssh] Connection to {creds.target} failed: {exc}")
            raise RemoteConnectionError(str(exc) or type(exc).__name__) from exc
        self._client = client
        logger.info(f"[ssh] Connected to {creds.target}")

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            logger.debug(f"[ssh] Closed connection to {self.credentials.target}")

    # -------------------------
    # RUN
    # -------------------------

    def run(
        self,
        command: Command,
        *,
        label: Optional[str] = None,
        timeout: Optional[float] = None,
        allow_non_zero: bool = False,
        stdin: Optional[Union[str, bytes]] = None,
    ) -> CommandResult:
        """
        Execute a command and collect stdout/stderr.

        Args:
            command: shell string, or argv list quoted argument by argument
            label: name used in logs and errors
            timeout: seconds before CommandTimeoutError
            allow_non_zero: return instead of raising on a non-zero exit
            stdin: data written to the command's standard input

        Raises:
            CommandTimeoutError, RemoteCommandError, RemoteConnectionError
        """
        command_text = build_command(command)
        label = label or command_text.splitlines()[0][:60]
        timeout = self.default_timeout if timeout is None else timeout

        if self._client is None:
            raise RemoteConnectionError("SSH session is not connected")
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise RemoteConnectionError("SSH transport is not active")

        logger.debug(f"[ssh] Running {label}")
        try:
            channel = transport.open_session(timeout=timeout)
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteConnectionError(f"Could not open channel for {label}: {exc}") from exc

        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        deadline = time.monotonic() + timeout
        try:
            channel.settimeout(timeout)
            channel.exec_command(command_text)
            if stdin is not None:
                channel.sendall(stdin.encode("utf-8") if isinstance(stdin, str) else stdin)
            channel.shutdown_write()

            while True:
                received = self._drain(channel, stdout_chunks, stderr_chunks)
                if (
                    channel.exit_status_ready()
                    and not channel.recv_ready()
                    and not channel.recv_stderr_ready()
                ):
                    break
                if time.monotonic() >= deadline:
                    logger.error(f"[ssh] Timeout ({timeout:g}s) running {label}")
                    raise CommandTimeoutError(label, timeout)
                if not received:
                    time.sleep(self._poll_interval)

            exit_code = channel.recv_exit_status()
        except socket.timeout as exc:
            logger.error(f"[ssh] Timeout ({timeout:g}s) running {label}")
            raise CommandTimeoutError(label, timeout) from exc
        except paramiko.SSHException as exc:
            raise RemoteConnectionError(f"SSH failure running {label}: {exc}") from exc
        finally:
            channel.close()

        stdout = b"".join(stdout_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(stderr_chunks).decode("utf-8", errors="replace")
        if stdout.strip():
            logger.debug(f"[ssh] {label} stdout: {stdout.strip()[:500]}")
        if stderr.strip():
            logger.debug(f"[ssh] {label} stderr: {stderr.strip()[:500]}")

        if exit_code != 0 and not allow_non_zero:
            logger.error(f"[ssh] {label} exited with {exit_code}")
            raise RemoteCommandError(label, exit_code, stderr)

        return CommandResult(label=label, exit_code=exit_code, stdout=stdout, stderr=stderr)

    @staticmethod
    def _drain(channel, stdout_chunks: List[bytes], stderr_chunks: List[bytes]) -> bool:
        received = False
        while channel.recv_ready():
            chunk = channel.recv(32768)
            if not chunk:
                break
            stdout_chunks.append(chunk)
            received = True
        while channel.recv_stderr_ready():
            chunk = channel.recv_stderr(32768)
            if not chunk:
                break
            stderr_chunks.append(chunk)
            received = True
        return received

    # -------------------------
    # HELPERS
    # -------------------------

    def sudo_available(self, timeout: float = 5.0) -> bool:
        """Probe passwordless sudo so later commands fail fast instead of prompting."""
        try:
            result = self.run("sudo -n true", label="sudo check", timeout=timeout, allow_non_zero=True)
        except CommandTimeoutError:
            return False
        return result.ok

    def file_exists(self, path: str, *, timeout: float = 10.0) -> bool:
        result = self.run(["test", "-f", path], label=f"test {path}", timeout=timeout, allow_non_zero=True)
        return result.ok

    def read_file(self, path: str, *, label: Optional[str] = None, timeout: float = 10.0, sudo: bool = False) -> str:
        argv = ["sudo", "-n", "cat", path] if sudo else ["cat", path]
        return self.run(argv, label=label or f"read {path}", timeout=timeout).stdout

    def write_file(
        self,
        path: str,
        content: str,
        *,
        label: Optional[str] = None,
        timeout: float = 15.0,
        sudo: bool = False,
        mode: Optional[str] = None,
    ) -> CommandResult:
        """Write `content` to `path`, sending the bytes over stdin rather than the command line."""
        target = shlex.quote(path)
        command = f"sudo -n tee {target} > /dev/null" if sudo else f"cat > {target}"
        if mode:
            if not FILE_MODE_RE.match(mode):
                raise ValueError(f"Invalid file mode: {mode}")
            command += f" && {'sudo -n ' if sudo else ''}chmod {mode} {target}"
        return self.run(command, label=label or f"write {path}", timeout=timeout, stdin=content)
