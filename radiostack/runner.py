"""Command execution on the virtualization host.

Collaborators never spawn processes themselves; they go through a
:class:`CommandRunner`:

  - :class:`LocalRunner`: asyncio subprocesses on this machine
  - :class:`SSHRunner`  : asyncssh session to a remote Proxmox node
  - :class:`MockRunner` : canned responses for tests
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Protocol

from radiostack.errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Protocol for host command execution: local, SSH or mock."""

    async def run(
        self,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        ...

    async def close(self) -> None:
        ...


def _check(argv: list[str], result: CommandResult, check: bool) -> CommandResult:
    if check and result.returncode != 0:
        raise ExternalToolError(
            f"Command {argv[0]} failed (rc={result.returncode}): {result.stderr.strip()[:500]}",
            command=argv,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


class LocalRunner:
    """Run commands on the local host via asyncio subprocesses."""

    async def run(
        self,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        logger.debug("exec: %s", shlex.join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(
                f"Command not found: {argv[0]}", command=argv, returncode=127
            ) from exc

        stdout_bytes, stderr_bytes = await proc.communicate(
            input.encode("utf-8") if input is not None else None
        )
        result = CommandResult(
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            returncode=proc.returncode or 0,
        )
        return _check(argv, result, check)

    async def close(self) -> None:
        pass


class SSHRunner:
    """Run commands on a remote Proxmox node over an asyncssh connection."""

    def __init__(self, conn) -> None:
        self._conn = conn

    async def run(
        self,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        command = shlex.join(argv)
        logger.debug("ssh exec: %s", command)
        completed = await self._conn.run(command, input=input, check=False)
        result = CommandResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            returncode=completed.returncode or 0,
        )
        return _check(argv, result, check)

    async def close(self) -> None:
        self._conn.close()
        await self._conn.wait_closed()


class MockRunner:
    """Mock runner for testing that returns pre-configured responses.

    Responses are keyed by the space-joined command line; the longest key
    that prefixes the command wins. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        responses: dict[str, CommandResult] | None = None,
        default: CommandResult | None = None,
    ) -> None:
        self._responses = responses or {}
        self._default = default or CommandResult()
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []

    def add(self, prefix: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self._responses[prefix] = CommandResult(stdout=stdout, stderr=stderr, returncode=returncode)

    def commands(self) -> list[str]:
        return [" ".join(c) for c in self.calls]

    async def run(
        self,
        argv: list[str],
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        self.calls.append(list(argv))
        self.inputs.append(input)
        line = " ".join(argv)
        match = None
        for key in sorted(self._responses, key=len, reverse=True):
            if line == key or line.startswith(key):
                match = self._responses[key]
                break
        return _check(argv, match or self._default, check)

    async def close(self) -> None:
        pass


async def connect_runner(
    ssh_host: str = "",
    username: str = "root",
    port: int = 22,
    key_path: str | None = None,
) -> CommandRunner:
    """Return an SSH runner when *ssh_host* is set, else a local runner."""
    if not ssh_host:
        return LocalRunner()

    import asyncssh

    kwargs: dict = {
        "host": ssh_host,
        "port": port,
        "username": username,
    }
    if key_path:
        kwargs["client_keys"] = [key_path]

    try:
        conn = await asyncssh.connect(**kwargs)
    except (OSError, asyncssh.Error) as exc:
        raise ExternalToolError(f"Cannot connect to {ssh_host}:{port}: {exc}") from exc
    logger.info("Connected to Proxmox host %s", ssh_host)
    return SSHRunner(conn)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "LocalRunner",
    "MockRunner",
    "SSHRunner",
    "connect_runner",
]
