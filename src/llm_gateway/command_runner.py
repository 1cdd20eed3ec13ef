"""Subprocess execution engine for CLI-backed providers.

Children run with piped stdio, a fixed working directory and the inherited
environment. A wall-clock timer and a stdout byte ceiling both force a
kill; stderr is kept in full for diagnostics.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from enum import Enum
from pathlib import Path

from .errors import CommandNotFound, OutputLimitExceeded, ProcessFailed, ProcessTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000
MAX_OUTPUT_BYTES = 2_000_000

_READ_CHUNK = 64 * 1024


class ShellPolicy(Enum):
    """How a command is launched.

    Only Windows batch wrappers (``.cmd`` / ``.bat``, which ``CreateProcess``
    cannot execute) go through a shell. This is a compatibility shim, not a
    security boundary.
    """

    NO_SHELL = "no_shell"
    WINDOWS_BATCH_SHELL = "windows_batch_shell"

    @classmethod
    def for_command(cls, command: str, platform: str | None = None) -> ShellPolicy:
        plat = sys.platform if platform is None else platform
        if plat == "win32" and command.lower().endswith((".cmd", ".bat")):
            return cls.WINDOWS_BATCH_SHELL
        return cls.NO_SHELL


async def _spawn(
    command: str,
    args: list[str],
    cwd: Path | None,
    policy: ShellPolicy,
) -> asyncio.subprocess.Process:
    options = {
        "stdin": asyncio.subprocess.PIPE,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "cwd": cwd,
        "env": os.environ.copy(),
    }
    if policy is ShellPolicy.WINDOWS_BATCH_SHELL:
        return await asyncio.create_subprocess_shell(
            subprocess.list2cmdline([command, *args]), **options
        )
    return await asyncio.create_subprocess_exec(command, *args, **options)


def _signal_name(returncode: int | None) -> str | None:
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class _Supervisor:
    """Pumps a child's stdio and kills it when a limit is crossed."""

    def __init__(self, proc: asyncio.subprocess.Process, max_output_bytes: int) -> None:
        self._proc = proc
        self._max_output_bytes = max_output_bytes
        self.stdout = bytearray()
        self.stderr = bytearray()
        self.output_exceeded = False

    def kill(self) -> None:
        if self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass

    async def feed_stdin(self, data: bytes) -> None:
        stdin = self._proc.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # Child exited or closed stdin early; its exit status tells the story.
            logger.debug("Child closed stdin before all input was written")
        finally:
            stdin.close()

    async def pump_stdout(self) -> None:
        stream = self._proc.stdout
        if stream is None:
            return
        while chunk := await stream.read(_READ_CHUNK):
            if self.output_exceeded:
                continue
            self.stdout.extend(chunk)
            if len(self.stdout) > self._max_output_bytes:
                self.output_exceeded = True
                self.kill()

    async def pump_stderr(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        while chunk := await stream.read(_READ_CHUNK):
            self.stderr.extend(chunk)


async def run_command_llm(
    command: str,
    args: list[str] | None = None,
    input: str = "",  # noqa: A002
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cwd: Path | str | None = None,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
) -> str:
    """Run a command-line LLM tool and return its trimmed stdout.

    Args:
        command: Executable to launch.
        args: Arguments passed to the executable.
        input: Text written to the child's stdin before it is closed.
        timeout_ms: Wall-clock limit; the child is killed on expiry.
        cwd: Working directory for the child.
        max_output_bytes: stdout ceiling; the child is killed on overflow.

    Raises:
        CommandNotFound: The executable does not exist.
        ProcessTimeout: The child outlived *timeout_ms*.
        OutputLimitExceeded: stdout grew past *max_output_bytes*.
        ProcessFailed: The child exited non-zero or died from a signal.
    """
    argv = list(args or [])
    policy = ShellPolicy.for_command(command)
    workdir = Path(cwd) if cwd is not None else None

    try:
        proc = await _spawn(command, argv, workdir, policy)
    except FileNotFoundError as exc:
        msg = f"Command not found: {command}"
        raise CommandNotFound(msg, command=command) from exc

    logger.debug("Spawned %s (pid=%s, policy=%s)", command, proc.pid, policy.value)
    supervisor = _Supervisor(proc, max_output_bytes)

    try:
        await asyncio.wait_for(
            asyncio.gather(
                supervisor.feed_stdin(input.encode("utf-8")),
                supervisor.pump_stdout(),
                supervisor.pump_stderr(),
                proc.wait(),
            ),
            timeout=timeout_ms / 1000,
        )
    except TimeoutError as exc:
        supervisor.kill()
        await proc.wait()
        logger.warning("Killed %s after %dms timeout", command, timeout_ms)
        raise ProcessTimeout(timeout_ms) from exc
    except BaseException:
        # Caller cancelled or a pump failed: never leave the child running.
        supervisor.kill()
        await asyncio.shield(proc.wait())
        logger.debug("Killed %s after its caller gave up", command)
        raise

    if supervisor.output_exceeded:
        logger.warning("Killed %s after stdout exceeded %d bytes", command, max_output_bytes)
        raise OutputLimitExceeded(max_output_bytes)

    returncode = proc.returncode
    if returncode != 0:
        stderr = supervisor.stderr.decode("utf-8", errors="replace").strip()
        signal_name = _signal_name(returncode)
        exit_code = None if signal_name else returncode
        raise ProcessFailed(exit_code, stderr, signal_name=signal_name)

    return supervisor.stdout.decode("utf-8", errors="replace").strip()
