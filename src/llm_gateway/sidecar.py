"""Sidecar lifecycle manager for the gpt4free inference server binary.

Resolves the release asset for this platform, downloads it when missing,
spawns it, and polls its status route until it answers. Concurrent
``start()`` calls share one in-flight attempt; the shared slot is cleared
whether the attempt succeeds or fails so the next call starts fresh.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import platform as platform_mod
import re
import sys
from collections.abc import Awaitable, Callable
from enum import StrEnum
from pathlib import Path
from urllib.parse import urlparse

import requests
from pydantic import BaseModel

from .config import (
    DEFAULT_SIDECAR_STARTUP_TIMEOUT_MS,
    DEFAULT_SIDECAR_URL,
    GatewayConfig,
    default_install_dir,
)
from .errors import (
    BinaryDownloadFailed,
    SidecarNotReady,
    SidecarStartTimeout,
    UnsupportedPlatform,
)
from .http_client import build_openai_url
from .telemetry import trace_sidecar_start

logger = logging.getLogger(__name__)

RELEASE_BASE_URL = "https://github.com/xtekky/gpt4free/releases/latest/download"
MAX_REDIRECTS = 5
DOWNLOAD_TIMEOUT = 300.0
PROBE_TIMEOUT = 2.0
POLL_INTERVAL = 0.5
STOP_GRACE_PERIOD = 5.0

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

# (sys.platform, normalized machine) -> release asset name
_RELEASE_ASSETS: dict[tuple[str, str], str] = {
    ("linux", "amd64"): "g4f-linux-amd64",
    ("linux", "arm64"): "g4f-linux-arm64",
    ("darwin", "amd64"): "g4f-macos-amd64",
    ("darwin", "arm64"): "g4f-macos-arm64",
    ("win32", "amd64"): "g4f-windows-amd64.exe",
}

_TAG_PATTERN = re.compile(r"/releases/download/([^/]+)/")

HealthProbe = Callable[[], Awaitable[bool]]
SpawnFn = Callable[[list[str]], Awaitable[asyncio.subprocess.Process]]


class SidecarState(StrEnum):
    """Lifecycle state of the sidecar process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class SidecarStartResult(BaseModel):
    """Outcome of :meth:`SidecarManager.start`."""

    was_already_running: bool
    was_downloaded: bool


class SidecarStatus(BaseModel):
    """Snapshot reported by :meth:`SidecarManager.status`."""

    installed: bool
    running: bool
    version: str | None = None
    binary_path: str | None = None
    state: SidecarState = SidecarState.STOPPED


# ---------------------------------------------------------------------------
# Platform resolution
# ---------------------------------------------------------------------------


def resolve_asset_name(platform: str | None = None, machine: str | None = None) -> str:
    """Map a platform and CPU architecture to a release asset name.

    Raises:
        UnsupportedPlatform: No asset is published for the combination.
    """
    plat = sys.platform if platform is None else platform
    arch = platform_mod.machine() if machine is None else machine
    normalized = _ARCH_ALIASES.get(arch.lower())
    asset = _RELEASE_ASSETS.get((plat, normalized)) if normalized else None
    if asset is None:
        raise UnsupportedPlatform(plat, arch)
    return asset


# ---------------------------------------------------------------------------
# Blocking helpers (run via asyncio.to_thread)
# ---------------------------------------------------------------------------


def probe_status(url: str, timeout: float = PROBE_TIMEOUT) -> bool:
    """Return True if *url* answers with any status in [200, 500).

    A 4xx still proves the server is up and routing requests.
    """
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    return 200 <= resp.status_code < 500


def _release_tag(resp: requests.Response) -> str | None:
    for hop in [*resp.history, resp]:
        for candidate in (hop.url, hop.headers.get("location", "")):
            match = _TAG_PATTERN.search(candidate or "")
            if match:
                return match.group(1)
    return None


def _discard(path: Path) -> None:
    # Best-effort cleanup; the original failure is what gets reported.
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def download_asset(
    url: str,
    target: Path,
    max_redirects: int = MAX_REDIRECTS,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> str | None:
    """Stream *url* into *target* atomically and mark it executable.

    Returns the release tag when it can be read off the redirect chain.
    """
    tmp = target.with_name(f"{target.name}.download")

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with requests.Session() as session:
            session.max_redirects = max_redirects
            with session.get(url, stream=True, timeout=timeout) as resp:
                if not 200 <= resp.status_code < 300:
                    msg = f"HTTP {resp.status_code} downloading {url}"
                    raise BinaryDownloadFailed(msg)
                with tmp.open("wb") as fh:
                    for chunk in resp.iter_content(chunk_size=1 << 16):
                        fh.write(chunk)
                tag = _release_tag(resp)
        os.replace(tmp, target)
        if sys.platform != "win32":
            target.chmod(target.stat().st_mode | 0o755)
    except requests.TooManyRedirects as exc:
        _discard(tmp)
        msg = f"Too many redirects (> {max_redirects}) downloading {url}"
        raise BinaryDownloadFailed(msg) from exc
    except requests.RequestException as exc:
        _discard(tmp)
        msg = f"Failed to download {url}: {exc}"
        raise BinaryDownloadFailed(msg) from exc
    except OSError as exc:
        _discard(tmp)
        msg = f"Failed to install {url} to {target}: {exc}"
        raise BinaryDownloadFailed(msg) from exc
    except BinaryDownloadFailed:
        _discard(tmp)
        raise

    return tag


async def _spawn_detached(argv: list[str]) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )


# ---------------------------------------------------------------------------
# SidecarManager
# ---------------------------------------------------------------------------


class SidecarManager:
    """Owns the single sidecar process and its startup attempt."""

    def __init__(
        self,
        base_url: str = DEFAULT_SIDECAR_URL,
        binary_path: Path | None = None,
        install_dir: Path | None = None,
        startup_timeout_ms: int = DEFAULT_SIDECAR_STARTUP_TIMEOUT_MS,
        poll_interval: float = POLL_INTERVAL,
        spawn: SpawnFn | None = None,
        probe: HealthProbe | None = None,
        platform: str | None = None,
        machine: str | None = None,
        release_base_url: str = RELEASE_BASE_URL,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._binary_override = binary_path
        self._install_dir = install_dir or default_install_dir()
        self._startup_timeout_ms = startup_timeout_ms
        self._poll_interval = poll_interval
        self._spawn = spawn or _spawn_detached
        self._probe = probe
        self._platform = platform
        self._machine = machine
        self._release_base_url = release_base_url.rstrip("/")

        self._state = SidecarState.STOPPED
        self._process: asyncio.subprocess.Process | None = None
        self._start_lock = asyncio.Lock()
        self._start_task: asyncio.Task[SidecarStartResult] | None = None

    @classmethod
    def from_config(cls, config: GatewayConfig) -> SidecarManager:
        return cls(
            base_url=config.sidecar_url,
            binary_path=config.sidecar_binary_path,
            install_dir=config.sidecar_install_dir,
            startup_timeout_ms=config.sidecar_startup_timeout_ms,
        )

    # -- properties ----------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def state(self) -> SidecarState:
        return self._state

    @property
    def health_url(self) -> str:
        return build_openai_url(self._base_url, "/models")

    @property
    def binary_path(self) -> Path:
        """Path of the sidecar executable.

        Raises:
            UnsupportedPlatform: No override is configured and no release
                asset exists for this platform.
        """
        if self._binary_override is not None:
            return self._binary_override
        return self._install_dir / resolve_asset_name(self._platform, self._machine)

    # -- health --------------------------------------------------------------

    async def is_healthy(self) -> bool:
        if self._probe is not None:
            return await self._probe()
        return await asyncio.to_thread(probe_status, self.health_url)

    # -- lifecycle -----------------------------------------------------------

    async def start(self, force_update: bool = False) -> SidecarStartResult:  # noqa: FBT001, FBT002
        """Start the sidecar, or join the startup attempt already in flight.

        All concurrent callers await the same attempt and see the same
        outcome. *force_update* of the caller that opened the attempt wins.
        """
        async with self._start_lock:
            task = self._start_task
            if task is None:
                task = asyncio.create_task(self._run_start(force_update))
                self._start_task = task
            else:
                logger.debug("Joining sidecar startup already in flight")
        # Shielded so one cancelled caller cannot abort everyone's attempt.
        return await asyncio.shield(task)

    async def ensure_running(self) -> None:
        """Start the sidecar unless it already answers."""
        if await self.is_healthy():
            return
        await self.start()

    def stop(self) -> bool:
        """Send a graceful termination signal to the tracked process.

        Returns True if a live process was signalled. Safe to call when
        nothing is tracked.
        """
        proc = self._process
        self._process = None
        self._state = SidecarState.STOPPED
        if proc is None or proc.returncode is not None:
            return False
        try:
            proc.terminate()
        except ProcessLookupError:
            return False
        logger.info("Stopped sidecar (pid=%s)", proc.pid)
        return True

    async def status(self) -> SidecarStatus:
        try:
            path: Path | None = self.binary_path
        except UnsupportedPlatform:
            path = None
        installed = path is not None and path.is_file()
        return SidecarStatus(
            installed=installed,
            running=await self.is_healthy(),
            version=self._read_version(path) if installed and path else None,
            binary_path=str(path) if path else None,
            state=self._state,
        )

    async def download_binary(self, force: bool = False) -> bool:  # noqa: FBT001, FBT002
        """Make sure the binary exists locally; return True if it was downloaded."""
        if self._binary_override is not None:
            if not self._binary_override.is_file():
                msg = f"Sidecar binary not found at {self._binary_override}"
                raise SidecarNotReady(msg)
            return False

        asset = resolve_asset_name(self._platform, self._machine)
        target = self._install_dir / asset
        if target.is_file() and not force:
            return False

        url = f"{self._release_base_url}/{asset}"
        logger.info("Downloading sidecar binary %s -> %s", url, target)
        tag = await asyncio.to_thread(download_asset, url, target)
        version_file = self._version_file(target)
        try:
            version_file.write_text(tag or "unknown", encoding="utf-8")
        except OSError as exc:
            msg = f"Failed to record sidecar version in {version_file}: {exc}"
            raise BinaryDownloadFailed(msg) from exc
        logger.info("Sidecar binary installed (version=%s)", tag or "unknown")
        return True

    # -- internals -----------------------------------------------------------

    async def _run_start(self, force_update: bool) -> SidecarStartResult:  # noqa: FBT001
        try:
            with trace_sidecar_start(force_update):
                return await self._start_once(force_update)
        finally:
            self._start_task = None

    async def _start_once(self, force_update: bool) -> SidecarStartResult:  # noqa: FBT001
        if await self.is_healthy():
            if not force_update:
                if self._process is not None:
                    self._state = SidecarState.RUNNING
                return SidecarStartResult(was_already_running=True, was_downloaded=False)
            logger.info("Force update requested; stopping running sidecar")
            await self._stop_and_wait()

        self._state = SidecarState.STARTING
        try:
            was_downloaded = await self.download_binary(force=force_update)
            argv = self._command(self.binary_path)
            logger.info("Spawning sidecar: %s", " ".join(argv))
            try:
                self._process = await self._spawn(argv)
            except OSError as exc:
                msg = f"Failed to spawn sidecar {argv[0]}: {exc}"
                raise SidecarNotReady(msg) from exc
            await self._wait_until_healthy(self._process)
        except BaseException:
            self.stop()
            raise

        self._state = SidecarState.RUNNING
        logger.info("Sidecar ready at %s", self._base_url)
        return SidecarStartResult(was_already_running=False, was_downloaded=was_downloaded)

    async def _wait_until_healthy(self, proc: asyncio.subprocess.Process) -> None:
        loop = asyncio.get_running_loop()
        timeout_ms = self._startup_timeout_ms
        deadline = loop.time() + timeout_ms / 1000 if timeout_ms > 0 else None

        while True:
            if proc.returncode is not None:
                msg = f"Sidecar exited with code {proc.returncode} before becoming healthy"
                raise SidecarNotReady(msg)
            if await self.is_healthy():
                return
            if deadline is not None and loop.time() >= deadline:
                msg = f"Sidecar did not become healthy within {timeout_ms}ms"
                raise SidecarStartTimeout(msg)
            await asyncio.sleep(self._poll_interval)

    async def _stop_and_wait(self) -> None:
        proc = self._process
        if not self.stop() or proc is None:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=STOP_GRACE_PERIOD)
        except TimeoutError:
            proc.kill()
            await proc.wait()

    def _command(self, binary: Path) -> list[str]:
        parsed = urlparse(self._base_url)
        host = parsed.hostname or "127.0.0.1"
        port = parsed.port or 1337
        return [str(binary), "api", "--bind", f"{host}:{port}"]

    @staticmethod
    def _version_file(binary: Path) -> Path:
        return binary.with_name(f"{binary.name}.version")

    def _read_version(self, binary: Path) -> str | None:
        version_file = self._version_file(binary)
        if not version_file.is_file():
            return None
        return version_file.read_text(encoding="utf-8").strip() or None
