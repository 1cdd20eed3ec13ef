"""Tests for the sidecar lifecycle manager — no real binary or network."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from llm_gateway.errors import (
    BinaryDownloadFailed,
    SidecarNotReady,
    SidecarStartTimeout,
    UnsupportedPlatform,
)
from llm_gateway.gateway import ChatGateway, ChatRequest
from llm_gateway.gpt4free_provider import Gpt4FreeProvider
from llm_gateway.provider import ChatMessage, ChatRole
from llm_gateway.registry import ProviderRegistry
from llm_gateway.sidecar import (
    SidecarManager,
    SidecarState,
    download_asset,
    probe_status,
    resolve_asset_name,
)

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProcess:
    """Stands in for ``asyncio.subprocess.Process``."""

    def __init__(self, pid: int, returncode: int | None = None) -> None:
        self.pid = pid
        self.returncode = returncode
        self.terminated = False

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.returncode = -9

    async def wait(self) -> int:
        return self.returncode if self.returncode is not None else 0


class FakeSidecar:
    """Spawn counter plus a health probe that follows process liveness."""

    def __init__(self, exit_immediately: bool = False, ever_healthy: bool = True) -> None:
        self.spawned: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self.exit_immediately = exit_immediately
        self.ever_healthy = ever_healthy
        self.external = False
        self.spawn_error: BaseException | None = None

    async def spawn(self, argv: list[str]) -> FakeProcess:
        await asyncio.sleep(0)
        self.spawned.append(argv)
        if self.spawn_error is not None:
            err, self.spawn_error = self.spawn_error, None
            raise err
        returncode = 1 if self.exit_immediately else None
        proc = FakeProcess(pid=1000 + len(self.spawned), returncode=returncode)
        self.processes.append(proc)
        return proc

    async def probe(self) -> bool:
        await asyncio.sleep(0)
        if self.external:
            return True
        if not self.ever_healthy:
            return False
        return any(p.returncode is None for p in self.processes)


@pytest.fixture
def binary(tmp_path: Path) -> Path:
    path = tmp_path / "g4f"
    path.write_bytes(b"#!/bin/sh\n")
    return path


def _manager(fake: FakeSidecar, binary: Path, **kwargs) -> SidecarManager:
    return SidecarManager(
        binary_path=binary,
        spawn=fake.spawn,
        probe=fake.probe,
        poll_interval=0.01,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# start / stop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_spawns_with_bind_address(binary: Path):
    fake = FakeSidecar()
    manager = _manager(fake, binary, base_url="http://127.0.0.1:4242/")

    result = await manager.start()

    assert result.was_already_running is False
    assert result.was_downloaded is False
    assert manager.state == SidecarState.RUNNING
    assert fake.spawned == [[str(binary), "api", "--bind", "127.0.0.1:4242"]]


@pytest.mark.asyncio
async def test_concurrent_starts_spawn_once(binary: Path):
    fake = FakeSidecar()
    manager = _manager(fake, binary)

    results = await asyncio.gather(manager.start(), manager.start(), manager.start())

    assert len(fake.spawned) == 1
    assert all(r.was_already_running is False for r in results)
    assert manager.state == SidecarState.RUNNING


@pytest.mark.asyncio
async def test_start_when_already_healthy_does_not_spawn(binary: Path):
    fake = FakeSidecar()
    fake.external = True
    manager = _manager(fake, binary)

    result = await manager.start()

    assert result.was_already_running is True
    assert fake.spawned == []


@pytest.mark.asyncio
async def test_failed_start_clears_slot_for_retry(binary: Path):
    fake = FakeSidecar()
    fake.spawn_error = OSError("exec format error")
    manager = _manager(fake, binary)

    with pytest.raises(SidecarNotReady, match="exec format error") as exc_info:
        await manager.start()
    assert isinstance(exc_info.value.__cause__, OSError)
    assert manager.state == SidecarState.STOPPED

    result = await manager.start()
    assert result.was_already_running is False
    assert len(fake.spawned) == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_failure(binary: Path):
    fake = FakeSidecar(exit_immediately=True)
    manager = _manager(fake, binary)

    results = await asyncio.gather(manager.start(), manager.start(), return_exceptions=True)

    assert len(fake.spawned) == 1
    assert all(isinstance(r, SidecarNotReady) for r in results)


@pytest.mark.asyncio
async def test_process_exit_before_healthy(binary: Path):
    fake = FakeSidecar(exit_immediately=True)
    manager = _manager(fake, binary)

    with pytest.raises(SidecarNotReady, match="exited with code 1"):
        await manager.start()
    assert manager.state == SidecarState.STOPPED


@pytest.mark.asyncio
async def test_startup_timeout_terminates_process(binary: Path):
    fake = FakeSidecar(ever_healthy=False)
    manager = _manager(fake, binary, startup_timeout_ms=50)

    with pytest.raises(SidecarStartTimeout, match="50ms"):
        await manager.start()

    assert fake.processes[0].terminated is True
    assert manager.state == SidecarState.STOPPED


@pytest.mark.asyncio
async def test_force_update_restarts_running_sidecar(binary: Path):
    fake = FakeSidecar()
    manager = _manager(fake, binary)
    await manager.start()

    result = await manager.start(force_update=True)

    assert result.was_already_running is False
    assert len(fake.spawned) == 2
    assert fake.processes[0].terminated is True
    assert fake.processes[1].returncode is None


@pytest.mark.asyncio
async def test_ensure_running_is_idempotent(binary: Path):
    fake = FakeSidecar()
    manager = _manager(fake, binary)

    await manager.ensure_running()
    await manager.ensure_running()

    assert len(fake.spawned) == 1


@pytest.mark.asyncio
async def test_ensure_running_skips_start_when_healthy(binary: Path):
    fake = FakeSidecar()
    fake.external = True
    manager = _manager(fake, binary)

    with patch.object(manager, "start", new=AsyncMock()) as mock_start:
        await manager.ensure_running()

    mock_start.assert_not_awaited()
    assert fake.spawned == []


@pytest.mark.asyncio
async def test_stop_is_idempotent(binary: Path):
    fake = FakeSidecar()
    manager = _manager(fake, binary)
    await manager.start()

    assert manager.stop() is True
    assert manager.stop() is False
    assert manager.state == SidecarState.STOPPED
    assert fake.processes[0].terminated is True


def test_stop_without_process():
    assert SidecarManager().stop() is False


@pytest.mark.asyncio
async def test_missing_override_binary_is_not_downloaded(tmp_path: Path):
    fake = FakeSidecar()
    manager = _manager(fake, tmp_path / "missing")

    with patch("llm_gateway.sidecar.download_asset") as mock_download:
        with pytest.raises(SidecarNotReady, match="not found"):
            await manager.start()

    mock_download.assert_not_called()
    assert fake.spawned == []


# ---------------------------------------------------------------------------
# download_binary / status
# ---------------------------------------------------------------------------


def _downloading_manager(fake: FakeSidecar, install_dir: Path) -> SidecarManager:
    return SidecarManager(
        install_dir=install_dir,
        spawn=fake.spawn,
        probe=fake.probe,
        poll_interval=0.01,
        platform="linux",
        machine="x86_64",
        release_base_url="https://releases.example/latest/download/",
    )


@pytest.mark.asyncio
async def test_download_binary_writes_version(tmp_path: Path):
    manager = _downloading_manager(FakeSidecar(), tmp_path)

    def fake_download(url: str, target: Path) -> str:
        target.write_bytes(b"bin")
        return "v0.5.1"

    with patch("llm_gateway.sidecar.download_asset", side_effect=fake_download) as mock_download:
        assert await manager.download_binary() is True
        assert await manager.download_binary() is False

    mock_download.assert_called_once_with(
        "https://releases.example/latest/download/g4f-linux-amd64",
        tmp_path / "g4f-linux-amd64",
    )
    status = await manager.status()
    assert status.installed is True
    assert status.version == "v0.5.1"
    assert status.binary_path == str(tmp_path / "g4f-linux-amd64")
    assert status.running is False


@pytest.mark.asyncio
async def test_start_downloads_missing_binary(tmp_path: Path):
    fake = FakeSidecar()
    manager = _downloading_manager(fake, tmp_path)

    def fake_download(url: str, target: Path) -> None:
        target.write_bytes(b"bin")

    with patch("llm_gateway.sidecar.download_asset", side_effect=fake_download):
        result = await manager.start()

    assert result.was_downloaded is True
    assert fake.spawned[0][0] == str(tmp_path / "g4f-linux-amd64")
    assert (tmp_path / "g4f-linux-amd64.version").read_text(encoding="utf-8") == "unknown"


@pytest.mark.asyncio
async def test_status_on_unsupported_platform(tmp_path: Path):
    manager = SidecarManager(
        install_dir=tmp_path, probe=FakeSidecar().probe, platform="sunos5", machine="sparc"
    )
    status = await manager.status()
    assert status.installed is False
    assert status.binary_path is None
    assert status.state == SidecarState.STOPPED


# ---------------------------------------------------------------------------
# resolve_asset_name
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("plat", "machine", "asset"),
    [
        ("linux", "x86_64", "g4f-linux-amd64"),
        ("linux", "aarch64", "g4f-linux-arm64"),
        ("darwin", "arm64", "g4f-macos-arm64"),
        ("darwin", "x86_64", "g4f-macos-amd64"),
        ("win32", "AMD64", "g4f-windows-amd64.exe"),
    ],
)
def test_resolve_asset_name(plat: str, machine: str, asset: str) -> None:
    assert resolve_asset_name(plat, machine) == asset


@pytest.mark.parametrize(("plat", "machine"), [("win32", "arm64"), ("linux", "riscv64")])
def test_resolve_asset_name_unsupported(plat: str, machine: str) -> None:
    with pytest.raises(UnsupportedPlatform, match=f"{plat}/{machine}"):
        resolve_asset_name(plat, machine)


# ---------------------------------------------------------------------------
# probe_status
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("status", "healthy"),
    [(200, True), (404, True), (499, True), (500, False), (503, False)],
)
def test_probe_status_accepts_below_500(status: int, healthy: bool) -> None:
    with patch("llm_gateway.sidecar.requests.get", return_value=MagicMock(status_code=status)):
        assert probe_status("http://127.0.0.1:1337/v1/models") is healthy


def test_probe_status_connection_refused():
    with patch(
        "llm_gateway.sidecar.requests.get", side_effect=requests.ConnectionError("refused")
    ):
        assert probe_status("http://127.0.0.1:1337/v1/models") is False


@pytest.mark.asyncio
async def test_health_url_uses_models_route():
    manager = SidecarManager(base_url="http://127.0.0.1:1337/")
    assert manager.health_url == "http://127.0.0.1:1337/v1/models"
    with patch("llm_gateway.sidecar.probe_status", return_value=True) as mock_probe:
        assert await manager.is_healthy() is True
    mock_probe.assert_called_once_with("http://127.0.0.1:1337/v1/models")


# ---------------------------------------------------------------------------
# download_asset
# ---------------------------------------------------------------------------


def _session_returning(resp: MagicMock) -> MagicMock:
    session = MagicMock()
    session.get.return_value.__enter__.return_value = resp
    session_cls = MagicMock()
    session_cls.return_value.__enter__.return_value = session
    return session_cls


def _download_response(status: int = 200) -> MagicMock:
    hop = MagicMock()
    hop.url = "https://github.com/o/r/releases/latest/download/g4f-linux-amd64"
    hop.headers = {"location": "https://github.com/o/r/releases/download/v1.2.3/g4f-linux-amd64"}
    resp = MagicMock()
    resp.status_code = status
    resp.history = [hop]
    resp.url = "https://objects.example/blob"
    resp.headers = {}
    resp.iter_content.return_value = [b"abc", b"def"]
    return resp


def test_download_asset_success(tmp_path: Path):
    target = tmp_path / "bin" / "g4f-linux-amd64"
    session_cls = _session_returning(_download_response())

    with patch("llm_gateway.sidecar.requests.Session", session_cls):
        tag = download_asset("https://example/g4f", target, max_redirects=3)

    assert tag == "v1.2.3"
    assert target.read_bytes() == b"abcdef"
    assert not target.with_name("g4f-linux-amd64.download").exists()
    session = session_cls.return_value.__enter__.return_value
    assert session.max_redirects == 3
    if sys.platform != "win32":
        assert os.access(target, os.X_OK)


def test_download_asset_http_error(tmp_path: Path):
    target = tmp_path / "g4f"
    session_cls = _session_returning(_download_response(status=404))

    with patch("llm_gateway.sidecar.requests.Session", session_cls):
        with pytest.raises(BinaryDownloadFailed, match="HTTP 404"):
            download_asset("https://example/g4f", target)

    assert not target.exists()


def test_download_asset_too_many_redirects(tmp_path: Path):
    session_cls = MagicMock()
    session = session_cls.return_value.__enter__.return_value
    session.get.side_effect = requests.TooManyRedirects("loop")

    with patch("llm_gateway.sidecar.requests.Session", session_cls):
        with pytest.raises(BinaryDownloadFailed, match="Too many redirects"):
            download_asset("https://example/g4f", tmp_path / "g4f")


def test_download_asset_filesystem_error_is_download_failure(tmp_path: Path):
    target = tmp_path / "g4f"
    session_cls = _session_returning(_download_response())

    with (
        patch("llm_gateway.sidecar.requests.Session", session_cls),
        patch("llm_gateway.sidecar.os.replace", side_effect=PermissionError("read-only")),
    ):
        with pytest.raises(BinaryDownloadFailed, match="read-only"):
            download_asset("https://example/g4f", target)

    assert not target.exists()
    assert not (tmp_path / "g4f.download").exists()


# ---------------------------------------------------------------------------
# Failures through the gateway
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unexecutable_binary_becomes_error_response(binary: Path):
    fake = FakeSidecar()
    fake.spawn_error = PermissionError(13, "Permission denied", str(binary))
    registry = ProviderRegistry([Gpt4FreeProvider(_manager(fake, binary))])

    response = await ChatGateway(registry).chat(
        ChatRequest(
            provider="gpt4free",
            messages=[ChatMessage(role=ChatRole.USER, content="hi")],
        )
    )

    assert response.ok is False
    assert response.error is not None
    assert "Failed to spawn sidecar" in response.error
    assert "Permission denied" in response.error
