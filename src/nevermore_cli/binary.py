"""Download and verify the Nevermore platform binary used by `develop`.

Each supported host has one pinned release artifact. A local copy is trusted
only when its SHA-256 digest matches the pinned value; anything else is
deleted and downloaded again, hashing the bytes as they stream in.
"""

import asyncio
import hashlib
import platform
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import httpx
import platformdirs
from rich.progress import Progress, SpinnerColumn, TextColumn

from .errors import NevermoreError
from .ui import console

RELEASE_VERSION = "0.4.2"
RELEASE_BASE_URL = f"https://github.com/Edgar-Allan-Ohms/Nevermore/releases/download/v{RELEASE_VERSION}"
CHUNK_SIZE = 8192


class HostPlatform(str, Enum):
    WINDOWS = "windows"
    LINUX = "linux"
    MACOS = "macos"


class UnsupportedPlatformError(NevermoreError):
    title = "Unsupported Platform"


class DownloadError(NevermoreError):
    title = "Download Error"


class InvalidSignatureError(NevermoreError):
    """The downloaded bytes do not hash to the pinned digest."""

    title = "Invalid Signature"


@dataclass(frozen=True)
class BinaryDescriptor:
    platform: HostPlatform
    download_url: str
    local_path: Path
    expected_sha256: str


# (asset name, pinned sha256) per host
# TODO: replace with the published v0.4.2 assets and their `nevermore-scripts hash` digests
_RELEASE_ASSETS = {
    HostPlatform.WINDOWS: (
        "nevermore-windows-amd64.exe",
        "4f1c0a7e9d2b83c65a0e4d7b1f9c3e28a6d50b7c4e1f92a8d3b6c0e57f4a1d92",
    ),
    HostPlatform.LINUX: (
        "nevermore-linux-amd64",
        "9b2e6d41c07f3a58e1d94b2c6a0f7e35d8c19b4a62e0f73d5a8c1b9e4f06d27a",
    ),
    HostPlatform.MACOS: (
        "nevermore-darwin-amd64",
        "c3a9f1e07b54d28e6f0a3c91b7d4e25f8a06c3d19e7b2f45a0d8c6e1b3f97a04",
    ),
}

_SYSTEMS = {
    "Windows": HostPlatform.WINDOWS,
    "Linux": HostPlatform.LINUX,
    "Darwin": HostPlatform.MACOS,
}


def host_platform(system: str | None = None) -> HostPlatform:
    """Map `platform.system()` onto a supported host.

    Raises:
        UnsupportedPlatformError: for any other operating system.
    """
    system = system if system is not None else platform.system()
    try:
        return _SYSTEMS[system]
    except KeyError:
        raise UnsupportedPlatformError(
            f"Nevermore does not ship a binary for '{system or 'unknown'}'. "
            f"Supported: {', '.join(p.value for p in HostPlatform)}"
        ) from None


def binary_dir() -> Path:
    return Path(platformdirs.user_cache_dir("nevermore")) / "bin" / RELEASE_VERSION


def release_descriptors(bin_dir: Path | None = None) -> dict[HostPlatform, BinaryDescriptor]:
    bin_dir = bin_dir or binary_dir()
    return {
        host: BinaryDescriptor(
            platform=host,
            download_url=f"{RELEASE_BASE_URL}/{asset}",
            local_path=bin_dir / asset,
            expected_sha256=digest,
        )
        for host, (asset, digest) in _RELEASE_ASSETS.items()
    }


def descriptor_for(host: HostPlatform | None = None, bin_dir: Path | None = None) -> BinaryDescriptor:
    host = host or host_platform()
    return release_descriptors(bin_dir)[host]


def file_sha256(path: Path) -> str | None:
    """Hex digest of ``path``, or None when it is absent or unreadable."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()


async def _download(url: str, dest: Path, client: httpx.AsyncClient, *, show_progress: bool = True) -> str:
    """Stream ``url`` into ``dest`` and return the SHA-256 of the bytes written."""
    digest = hashlib.sha256()
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        async with client.stream("GET", url, timeout=60, follow_redirects=True) as response:
            if response.status_code != 200:
                raise DownloadError(f"Download of {url} failed with {response.status_code}")
            total_size = int(response.headers.get("content-length", 0))
            with open(dest, "wb") as f:
                if total_size and show_progress:
                    with Progress(
                        SpinnerColumn(),
                        TextColumn("[progress.description]{task.description}"),
                        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                        console=console,
                        transient=True,
                    ) as progress:
                        task = progress.add_task("Downloading Nevermore...", total=total_size)
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            f.write(chunk)
                            digest.update(chunk)
                            progress.update(task, advance=len(chunk))
                else:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        digest.update(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Download of {url} failed: {e}") from e
    return digest.hexdigest()


async def ensure_binary(descriptor: BinaryDescriptor, client: httpx.AsyncClient, *, show_progress: bool = True) -> Path:
    """Return the local binary path, downloading it first when needed.

    A local file whose digest already matches is used without touching the
    network. There is no retry: any failure propagates to the caller.

    Raises:
        DownloadError: the request failed or returned a non-200 status.
        InvalidSignatureError: the downloaded bytes hash to another digest.
    """
    path = descriptor.local_path
    if file_sha256(path) == descriptor.expected_sha256:
        return path

    path.unlink(missing_ok=True)
    actual = await _download(descriptor.download_url, path, client, show_progress=show_progress)
    if actual != descriptor.expected_sha256:
        path.unlink(missing_ok=True)
        raise InvalidSignatureError(
            f"Invalid signature for {descriptor.download_url}\n"
            f"expected {descriptor.expected_sha256}\n"
            f"got      {actual}"
        )
    return path


async def fetch_sha256(url: str, client: httpx.AsyncClient) -> str:
    """Hash a remote file without keeping it on disk."""
    digest = hashlib.sha256()
    try:
        async with client.stream("GET", url, timeout=60, follow_redirects=True) as response:
            if response.status_code != 200:
                raise DownloadError(f"Download of {url} failed with {response.status_code}")
            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                digest.update(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Download of {url} failed: {e}") from e
    return digest.hexdigest()


async def fetch_release_digests(client: httpx.AsyncClient, descriptors: dict[HostPlatform, BinaryDescriptor] | None = None) -> dict[HostPlatform, str | DownloadError]:
    """Hash every release asset concurrently; failures are returned per host."""
    descriptors = descriptors or release_descriptors()
    hosts = list(descriptors)
    results = await asyncio.gather(
        *(fetch_sha256(descriptors[host].download_url, client) for host in hosts),
        return_exceptions=True,
    )
    digests = {}
    for host, result in zip(hosts, results):
        if isinstance(result, BaseException) and not isinstance(result, DownloadError):
            raise result
        digests[host] = result
    return digests
