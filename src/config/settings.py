"""
Configuration loader and helpers for the media sync engine.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

DEFAULT_CONFIG_PATH = Path("config.yaml")
ENV_CONFIG_PATH = "MEDIA_SYNC_CONFIG"

DEFAULT_NAMESPACE = "EchoPixel"
DEFAULT_MAX_CONCURRENT_TRANSFERS = 5
DEFAULT_FULL_READ_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_SKIP_HASH_BYTES = 2 * 1024 * 1024 * 1024
DEFAULT_HYBRID_CHUNK_BYTES = 1024 * 1024
LARGE_FILE_IDENTITIES = ("hybrid", "composite")


@dataclass(frozen=True)
class AppConfig:
    """Container for raw configuration data and path helpers."""

    root_dir: Path
    raw: Dict[str, Any]

    @classmethod
    def load(cls, path: Path | None = None) -> "AppConfig":
        """Load configuration from YAML and normalize the root directory."""
        config_value = os.environ.get(ENV_CONFIG_PATH)
        config_path = path
        if config_path is None:
            config_path = Path(config_value) if config_value else DEFAULT_CONFIG_PATH
        config_path = config_path.expanduser()
        if not config_path.is_absolute():
            config_path = (Path.cwd() / config_path).resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return cls(root_dir=config_path.parent, raw=data)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path | None = None) -> "AppConfig":
        """Build a configuration from an in-memory mapping."""
        return cls(root_dir=(root_dir or Path.cwd()).resolve(), raw=dict(raw))

    def get(self, *keys: str, default: Any = None) -> Any:
        """Retrieve nested configuration values with an optional default."""
        node: Any = self.raw
        for key in keys:
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def resolve_path(self, *keys: str, default: str | None = None) -> Path:
        """Resolve a path from configuration keys to an absolute Path."""
        value = self.get(*keys, default=default)
        if value is None:
            raise KeyError(f"Missing config path for {'.'.join(keys)}")
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = (self.root_dir / path).resolve()
        return path


@dataclass(frozen=True)
class SyncSettings:
    """Typed view over the sync-related configuration keys."""

    namespace: str
    max_concurrent_transfers: int
    retry_failed: bool
    full_read_max_bytes: int
    skip_hash_bytes: int
    hybrid_chunk_bytes: int
    large_file_identity: str
    scan_roots: tuple[Path, ...]
    state_dir: Path
    media_cache_dir: Path
    mapping_file: Path
    device_file: Path
    index_cache_file: Path
    log_dir: Path
    device_name: str

    @classmethod
    def from_config(cls, config: AppConfig) -> "SyncSettings":
        state_dir = config.resolve_path("paths", "state", default="data")
        media_cache = config.get("paths", "media_cache", default=None)
        namespace = str(config.get("sync", "namespace", default=DEFAULT_NAMESPACE)).strip("/")
        if not namespace:
            raise ValueError("sync.namespace must not be empty")
        large_file_identity = str(
            config.get("hashing", "large_file_identity", default="hybrid")
        ).lower()
        if large_file_identity not in LARGE_FILE_IDENTITIES:
            raise ValueError(
                f"hashing.large_file_identity must be one of {LARGE_FILE_IDENTITIES}, "
                f"got {large_file_identity!r}"
            )
        roots = config.get("scan", "roots", default=None) or _default_scan_roots()
        return cls(
            namespace=namespace,
            max_concurrent_transfers=max(
                int(config.get("sync", "max_concurrent_transfers", default=DEFAULT_MAX_CONCURRENT_TRANSFERS)),
                1,
            ),
            retry_failed=bool(config.get("sync", "retry_failed", default=True)),
            full_read_max_bytes=int(
                config.get("hashing", "full_read_max_bytes", default=DEFAULT_FULL_READ_MAX_BYTES)
            ),
            skip_hash_bytes=int(config.get("hashing", "skip_hash_bytes", default=DEFAULT_SKIP_HASH_BYTES)),
            hybrid_chunk_bytes=int(
                config.get("hashing", "hybrid_chunk_bytes", default=DEFAULT_HYBRID_CHUNK_BYTES)
            ),
            large_file_identity=large_file_identity,
            scan_roots=tuple(_resolve(config, root) for root in roots),
            state_dir=state_dir,
            media_cache_dir=(
                config.resolve_path("paths", "media_cache") if media_cache else state_dir / "media"
            ),
            mapping_file=state_dir / "cloud_mapping.json",
            device_file=state_dir / "device.json",
            index_cache_file=state_dir / "media_indices_cache.json",
            log_dir=config.resolve_path("paths", "logs", default="logs"),
            device_name=str(config.get("device", "name", default="") or platform.node() or "unknown-device"),
        )


@dataclass(frozen=True)
class WebDavSettings:
    """Connection settings for the WebDAV transport."""

    url: str
    username: Optional[str]
    password: Optional[str]
    timeout_seconds: float
    verify_tls: bool

    @classmethod
    def from_config(cls, config: AppConfig) -> "WebDavSettings":
        url = config.get("webdav", "url", default=None)
        if not url:
            raise KeyError("Missing config value for webdav.url")
        password = config.get("webdav", "password", default=None)
        password_env = config.get("webdav", "password_env", default=None)
        if password_env and os.environ.get(password_env):
            password = os.environ[password_env]
        return cls(
            url=str(url),
            username=config.get("webdav", "username", default=None),
            password=password,
            timeout_seconds=float(config.get("webdav", "timeout_seconds", default=60)),
            verify_tls=bool(config.get("webdav", "verify_tls", default=True)),
        )


def ensure_directories(paths: Iterable[Path]) -> None:
    """Create directories if they do not already exist."""
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)


def _resolve(config: AppConfig, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (config.root_dir / path).resolve()
    return path


def _default_scan_roots() -> list[str]:
    home = Path.home()
    return [str(home / "Pictures"), str(home / "Videos")]
