"""
Local media discovery: walk scan roots and build the date-bucketed index.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from config import AppConfig, SyncSettings
from discovery.media import (
    MediaIndex,
    MediaRecord,
    MediaType,
    add_record,
    date_from_cache_path,
    extension_of,
    infer_media_type,
)
from hashing import MediaHasher
from utils import ResourceMonitor


@dataclass
class ScanGaps:
    """Locations a scan could not observe.

    A file under one of these locations is missing from the index because it
    could not be read, not because it was deleted.
    """

    missing_roots: List[Path] = field(default_factory=list)
    unreadable: List[Path] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def add_missing_root(self, root: Path) -> None:
        with self._lock:
            self.missing_roots.append(Path(os.path.abspath(root)))

    def add_unreadable(self, path: str | Path) -> None:
        with self._lock:
            self.unreadable.append(Path(os.path.abspath(path)))

    def covers(self, path: str | Path) -> bool:
        """Return True when ``path`` is, or lies under, an unobserved location."""
        target = Path(os.path.abspath(path))
        with self._lock:
            locations = [*self.missing_roots, *self.unreadable]
        return any(target == location or location in target.parents for location in locations)

    def __bool__(self) -> bool:
        return bool(self.missing_roots or self.unreadable)


class MediaScanner:
    """Scan file trees and emit media records grouped by capture date."""

    def __init__(
        self,
        config: AppConfig,
        settings: SyncSettings,
        logger: Optional[logging.Logger] = None,
        monitor: Optional[ResourceMonitor] = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.logger = logger or logging.getLogger("media_sync")
        self.monitor = monitor
        self.skip_hidden = bool(self.config.get("scan", "skip_hidden", default=True))
        self.follow_symlinks = bool(self.config.get("scan", "follow_symlinks", default=False))
        self.excluded_patterns = self.config.get("exclusions", "file_patterns", default=[]) or []
        self.scan_threads = int(self.config.get("resource_limits", "threads", "scanning", default=4))
        self.hasher = MediaHasher(
            full_read_max_bytes=settings.full_read_max_bytes,
            skip_hash_bytes=settings.skip_hash_bytes,
            hybrid_chunk_bytes=settings.hybrid_chunk_bytes,
            large_file_identity=settings.large_file_identity,
        )
        self.last_gaps = ScanGaps()

    def scan(self, roots: Iterable[Path] | None = None) -> Dict[str, MediaIndex]:
        """Scan every root and return the records bucketed by ``YYYY/MM/DD``.

        Roots that could not be walked and files that could not be read are
        collected in ``last_gaps``.
        """
        indices: Dict[str, MediaIndex] = {}
        scanned = skipped = 0
        self.last_gaps = ScanGaps()
        for root in roots if roots is not None else self.default_roots():
            root = Path(root)
            if not root.is_dir():
                self.logger.warning("Scan root unavailable, skipping: %s", root)
                self.last_gaps.add_missing_root(root)
                continue
            for record in self._scan_root(root):
                if record is None:
                    skipped += 1
                    continue
                scanned += 1
                add_record(indices, record)
        for index in indices.values():
            index.sort()
        self.logger.info(
            "Scan finished: %s media files in %s date groups (%s skipped)",
            scanned,
            len(indices),
            skipped,
        )
        return indices

    def default_roots(self) -> list[Path]:
        """Configured roots plus the download cache, which holds media from other devices."""
        roots = list(self.settings.scan_roots)
        cache_dir = self.settings.media_cache_dir
        if not any(cache_dir == root or root in cache_dir.parents for root in roots):
            roots.append(cache_dir)
        return roots

    def _scan_root(self, root: Path) -> Iterable[Optional[MediaRecord]]:
        if self.scan_threads <= 1:
            for entry in self._iter_media_files(root):
                yield self._safe_build(entry)
            return
        pending = []
        max_pending = max(self.scan_threads * 2, 1)
        with ThreadPoolExecutor(max_workers=self.scan_threads) as executor:
            for entry in self._iter_media_files(root):
                if self.monitor is not None:
                    self.monitor.throttle()
                pending.append(executor.submit(self._safe_build, entry))
                if len(pending) >= max_pending:
                    yield from self._drain_futures(pending, self.scan_threads)
                    pending = pending[self.scan_threads :]
            if pending:
                yield from self._drain_futures(pending, len(pending))

    def _drain_futures(self, pending: list, limit: int) -> Iterable[Optional[MediaRecord]]:
        for future in as_completed(pending[:limit]):
            yield future.result()

    def _iter_media_files(self, root: Path) -> Iterator[Path]:
        """Yield image and video paths under a root, logging unreadable directories."""

        def on_error(error: OSError) -> None:
            self.logger.warning("Cannot read directory %s: %s", error.filename, error)
            if error.filename:
                self.last_gaps.add_unreadable(error.filename)

        for dirpath, dirnames, filenames in os.walk(
            root, topdown=True, onerror=on_error, followlinks=self.follow_symlinks
        ):
            current = Path(dirpath)
            dirnames[:] = [
                name
                for name in dirnames
                if not self._is_hidden(name) and not self._matches_patterns(current / name)
            ]
            for filename in filenames:
                file_path = current / filename
                if self._is_hidden(filename) or self._matches_patterns(file_path):
                    continue
                if not self.follow_symlinks and file_path.is_symlink():
                    continue
                if infer_media_type(file_path) is MediaType.UNKNOWN:
                    continue
                yield file_path

    def _is_hidden(self, name: str) -> bool:
        return self.skip_hidden and name.startswith(".")

    def _matches_patterns(self, path: Path) -> bool:
        for pattern in self.excluded_patterns:
            if fnmatch.fnmatch(path.name, pattern):
                return True
            if fnmatch.fnmatch(str(path), pattern):
                return True
        return False

    def _safe_build(self, path: Path) -> Optional[MediaRecord]:
        try:
            return self.build_record(path)
        except OSError as exc:
            self.logger.warning("Skipping unreadable media file %s: %s", path, exc)
            self.last_gaps.add_unreadable(path)
            return None

    def build_record(self, path: Path) -> Optional[MediaRecord]:
        """Create a MediaRecord for one file, or None for unsupported types."""
        media_type = infer_media_type(path)
        if media_type is MediaType.UNKNOWN:
            return None
        stat = path.stat()
        modified_at = datetime.fromtimestamp(stat.st_mtime)
        created_at = date_from_cache_path(path, self.settings.media_cache_dir) or modified_at
        extension = extension_of(path)
        name = path.name[: -(len(extension) + 1)] if extension else path.name
        return MediaRecord(
            id=self.hasher.compute_id(path, stat.st_size, stat.st_mtime),
            original_path=str(path),
            name=name,
            extension=extension,
            size=stat.st_size,
            type=media_type,
            created_at=created_at,
            modified_at=modified_at,
        )
