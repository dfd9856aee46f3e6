"""
Content identity for media files.
"""

from __future__ import annotations

import hashlib
import struct
from pathlib import Path

STRATEGY_FULL = "sha256_full"
STRATEGY_STREAM = "sha256_stream"
STRATEGY_HYBRID = "sha256_hybrid"
STRATEGY_COMPOSITE = "composite"


class MediaHasher:
    """Compute the stable media identifier for a file.

    Files below ``full_read_max_bytes`` are read in one go, files up to
    ``skip_hash_bytes`` are hashed in streaming mode. Both produce the plain
    SHA-256 hex digest of the content. Files above ``skip_hash_bytes`` get a
    cheaper identity selected by ``large_file_identity``:

    ``hybrid``
        SHA-256 over the size and head/middle/tail segments. Survives moves and
        touches, but edits outside the sampled segments keep the same id.
    ``composite``
        SHA-256 over path, size and mtime. Changes whenever the file is moved
        or touched.
    """

    def __init__(
        self,
        full_read_max_bytes: int,
        skip_hash_bytes: int,
        hybrid_chunk_bytes: int = 1024 * 1024,
        large_file_identity: str = "hybrid",
    ) -> None:
        self.full_read_max_bytes = full_read_max_bytes
        self.skip_hash_bytes = skip_hash_bytes
        self.hybrid_chunk_bytes = hybrid_chunk_bytes
        self.large_file_identity = large_file_identity

    def strategy_for_size(self, size: int) -> str:
        """Return the identity strategy for a file of ``size`` bytes."""
        if size < self.full_read_max_bytes:
            return STRATEGY_FULL
        if size <= self.skip_hash_bytes:
            return STRATEGY_STREAM
        if self.large_file_identity == "composite":
            return STRATEGY_COMPOSITE
        return STRATEGY_HYBRID

    def compute_id(self, path: Path, size: int, mtime: float) -> str:
        """Compute the identifier for ``path`` using the size-based strategy."""
        strategy = self.strategy_for_size(size)
        if strategy == STRATEGY_FULL:
            return hashlib.sha256(path.read_bytes()).hexdigest()
        if strategy == STRATEGY_STREAM:
            return self._sha256_stream(path)
        if strategy == STRATEGY_HYBRID:
            return self._sha256_hybrid(path, size)
        return self._composite(path, size, mtime)

    def _sha256_stream(self, path: Path, chunk_size: int = 4 * 1024 * 1024) -> str:
        hasher = hashlib.sha256()
        with path.open("rb") as handle:
            while True:
                data = handle.read(chunk_size)
                if not data:
                    break
                hasher.update(data)
        return hasher.hexdigest()

    def _sha256_hybrid(self, path: Path, size: int) -> str:
        chunk = self.hybrid_chunk_bytes
        if size <= chunk * 3:
            return self._sha256_stream(path)

        with path.open("rb") as handle:
            head = handle.read(chunk)
            handle.seek(max((size // 2) - (chunk // 2), 0))
            middle = handle.read(chunk)
            handle.seek(max(size - chunk, 0))
            tail = handle.read(chunk)

        hasher = hashlib.sha256()
        hasher.update(struct.pack("<Q", size))
        hasher.update(head)
        hasher.update(middle)
        hasher.update(tail)
        return hasher.hexdigest()

    def _composite(self, path: Path, size: int, mtime: float) -> str:
        key = f"{path.resolve()}:{size}:{int(mtime)}"
        return hashlib.sha256(key.encode("utf-8")).hexdigest()
