"""
On-disk cache of the media index so a restart does not require a rescan.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from discovery.media import MediaIndex
from utils.serialization import atomic_write_text


class IndexCache:
    """Persist the bucket map as a JSON document keyed by date path."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.logger = logger or logging.getLogger("media_sync")

    def load(self) -> Optional[Dict[str, MediaIndex]]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return {key: MediaIndex.from_dict(value) for key, value in data.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            self.logger.warning("Ignoring unreadable media index cache %s: %s", self.path, exc)
            return None

    def save(self, indices: Dict[str, MediaIndex]) -> None:
        payload = {key: indices[key].to_dict() for key in sorted(indices)}
        atomic_write_text(self.path, json.dumps(payload, ensure_ascii=False))
        self.logger.info("Saved media index cache with %s date groups", len(indices))
