"""
Media records and the date-bucketed media index.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional

from utils.serialization import format_timestamp, parse_timestamp

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp", "heic", "heif"})
VIDEO_EXTENSIONS = frozenset({"mp4", "mov", "avi", "wmv", "flv", "mkv", "3gp", "webm"})

_YEAR_RE = re.compile(r"^\d{4}$")
_MONTH_DAY_RE = re.compile(r"^\d{2}$")


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MediaType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def extension_of(path: str | Path) -> str:
    """Return the lower-case extension without the leading dot."""
    return os.path.splitext(str(path))[1].lstrip(".").lower()


def infer_media_type(path: str | Path) -> MediaType:
    """Infer the media type from the file extension."""
    ext = extension_of(path)
    if ext in IMAGE_EXTENSIONS:
        return MediaType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaType.VIDEO
    return MediaType.UNKNOWN


def date_path_for(moment: datetime) -> str:
    """Return the ``YYYY/MM/DD`` bucket key for a timestamp."""
    return f"{moment.year:04d}/{moment.month:02d}/{moment.day:02d}"


def parse_date_path(date_path: str) -> Optional[datetime]:
    """Parse a ``YYYY/MM/DD`` bucket key, returning None when malformed."""
    parts = date_path.strip("/").split("/")
    if len(parts) != 3:
        return None
    year, month, day = parts
    if not (_YEAR_RE.match(year) and _MONTH_DAY_RE.match(month) and _MONTH_DAY_RE.match(day)):
        return None
    try:
        return datetime(int(year), int(month), int(day))
    except ValueError:
        return None


def date_from_cache_path(path: Path, cache_dir: Path) -> Optional[datetime]:
    """Recover the capture date of a file stored under the media cache layout.

    Files downloaded from the cloud live at ``<cache_dir>/YYYY/MM/DD/name`` and
    have lost their original metadata, so the directory names are the only
    reliable date.
    """
    try:
        relative = Path(os.path.abspath(path)).relative_to(os.path.abspath(cache_dir))
    except ValueError:
        return None
    parts = relative.parts
    if len(parts) < 4:
        return None
    return parse_date_path("/".join(parts[:3]))


@dataclass(frozen=True)
class MediaResolution:
    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class MediaRecord:
    """One indexed photo or video file."""

    id: str
    original_path: str
    name: str
    extension: str
    size: int
    type: MediaType
    created_at: datetime
    modified_at: datetime
    resolution: Optional[MediaResolution] = None
    duration: Optional[float] = None
    is_local: bool = True

    @property
    def file_name(self) -> str:
        return f"{self.name}.{self.extension}" if self.extension else self.name

    @property
    def date_path(self) -> str:
        return date_path_for(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "originalPath": self.original_path,
            "name": self.name,
            "extension": self.extension,
            "size": self.size,
            "type": self.type.value,
            "createdAt": format_timestamp(self.created_at),
            "modifiedAt": format_timestamp(self.modified_at),
            "resolution": (
                {"width": self.resolution.width, "height": self.resolution.height}
                if self.resolution
                else None
            ),
            "duration": self.duration,
            "isLocal": self.is_local,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaRecord":
        resolution = data.get("resolution")
        return cls(
            id=data["id"],
            original_path=data["originalPath"],
            name=data["name"],
            extension=data["extension"],
            size=int(data["size"]),
            type=MediaType.parse(data.get("type")),
            created_at=parse_timestamp(data["createdAt"]),
            modified_at=parse_timestamp(data["modifiedAt"]),
            resolution=(
                MediaResolution(int(resolution["width"]), int(resolution["height"]))
                if resolution
                else None
            ),
            duration=data.get("duration"),
            is_local=bool(data.get("isLocal", True)),
        )


@dataclass
class MediaIndex:
    """All media records whose ``created_at`` falls on one day."""

    date_path: str
    records: list[MediaRecord] = field(default_factory=list)

    def ids(self) -> set[str]:
        return {record.id for record in self.records}

    def add(self, record: MediaRecord) -> bool:
        """Add a record unless its id is already present. Returns True if added."""
        if record.date_path != self.date_path:
            raise ValueError(
                f"Record {record.id} belongs in bucket {record.date_path}, not {self.date_path}"
            )
        if any(existing.id == record.id for existing in self.records):
            return False
        self.records.append(record)
        return True

    def sort(self) -> None:
        self.records.sort(key=lambda record: record.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "datePath": self.date_path,
            "mediaFiles": [record.to_dict() for record in self.records],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaIndex":
        return cls(
            date_path=data["datePath"],
            records=[MediaRecord.from_dict(item) for item in data.get("mediaFiles", [])],
        )


def add_record(indices: Dict[str, MediaIndex], record: MediaRecord) -> bool:
    """Insert a record into the bucket matching its own date."""
    bucket = indices.get(record.date_path)
    if bucket is None:
        bucket = indices[record.date_path] = MediaIndex(date_path=record.date_path)
    return bucket.add(record)


def merge_indices(existing: Dict[str, MediaIndex], incoming: Dict[str, MediaIndex]) -> int:
    """Merge ``incoming`` buckets into ``existing``, deduplicating by id.

    Returns the number of records added.
    """
    added = 0
    touched: set[str] = set()
    for index in incoming.values():
        for record in index.records:
            if add_record(existing, record):
                added += 1
                touched.add(record.date_path)
    for date_path in touched:
        existing[date_path].sort()
    return added


def rebucket(indices: Dict[str, MediaIndex], media_id: str, created_at: datetime) -> Optional[MediaRecord]:
    """Correct a record's date and move it to the matching bucket."""
    for date_path, index in list(indices.items()):
        for position, record in enumerate(index.records):
            if record.id != media_id:
                continue
            del index.records[position]
            if not index.records:
                del indices[date_path]
            moved = replace(record, created_at=created_at)
            add_record(indices, moved)
            indices[moved.date_path].sort()
            return moved
    return None


def iter_records(indices: Dict[str, MediaIndex]) -> Iterator[MediaRecord]:
    for date_path in sorted(indices):
        yield from indices[date_path].records


def find_record(indices: Dict[str, MediaIndex], media_id: str) -> Optional[MediaRecord]:
    for record in iter_records(indices):
        if record.id == media_id:
            return record
    return None


def count_by_type(indices: Dict[str, MediaIndex]) -> Dict[MediaType, int]:
    counts = {media_type: 0 for media_type in MediaType}
    for record in iter_records(indices):
        counts[record.type] += 1
    return counts


def build_indices(records: Iterable[MediaRecord]) -> Dict[str, MediaIndex]:
    indices: Dict[str, MediaIndex] = {}
    for record in records:
        add_record(indices, record)
    for index in indices.values():
        index.sort()
    return indices
