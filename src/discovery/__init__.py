"""
Media discovery: records, the date-bucketed index and the local scanner.
"""

from .cache import IndexCache
from .media import (
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
    MediaIndex,
    MediaRecord,
    MediaResolution,
    MediaType,
    add_record,
    build_indices,
    count_by_type,
    date_from_cache_path,
    date_path_for,
    find_record,
    infer_media_type,
    iter_records,
    merge_indices,
    parse_date_path,
    rebucket,
)
from .scanner import MediaScanner, ScanGaps

__all__ = [
    "IMAGE_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "IndexCache",
    "MediaIndex",
    "MediaRecord",
    "MediaResolution",
    "MediaScanner",
    "MediaType",
    "ScanGaps",
    "add_record",
    "build_indices",
    "count_by_type",
    "date_from_cache_path",
    "date_path_for",
    "find_record",
    "infer_media_type",
    "iter_records",
    "merge_indices",
    "parse_date_path",
    "rebucket",
]
