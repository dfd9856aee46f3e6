"""
Cloud namespace layout and local path helpers.

Layout::

    /<namespace>/.mappings/<deviceId>/mapping.json
    /<namespace>/<YYYY>/<MM>/<DD>/<fileName>
"""

from __future__ import annotations

import os
import posixpath
from pathlib import Path

MAPPINGS_DIR = ".mappings"
MAPPING_FILE_NAME = "mapping.json"


def namespace_root(namespace: str) -> str:
    return "/" + namespace.strip("/")


def mappings_root(namespace: str) -> str:
    return f"{namespace_root(namespace)}/{MAPPINGS_DIR}"


def device_mapping_dir(namespace: str, device_id: str) -> str:
    return f"{mappings_root(namespace)}/{device_id}"


def device_mapping_path(namespace: str, device_id: str) -> str:
    return f"{device_mapping_dir(namespace, device_id)}/{MAPPING_FILE_NAME}"


def cloud_path_for(namespace: str, date_path: str, file_name: str) -> str:
    return f"{namespace_root(namespace)}/{date_path.strip('/')}/{file_name}"


def parent_path(path: str) -> str:
    parent = posixpath.dirname(path.rstrip("/"))
    return parent or "/"


def relative_date_path(cloud_path: str, namespace: str) -> str:
    """Return the directory of ``cloud_path`` relative to the namespace root."""
    directory = parent_path(cloud_path)
    prefix = namespace_root(namespace)
    if directory == prefix:
        return ""
    if directory.startswith(prefix + "/"):
        return directory[len(prefix) + 1 :]
    return directory.lstrip("/")


def is_media_path(cloud_path: str, namespace: str) -> bool:
    """Return True for a normalised file path under the namespace, outside the mappings tree."""
    prefix = namespace_root(namespace) + "/"
    if not cloud_path.startswith(prefix) or "\\" in cloud_path:
        return False
    segments = cloud_path[len(prefix) :].split("/")
    if segments[0] == MAPPINGS_DIR:
        return False
    return all(segment not in ("", ".", "..") for segment in segments)


def local_cache_path(media_cache_dir: Path, cloud_path: str, namespace: str) -> Path:
    """Where a file downloaded from ``cloud_path`` is stored on this device."""
    relative = relative_date_path(cloud_path, namespace)
    target = media_cache_dir.joinpath(*relative.split("/")) if relative else media_cache_dir
    return target / posixpath.basename(cloud_path)


def is_within(path: str | Path, directory: str | Path) -> bool:
    """Return True when ``path`` lies inside ``directory``."""
    path_value = os.path.normcase(os.path.abspath(str(path)))
    directory_value = os.path.normcase(os.path.abspath(str(directory)))
    try:
        return os.path.commonpath([path_value, directory_value]) == directory_value
    except ValueError:
        return False
