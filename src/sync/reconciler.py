"""
Reconcile the local mapping table with scan results and with other devices' tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from discovery import MediaIndex, ScanGaps, iter_records
from mapping import CloudMappingTable, MappingParseError, MappingRecord, SyncStatus
from sync import paths
from transport import NotFoundError, RemoteItem, Transport, TransportError


@dataclass
class LocalUpdateStats:
    added: int = 0
    marked_for_delete: int = 0


@dataclass
class MergeStats:
    devices_seen: int = 0
    devices_merged: int = 0
    devices_failed: int = 0
    added: int = 0


class MappingReconciler:
    """Apply scan results and remote device tables to the local mapping table."""

    def __init__(
        self,
        namespace: str,
        media_cache_dir: Path,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.namespace = namespace
        self.media_cache_dir = media_cache_dir
        self.logger = logger or logging.getLogger("media_sync")

    def update_local_mapping(
        self,
        table: CloudMappingTable,
        indices: Dict[str, MediaIndex],
        now: Optional[datetime] = None,
        gaps: Optional[ScanGaps] = None,
    ) -> LocalUpdateStats:
        """Add rows for newly scanned media and flag locally deleted files.

        Only ``synced`` rows for files authored on this device (outside the
        media cache) can become ``pendingDelete``; unresolved transfers are
        left alone. Rows under a location listed in ``gaps`` are kept, since
        the scan could not see them.
        """
        now = now or datetime.now()
        stats = LocalUpdateStats()
        scanned_ids: set[str] = set()
        for record in iter_records(indices):
            scanned_ids.add(record.id)
            if record.id in table:
                continue
            table.upsert(
                MappingRecord(
                    media_id=record.id,
                    local_path=record.original_path,
                    cloud_path=paths.cloud_path_for(self.namespace, record.date_path, record.file_name),
                    media_type=record.type.value,
                    created_at=record.created_at,
                    file_size=record.size,
                    last_synced=now,
                    sync_status=SyncStatus.PENDING_UPLOAD,
                )
            )
            stats.added += 1

        for row in table.with_status(SyncStatus.SYNCED):
            if row.media_id in scanned_ids:
                continue
            if paths.is_within(row.local_path, self.media_cache_dir):
                continue
            if gaps is not None and gaps.covers(row.local_path):
                self.logger.info("Not scanned, keeping: %s", row.local_path)
                continue
            table.upsert(row.with_status(SyncStatus.PENDING_DELETE, now))
            stats.marked_for_delete += 1
            self.logger.info("Local file removed, marking for cloud deletion: %s", row.local_path)

        if stats.added or stats.marked_for_delete:
            table.touch(now)
        self.logger.info(
            "Local mapping updated: %s new, %s marked for deletion",
            stats.added,
            stats.marked_for_delete,
        )
        return stats

    def requeue_failed(
        self,
        table: CloudMappingTable,
        now: Optional[datetime] = None,
        gaps: Optional[ScanGaps] = None,
    ) -> int:
        """Give ``error`` rows another attempt in this pass.

        A row whose local file exists is queued for upload (an already present
        cloud copy turns it into ``synced`` without a transfer). A missing file
        inside the media cache is queued for download. A missing locally
        authored file is queued for cloud deletion; when the cloud copy is
        already gone the row is simply dropped. Missing files under a location
        listed in ``gaps`` stay in ``error``.
        """
        now = now or datetime.now()
        requeued = 0
        for row in table.with_status(SyncStatus.ERROR):
            if Path(row.local_path).is_file():
                status = SyncStatus.PENDING_UPLOAD
            elif paths.is_within(row.local_path, self.media_cache_dir):
                status = SyncStatus.PENDING_DOWNLOAD
            elif gaps is not None and gaps.covers(row.local_path):
                continue
            else:
                status = SyncStatus.PENDING_DELETE
            table.upsert(row.with_status(status, now))
            requeued += 1
        if requeued:
            table.touch(now)
            self.logger.info("Requeued %s previously failed entries", requeued)
        return requeued

    def merge_remote_table(
        self,
        table: CloudMappingTable,
        remote: CloudMappingTable,
        now: Optional[datetime] = None,
    ) -> int:
        """Add rows for media this device has never seen. Local rows always win.

        Rows whose cloud path is not a plain file path in the namespace, or
        whose download target would land outside the media cache, are logged
        and skipped.
        """
        now = now or datetime.now()
        added = 0
        for row in remote.mappings:
            if row.media_id in table:
                continue
            local_path = self._download_target(row)
            if local_path is None:
                self.logger.warning(
                    "Skipping entry %s from device %s: unsafe cloud path %r",
                    row.media_id,
                    remote.device_id,
                    row.cloud_path,
                )
                continue
            table.upsert(
                MappingRecord(
                    media_id=row.media_id,
                    local_path=str(local_path),
                    cloud_path=row.cloud_path,
                    media_type=row.media_type,
                    created_at=row.created_at,
                    file_size=row.file_size,
                    last_synced=now,
                    sync_status=SyncStatus.PENDING_DOWNLOAD,
                )
            )
            added += 1
        if added:
            table.touch(now)
        return added

    def _download_target(self, row: MappingRecord) -> Optional[Path]:
        if not paths.is_media_path(row.cloud_path, self.namespace):
            return None
        local_path = paths.local_cache_path(self.media_cache_dir, row.cloud_path, self.namespace)
        if not paths.is_within(local_path.resolve(), self.media_cache_dir.resolve()):
            return None
        return local_path

    def download_and_merge(self, transport: Transport, table: CloudMappingTable) -> MergeStats:
        """Merge every other device's published table into ``table``."""
        stats = MergeStats()
        root = paths.mappings_root(self.namespace)
        try:
            items = transport.list(root)
        except NotFoundError:
            self.logger.info("No mappings directory yet at %s; creating it", root)
            transport.mkdir_recursive(paths.device_mapping_dir(self.namespace, table.device_id))
            return stats

        device_dirs = [item for item in items if item.is_directory]
        self.logger.info(
            "Found %s device directories: %s",
            len(device_dirs),
            ", ".join(item.name for item in device_dirs),
        )
        for device_dir in device_dirs:
            device_id = device_dir.name
            if device_id == table.device_id:
                continue
            stats.devices_seen += 1
            try:
                remote = self._fetch_device_table(transport, device_dir)
            except (TransportError, MappingParseError) as exc:
                stats.devices_failed += 1
                self.logger.warning("Skipping mapping table of device %s: %s", device_id, exc)
                continue
            if remote is None:
                stats.devices_failed += 1
                continue
            added = self.merge_remote_table(table, remote)
            stats.devices_merged += 1
            stats.added += added
            self.logger.info(
                "Merged device %s (%s): %s of %s entries new",
                device_id,
                remote.device_name,
                added,
                len(remote),
            )
        return stats

    def _fetch_device_table(self, transport: Transport, device_dir: RemoteItem) -> Optional[CloudMappingTable]:
        entries = transport.list(device_dir.path)
        mapping_item = next(
            (
                item
                for item in entries
                if not item.is_directory and item.name.lower() == paths.MAPPING_FILE_NAME
            ),
            None,
        )
        if mapping_item is None:
            self.logger.warning("No %s in %s", paths.MAPPING_FILE_NAME, device_dir.path)
            return None
        content = transport.get(mapping_item.path)
        if not content:
            self.logger.warning("Empty mapping file for device %s", device_dir.name)
            return None
        return CloudMappingTable.decode(content)
