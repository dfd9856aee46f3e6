"""
Service wiring and command line entry point for the media sync engine.
"""

from __future__ import annotations

import argparse
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from config import AppConfig, SyncSettings, WebDavSettings, ensure_directories
from discovery import IndexCache, MediaIndex, MediaScanner, ScanGaps, count_by_type, merge_indices
from mapping import DeviceRegistry, MappingStore
from sync.orchestrator import SyncOrchestrator, SyncOutcome, SyncPhase, SyncRejected, SyncResult
from sync.reconciler import MappingReconciler
from transport import Transport, WebDavTransport
from utils import ResourceMonitor, setup_logging

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


class MediaSyncService:
    """Own every sync component for one installation."""

    def __init__(
        self,
        config: AppConfig,
        transport: Optional[Transport] = None,
        loggers: Optional[Dict[str, logging.Logger]] = None,
    ) -> None:
        self.config = config
        self.settings = SyncSettings.from_config(config)
        ensure_directories([self.settings.state_dir, self.settings.media_cache_dir])
        self.loggers = loggers or setup_logging(self.settings.log_dir)
        self.logger = self.loggers["main"]
        transfer_logger = self.loggers.get("transfer")
        self.transport = transport or self._build_transport()
        self.scanner = MediaScanner(
            config,
            self.settings,
            logger=self.logger,
            monitor=ResourceMonitor.from_config(config),
        )
        self.index_cache = IndexCache(self.settings.index_cache_file, logger=self.logger)
        self.store = MappingStore(self.settings.mapping_file, logger=self.logger)
        self.device_registry = DeviceRegistry(self.settings.device_file, logger=self.logger)
        self.reconciler = MappingReconciler(
            self.settings.namespace,
            self.settings.media_cache_dir,
            logger=self.logger,
        )
        self.orchestrator = SyncOrchestrator(
            self.transport,
            self.store,
            self.device_registry,
            self.reconciler,
            self.settings,
            logger=self.logger,
            transfer_logger=transfer_logger,
        )
        self.indices: Dict[str, MediaIndex] = {}
        self.gaps: Optional[ScanGaps] = None

    def _build_transport(self) -> Transport:
        timeout = float(self.config.get("webdav", "timeout_seconds", default=60))
        verify = bool(self.config.get("webdav", "verify_tls", default=True))
        return WebDavTransport(timeout=timeout, verify=verify, logger=self.logger)

    def connect(self) -> bool:
        if self.transport.is_connected:
            return True
        try:
            webdav = WebDavSettings.from_config(self.config)
        except KeyError as exc:
            self.logger.error("WebDAV is not configured: %s", exc)
            return False
        credentials = None
        if webdav.username:
            credentials = (webdav.username, webdav.password or "")
        connected = self.transport.connect(webdav.url, credentials)
        if connected:
            self.logger.info("Connected to %s", webdav.url)
        else:
            self.logger.error("Could not connect to %s", webdav.url)
        return connected

    def load_cached_indices(self) -> Dict[str, MediaIndex]:
        cached = self.index_cache.load()
        if cached is not None:
            self.indices = cached
        return self.indices

    def scan_local_media(self, roots: Iterable[Path] | None = None) -> Dict[str, MediaIndex]:
        """Rescan the roots, replacing the in-memory index, and cache the result."""
        indices = self.scanner.scan(roots)
        if roots is not None:
            # A partial scan only adds to what the full index already knows.
            merged = dict(self.load_cached_indices())
            merge_indices(merged, indices)
            indices = merged
        self.indices = indices
        self.gaps = self.scanner.last_gaps
        self.index_cache.save(indices)
        counts = count_by_type(indices)
        self.logger.info(
            "Local media: %s",
            ", ".join(f"{media_type.value}={count}" for media_type, count in counts.items()),
        )
        return indices

    def update_local_mapping(self) -> None:
        self.orchestrator.apply_scan(self.indices, self.gaps)

    def sync_with_cloud(self, scan: bool = True) -> SyncResult:
        if not self.connect():
            return self.orchestrator.start_sync()
        if scan:
            indices = self.scan_local_media()
            return self.orchestrator.start_sync(indices, self.gaps)
        # Without a cached index the table is synced as it stands.
        return self.orchestrator.start_sync(self.load_cached_indices() or None)

    def status_summary(self) -> Dict[str, Any]:
        device = self.device_registry.load_or_create(self.settings.device_name)
        table = self.store.load(device)
        return {
            "device_id": device.uuid,
            "device_name": device.name,
            "last_sync": device.last_sync_time.isoformat() if device.last_sync_time else None,
            "namespace": self.settings.namespace,
            "rows": len(table),
            "status": {status.value: count for status, count in table.status_counts().items()},
        }


def _run_sync(service: MediaSyncService, scan: bool) -> SyncResult:
    """Run the pass on a worker so Ctrl+C only requests cancellation."""
    holder: Dict[str, SyncResult] = {}

    def target() -> None:
        try:
            holder["result"] = service.sync_with_cloud(scan=scan)
        except Exception as exc:
            service.logger.exception("Sync could not start")
            holder["result"] = SyncResult(SyncOutcome.ERROR, SyncPhase.PREPARING, str(exc))

    worker = threading.Thread(target=target, name="sync-pass")
    worker.start()
    while worker.is_alive():
        try:
            worker.join(timeout=0.5)
        except KeyboardInterrupt:
            service.logger.info("Interrupt received; finishing in-flight transfers before stopping.")
            service.orchestrator.cancel_sync()
    return holder["result"]


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Synchronize photos and videos through a WebDAV store.")
    parser.add_argument("--config", default=None, help="Optional config path override")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("scan", help="Scan local media and update the local mapping table")
    sync_parser = subparsers.add_parser("sync", help="Scan, then run one sync pass")
    sync_parser.add_argument("--no-scan", action="store_true", help="Use the cached media index")
    subparsers.add_parser("status", help="Show mapping table counts and last sync time")
    args = parser.parse_args(argv)

    config = AppConfig.load(Path(args.config) if args.config else None)
    service = MediaSyncService(config)
    logger = service.logger

    if args.command == "status":
        summary = service.status_summary()
        print(f"Device:    {summary['device_name']} ({summary['device_id']})")
        print(f"Last sync: {summary['last_sync'] or 'never'}")
        print(f"Entries:   {summary['rows']}")
        for status, count in summary["status"].items():
            if count:
                print(f"  {status:<16}{count}")
        return EXIT_OK

    if args.command == "scan":
        try:
            service.scan_local_media()
            service.update_local_mapping()
        except KeyboardInterrupt:
            logger.info("Scan interrupted.")
            return EXIT_CANCELLED
        except SyncRejected as exc:
            logger.error("%s", exc)
            return EXIT_ERROR
        return EXIT_OK

    result = _run_sync(service, scan=not args.no_scan)
    if result.outcome is SyncOutcome.SUCCESS:
        logger.info("Sync finished: %s", ", ".join(_describe_batches(result)) or "nothing to transfer")
        return EXIT_OK
    if result.outcome is SyncOutcome.CANCELLED:
        return EXIT_CANCELLED
    logger.error("Sync failed during %s: %s", result.phase.value, result.message)
    return EXIT_ERROR


def _describe_batches(result: SyncResult) -> list[str]:
    return [
        f"{batch.status.value} {batch.succeeded} ok/{batch.skipped} skipped/{batch.failed} failed"
        for batch in result.batches
        if batch.total
    ]


if __name__ == "__main__":
    raise SystemExit(main())
