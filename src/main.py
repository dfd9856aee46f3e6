"""
Main entry point for running the media sync engine.
"""

import faulthandler
import sys
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path

from config import AppConfig, SyncSettings
from sync.service import main
from utils.instance_guard import ENV_ALLOW_MULTI_INSTANCE, InstanceLockError, acquire_instance_lock


def _enable_crash_diagnostics(logs_dir: Path) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)
    crash_log = logs_dir / f"crash_traceback_{datetime.now(timezone.utc).strftime('%Y%m%d')}.log"
    crash_stream = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=crash_stream, all_threads=True)

    def _hook(exc_type, exc, tb):
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write("\n")
            handle.write(datetime.now(timezone.utc).isoformat() + " Unhandled exception\n")
            traceback.print_exception(exc_type, exc, tb, file=handle)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook

    def _thread_hook(args):
        _hook(args.exc_type, args.exc_value, args.exc_traceback)

    threading.excepthook = _thread_hook


def _settings_for(argv: list[str]) -> SyncSettings:
    config_path = None
    if "--config" in argv:
        index = argv.index("--config")
        if index + 1 < len(argv):
            config_path = Path(argv[index + 1])
    return SyncSettings.from_config(AppConfig.load(config_path))


if __name__ == "__main__":
    settings = _settings_for(sys.argv[1:])
    _enable_crash_diagnostics(settings.log_dir)
    try:
        _lock = acquire_instance_lock(settings.state_dir)
    except InstanceLockError as exc:
        message = (
            "ERROR: Another media_sync instance is using this state directory.\n"
            "If this is a mistake, close the other process or set "
            f"{ENV_ALLOW_MULTI_INSTANCE}=1 to override.\n"
        )
        print(message, file=sys.stderr)
        raise SystemExit(2) from exc
    raise SystemExit(main())
