# unwind_sync/cli.py
# Description: Command-line entry point: one-shot sync, status and the daily todo carry-over.
#
# Imports
import argparse
import asyncio
import json
import sys
from typing import List, Optional
#
# 3rd-Party Imports
import toml
from loguru import logger
#
# Local Imports
from unwind_sync import __version__
from unwind_sync.app import UnwindSyncApp
from unwind_sync.config import load_settings
from unwind_sync.DB.Unwind_DB import UnwindDBError
from unwind_sync.Logging_Config import configure_logging
#
#######################################################################################################################
#
# Functions:

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="unwind-sync", description="Offline-first sync for Unwind journal data.")
    parser.add_argument("--config", help="Path to config.toml (overrides UNWIND_SYNC_CONFIG).")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--no-file-log", action="store_true", help="Log to the console only.")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sync", help="Pull server records, then push every unsynced row once.")
    subparsers.add_parser("status", help="Show per-kind row counts and connectivity.")
    subparsers.add_parser("cleanup", help="Move every pending todo to the carried-over table.")
    subparsers.add_parser("show-config", help="Print the effective configuration as TOML.")
    return parser


async def _run_command(app: UnwindSyncApp, command: str) -> dict:
    # The CLI is one-shot, so connectivity is checked once instead of polled.
    try:
        await app.start(poll=False)
        await app.monitor.check_now()
        if command == "sync":
            return await app.run_sync_cycle()
        if command == "cleanup":
            return {"moved": app.todos.perform_daily_cleanup()}
        return app.status()
    finally:
        await app.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(force_reload=True, config_path=args.config)
    if args.command == "show-config":
        print(toml.dumps(settings))
        return 0

    configure_logging(settings, log_to_file=not args.no_file_log)
    app = UnwindSyncApp(settings)
    try:
        result = asyncio.run(_run_command(app, args.command))
    except UnwindDBError as e:
        logger.critical(f"Cannot open the local store: {e}")
        print(f"ERROR: local store could not be initialized: {e}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0

#
# End of cli.py
#######################################################################################################################
