"""
Command line entry point for binary restores.

    mongo-restore BACKUP_NAME --engine-version 6.0.1 [--config settings.yaml] ...
    mongo-restore --list [--storage-root DIR]

Exit codes: 0 on success, 1 when the restore fails, 2 on usage or
configuration errors, 130 when the restore is cancelled (SIGINT/SIGTERM).
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from typing import List, Optional, Tuple

from pydantic import ValidationError

from config import MongoOpsSettings, load_settings
from mongo_ops_exceptions import ConfigurationError
from .config import RestoreConfig
from .core.compatibility import POLICIES
from .core.manager import RestoreManager
from .models.parameters import RestoreParams
from .utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-restore",
        description="Restore a mongod data directory from a binary backup"
    )
    parser.add_argument("backup_name", nargs="?",
                        help="Backup to restore, or 'latest' for the most recent one")
    parser.add_argument("--engine-version", dest="engine_version",
                        help="Version of the mongod that will serve the restored data")
    parser.add_argument("--list", action="store_true", dest="list_backups",
                        help="List available backups and exit")
    parser.add_argument("--config", dest="config_path",
                        help="YAML settings file (environment variables and defaults otherwise)")
    parser.add_argument("--storage-root", help="Backup storage root directory")
    parser.add_argument("--db-path", help="Target mongod data directory")
    parser.add_argument("--mongod-config", help="Minimal mongod config used for special-mode startups")
    parser.add_argument("--mongod-binary", help="mongod executable")
    parser.add_argument("--policy", choices=sorted(POLICIES), help="Version compatibility policy")
    parser.add_argument("--no-verify", action="store_true", help="Skip checksum verification")
    parser.add_argument("--skip-ownership-fix", action="store_true",
                        help="Leave file ownership and permissions untouched")
    parser.add_argument("--log-level", help="Logging level (overrides settings)")
    return parser


def _build_config(args: argparse.Namespace) -> Tuple[RestoreConfig, MongoOpsSettings]:
    """
    Raises:
        ConfigurationError: If settings or overrides are invalid
    """
    settings = load_settings(args.config_path)
    config = RestoreConfig.from_settings(settings)

    overrides = {}
    if args.storage_root:
        overrides["storage_root"] = args.storage_root
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.mongod_config:
        overrides["mongod_config_path"] = args.mongod_config
    if args.mongod_binary:
        overrides["mongod_binary"] = args.mongod_binary
    if args.policy:
        overrides["compatibility_policy"] = args.policy
    if args.no_verify:
        overrides["verify_checksums"] = False
    if args.skip_ownership_fix:
        overrides["skip_ownership_fix"] = True

    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config, settings


def _configure_logging(level: str, log_format: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=log_format)


def _install_signal_handlers(token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            # Event loops without signal support (Windows, non-main threads)
            logger.debug(f"Cannot install handler for {sig.name}")


async def _list(manager: RestoreManager) -> int:
    backups = await manager.list_backups()
    if not backups:
        print("No backups found")
        return EXIT_OK
    for sentinel in backups:
        finished = sentinel.finish_local_time.isoformat() if sentinel.finish_local_time else "-"
        print(f"{sentinel.backup_name}\t{sentinel.engine_version}\t{finished}")
    return EXIT_OK


async def _run(args: argparse.Namespace, config: RestoreConfig) -> int:
    token = CancellationToken()
    _install_signal_handlers(token)
    manager = RestoreManager(config, cancel_token=token)

    if args.list_backups:
        return await _list(manager)

    params = RestoreParams(
        backup_name=args.backup_name,
        requesting_engine_version=args.engine_version
    )
    result = await manager.restore(params)

    if result.success:
        print(
            f"Restored backup {result.backup_name}: {result.files_restored} files, "
            f"{result.bytes_restored} bytes in {result.execution_time_seconds:.1f}s"
        )
        return EXIT_OK

    print(f"Restore failed at {result.failed_stage.value if result.failed_stage else 'startup'}: "
          f"{result.error_message}", file=sys.stderr)
    return EXIT_CANCELLED if token.is_cancelled else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.list_backups and (not args.backup_name or not args.engine_version):
        parser.error("BACKUP_NAME and --engine-version are required unless --list is given")

    try:
        config, settings = _build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    _configure_logging(args.log_level or settings.logging.log_level, settings.logging.log_format)
    logger.debug(f"Effective configuration: {config.to_dict()}")

    try:
        return asyncio.run(_run(args, config))
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
