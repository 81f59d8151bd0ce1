import argparse
import asyncio
import logging
from pathlib import Path

from .config import SaveVaultConfig
from .integrity.health import summarize
from .logging_config import configure_logging
from .persistence.errors import SaveError
from .service import SaveService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="savevault",
        description="Inspect and maintain game save slots",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to a YAML file overriding the default configuration.",
    )
    parser.add_argument(
        "--data-dir",
        dest="data_dir",
        type=Path,
        default=None,
        help="Data root holding the SaveData directory.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    parser.add_argument(
        "--log-file",
        dest="log_file",
        type=Path,
        default=None,
        help="Also write log records to this file.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("slots", help="List save slots.")
    health = sub.add_parser("health", help="Health-check every slot.")
    health.add_argument("--refresh", action="store_true", help="Ignore cached reports.")
    backups = sub.add_parser("backups", help="List backups of a slot.")
    backups.add_argument("slot")
    restore = sub.add_parser("restore", help="Restore a slot from one of its backups.")
    restore.add_argument("slot")
    restore.add_argument("backup_id")
    migrate = sub.add_parser("migrate", help="Migrate a slot to a version (default: app version).")
    migrate.add_argument("slot")
    migrate.add_argument("version", nargs="?", default=None)
    repair = sub.add_parser("repair", help="Repair a damaged slot.")
    repair.add_argument("slot")
    sub.add_parser("compact", help="Trim backups and remove stale temporary files.")
    return parser.parse_args(argv)


async def _run(service: SaveService, args) -> int:
    if args.command == "slots":
        for slot in await service.list_slots():
            meta = await service.store.load_metadata(slot)
            version = meta.version if meta else "?"
            print(f"{slot}\t{version}")
        return 0
    if args.command == "health":
        reports = await service.discover_health(force_refresh=args.refresh)
        for report in reports:
            print(report.summary())
            for issue in report.issues:
                print(f"  ! {issue}")
        print(summarize(reports))
        return 1 if any(r.needs_attention for r in reports) else 0
    if args.command == "backups":
        for info in await service.store.list_backups(args.slot):
            print(f"{info.backup_id}\t{info.size}")
        return 0
    if args.command == "restore":
        await service.store.restore_from_backup(args.slot, args.backup_id)
        print(f"Restored {args.slot} from {args.backup_id}")
        return 0
    if args.command == "migrate":
        result = await service.migrate(args.slot, args.version)
        print(result.message)
        return 0 if result.success else 1
    if args.command == "repair":
        repaired = await service.repair(args.slot)
        print(f"{args.slot}: {'repaired' if repaired else 'could not be repaired'}")
        return 0 if repaired else 1
    if args.command == "compact":
        removed = await service.compact()
        print(f"Removed {removed} backups")
        return 0
    return 2


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(default_level=logging.DEBUG if args.debug else logging.WARNING, log_file=args.log_file)
    config = SaveVaultConfig.load(user_path=args.config_path)
    service = SaveService(config=config, data_root=args.data_dir)
    try:
        return asyncio.run(_run(service, args))
    except SaveError as e:
        logging.getLogger(__name__).error("%s", e)
        return 1
