"""
Operator CLI for the backup engine.

Runs backup, restore, retention and health operations inline against the
configured database and storage, without going through the API or a worker.

Typical usage (from this repo root):
  - Full backup:
      python scripts/backupctl.py full --name nightly --retention-days 14
  - Incremental on top of a full backup:
      python scripts/backupctl.py incremental <base-backup-id>
  - Restore into a scratch directory:
      python scripts/backupctl.py restore <backup-id> --target /tmp/restore --overwrite
  - Scheduler tick / retention / health:
      python scripts/backupctl.py tick
      python scripts/backupctl.py cleanup
      python scripts/backupctl.py health
"""

from __future__ import annotations

import sys
from pathlib import Path

_REPO_ROOT = str(Path(__file__).resolve().parents[1])
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

import argparse
import json
from uuid import UUID

from app.config import settings
from app.db import SessionLocal
from app.errors import BackupEngineError
from app.logging import configure_logging
from app.services.backup_service import BackupService
from app.services.catalog_service import CatalogService
from app.services.dr_service import DisasterRecoveryService
from app.services.health_service import BackupHealthService
from app.services.restore_service import RestoreService
from app.services.retention_service import RetentionService
from app.services.schedule_service import ScheduleService
from app.services.storage import get_storage


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _cmd_full(db, args) -> dict:
    backup = BackupService(db, commit_transitions=True).create_full(
        name=args.name,
        description=args.description,
        tags=args.tag,
        encrypt=not args.no_encrypt,
        retention_days=args.retention_days,
        created_by="cli",
    )
    return CatalogService.serialize(backup)


def _cmd_incremental(db, args) -> dict:
    backup = BackupService(db, commit_transitions=True).create_incremental(
        UUID(args.base_backup_id),
        name=args.name,
        tags=args.tag,
        created_by="cli",
    )
    return CatalogService.serialize(backup)


def _cmd_differential(db, args) -> dict:
    backup = BackupService(db, commit_transitions=True).create_differential(
        UUID(args.base_backup_id),
        name=args.name,
        tags=args.tag,
        created_by="cli",
    )
    return CatalogService.serialize(backup)


def _cmd_restore(db, args) -> dict:
    point = RestoreService(db).restore(
        UUID(args.backup_id),
        target_location=args.target,
        overwrite=args.overwrite,
        validate_integrity=not args.skip_validation,
    )
    return RestoreService.serialize_restore_point(point)


def _cmd_list(db, args) -> list[dict]:
    return [CatalogService.serialize(b) for b in CatalogService(db).list_backups(limit=args.limit)]


def _cmd_stats(db, args) -> dict:
    return CatalogService(db).get_statistics()


def _cmd_cleanup(db, args) -> dict:
    return RetentionService(db, get_storage()).cleanup_expired()


def _cmd_tick(db, args) -> dict:
    return ScheduleService(db).tick()


def _cmd_health(db, args) -> dict:
    svc = BackupHealthService(db)
    return svc.check_and_alert() if args.alert else svc.check_health()


def _cmd_drill(db, args) -> dict:
    svc = DisasterRecoveryService(db)
    return svc.serialize_result(svc.test_plan(UUID(args.dr_plan_id)))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run backup engine operations inline.")
    sub = p.add_subparsers(dest="command", required=True)

    full = sub.add_parser("full", help="Take a full backup.")
    full.add_argument("--name")
    full.add_argument("--description")
    full.add_argument("--tag", action="append", help="Tag the backup. Can be repeated.")
    full.add_argument("--retention-days", type=int, default=settings.default_retention_days)
    full.add_argument("--no-encrypt", action="store_true", help="Store the payload unencrypted.")
    full.set_defaults(handler=_cmd_full)

    for name, handler in (("incremental", _cmd_incremental), ("differential", _cmd_differential)):
        delta = sub.add_parser(name, help=f"Take a {name} backup on top of a base backup.")
        delta.add_argument("base_backup_id")
        delta.add_argument("--name")
        delta.add_argument("--tag", action="append")
        delta.set_defaults(handler=handler)

    restore = sub.add_parser("restore", help="Restore a backup chain.")
    restore.add_argument("backup_id")
    restore.add_argument("--target", help="Restore into this directory instead of the source.")
    restore.add_argument("--overwrite", action="store_true")
    restore.add_argument("--skip-validation", action="store_true", help="Do not verify checksums first.")
    restore.set_defaults(handler=_cmd_restore)

    listing = sub.add_parser("list", help="List backups, newest first.")
    listing.add_argument("--limit", type=int, default=20)
    listing.set_defaults(handler=_cmd_list)

    sub.add_parser("stats", help="Backup catalog statistics.").set_defaults(handler=_cmd_stats)
    sub.add_parser("cleanup", help="Delete expired backups.").set_defaults(handler=_cmd_cleanup)
    sub.add_parser("tick", help="Fire due backup schedules.").set_defaults(handler=_cmd_tick)

    health = sub.add_parser("health", help="Check backup health.")
    health.add_argument("--alert", action="store_true", help="Record an alert when unhealthy.")
    health.set_defaults(handler=_cmd_health)

    drill = sub.add_parser("drill", help="Run a DR plan drill.")
    drill.add_argument("dr_plan_id")
    drill.set_defaults(handler=_cmd_drill)
    return p


def main(argv: list[str]) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()

    with SessionLocal() as db:
        try:
            result = args.handler(db, args)
        except BackupEngineError as exc:
            db.rollback()
            print(f"error [{exc.code}]: {exc.message}", file=sys.stderr)
            return 1
        db.commit()

    _print(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
