from __future__ import annotations

import argparse
import asyncio
import sys

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.persistence.db import Database
from esawit.services.backup import DisasterRecoveryManager


async def _verify(backup_ids: list[str], latest: bool) -> bool:
    # Recompute artifact checksums without decrypting anything.
    settings = get_settings()
    configure_logging(settings.log_level)
    manager = DisasterRecoveryManager.from_settings(settings, database=Database.from_settings(settings))
    if latest:
        backups = await manager.list_backups()
        backup_ids = [backups[0].backup_id] if backups else []
    all_valid = bool(backup_ids)
    for backup_id in backup_ids:
        report = await manager.test_backup_integrity(backup_id)
        print(f"backup_id={backup_id} valid={str(report.valid).lower()}")
        for error in report.errors:
            print(f"error={error}")
        for warning in report.warnings:
            print(f"warning={warning}")
        all_valid = all_valid and report.valid
    return all_valid


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify backup bundle integrity")
    parser.add_argument("backup_ids", nargs="*")
    parser.add_argument("--latest", action="store_true", help="Verify the newest bundle")
    args = parser.parse_args()
    if not args.backup_ids and not args.latest:
        parser.error("pass one or more backup ids or --latest")
    sys.exit(0 if asyncio.run(_verify(args.backup_ids, args.latest)) else 1)


if __name__ == "__main__":
    main()
