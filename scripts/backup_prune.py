from __future__ import annotations

import argparse
import asyncio

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.persistence.db import Database
from esawit.services.backup import DisasterRecoveryManager


async def _prune(retention_days: int | None) -> None:
    # Remove bundles older than the retention window.
    settings = get_settings()
    if retention_days is not None:
        settings = settings.model_copy(update={"backup_retention_days": retention_days})
    configure_logging(settings.log_level)
    manager = DisasterRecoveryManager.from_settings(settings, database=Database.from_settings(settings))
    deleted = await manager.cleanup_old_backups()
    print(f"retention_days={settings.backup_retention_days}")
    print(f"deleted_backups={deleted}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Prune old backup bundles")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(_prune(args.retention_days))


if __name__ == "__main__":
    main()
