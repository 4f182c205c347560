from __future__ import annotations

import argparse
import asyncio

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.persistence.db import Database
from esawit.services.backup import DisasterRecoveryManager


async def _list_backups() -> None:
    # Listing only reads the backup directory; no store connections are opened.
    settings = get_settings()
    configure_logging(settings.log_level)
    manager = DisasterRecoveryManager.from_settings(settings, database=Database.from_settings(settings))
    for item in await manager.list_backups():
        print(
            f"backup_id={item.backup_id} status={item.status} "
            f"created_at={item.created_at.isoformat()} files={item.files} size={item.size}"
        )


def main() -> None:
    argparse.ArgumentParser(description="List backup bundles, newest first").parse_args()
    asyncio.run(_list_backups())


if __name__ == "__main__":
    main()
