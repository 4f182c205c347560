from __future__ import annotations

import argparse
import asyncio
import sys

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.services.container import open_services


async def _run_restore(backup_id: str) -> bool:
    # Restore databases, archived directories and system config from one bundle.
    settings = get_settings()
    configure_logging(settings.log_level)
    async with open_services(settings) as services:
        result = await services.disaster_recovery.restore_from_backup(backup_id)
    print(f"backup_id={result.backup_id}")
    print(f"success={str(result.success).lower()}")
    print(f"message={result.message}")
    for item in result.restored:
        print(f"restored={item}")
    return result.success


def main() -> None:
    parser = argparse.ArgumentParser(description="Restore from a backup bundle")
    parser.add_argument("backup_id")
    parser.add_argument("--yes", action="store_true", help="Confirm overwriting live data")
    args = parser.parse_args()
    if not args.yes:
        parser.error("restore overwrites live data; pass --yes to confirm")
    ok = asyncio.run(_run_restore(args.backup_id))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
