from __future__ import annotations

import argparse
import asyncio

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.services.container import open_services


async def _run_retention() -> None:
    # Apply per-table retention periods to personal data.
    settings = get_settings()
    configure_logging(settings.log_level)
    async with open_services(settings) as services:
        counts = await services.compliance.manage_data_retention()
    for table, deleted in counts.items():
        print(f"{table}_deleted={deleted}")


def main() -> None:
    argparse.ArgumentParser(description="Prune records past their retention period").parse_args()
    asyncio.run(_run_retention())


if __name__ == "__main__":
    main()
