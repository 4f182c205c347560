from __future__ import annotations

import argparse
import asyncio

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.services.container import open_services


async def _warm(user_ids: list[str]) -> None:
    # Pre-populate per-user cache entries, e.g. after a deploy flushed Redis.
    settings = get_settings()
    configure_logging(settings.log_level)
    async with open_services(settings) as services:
        for user_id in user_ids:
            warmed = await services.cache.warm_cache(user_id)
            print(f"user_id={user_id} warmed={str(warmed).lower()}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Warm the cache for users")
    parser.add_argument("user_ids", nargs="+")
    args = parser.parse_args()
    asyncio.run(_warm(args.user_ids))


if __name__ == "__main__":
    main()
