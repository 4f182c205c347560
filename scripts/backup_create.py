from __future__ import annotations

import argparse
import asyncio

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.services.container import open_services


async def _run_backup(output: str | None, no_upload: bool) -> None:
    # Create one full backup bundle from the CLI for operator workflows.
    settings = get_settings()
    overrides: dict[str, object] = {}
    if output:
        overrides["backup_dir"] = output
    if no_upload:
        overrides["cloud_backup_enabled"] = False
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)
    async with open_services(settings) as services:
        result = await services.disaster_recovery.create_full_backup()
    print(f"backup_id={result.backup_id}")
    print(f"files={len(result.files)}")
    print(f"size={result.size}")
    print(f"duration_ms={result.duration_ms}")
    print(f"manifest={result.manifest_path}")
    print(f"uploaded_objects={len(result.uploaded_objects)}")
    print(f"pruned_backups={result.pruned_backups}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a full encrypted backup bundle")
    parser.add_argument("--output", default=None, help="Override BACKUP_DIR")
    parser.add_argument("--no-upload", action="store_true", help="Skip cloud upload for this run")
    args = parser.parse_args()
    asyncio.run(_run_backup(args.output, args.no_upload))


if __name__ == "__main__":
    main()
