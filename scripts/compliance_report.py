from __future__ import annotations

import argparse
import asyncio
import json

from esawit.core.config import get_settings
from esawit.core.logging import configure_logging
from esawit.services.container import open_services


async def _report(as_json: bool) -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    async with open_services(settings) as services:
        report = await services.compliance.generate_compliance_report()
    if as_json:
        print(json.dumps(report, indent=2))
        return
    print(f"period_start={report['period']['start']}")
    print(f"period_end={report['period']['end']}")
    for request_type, count in report["data_subject_requests"].items():
        print(f"dsar_{request_type}={count}")
    for key in ("consent_records", "data_processing_records", "data_breaches", "privacy_impact_assessments"):
        print(f"{key}={report[key]}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Summarize compliance activity")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()
    asyncio.run(_report(args.json))


if __name__ == "__main__":
    main()
