"""Run one escalation sweep against the configured backends.

Usage:
    SENTINEL_BACKEND=dynamodb python scripts/run_sweep.py --json-logs

Exits non-zero when the sweep could not run or any record failed.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from sentinel.core.config import AppSettings
from sentinel.core.exceptions import StoreError
from sentinel.core.logging_config import configure_logging
from sentinel.models.escalation import RunStatus
from sentinel.services import build_services

logger = logging.getLogger("sentinel.scripts.sweep")


async def run(settings: AppSettings) -> int:
    services = build_services(settings)
    try:
        summary = await services.escalation.sweep()
    except StoreError as exc:
        logger.error("Sweep aborted: %s", exc)
        return 2
    print(summary.model_dump_json(indent=2))
    return 0 if summary.status == RunStatus.SUCCESS else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one Sentinel escalation sweep")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--batch-size", type=int, default=None, help="Override records per sweep")
    args = parser.parse_args()

    settings = AppSettings()
    if args.batch_size is not None:
        settings.escalation.batch_size = args.batch_size
    configure_logging(settings.log_level, json_format=args.json_logs)

    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
