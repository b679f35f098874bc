"""Create Sentinel DynamoDB tables and seed the global escalation rules.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import boto3

from sentinel.core.logging_config import configure_logging
from sentinel.models.escalation import EscalationRule
from sentinel.persistence.dynamodb_backend import (
    ESCALATION_RULES_TABLE,
    create_tables,
    rule_item,
)

logger = logging.getLogger("sentinel.scripts.seed")

SEED_PATH = Path(__file__).resolve().parent.parent / "config" / "escalation_rules_seed.json"


def load_seed_rules(path: Path = SEED_PATH) -> list[EscalationRule]:
    data = json.loads(path.read_text())
    return [EscalationRule.model_validate(r) for r in data["rules"]]


def seed_escalation_rules(ddb: Any, suffix: str = "", path: Path = SEED_PATH) -> int:
    """Write the global (tenant-less) rule for each level."""
    rules = load_seed_rules(path)
    tbl = ddb.Table(f"{ESCALATION_RULES_TABLE}{suffix}")
    with tbl.batch_writer() as batch:
        for rule in rules:
            batch.put_item(Item=rule_item(rule.model_copy(update={"tenant_id": None})))
    logger.info("Seeded %d GLOBAL escalation rules", len(rules))
    return len(rules)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for Sentinel")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    args = parser.parse_args()

    configure_logging("INFO")

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    logger.info("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    logger.info("Seeding escalation rules...")
    seed_escalation_rules(ddb, suffix=args.table_suffix)

    logger.info("Done")


if __name__ == "__main__":
    main()
