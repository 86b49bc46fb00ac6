"""CLI entry point for the periodic compliance jobs.

Intended to be invoked by an external scheduler (cron, EventBridge):

Usage:
    python -m src.cli deadlines
    python -m src.cli ocdd
    python -m src.cli regions
    python -m src.cli config --region AU --overrides tenant_overrides.yaml

Exit status is 1 when the batch recorded any tenant error.
"""

import argparse
import asyncio
import json
import sys

import yaml

from src.config import settings
from src.shared.logging import setup_logging


async def _run_job(job: str) -> int:
    from src.db.database import async_session_factory, engine, init_db
    from src.db.store import SqlAlchemyAuditSink, SqlAlchemyComplianceStore
    from src.domains.compliance.batch import run_deadline_checks, run_ocdd_reviews
    from src.domains.compliance.config import ComplianceEngineConfig
    from src.domains.compliance.ocdd import RecurringReviewScheduler
    from src.domains.compliance.ports import LoggingNotificationSink, SafeNotifier

    engine_config = ComplianceEngineConfig.from_settings(settings)
    store = SqlAlchemyComplianceStore(async_session_factory)
    audit = SqlAlchemyAuditSink(async_session_factory)
    notifier = SafeNotifier(LoggingNotificationSink())

    try:
        await init_db()
        if job == "deadlines":
            batch = await run_deadline_checks(store, notifier, audit, engine_config)
        else:
            scheduler = RecurringReviewScheduler(
                store, notifier, audit=audit, engine_config=engine_config
            )
            batch = await run_ocdd_reviews(scheduler, store, audit, engine_config)
    finally:
        await engine.dispose()

    print(json.dumps(batch.model_dump(mode="json"), indent=2))
    return 1 if batch.errors else 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Compliance engine periodic jobs")
    parser.add_argument(
        "command",
        choices=["deadlines", "ocdd", "regions", "config"],
        help="Which job or lookup to run",
    )
    parser.add_argument("--region", type=str, default=settings.default_region)
    parser.add_argument(
        "--overrides", type=str, default=None, help="YAML file with tenant config overrides"
    )
    parser.add_argument("--log-level", type=str, default=settings.log_level)

    args = parser.parse_args(argv)
    setup_logging(args.log_level, json=settings.log_json)

    if args.command in ("deadlines", "ocdd"):
        sys.exit(asyncio.run(_run_job(args.command)))

    from src.domains.compliance.errors import ConfigurationError
    from src.domains.compliance.regions import available_regions, resolve_tenant_config

    if args.command == "regions":
        print(json.dumps(available_regions(), indent=2))
        return

    overrides = {}
    if args.overrides:
        with open(args.overrides) as f:
            overrides = yaml.safe_load(f) or {}
    try:
        config = resolve_tenant_config(args.region, overrides)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)
    print(json.dumps(config.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
