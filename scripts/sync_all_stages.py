#!/usr/bin/env python3
"""
Reconcile stage instances against stage definitions for every service.

Maintenance job: creates any missing stage instances (for example after
definitions were loaded directly into the database) and removes instances
whose definition no longer exists.  Safe to run repeatedly; a second run
reports created=0, removed=0.

Uses --database-url if given, otherwise the database.url of the active
engine configuration.

Usage:
    python3 scripts/sync_all_stages.py
    python3 scripts/sync_all_stages.py --service 7f0c...  # one service only
    python3 scripts/sync_all_stages.py --config my_engine.yaml --json
"""

import argparse
import json
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from progress_config import get_active_config  # noqa: E402
from progress_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from progress_kernel.exceptions import ProgressKernelError  # noqa: E402
from progress_kernel.logging_config import configure_logging  # noqa: E402
from progress_services import ProgressEngine  # noqa: E402

# Actor recorded on instances created by the maintenance job.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    parser.add_argument("--config", type=Path, help="Engine YAML file")
    parser.add_argument("--database-url", help="Override database.url")
    parser.add_argument("--service", type=UUID, help="Reconcile a single service")
    parser.add_argument("--actor", type=UUID, default=SYSTEM_ACTOR_ID)
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before syncing",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()

    config = get_active_config(args.config)
    db = config.database
    init_engine_from_url(
        args.database_url or db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    if args.create_tables:
        create_tables()

    engine = ProgressEngine(get_session_factory(), config=config)
    try:
        if args.service is not None:
            report = engine.sync_service(args.service, args.actor)
        else:
            report = engine.sync_all(args.actor)
    except ProgressKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(
            json.dumps(
                {
                    **report.as_dict(),
                    "contract_services": report.contract_services,
                    "conflicts": [str(c) for c in report.conflicts],
                    "failed_services": [str(s) for s in report.failed_services],
                },
                indent=2,
            )
        )
    else:
        print(
            f"created={report.created} removed={report.removed} "
            f"contract_services={report.contract_services} "
            f"conflicts={len(report.conflicts)} "
            f"failed_services={len(report.failed_services)}"
        )
    return 1 if report.failed_services else 0


if __name__ == "__main__":
    sys.exit(main())
