#!/usr/bin/env python3
"""Write the JSON export of one user's CRM data.

Reads from the store selected by ``SALESDESK_STORE`` (Postgres connection
settings come from the ``DB_*`` / ``POSTGRES_*`` variables) and writes
``crm-export-YYYY-MM-DD.json`` into the output directory.
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv

from salesdesk.account import AccountService
from salesdesk.config import AppConfig, build_store
from salesdesk.crm_models import User
from salesdesk.export import write_export
from salesdesk.record_cache import RecordCache
from salesdesk.record_store import StoreError, utc_now
from salesdesk.repositories import Repositories

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str], config: AppConfig) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export a user's CRM records to JSON.")
    parser.add_argument("--user-id", required=True, help="Owner whose records are exported.")
    parser.add_argument("--email", default=None, help="Email recorded in the export's user block.")
    parser.add_argument("--display-name", default=None, help="Display name recorded in the export's user block.")
    parser.add_argument(
        "--output-dir",
        type=pathlib.Path,
        default=config.export_dir,
        help=f"Directory for the export file (default: {config.export_dir})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args(list(argv))


def main(argv: Sequence[str], config: Optional[AppConfig] = None) -> int:
    load_dotenv()
    config = config or AppConfig.from_env()
    args = parse_args(argv, config)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        store = build_store(config)
    except StoreError as exc:
        logger.error("Record store unavailable: %s", exc)
        return 2

    repositories = Repositories(store)
    account = AccountService(repositories, RecordCache())
    user = User(id=args.user_id, email=args.email, display_name=args.display_name)
    try:
        settings = repositories.settings.get(user.id)
        document = account.export(user, settings)
    except StoreError as exc:
        logger.error("Export failed: %s", exc)
        return 1

    path = write_export(document, args.output_dir, utc_now())
    stats = document["statistics"]
    print(
        f"Exported {stats['total_leads']} leads, {stats['total_clients']} clients, "
        f"{stats['total_deals']} deals and {stats['total_activities']} activities to {path}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
