#!/usr/bin/env python
"""
Ledger reconciliation task, intended to be run on a schedule.

Usage:
  hc-reconcile [--database-url URL] [--list-only]

Arguments:
  --database-url  Optional database URL. Defaults to DATABASE_URL from the settings.
  --list-only     Print the unresolved ledger intents without touching them.

The task needs the ledger the intents were submitted to, so it is only
meaningful with LEDGER_BACKEND=web3; the in-memory ledger starts empty.
"""

import argparse
import sys

from hc_registry.core.database.db import DButils
from hc_registry.core.database.events import get_esdb_client
from hc_registry.core.database.sql_store import SQLRegistryStore
from hc_registry.credit.reconciliation import (
    RECONCILABLE_STATUSES,
    reconcile_ledger_intents,
)
from hc_registry.ledger.services import build_ledger_client
from hc_registry.logging_config import logger
from hc_registry.settings import settings


def run_reconciliation(database_url: str | None = None, list_only: bool = False) -> int:
    """
    Reconcile every unresolved ledger intent in the configured database.

    Args:
        database_url: Optional override of the configured database URL.
        list_only: Only report the unresolved intents.

    Returns:
        int: The process exit code, non-zero if any intent raised an error.
    """
    db_client = DButils(connection_str=database_url or settings.DATABASE_URL)
    ledger_client = build_ledger_client(settings)

    with db_client.get_session() as session:
        store = SQLRegistryStore(session, get_esdb_client())

        if list_only:
            for intent in store.list_intents(RECONCILABLE_STATUSES):
                print(
                    f"{intent.id}\t{intent.operation.value}\t{intent.status.value}\t"
                    f"{intent.transaction_hash or '-'}\t{intent.error or ''}"
                )
            return 0

        ledger_client.connect()
        try:
            report = reconcile_ledger_intents(store, ledger_client)
        finally:
            ledger_client.close()

    print(report.model_dump_json(by_alias=True, indent=2))
    return 1 if report.errors else 0


def main():
    parser = argparse.ArgumentParser(description="Ledger Reconciliation Task")
    parser.add_argument(
        "--database-url",
        help="Database URL. Defaults to DATABASE_URL from the settings.",
    )
    parser.add_argument(
        "--list-only",
        action="store_true",
        help="Only list the unresolved ledger intents.",
    )

    args = parser.parse_args()

    logger.info("Starting ledger reconciliation")
    sys.exit(run_reconciliation(args.database_url, args.list_only))


if __name__ == "__main__":
    main()
