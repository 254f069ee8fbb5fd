#!/usr/bin/env python3
"""Snapshot the claim ledger into <data>/backups and prune old snapshots."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from ..errors import StorageError
from ..ledger_store import LedgerStore
from ..settings import FaucetSettings


def main(argv: Optional[List[str]] = None) -> int:
    settings = FaucetSettings.from_env()

    ap = argparse.ArgumentParser(description=__doc__)
    ap.add_argument(
        "--data-dir",
        default=str(settings.data_dir),
        help="Ledger data directory (or set FAUCET_DATA_DIR)",
    )
    ap.add_argument(
        "--keep-days",
        type=int,
        default=settings.max_backups_days,
        help="Delete backups older than this many days (or set MAX_BACKUPS)",
    )
    ap.add_argument("--no-prune", action="store_true", help="Only write the new backup")
    args = ap.parse_args(argv)

    data_dir = Path(args.data_dir).expanduser().resolve()
    if not data_dir.exists():
        print(f"ERROR: data dir not found: {data_dir}", file=sys.stderr)
        return 2

    try:
        store = LedgerStore(data_dir)
        written = store.backup()
    except StorageError as e:
        print(f"ERROR: {e.message}: {e.detail}", file=sys.stderr)
        return 3

    for p in written:
        print("wrote", p)

    if not args.no_prune:
        removed = store.clean_old_backups(args.keep_days)
        print(f"pruned {len(removed)} backup file(s) older than {args.keep_days} days")

    print("Backup OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
