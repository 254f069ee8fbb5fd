#!/usr/bin/env python3
"""
Close the "tokens sent, claim not recorded" gap.

Reads the reconciliation queue (JSON lines written by the claim
orchestrator), checks each transaction on chain, and appends the missing
claim record for every confirmed transfer that is not in the ledger yet.
Entries are never removed from the queue; re-running is idempotent
because claims are matched by tx hash.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import NetworkError, StorageError
from ..ledger_store import LedgerStore
from ..models import ClaimRecord
from ..settings import FaucetSettings
from ..token_gateway import TokenGateway, TxState, Web3TokenGateway


def read_queue(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    entries: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for n, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                print(f"[reconcile] skipping unparsable line {n}", file=sys.stderr)
                continue
            if isinstance(obj, dict) and obj.get("txHash"):
                entries.append(obj)
    return entries


def reconcile(
    store: LedgerStore,
    gateway: TokenGateway,
    entries: List[Dict[str, Any]],
    dry_run: bool = False,
) -> Dict[str, int]:
    """Returns counters: recorded / already / pending / failed / errors."""
    counts = {"recorded": 0, "already": 0, "pending": 0, "failed": 0, "errors": 0}
    for e in entries:
        tx_hash = str(e["txHash"])
        if store.find_by_tx_hash(tx_hash):
            counts["already"] += 1
            continue
        try:
            st = gateway.transaction_status(tx_hash)
        except NetworkError as err:
            print(f"[reconcile] {tx_hash}: status lookup failed: {err.detail or err.message}")
            counts["errors"] += 1
            continue

        if st.state == TxState.PENDING:
            print(f"[reconcile] {tx_hash}: still pending")
            counts["pending"] += 1
            continue
        if st.state == TxState.FAILED:
            # reverted on chain: no tokens moved, nothing to record
            print(f"[reconcile] {tx_hash}: failed on chain, nothing to record")
            counts["failed"] += 1
            continue

        try:
            record = ClaimRecord(
                address=e["address"],
                ip=e.get("ip") or "",
                amount=e["amount"],
                tx_hash=tx_hash,
                timestamp=e["ts"],
            )
        except (KeyError, ValueError) as err:
            # pydantic's ValidationError is a ValueError
            print(f"[reconcile] {tx_hash}: malformed queue entry: {err}", file=sys.stderr)
            counts["errors"] += 1
            continue
        if dry_run:
            print(f"[reconcile] would record {record.address} amount={record.amount} tx={tx_hash}")
            counts["recorded"] += 1
            continue
        try:
            stored = store.append_claim(record)
        except StorageError as err:
            print(f"[reconcile] {tx_hash}: append failed: {err.detail or err.message}", file=sys.stderr)
            counts["errors"] += 1
            continue
        print(f"[reconcile] recorded {stored.id} {stored.address} block={st.block_number} tx={tx_hash}")
        counts["recorded"] += 1
    return counts


def main(argv: Optional[List[str]] = None) -> int:
    settings = FaucetSettings.from_env()

    ap = argparse.ArgumentParser(description="Append confirmed-but-unrecorded claims to the ledger")
    ap.add_argument("--data-dir", default=str(settings.data_dir))
    ap.add_argument("--queue", default=str(settings.reconcile_queue_file))
    ap.add_argument("--dry-run", action="store_true", help="Print the plan, write nothing")
    args = ap.parse_args(argv)

    entries = read_queue(Path(args.queue))
    if not entries:
        print("Nothing to reconcile.")
        return 0

    try:
        store = LedgerStore(Path(args.data_dir))
    except StorageError as e:
        print(f"ERROR: {e.message}: {e.detail}", file=sys.stderr)
        return 3

    counts = reconcile(store, Web3TokenGateway(settings), entries, dry_run=args.dry_run)
    print(json.dumps(counts, sort_keys=True))
    return 0 if counts["errors"] == 0 else 4


if __name__ == "__main__":
    raise SystemExit(main())
