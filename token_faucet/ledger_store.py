# ledger_store.py
from __future__ import annotations

import itertools
import json
import os
import secrets
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from .errors import StorageError
from .models import AggregateStats, ClaimRecord, as_utc, normalize_address, utc_now

CLAIMS_FILE = "claims.json"
STATS_FILE = "stats.json"
BACKUP_DIR = "backups"


def _write_json_atomic(path: Path, data: Any) -> None:
    """Write to a sibling temp file, fsync, then rename over the target."""
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(path)


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class LedgerStore:
    """
    Append-only claim history plus aggregate stats, persisted as two JSON files.

    - claims.json : list of ClaimRecord objects (amounts as decimal strings)
    - stats.json  : one AggregateStats object

    All writes go through one in-process lock and replace the files atomically.
    Readers never take the lock: they read an immutable (claims, stats) snapshot
    that is swapped in only after the claims file is durably on disk.

    The service process owns the data directory. Operator tools (reconcile)
    may append through their own LedgerStore: before every write, claims.json
    is re-read if its inode, mtime or size differs from the version this
    instance last read or wrote, so their records are merged, not overwritten.
    """

    def __init__(self, data_dir: Path, clock=utc_now):
        self.data_dir = Path(data_dir)
        self.claims_path = self.data_dir / CLAIMS_FILE
        self.stats_path = self.data_dir / STATS_FILE
        self._clock = clock
        self._write_lock = threading.Lock()
        self._seq = itertools.count()
        self._snapshot: Tuple[Tuple[ClaimRecord, ...], AggregateStats] = ((), AggregateStats())
        self._disk_sig: Optional[Tuple[int, int, int]] = None
        self._load()

    # ---------------------------
    # Loading
    # ---------------------------
    def _load(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            if not self.claims_path.exists():
                _write_json_atomic(self.claims_path, [])
            if not self.stats_path.exists():
                _write_json_atomic(self.stats_path, AggregateStats(last_updated=self._clock()).to_json())

            raw_stats = _read_json(self.stats_path)
        except (OSError, ValueError) as e:
            raise StorageError(f"failed to load ledger from {self.data_dir}", detail=str(e)) from e

        claims = self._read_claims()
        try:
            stats = AggregateStats.from_json(raw_stats or {})
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"corrupt ledger data in {self.data_dir}", detail=str(e)) from e

        expected = self._aggregate(claims, stats.last_updated)
        if (stats.total_claims, stats.total_amount_distributed) != (
            expected.total_claims,
            expected.total_amount_distributed,
        ):
            # stats.json lags claims.json after a failed stats write; claims are authoritative
            print(
                f"[ledger] stats out of sync (claims={stats.total_claims} vs {expected.total_claims}); rebuilding"
            )
            stats = expected
            try:
                _write_json_atomic(self.stats_path, stats.to_json())
            except OSError as e:
                print(f"[ledger] failed to persist rebuilt stats: {e}")

        self._snapshot = (claims, stats)
        print(f"[ledger] loaded {len(claims)} claims from {self.data_dir}")

    def _read_claims(self) -> Tuple[ClaimRecord, ...]:
        """Parse claims.json and remember which version of the file was read."""
        try:
            sig = self._disk_signature()
            raw_claims = _read_json(self.claims_path)
        except (OSError, ValueError) as e:
            raise StorageError(f"failed to read {self.claims_path}", detail=str(e)) from e
        if not isinstance(raw_claims, list):
            raise StorageError(f"{self.claims_path} must contain a JSON list")
        try:
            claims = tuple(ClaimRecord.from_json(c) for c in raw_claims)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"corrupt ledger data in {self.data_dir}", detail=str(e)) from e
        self._disk_sig = sig
        return claims

    def _disk_signature(self) -> Tuple[int, int, int]:
        st = self.claims_path.stat()
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _sync_from_disk(self) -> None:
        """
        Pick up claims another process (e.g. the reconcile tool) appended.

        Caller holds _write_lock. Raises StorageError if the changed file
        cannot be parsed, so a write never replaces records it did not see.
        """
        try:
            sig = self._disk_signature()
        except OSError as e:
            raise StorageError(f"failed to stat {self.claims_path}", detail=str(e)) from e
        if sig == self._disk_sig:
            return
        known, _ = self._snapshot
        claims = self._read_claims()
        self._snapshot = (claims, self._aggregate(claims, self._clock()))
        print(f"[ledger] claims.json changed on disk; reloaded {len(claims)} claims (had {len(known)})")

    def refresh(self) -> None:
        """Reload claims.json if another process has written it since we last did."""
        with self._write_lock:
            self._sync_from_disk()

    @staticmethod
    def _aggregate(claims: Sequence[ClaimRecord], last_updated: datetime) -> AggregateStats:
        total = 0
        for c in claims:
            total += c.amount
        return AggregateStats(
            total_claims=len(claims),
            total_amount_distributed=total,
            last_updated=last_updated,
        )

    def _new_id(self) -> str:
        ms = int(time.time() * 1000)
        return f"{ms:011x}{next(self._seq) & 0xFFFF:04x}{secrets.token_hex(4)}"

    # ---------------------------
    # Writes
    # ---------------------------
    def append_claim(self, record: ClaimRecord) -> ClaimRecord:
        """
        Durably append a claim and update the aggregate stats.

        Claims appended to claims.json by another process since our last
        read are merged in first. Raises StorageError if the claims file
        cannot be read back or written; in that case nothing was recorded
        and the in-memory view is unchanged.
        """
        with self._write_lock:
            self._sync_from_disk()
            claims, stats = self._snapshot
            stored = record.model_copy(update={"id": record.id or self._new_id()})

            new_claims = claims + (stored,)
            try:
                _write_json_atomic(self.claims_path, [c.to_json() for c in new_claims])
            except (OSError, TypeError, ValueError) as e:
                raise StorageError("failed to persist claim", detail=str(e)) from e
            self._remember_own_write()

            new_stats = AggregateStats(
                total_claims=stats.total_claims + 1,
                total_amount_distributed=stats.total_amount_distributed + stored.amount,
                last_updated=self._clock(),
            )
            try:
                _write_json_atomic(self.stats_path, new_stats.to_json())
            except OSError as e:
                # the claim itself is durable; stats are rebuilt from claims on next load
                print(f"[ledger] failed to persist stats after claim {stored.id}: {e}")

            self._snapshot = (new_claims, new_stats)
            return stored

    def _remember_own_write(self) -> None:
        try:
            self._disk_sig = self._disk_signature()
        except OSError:
            # unknown version on disk: reload before the next write
            self._disk_sig = None

    def rebuild_stats(self) -> AggregateStats:
        with self._write_lock:
            self._sync_from_disk()
            claims, _ = self._snapshot
            stats = self._aggregate(claims, self._clock())
            try:
                _write_json_atomic(self.stats_path, stats.to_json())
            except OSError as e:
                raise StorageError("failed to persist stats", detail=str(e)) from e
            self._snapshot = (claims, stats)
            return stats

    # ---------------------------
    # Reads
    # ---------------------------
    def all_claims(self) -> Tuple[ClaimRecord, ...]:
        return self._snapshot[0]

    def most_recent_claim_for(self, address: str) -> Optional[ClaimRecord]:
        addr = normalize_address(address)
        latest: Optional[ClaimRecord] = None
        for c in self._snapshot[0]:
            if c.address == addr and (latest is None or c.timestamp >= latest.timestamp):
                latest = c
        return latest

    def claims_for(self, ip: str, since: datetime) -> List[ClaimRecord]:
        since = as_utc(since)
        return [c for c in self._snapshot[0] if c.ip == ip and c.timestamp >= since]

    def claims_by_address(self, address: str) -> List[ClaimRecord]:
        addr = normalize_address(address)
        return [c for c in self._snapshot[0] if c.address == addr]

    def claims_between(self, start: datetime, end: datetime) -> List[ClaimRecord]:
        start, end = as_utc(start), as_utc(end)
        return [c for c in self._snapshot[0] if start <= c.timestamp <= end]

    def find_by_tx_hash(self, tx_hash: str) -> Optional[ClaimRecord]:
        h = (tx_hash or "").lower()
        for c in self._snapshot[0]:
            if c.tx_hash and c.tx_hash.lower() == h:
                return c
        return None

    def recent_claims(self, limit: int = 10) -> List[ClaimRecord]:
        if limit <= 0:
            return []
        claims = self._snapshot[0]
        # newest first; later appends win ties
        ordered = sorted(range(len(claims)), key=lambda i: (claims[i].timestamp, i), reverse=True)
        return [claims[i] for i in ordered[:limit]]

    def stats(self) -> AggregateStats:
        return self._snapshot[1]

    # ---------------------------
    # Archival
    # ---------------------------
    def backup(self) -> List[Path]:
        """Copy both collections to backups/<name>-<timestamp>.json."""
        claims, stats = self._snapshot
        stamp = self._clock().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        out_dir = self.data_dir / BACKUP_DIR
        claims_backup = out_dir / f"claims-{stamp}.json"
        stats_backup = out_dir / f"stats-{stamp}.json"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            _write_json_atomic(claims_backup, [c.to_json() for c in claims])
            _write_json_atomic(stats_backup, stats.to_json())
        except OSError as e:
            raise StorageError("backup failed", detail=str(e)) from e
        print(f"[ledger] backup created: {stamp}")
        return [claims_backup, stats_backup]

    def clean_old_backups(self, days_to_keep: int = 7) -> List[Path]:
        out_dir = self.data_dir / BACKUP_DIR
        if not out_dir.exists():
            return []
        cutoff = (self._clock() - timedelta(days=days_to_keep)).timestamp()
        removed: List[Path] = []
        for p in sorted(out_dir.glob("*.json")):
            try:
                if p.stat().st_mtime < cutoff:
                    p.unlink()
                    removed.append(p)
                    print(f"[ledger] deleted old backup: {p.name}")
            except OSError as e:
                print(f"[ledger] could not remove backup {p.name}: {e}")
        return removed
