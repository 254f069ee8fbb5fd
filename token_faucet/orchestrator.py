# orchestrator.py
from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .bot_check import BotVerifier
from .eligibility import evaluate
from .errors import (
    BotCheckFailed,
    FaucetError,
    NetworkError,
    RecordingFailed,
    StorageError,
    ValidationError,
)
from .ledger_store import LedgerStore
from .models import (
    ClaimOutcome,
    ClaimRecord,
    ClaimStatus,
    Eligibility,
    is_valid_address,
    iso_utc,
    normalize_address,
    utc_now,
)
from .settings import EligibilityPolicy
from .token_gateway import TokenGateway


def append_reconcile_entry(path: Path, entry: Dict[str, Any]) -> None:
    """Append one JSON line to the operator reconciliation queue."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")


class _ClaimView:
    """Ledger reads plus transfers that were sent but never made it into the ledger."""

    def __init__(self, store: LedgerStore, unrecorded: Sequence[ClaimRecord]):
        self.store = store
        self.unrecorded = unrecorded

    def most_recent_claim_for(self, address: str) -> Optional[ClaimRecord]:
        addr = normalize_address(address)
        latest = self.store.most_recent_claim_for(addr)
        for c in self.unrecorded:
            if c.address == addr and (latest is None or c.timestamp >= latest.timestamp):
                latest = c
        return latest

    def claims_for(self, ip: str, since: datetime) -> List[ClaimRecord]:
        found = list(self.store.claims_for(ip, since))
        found.extend(c for c in self.unrecorded if c.ip == ip and c.timestamp >= since)
        return found


class ClaimOrchestrator:
    """
    Single entry point for claims.

    Every claim runs bot check -> (lock) re-evaluate -> disburse -> record.
    One process-wide lock serializes the evaluate/disburse/record sequence:
    it keeps two claims for the same address from both passing the cooldown
    check, keeps two claims from spending the same faucet balance, and
    matches the one-nonce-at-a-time nature of sending from a single account.
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: TokenGateway,
        verifier: BotVerifier,
        policy: EligibilityPolicy,
        reconcile_queue_file: Path,
        token_decimals: int = 18,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.gateway = gateway
        self.verifier = verifier
        self.policy = policy
        self.reconcile_queue_file = Path(reconcile_queue_file)
        self.decimals = token_decimals
        self._clock = clock
        self._claim_lock = threading.Lock()
        # sent but not recorded; still count against cooldown and IP limits
        self._unrecorded: Tuple[ClaimRecord, ...] = ()

    def _ledger_view(self) -> _ClaimView:
        pending = tuple(c for c in self._unrecorded if self.store.find_by_tx_hash(c.tx_hash) is None)
        return _ClaimView(self.store, pending)

    @staticmethod
    def _validated(address: str) -> str:
        if not is_valid_address((address or "").strip()):
            raise ValidationError("Enter a valid address (0x followed by 40 hex characters)")
        return normalize_address(address)

    # ---------------------------
    # Read-only paths
    # ---------------------------
    def check_eligibility(self, address: str, client_ip: str) -> Eligibility:
        """
        Advisory "can I claim?" answer. Runs without the claim lock, so a
        claim in flight may change the answer a moment later.
        Raises ValidationError for a malformed address and NetworkError if
        the faucet balance cannot be read.
        """
        address = self._validated(address)
        balance = self.gateway.current_balance()
        return evaluate(address, client_ip, self._clock(), self._ledger_view(), balance, self.policy, self.decimals)

    def recent_claims(self, limit: int = 10) -> List[ClaimRecord]:
        return self.store.recent_claims(limit)

    def stats(self, recent_limit: int = 5) -> Dict[str, Any]:
        agg = self.store.stats()
        return {
            "total_claims": agg.total_claims,
            "total_amount_distributed": agg.total_amount_distributed,
            "faucet_balance": self.gateway.current_balance(),
            "claim_amount": self.policy.claim_amount,
            "cooldown_hours": self.policy.cooldown.total_seconds() / 3600,
            "recent_claims": self.store.recent_claims(recent_limit),
            "last_updated": agg.last_updated,
        }

    # ---------------------------
    # Claim
    # ---------------------------
    def claim(self, address: str, client_ip: str, bot_token: Optional[str]) -> ClaimOutcome:
        """
        Process one claim request end to end.

        Raises ValidationError for a malformed address before any external
        call or lock. Everything else comes back as a ClaimOutcome.
        """
        address = self._validated(address)

        # 1) bot verification, outside the lock
        try:
            human = self.verifier.verify(bot_token or "", client_ip)
        except NetworkError as e:
            return ClaimOutcome(
                status=ClaimStatus.UPSTREAM_ERROR,
                reason=type(e).__name__,
                message="Bot verification is temporarily unavailable. Please try again.",
            )
        if not human:
            return ClaimOutcome(
                status=ClaimStatus.REJECTED,
                reason=BotCheckFailed.__name__,
                message="Bot verification failed. Please complete the challenge again.",
            )

        # 2) critical section
        with self._claim_lock:
            return self._claim_locked(address, client_ip)

    def _claim_locked(self, address: str, client_ip: str) -> ClaimOutcome:
        now = self._clock()

        # 3) re-evaluate against current state
        try:
            balance = self.gateway.current_balance()
        except NetworkError as e:
            print(f"[claim] balance lookup failed for {address}: {e.detail or e.message}")
            return ClaimOutcome(
                status=ClaimStatus.UPSTREAM_ERROR,
                reason=type(e).__name__,
                message="The blockchain network is unreachable. Please try again later.",
            )

        try:
            self.store.refresh()
        except StorageError as e:
            print(f"[claim] ledger unreadable, refusing claim for {address}: {e.detail or e.message}")
            return ClaimOutcome(
                status=ClaimStatus.UPSTREAM_ERROR,
                reason=type(e).__name__,
                message="Claims are temporarily unavailable. Please try again later.",
            )
        view = self._ledger_view()
        self._unrecorded = tuple(view.unrecorded)

        verdict = evaluate(address, client_ip, now, view, balance, self.policy, self.decimals)
        if not verdict.eligible:
            return ClaimOutcome(
                status=ClaimStatus.REJECTED,
                reason=verdict.reason.value if verdict.reason else None,
                message=verdict.message,
                next_eligible_at=verdict.next_eligible_at,
            )
        amount = verdict.amount

        # 4) disburse; from here on the claim cannot be cancelled
        result = self.gateway.disburse(address, amount)
        if not result.success:
            print(f"[claim] disbursement failed for {address}: {result.reason}")
            return ClaimOutcome(
                status=ClaimStatus.DISBURSEMENT_FAILED,
                reason="DisbursementFailed",
                message=f"Token transfer failed: {result.reason or 'unknown error'}. Please try again.",
            )

        # 5) record
        record = ClaimRecord(
            address=address,
            ip=client_ip,
            amount=amount,
            tx_hash=result.tx_hash,
            timestamp=now,
        )
        try:
            stored = self.store.append_claim(record)
        except FaucetError as e:
            self._unrecorded = self._unrecorded + (record,)
            self._flag_unrecorded(record, e)
            return ClaimOutcome(
                status=ClaimStatus.RECORDING_FAILED,
                reason=RecordingFailed.__name__,
                message=(
                    "Tokens were sent but the claim could not be recorded. "
                    "The operator has been notified."
                ),
                amount=amount,
                tx_hash=result.tx_hash,
            )

        print(f"[claim] {address} ip={client_ip} amount={amount} tx={result.tx_hash}")
        return ClaimOutcome(
            status=ClaimStatus.COMPLETED,
            message="Tokens sent successfully!",
            amount=amount,
            tx_hash=result.tx_hash,
            next_eligible_at=now + self.policy.cooldown,
            record=stored,
        )

    def _flag_unrecorded(self, record: ClaimRecord, err: FaucetError) -> None:
        detail = err.detail or err.message
        print(
            f"[RECONCILE] tokens sent but claim not recorded: address={record.address} "
            f"amount={record.amount} tx={record.tx_hash} error={detail}"
        )
        entry = {
            "ts": iso_utc(record.timestamp),
            "address": record.address,
            "ip": record.ip,
            "amount": str(record.amount),
            "txHash": record.tx_hash,
            "error": str(detail)[:300],
        }
        try:
            append_reconcile_entry(self.reconcile_queue_file, entry)
        except OSError as e:
            # last resort: the line above is the only trace
            print(f"[RECONCILE] could not write reconcile queue {self.reconcile_queue_file}: {e}")
