# eligibility.py
"""
Claim eligibility rules.

`evaluate` is pure: it reads the ledger through `most_recent_claim_for`
and `claims_for`, takes the faucet balance and the clock value as
arguments, and never writes. The orchestrator runs it once more inside
its critical section before sending anything.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

from .amounts import format_amount
from .models import (
    ClaimRecord,
    Eligibility,
    IneligibleReason,
    as_utc,
    is_valid_address,
    normalize_address,
)
from .settings import EligibilityPolicy


class LedgerView(Protocol):
    def most_recent_claim_for(self, address: str) -> Optional[ClaimRecord]: ...

    def claims_for(self, ip: str, since: datetime) -> Sequence[ClaimRecord]: ...


def remaining_text(remaining: timedelta) -> str:
    secs = max(0, int(remaining.total_seconds()))
    return f"{secs // 3600}h {(secs % 3600) // 60}m"


def evaluate(
    address: str,
    client_ip: str,
    now: datetime,
    ledger: LedgerView,
    faucet_balance: int,
    policy: EligibilityPolicy,
    decimals: int = 18,
) -> Eligibility:
    # 1) address format
    if not is_valid_address(address):
        return Eligibility(
            eligible=False,
            reason=IneligibleReason.INVALID_ADDRESS,
            message="Invalid address: expected 0x followed by 40 hex characters",
        )
    address = normalize_address(address)
    now = as_utc(now)

    # 2) faucet balance
    if faucet_balance < policy.claim_amount:
        return Eligibility(
            eligible=False,
            reason=IneligibleReason.INSUFFICIENT_FAUCET_BALANCE,
            message="Faucet balance is too low. Please try again later.",
        )

    # 3) per-address cooldown
    last = ledger.most_recent_claim_for(address)
    if last is not None:
        elapsed = now - last.timestamp
        if elapsed < policy.cooldown:
            next_at = last.timestamp + policy.cooldown
            return Eligibility(
                eligible=False,
                reason=IneligibleReason.COOLDOWN_ACTIVE,
                message=(
                    f"Cooldown active: claims are limited to one per {_hours(policy.cooldown)}. "
                    f"Time remaining: {remaining_text(next_at - now)}"
                ),
                next_eligible_at=next_at,
            )

    # 4) per-IP window
    recent = ledger.claims_for(client_ip, now - policy.ip_window)
    if len(recent) >= policy.max_claims_per_ip:
        return Eligibility(
            eligible=False,
            reason=IneligibleReason.IP_RATE_LIMITED,
            message=(
                f"At most {policy.max_claims_per_ip} claims per {_hours(policy.ip_window)} "
                "are allowed from this IP address."
            ),
        )

    return Eligibility(
        eligible=True,
        amount=policy.claim_amount,
        message=f"You can claim {format_amount(policy.claim_amount, decimals)} tokens",
    )


def _hours(d: timedelta) -> str:
    h = d.total_seconds() / 3600
    if h == int(h):
        h = int(h)
    return f"{h} hour" + ("" if h == 1 else "s")
