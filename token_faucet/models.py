# models.py
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: str) -> bool:
    return isinstance(address, str) and bool(ADDRESS_RE.match(address))


def normalize_address(address: str) -> str:
    return address.strip().lower()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def iso_utc(ts: datetime) -> str:
    return as_utc(ts).isoformat().replace("+00:00", "Z")


# ---------------------------
# Persisted records
# ---------------------------
class ClaimRecord(BaseModel):
    """One successful disbursement. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    address: str
    ip: str
    amount: int = Field(ge=0)
    tx_hash: Optional[str] = None
    timestamp: datetime

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        v = v.strip()
        if not ADDRESS_RE.match(v):
            raise ValueError(f"invalid address {v!r}")
        return v.lower()

    @field_validator("amount", mode="before")
    @classmethod
    def _int_amount(cls, v: Any) -> int:
        # stored as a decimal string; never let a float through
        if isinstance(v, float):
            raise ValueError("amount must be an integer, not float")
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError(f"amount must be an integer string, got {v!r}")
            return int(v)
        return v

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "ip": self.ip,
            "amount": str(self.amount),
            "txHash": self.tx_hash,
            "timestamp": iso_utc(self.timestamp),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ClaimRecord":
        return cls(
            id=data.get("id"),
            address=data["address"],
            ip=data.get("ip") or "",
            amount=data["amount"],
            tx_hash=data.get("txHash"),
            timestamp=data["timestamp"],
        )


class AggregateStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_claims: int = 0
    total_amount_distributed: int = 0
    last_updated: datetime = Field(default_factory=utc_now)

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalClaims": self.total_claims,
            "totalAmountDistributed": str(self.total_amount_distributed),
            "lastUpdated": iso_utc(self.last_updated),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AggregateStats":
        total = str(data.get("totalAmountDistributed", "0")).strip() or "0"
        if not total.isdigit():
            raise ValueError(f"bad totalAmountDistributed {total!r}")
        return cls(
            total_claims=int(data.get("totalClaims", 0)),
            total_amount_distributed=int(total),
            last_updated=data.get("lastUpdated") or utc_now(),
        )


# ---------------------------
# Decisions and outcomes
# ---------------------------
class IneligibleReason(str, Enum):
    INVALID_ADDRESS = "InvalidAddress"
    INSUFFICIENT_FAUCET_BALANCE = "InsufficientFaucetBalance"
    COOLDOWN_ACTIVE = "CooldownActive"
    IP_RATE_LIMITED = "IPRateLimited"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    message: str
    reason: Optional[IneligibleReason] = None
    amount: Optional[int] = None
    next_eligible_at: Optional[datetime] = None


class ClaimStatus(str, Enum):
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    DISBURSEMENT_FAILED = "DisbursementFailed"
    RECORDING_FAILED = "RecordingFailed"
    UPSTREAM_ERROR = "UpstreamError"


@dataclass(frozen=True)
class ClaimOutcome:
    status: ClaimStatus
    message: str
    reason: Optional[str] = None
    amount: Optional[int] = None
    tx_hash: Optional[str] = None
    next_eligible_at: Optional[datetime] = None
    record: Optional[ClaimRecord] = None

    @property
    def success(self) -> bool:
        return self.status == ClaimStatus.COMPLETED

    @property
    def http_status(self) -> int:
        if self.status == ClaimStatus.COMPLETED:
            return 200
        if self.status == ClaimStatus.REJECTED:
            return 400
        return 500
