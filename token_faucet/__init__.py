"""
ERC-20 token faucet.

- Ledger store of claims and aggregate stats (JSON files, atomic writes)
- Web3 disbursement gateway
- Eligibility rules: cooldown per address, claims per IP per window, faucet balance
- Claim orchestrator serializing evaluate -> disburse -> record
"""

__version__ = "1.0.0"

from .errors import (
    BotCheckFailed,
    FaucetError,
    NetworkError,
    RecordingFailed,
    StorageError,
    ValidationError,
)
from .models import (
    AggregateStats,
    ClaimOutcome,
    ClaimRecord,
    ClaimStatus,
    Eligibility,
    IneligibleReason,
)
from .ledger_store import LedgerStore
from .token_gateway import DisbursementResult, TokenGateway, TxState, TxStatus, Web3TokenGateway
from .eligibility import evaluate
from .orchestrator import ClaimOrchestrator
from .settings import EligibilityPolicy, FaucetSettings

__all__ = [
    "AggregateStats",
    "BotCheckFailed",
    "ClaimOrchestrator",
    "ClaimOutcome",
    "ClaimRecord",
    "ClaimStatus",
    "DisbursementResult",
    "Eligibility",
    "EligibilityPolicy",
    "FaucetError",
    "FaucetSettings",
    "IneligibleReason",
    "LedgerStore",
    "NetworkError",
    "RecordingFailed",
    "StorageError",
    "TokenGateway",
    "TxState",
    "TxStatus",
    "ValidationError",
    "Web3TokenGateway",
    "evaluate",
]
