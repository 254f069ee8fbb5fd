import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from token_faucet.bot_check import BotVerifier
from token_faucet.errors import NetworkError
from token_faucet.ledger_store import LedgerStore
from token_faucet.orchestrator import ClaimOrchestrator
from token_faucet.settings import EligibilityPolicy
from token_faucet.token_gateway import DisbursementResult, TokenGateway, TxState, TxStatus

TOKEN = 10**18
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

ADDR_A = "0xABCDEF0123456789ABCDEF0123456789ABCDEF01"
ADDR_B = "0x1111111111111111111111111111111111111111"
ADDR_C = "0x2222222222222222222222222222222222222222"


class ManualClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway(TokenGateway):
    """In-memory chain: a balance, a list of transfers, optional failures."""

    def __init__(self, balance: int = 1000 * TOKEN, send_delay: float = 0.0):
        self.balance = balance
        self.send_delay = send_delay
        self.sent = []
        self.fail_reason = None
        self.network_down = False
        self.statuses = {}
        self._lock = threading.Lock()

    def current_balance(self) -> int:
        if self.network_down:
            raise NetworkError("could not read faucet balance", detail="connection refused")
        return self.balance

    def disburse(self, to_address: str, amount: int) -> DisbursementResult:
        if self.fail_reason:
            return DisbursementResult(success=False, reason=self.fail_reason)
        # widen the window in which an unserialized caller would race
        if self.send_delay:
            time.sleep(self.send_delay)
        with self._lock:
            if self.balance < amount:
                return DisbursementResult(success=False, reason="insufficient faucet balance")
            self.balance -= amount
            tx_hash = "0x%064x" % (len(self.sent) + 1)
            self.sent.append((to_address, amount, tx_hash))
        return DisbursementResult(success=True, tx_hash=tx_hash)

    def transaction_status(self, tx_hash: str) -> TxStatus:
        if self.network_down:
            raise NetworkError("could not read transaction status")
        return self.statuses.get(tx_hash, TxStatus(state=TxState.PENDING))

    def current_fee_rate(self) -> int:
        if self.network_down:
            raise NetworkError("could not read gas price")
        return 1_500_000_000

    def network_info(self):
        if self.network_down:
            raise NetworkError("could not read blockchain info")
        return {
            "chain_id": 84532,
            "block_number": 123,
            "fee_rate": 1_500_000_000,
            "rpc_url": "http://localhost:8545",
            "chain_name": "Base Sepolia Testnet",
        }

    def network_status(self):
        if self.network_down:
            return {"is_connected": False, "error": "connection refused"}
        return {
            "is_connected": True,
            "block_number": 123,
            "fee_rate": 1_500_000_000,
            "peer_count": None,
            "network_id": 84532,
        }


class FakeVerifier(BotVerifier):
    def __init__(self, result: bool = True, down: bool = False):
        self.result = result
        self.down = down
        self.calls = []

    def verify(self, token, client_ip=None) -> bool:
        self.calls.append((token, client_ip))
        if self.down:
            raise NetworkError("bot verification service unreachable")
        return self.result and bool(token)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store(tmp_path, clock):
    return LedgerStore(tmp_path / "data", clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def policy():
    return EligibilityPolicy(
        claim_amount=10 * TOKEN,
        cooldown=timedelta(hours=1),
        max_claims_per_ip=5,
        ip_window=timedelta(hours=24),
    )


@pytest.fixture
def orchestrator(store, gateway, verifier, policy, clock, tmp_path):
    return ClaimOrchestrator(
        store=store,
        gateway=gateway,
        verifier=verifier,
        policy=policy,
        reconcile_queue_file=tmp_path / "data" / "reconcile_queue.jsonl",
        clock=clock,
    )
