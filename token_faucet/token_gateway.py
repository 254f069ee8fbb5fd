# token_gateway.py
"""
Token disbursement over an EVM chain.

`TokenGateway` is the interface the claim orchestrator consumes:
balance lookup, a signed ERC-20 transfer, and transaction status.
`Web3TokenGateway` implements it with web3.py against a JSON-RPC node.

Gas is paid in the chain's native token; the faucet account must hold
both the ERC-20 token and enough native currency for fees.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound

from .errors import NetworkError
from .settings import FaucetSettings

# Minimal ERC20 ABI: transfer + balanceOf + decimals + symbol
ERC20_ABI = json.loads("""
[
  {
    "constant": false,
    "inputs": [
      {"name": "_to", "type": "address"},
      {"name": "_value", "type": "uint256"}
    ],
    "name": "transfer",
    "outputs": [{"name": "", "type": "bool"}],
    "type": "function"
  },
  {
    "constant": true,
    "inputs": [{"name": "_owner", "type": "address"}],
    "name": "balanceOf",
    "outputs": [{"name": "balance", "type": "uint256"}],
    "type": "function"
  },
  {
    "constant": true,
    "inputs": [],
    "name": "decimals",
    "outputs": [{"name": "", "type": "uint8"}],
    "type": "function"
  },
  {
    "constant": true,
    "inputs": [],
    "name": "symbol",
    "outputs": [{"name": "", "type": "string"}],
    "type": "function"
  }
]
""")

CHAIN_NAMES = {
    1: "Ethereum Mainnet",
    5: "Goerli Testnet",
    8453: "Base Mainnet",
    84531: "Base Goerli Testnet",
    84532: "Base Sepolia Testnet",
    11155111: "Sepolia Testnet",
}

MIN_GAS_MULT = 1.2


def chain_name(chain_id: int) -> str:
    return CHAIN_NAMES.get(int(chain_id), f"Unknown Network ({chain_id})")


def _short(e: Exception, limit: int = 300) -> str:
    msg = f"{type(e).__name__}: {e}"
    if len(msg) > limit:
        msg = msg[:limit] + "..."
    return msg


@dataclass(frozen=True)
class DisbursementResult:
    success: bool
    tx_hash: Optional[str] = None
    reason: Optional[str] = None


class TxState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TxStatus:
    state: TxState
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def message(self) -> str:
        return {
            TxState.PENDING: "Transaction pending",
            TxState.CONFIRMED: "Transaction confirmed",
            TxState.FAILED: "Transaction failed",
        }[self.state]


class TokenGateway:
    """What the faucet needs from the chain. Every call may block on the network."""

    def current_balance(self) -> int:
        raise NotImplementedError

    def disburse(self, to_address: str, amount: int) -> DisbursementResult:
        raise NotImplementedError

    def transaction_status(self, tx_hash: str) -> TxStatus:
        raise NotImplementedError

    def current_fee_rate(self) -> int:
        raise NotImplementedError

    def network_info(self) -> Dict[str, Any]:
        raise NotImplementedError

    def network_status(self) -> Dict[str, Any]:
        raise NotImplementedError


class Web3TokenGateway(TokenGateway):
    def __init__(self, settings: FaucetSettings, w3: Optional[Web3] = None):
        self.settings = settings
        self.rpc_url = settings.rpc_url
        self.chain_id = int(settings.network_id)
        self.gas_mult = max(MIN_GAS_MULT, float(settings.gas_mult))
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(
                settings.rpc_url,
                request_kwargs={"timeout": settings.external_call_timeout_sec},
            )
        )
        self._private_key = settings.faucet_private_key
        self._token = None
        self._faucet: Optional[str] = None

    # The contract is bound lazily so the app can start (and report missing
    # config) before the addresses are filled in.
    def _contract(self):
        if self._token is None:
            try:
                self._faucet = Web3.to_checksum_address(self.settings.faucet_address)
                token_addr = Web3.to_checksum_address(self.settings.token_contract_address)
            except ValueError as e:
                raise NetworkError("faucet or token contract address is not configured", detail=str(e)) from e
            self._token = self.w3.eth.contract(address=token_addr, abi=ERC20_ABI)
        return self._token

    @property
    def faucet_address(self) -> str:
        self._contract()
        return self._faucet

    # ---------------------------
    # Balance / fees
    # ---------------------------
    def current_balance(self) -> int:
        token = self._contract()
        try:
            return int(token.functions.balanceOf(self._faucet).call())
        except Exception as e:
            print(f"[gateway] balanceOf failed: {_short(e)}")
            raise NetworkError("could not read faucet balance", detail=_short(e)) from e

    def current_fee_rate(self) -> int:
        try:
            return int(self.w3.eth.gas_price)
        except Exception as e:
            raise NetworkError("could not read gas price", detail=_short(e)) from e

    def _fee_fields(self) -> Dict[str, int]:
        # Try EIP-1559 first; fallback to legacy gasPrice
        try:
            latest = self.w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
        except Exception:
            base_fee = None
        if base_fee is not None:
            prio = Web3.to_wei(1, "gwei")
            return {"maxPriorityFeePerGas": prio, "maxFeePerGas": int(base_fee * 2 + prio)}
        return {"gasPrice": int(self.w3.eth.gas_price)}

    # ---------------------------
    # Transfer
    # ---------------------------
    def disburse(self, to_address: str, amount: int) -> DisbursementResult:
        """
        Sign and broadcast token.transfer(to_address, amount).

        Success means the node accepted the raw transaction, not that it is
        mined; use transaction_status() for that. Never raises: every failure
        comes back as DisbursementResult(success=False, reason=...).
        """
        if not Web3.is_address(to_address or ""):
            return DisbursementResult(success=False, reason="invalid recipient address")
        amount = int(amount)
        if amount <= 0:
            return DisbursementResult(success=False, reason=f"amount must be > 0 (got {amount})")

        try:
            token = self._contract()
            to_addr = Web3.to_checksum_address(to_address)

            balance = int(token.functions.balanceOf(self._faucet).call())
            if balance < amount:
                return DisbursementResult(
                    success=False,
                    reason=f"insufficient faucet balance (balance={balance}, needed={amount})",
                )

            nonce = self.w3.eth.get_transaction_count(self._faucet, "pending")
            params: Dict[str, Any] = {
                "chainId": self.chain_id,
                "from": self._faucet,
                "nonce": nonce,
            }
            params.update(self._fee_fields())
            tx = token.functions.transfer(to_addr, amount).build_transaction(params)

            # Gas estimate + bump
            est = self.w3.eth.estimate_gas(tx)
            tx["gas"] = max(21000, int(est * self.gas_mult))

            signed = self.w3.eth.account.sign_transaction(tx, private_key=self._private_key)
            tx_hash = self.w3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except Exception as e:
            # Some errors are ambiguous (e.g. timeout after broadcast); the caller
            # treats them as not sent.
            err = _short(e)
            print(f"[gateway] send error to={to_address} amount={amount}: {err}")
            return DisbursementResult(success=False, reason=f"send error: {err}")

        print(f"[gateway] sent to={to_address} amount={amount} tx={tx_hash}")
        return DisbursementResult(success=True, tx_hash=tx_hash)

    def transaction_status(self, tx_hash: str) -> TxStatus:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return TxStatus(state=TxState.PENDING)
        except Exception as e:
            raise NetworkError("could not read transaction status", detail=_short(e)) from e
        if receipt is None:
            return TxStatus(state=TxState.PENDING)
        if int(receipt.get("status", 0)) == 1:
            return TxStatus(
                state=TxState.CONFIRMED,
                block_number=int(receipt.get("blockNumber")),
                gas_used=int(receipt.get("gasUsed", 0)),
            )
        return TxStatus(state=TxState.FAILED, block_number=receipt.get("blockNumber"))

    # ---------------------------
    # Introspection
    # ---------------------------
    def network_info(self) -> Dict[str, Any]:
        try:
            chain_id = int(self.w3.eth.chain_id)
            block_number = int(self.w3.eth.block_number)
            gas_price = int(self.w3.eth.gas_price)
        except Exception as e:
            raise NetworkError("could not read blockchain info", detail=_short(e)) from e
        return {
            "chain_id": chain_id,
            "block_number": block_number,
            "fee_rate": gas_price,
            "rpc_url": self.rpc_url,
            "chain_name": chain_name(chain_id),
        }

    def network_status(self) -> Dict[str, Any]:
        try:
            info = self.network_info()
        except NetworkError as e:
            return {"is_connected": False, "error": e.detail or e.message}
        try:
            peer_count = int(self.w3.net.peer_count)
        except Exception:
            # many hosted RPCs do not expose net_peerCount
            peer_count = None
        return {
            "is_connected": True,
            "block_number": info["block_number"],
            "fee_rate": info["fee_rate"],
            "peer_count": peer_count,
            "network_id": info["chain_id"],
        }

    def check_network(self) -> bool:
        try:
            actual = int(self.w3.eth.chain_id)
        except Exception as e:
            raise NetworkError("could not read chain id", detail=_short(e)) from e
        if actual != self.chain_id:
            raise NetworkError(f"wrong network: expected {self.chain_id}, connected to {actual}")
        return True
