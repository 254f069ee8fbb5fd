# settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .amounts import parse_amount

PLACEHOLDER_PREFIX = "YOUR_"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    return [p.strip() for p in (os.getenv(name) or "").split(",") if p.strip()]


@dataclass
class EligibilityPolicy:
    """The knobs the eligibility rules read."""

    claim_amount: int
    cooldown: timedelta = timedelta(hours=1)
    max_claims_per_ip: int = 5
    ip_window: timedelta = timedelta(hours=24)


@dataclass
class FaucetSettings:
    # Blockchain
    rpc_url: str = "https://mainnet.base.org"
    network_id: int = 8453
    faucet_address: str = "YOUR_FAUCET_ADDRESS_HERE"
    faucet_private_key: str = "YOUR_PRIVATE_KEY_HERE"
    token_contract_address: str = "YOUR_LST_TOKEN_CONTRACT_ADDRESS_HERE"
    token_decimals: int = 18
    gas_mult: float = 1.2

    # Faucet policy
    claim_amount: int = 1_000_000_000_000_000_000  # 1 token at 18 decimals
    cooldown_hours: float = 1.0
    max_claims_per_ip: int = 5
    ip_window_hours: float = 24.0

    # Bot verification (reCAPTCHA)
    recaptcha_site_key: str = "YOUR_RECAPTCHA_SITE_KEY_HERE"
    recaptcha_secret_key: str = "YOUR_RECAPTCHA_SECRET_KEY_HERE"
    recaptcha_version: str = "v2"
    recaptcha_theme: str = "light"
    recaptcha_size: str = "normal"
    recaptcha_min_score: float = 0.5

    # HTTP layer
    rate_limit_window_ms: int = 900_000  # 15 minutes
    rate_limit_max: int = 100
    trust_proxy: bool = False
    cors_origins: List[str] = field(default_factory=list)
    host: str = "localhost"
    port: int = 3000

    # Storage / ops
    data_dir: Path = Path("data")
    max_backups_days: int = 7
    reconcile_queue_file: Optional[Path] = None

    # Upper bound for every external call (RPC, siteverify)
    external_call_timeout_sec: float = 30.0

    def __post_init__(self):
        # never go below a 20% fee safety margin
        if self.gas_mult < 1.2:
            self.gas_mult = 1.2
        self.data_dir = Path(self.data_dir)
        if self.reconcile_queue_file is None:
            self.reconcile_queue_file = self.data_dir / "reconcile_queue.jsonl"

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    @property
    def ip_window(self) -> timedelta:
        return timedelta(hours=self.ip_window_hours)

    def policy(self) -> EligibilityPolicy:
        return EligibilityPolicy(
            claim_amount=self.claim_amount,
            cooldown=self.cooldown,
            max_claims_per_ip=self.max_claims_per_ip,
            ip_window=self.ip_window,
        )

    def missing_fields(self) -> List[str]:
        """Secrets that are still unset or carry the placeholder default."""
        checks = {
            "blockchain.faucetAddress": self.faucet_address,
            "blockchain.faucetPrivateKey": self.faucet_private_key,
            "blockchain.tokenContractAddress": self.token_contract_address,
            "recaptcha.siteKey": self.recaptcha_site_key,
            "recaptcha.secretKey": self.recaptcha_secret_key,
        }
        return [k for k, v in checks.items() if not v or v.startswith(PLACEHOLDER_PREFIX)]

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "FaucetSettings":
        # Load environment variables from .env file
        load_dotenv(env_file)

        data_dir = Path(os.getenv("FAUCET_DATA_DIR", "data"))
        reconcile = os.getenv("RECONCILE_QUEUE_FILE")

        return cls(
            rpc_url=os.getenv("RPC_URL", "https://mainnet.base.org"),
            network_id=int(os.getenv("NETWORK_ID", "8453")),
            faucet_address=(os.getenv("FAUCET_ADDRESS") or "YOUR_FAUCET_ADDRESS_HERE").strip(),
            faucet_private_key=(os.getenv("FAUCET_PRIVATE_KEY") or "YOUR_PRIVATE_KEY_HERE").strip(),
            token_contract_address=(
                os.getenv("TOKEN_CONTRACT_ADDRESS") or "YOUR_LST_TOKEN_CONTRACT_ADDRESS_HERE"
            ).strip(),
            token_decimals=int(os.getenv("TOKEN_DECIMALS", "18")),
            gas_mult=float(os.getenv("GAS_MULT", "1.2")),
            claim_amount=parse_amount(os.getenv("CLAIM_AMOUNT", "1000000000000000000"), "CLAIM_AMOUNT"),
            cooldown_hours=float(os.getenv("COOLDOWN_HOURS", "1")),
            max_claims_per_ip=int(os.getenv("MAX_CLAIMS_PER_IP", "5")),
            ip_window_hours=float(os.getenv("IP_WINDOW_HOURS", "24")),
            recaptcha_site_key=os.getenv("RECAPTCHA_SITE_KEY", "YOUR_RECAPTCHA_SITE_KEY_HERE"),
            recaptcha_secret_key=os.getenv("RECAPTCHA_SECRET_KEY", "YOUR_RECAPTCHA_SECRET_KEY_HERE"),
            recaptcha_version=os.getenv("RECAPTCHA_VERSION", "v2"),
            recaptcha_theme=os.getenv("RECAPTCHA_THEME", "light"),
            recaptcha_size=os.getenv("RECAPTCHA_SIZE", "normal"),
            recaptcha_min_score=float(os.getenv("RECAPTCHA_MIN_SCORE", "0.5")),
            rate_limit_window_ms=int(os.getenv("RATE_LIMIT_WINDOW", "900000")),
            rate_limit_max=int(os.getenv("RATE_LIMIT_MAX", "100")),
            trust_proxy=_env_bool("TRUST_PROXY"),
            cors_origins=_env_list("CORS_ORIGINS"),
            host=os.getenv("HOST", "localhost"),
            port=int(os.getenv("PORT", "3000")),
            data_dir=data_dir,
            max_backups_days=int(os.getenv("MAX_BACKUPS", "7")),
            reconcile_queue_file=Path(reconcile) if reconcile else None,
            external_call_timeout_sec=float(os.getenv("EXTERNAL_CALL_TIMEOUT_SEC", "30")),
        )
