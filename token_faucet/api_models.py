# api_models.py
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    # JSON bodies use camelCase; Python code uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Input models
class CheckEligibilityIn(ApiModel):
    address: str


class ClaimIn(ApiModel):
    address: str
    bot_verification_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("botVerificationToken", "recaptchaResponse", "bot_verification_token"),
    )


# Output models
class EligibilityOut(ApiModel):
    eligible: bool
    message: str
    reason: Optional[str] = None
    amount: Optional[str] = None
    next_claim_time: Optional[datetime] = None


class ClaimOut(ApiModel):
    success: bool
    message: str
    reason: Optional[str] = None
    amount: Optional[str] = None
    tx_hash: Optional[str] = None
    next_claim_time: Optional[datetime] = None


class ErrorOut(ApiModel):
    success: bool = False
    error: str
    message: str
    reason: Optional[str] = None


class ClaimSummaryOut(ApiModel):
    address: str
    amount: str
    timestamp: datetime
    tx_hash: Optional[str] = None


class StatsOut(ApiModel):
    total_claims: int
    total_amount_distributed: str
    faucet_balance: str
    claim_amount: str
    cooldown_hours: float
    recent_claims: List[ClaimSummaryOut]


class RecaptchaConfigOut(ApiModel):
    site_key: str
    version: str
    theme: str
    size: str


class ConfigOut(ApiModel):
    claim_amount: str
    claim_amount_raw: str
    cooldown_hours: float
    max_claims_per_ip: int
    ip_window_hours: float
    network_id: int
    token_contract_address: str
    recaptcha: RecaptchaConfigOut


class HealthOut(ApiModel):
    status: str
    timestamp: datetime
    version: str


# Blockchain pass-through
class BlockchainInfoOut(ApiModel):
    network_id: int
    block_number: int
    gas_price: str
    rpc_url: str
    chain_name: str


class BalanceOut(ApiModel):
    balance: str
    formatted: str


class GasPriceOut(ApiModel):
    gas_price: str
    formatted: str


class TxStatusOut(ApiModel):
    status: str
    message: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class NetworkStatusOut(ApiModel):
    is_connected: bool
    block_number: Optional[int] = None
    gas_price: Optional[str] = None
    peer_count: Optional[int] = None
    network_id: Optional[int] = None
    error: Optional[str] = None
