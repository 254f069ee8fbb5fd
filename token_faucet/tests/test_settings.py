from datetime import timedelta
from pathlib import Path

import pytest

from token_faucet.amounts import format_amount, format_gas_price, parse_amount
from token_faucet.errors import ValidationError
from token_faucet.settings import FaucetSettings

from conftest import TOKEN


class TestAmounts:
    def test_parse_digit_string(self):
        assert parse_amount("10000000000000000000") == 10 * TOKEN
        assert parse_amount(" +42 ") == 42

    @pytest.mark.parametrize("raw", ["1e18", "1.5", "-3", "", True, 1.0])
    def test_parse_rejects_non_integers(self, raw):
        with pytest.raises(ValidationError):
            parse_amount(raw)

    def test_format_rounds_down(self):
        assert format_amount(10 * TOKEN) == "10"
        assert format_amount(1000 * TOKEN) == "1,000"
        assert format_amount(1_999_999_999_999_999_999) == "1.99"
        assert format_amount(1_500_000, decimals=6) == "1.5"

    def test_format_gas_price(self):
        assert format_gas_price(1_500_000_000) == "1.50 Gwei"


class TestSettings:
    def test_gas_mult_floor(self):
        assert FaucetSettings(gas_mult=1.05).gas_mult == 1.2
        assert FaucetSettings(gas_mult=1.5).gas_mult == 1.5

    def test_reconcile_queue_defaults_under_data_dir(self):
        s = FaucetSettings(data_dir="var/faucet")
        assert s.reconcile_queue_file == Path("var/faucet") / "reconcile_queue.jsonl"

    def test_missing_fields_lists_placeholders(self):
        missing = FaucetSettings(recaptcha_site_key="real").missing_fields()

        assert "blockchain.faucetPrivateKey" in missing
        assert "recaptcha.siteKey" not in missing

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAIM_AMOUNT", "25000000000000000000")
        monkeypatch.setenv("COOLDOWN_HOURS", "2")
        monkeypatch.setenv("MAX_CLAIMS_PER_IP", "3")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("TRUST_PROXY", "true")
        monkeypatch.setenv("FAUCET_DATA_DIR", str(tmp_path))

        s = FaucetSettings.from_env(env_file=str(tmp_path / "absent.env"))
        policy = s.policy()

        assert policy.claim_amount == 25 * TOKEN
        assert policy.cooldown == timedelta(hours=2)
        assert policy.max_claims_per_ip == 3
        assert s.cors_origins == ["http://a.test", "http://b.test"]
        assert s.trust_proxy is True
        assert s.reconcile_queue_file == tmp_path / "reconcile_queue.jsonl"

    def test_from_env_rejects_float_claim_amount(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAIM_AMOUNT", "1e19")
        with pytest.raises(ValidationError):
            FaucetSettings.from_env(env_file=str(tmp_path / "absent.env"))
