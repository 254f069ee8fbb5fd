"""
Unit tests for the claim orchestrator

Tests cover:
1. Successful claim flow
2. Cooldown scenario across address casing
3. Concurrent claims (same address, shared balance)
4. IP limit across many addresses
5. Bot check, disbursement and recording failures
6. Aggregate invariant after many claims
7. Limits while the ledger refuses writes
"""

import json
import threading
from datetime import timedelta

import pytest

from token_faucet.errors import StorageError, ValidationError
from token_faucet.ledger_store import LedgerStore
from token_faucet.models import ClaimRecord, ClaimStatus, IneligibleReason
from token_faucet.orchestrator import ClaimOrchestrator

from conftest import ADDR_A, ADDR_B, ADDR_C, T0, TOKEN, FakeGateway, FakeVerifier


class TestClaimFlow:
    def test_successful_claim(self, orchestrator, gateway, store):
        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", "token")

        assert outcome.status == ClaimStatus.COMPLETED
        assert outcome.success
        assert outcome.amount == 10 * TOKEN
        assert outcome.tx_hash == gateway.sent[0][2]
        assert outcome.next_eligible_at == T0 + timedelta(hours=1)

        last = store.most_recent_claim_for(ADDR_A)
        assert last.tx_hash == outcome.tx_hash
        assert last.ip == "10.0.0.1"
        assert last.timestamp == T0

    def test_cooldown_scenario(self, orchestrator, clock, gateway):
        """Claim at T0; same address in another casing is refused at +30m and accepted at +61m."""
        assert orchestrator.claim(ADDR_A, "10.0.0.1", "t").success

        clock.advance(minutes=30)
        outcome = orchestrator.claim(ADDR_A.lower(), "10.0.0.2", "t")
        assert outcome.status == ClaimStatus.REJECTED
        assert outcome.reason == IneligibleReason.COOLDOWN_ACTIVE.value
        assert outcome.next_eligible_at == T0 + timedelta(hours=1)
        assert outcome.http_status == 400

        clock.advance(minutes=31)
        assert orchestrator.claim(ADDR_A, "10.0.0.1", "t").success
        assert len(gateway.sent) == 2

    def test_check_eligibility_is_advisory_and_stable(self, orchestrator, store):
        first = orchestrator.check_eligibility(ADDR_A, "10.0.0.1")
        second = orchestrator.check_eligibility(ADDR_A, "10.0.0.1")

        assert first.eligible
        assert first == second
        assert store.stats().total_claims == 0

    def test_malformed_address_raises_before_anything(self, orchestrator, gateway, verifier, store):
        with pytest.raises(ValidationError):
            orchestrator.claim("0x123", "10.0.0.1", "t")

        assert verifier.calls == []
        assert gateway.sent == []
        assert store.stats().total_claims == 0
        assert not orchestrator._claim_lock.locked()

    def test_check_eligibility_malformed_address(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.check_eligibility("0x123", "10.0.0.1")


class TestConcurrency:
    def _race(self, fn, args_list):
        barrier = threading.Barrier(len(args_list))
        results = [None] * len(args_list)

        def run(i, args):
            barrier.wait()
            results[i] = fn(*args)

        threads = [threading.Thread(target=run, args=(i, a)) for i, a in enumerate(args_list)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_same_address_at_most_one_succeeds(self, store, verifier, policy, clock, tmp_path):
        gateway = FakeGateway(send_delay=0.05)
        orch = ClaimOrchestrator(store, gateway, verifier, policy, tmp_path / "q.jsonl", clock=clock)

        results = self._race(orch.claim, [(ADDR_A, f"10.0.0.{i}", "t") for i in range(6)])

        assert sum(1 for r in results if r.success) == 1
        rejected = [r for r in results if not r.success]
        assert all(r.reason == IneligibleReason.COOLDOWN_ACTIVE.value for r in rejected)
        assert len(gateway.sent) == 1

    def test_balance_for_one_claim_pays_once(self, store, verifier, policy, clock, tmp_path):
        gateway = FakeGateway(balance=policy.claim_amount, send_delay=0.05)
        orch = ClaimOrchestrator(store, gateway, verifier, policy, tmp_path / "q.jsonl", clock=clock)

        results = self._race(orch.claim, [(ADDR_B, "1.1.1.1", "t"), (ADDR_C, "2.2.2.2", "t")])

        assert sum(1 for r in results if r.success) == 1
        loser = next(r for r in results if not r.success)
        assert loser.reason == IneligibleReason.INSUFFICIENT_FAUCET_BALANCE.value
        assert gateway.balance == 0


class TestIpLimit:
    def test_requests_after_limit_are_rate_limited(self, orchestrator, policy, gateway):
        addresses = ["0x%040x" % (i + 1) for i in range(policy.max_claims_per_ip + 3)]
        outcomes = [orchestrator.claim(a, "5.5.5.5", "t") for a in addresses]

        assert all(o.success for o in outcomes[: policy.max_claims_per_ip])
        for o in outcomes[policy.max_claims_per_ip:]:
            assert o.status == ClaimStatus.REJECTED
            assert o.reason == IneligibleReason.IP_RATE_LIMITED.value
        assert len(gateway.sent) == policy.max_claims_per_ip


class TestFailures:
    def test_bot_check_failed(self, store, gateway, policy, clock, tmp_path):
        orch = ClaimOrchestrator(store, gateway, FakeVerifier(result=False), policy, tmp_path / "q", clock=clock)
        outcome = orch.claim(ADDR_A, "10.0.0.1", "bad")

        assert outcome.status == ClaimStatus.REJECTED
        assert outcome.reason == "BotCheckFailed"
        assert gateway.sent == []
        assert store.stats().total_claims == 0

    def test_missing_bot_token(self, orchestrator, gateway):
        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", None)
        assert outcome.reason == "BotCheckFailed"
        assert gateway.sent == []

    def test_verifier_unreachable(self, store, gateway, policy, clock, tmp_path):
        orch = ClaimOrchestrator(store, gateway, FakeVerifier(down=True), policy, tmp_path / "q", clock=clock)
        outcome = orch.claim(ADDR_A, "10.0.0.1", "t")

        assert outcome.status == ClaimStatus.UPSTREAM_ERROR
        assert outcome.reason == "NetworkError"
        assert outcome.http_status == 500

    def test_balance_lookup_down(self, orchestrator, gateway, store):
        gateway.network_down = True
        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", "t")

        assert outcome.status == ClaimStatus.UPSTREAM_ERROR
        assert store.stats().total_claims == 0

    def test_disbursement_failure_records_nothing(self, orchestrator, gateway, store):
        gateway.fail_reason = "nonce too low"
        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", "t")

        assert outcome.status == ClaimStatus.DISBURSEMENT_FAILED
        assert "nonce too low" in outcome.message
        assert outcome.http_status == 500
        assert store.stats().total_claims == 0
        # nothing recorded, so the address may try again immediately
        gateway.fail_reason = None
        assert orchestrator.claim(ADDR_A, "10.0.0.1", "t").success

    def test_recording_failure_is_flagged(self, orchestrator, gateway, store, monkeypatch, tmp_path):
        def boom(path, data):
            raise OSError("read-only file system")

        monkeypatch.setattr("token_faucet.ledger_store._write_json_atomic", boom)
        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", "t")

        assert outcome.status == ClaimStatus.RECORDING_FAILED
        assert outcome.reason == "RecordingFailed"
        assert outcome.tx_hash == gateway.sent[0][2]
        assert outcome.http_status == 500

        lines = (tmp_path / "data" / "reconcile_queue.jsonl").read_text().splitlines()
        entry = json.loads(lines[0])
        assert entry["txHash"] == outcome.tx_hash
        assert entry["address"] == ADDR_A.lower()
        assert entry["amount"] == str(10 * TOKEN)


class TestAggregate:
    def test_totals_after_many_claims(self, orchestrator, clock, store, policy):
        n = 7
        for i in range(n):
            assert orchestrator.claim("0x%040x" % (i + 100), f"10.1.0.{i}", "t").success
            clock.advance(minutes=1)

        stats = orchestrator.stats()
        assert stats["total_claims"] == n
        assert stats["total_amount_distributed"] == n * policy.claim_amount
        assert len(stats["recent_claims"]) == 5
        assert stats["cooldown_hours"] == 1.0


class TestUnrecordedTransfers:
    """Transfers sent while the ledger refuses writes still count against limits."""

    @staticmethod
    def _break_storage(monkeypatch, store):
        def refuse(record):
            raise StorageError("failed to persist claim", detail="read-only file system")

        monkeypatch.setattr(store, "append_claim", refuse)

    def test_same_address_paid_once(self, orchestrator, gateway, store, clock, monkeypatch):
        self._break_storage(monkeypatch, store)

        outcomes = []
        for _ in range(3):
            outcomes.append(orchestrator.claim(ADDR_A, "10.0.0.1", "t"))
            clock.advance(minutes=1)

        assert outcomes[0].status == ClaimStatus.RECORDING_FAILED
        for o in outcomes[1:]:
            assert o.status == ClaimStatus.REJECTED
            assert o.reason == IneligibleReason.COOLDOWN_ACTIVE.value
        assert len(gateway.sent) == 1
        assert not orchestrator.check_eligibility(ADDR_A, "10.0.0.1").eligible

    def test_ip_limit_counts_unrecorded(self, orchestrator, gateway, store, policy, monkeypatch):
        self._break_storage(monkeypatch, store)

        addresses = ["0x%040x" % (i + 1) for i in range(policy.max_claims_per_ip + 1)]
        outcomes = [orchestrator.claim(a, "5.5.5.5", "t") for a in addresses]

        assert all(o.status == ClaimStatus.RECORDING_FAILED for o in outcomes[:-1])
        assert outcomes[-1].reason == IneligibleReason.IP_RATE_LIMITED.value
        assert len(gateway.sent) == policy.max_claims_per_ip

    def test_reconciled_claim_still_blocks(self, orchestrator, gateway, store, clock, monkeypatch):
        """Once the tool records the transfer, the ledger copy takes over from the in-memory one."""
        self._break_storage(monkeypatch, store)
        first = orchestrator.claim(ADDR_A, "10.0.0.1", "t")
        monkeypatch.undo()

        other = LedgerStore(store.data_dir, clock=clock)
        other.append_claim(
            ClaimRecord(address=ADDR_A, ip="10.0.0.1", amount=first.amount, tx_hash=first.tx_hash, timestamp=T0)
        )
        clock.advance(minutes=10)

        outcome = orchestrator.claim(ADDR_A, "10.0.0.1", "t")
        assert outcome.reason == IneligibleReason.COOLDOWN_ACTIVE.value
        assert orchestrator._unrecorded == ()
        assert store.find_by_tx_hash(first.tx_hash) is not None
        assert len(gateway.sent) == 1
