"""
Tests for RelayClient against the simulated chain.
"""

import dataclasses
from unittest.mock import MagicMock

import pytest
from eth_account import Account

from activate_relay.artifacts import ArtifactStore
from activate_relay.client import NonceManager, RelayClient
from activate_relay.errors import (
    ArtifactNotFound,
    ConfirmationTimeout,
    DeploymentReverted,
    EventNotFound,
    InvalidTarget,
    RelayRejected,
    TransactionRejected,
    Unauthorized,
)
from activate_relay.models import ZERO_ADDRESS, InvokeRequest, RelayVariant
from activate_relay.simulator import SimulatedChain, simulated_artifacts


class LoglessChain(SimulatedChain):
    """Drops logs from receipts, as a misbehaving node might."""

    def get_receipt(self, tx_hash):
        receipt = super().get_receipt(tx_hash)
        if receipt is None or receipt.contract_address:
            return receipt
        return dataclasses.replace(receipt, logs=())


class StuckChain(SimulatedChain):
    """Accepts transactions but never reports a receipt."""

    def get_receipt(self, tx_hash):
        return None


class NoPreflightChain(SimulatedChain):
    """Fixed gas estimate, so reverting calls reach the chain."""

    def estimate_gas(self, tx):
        return 200_000


class RejectOnceChain(SimulatedChain):
    """Refuses the next raw transaction once armed, as a busy node might."""

    reject_next = False

    def send_raw_transaction(self, raw_tx):
        if self.reject_next:
            self.reject_next = False
            raise TransactionRejected("txpool is full")
        return super().send_raw_transaction(raw_tx)


class UnreachableEstimateChain(SimulatedChain):
    """Gas estimation fails at the RPC layer."""

    def estimate_gas(self, tx):
        raise TransactionRejected("header not found")


class TestScenario:
    """Admin relay deployed by A; B is the target; C is a stranger."""

    def test_admin_scenario(self, client, accounts):
        a, b, c = accounts
        relay = client.deploy(RelayVariant.ADMIN, deployer=a)

        event = client.invoke(relay, b.address, "0x01", "0x02", "x", caller=a)
        assert event.sender == a.address
        assert event.target == b.address
        assert event.owner_param == b"\x00" * 31 + b"\x01"
        assert event.action_ref == b"\x00" * 31 + b"\x02"
        assert event.topic == "x"
        assert event.contract_address == relay.contract_address

        with pytest.raises(RelayRejected) as exc:
            client.invoke(relay, b.address, "0x01", "0x02", "x", caller=c)
        assert isinstance(exc.value.cause, Unauthorized)
        assert exc.value.cause.account == c.address

        with pytest.raises(RelayRejected) as exc:
            client.invoke(relay, ZERO_ADDRESS, "0x01", "0x02", "x", caller=a)
        assert isinstance(exc.value.cause, InvalidTarget)

    def test_zero_target_rejected_for_any_caller_and_variant(self, client, accounts):
        admin = client.deploy(RelayVariant.ADMIN)
        public = client.deploy(RelayVariant.PUBLIC)
        for relay in (admin, public):
            for caller in accounts:
                with pytest.raises(RelayRejected) as exc:
                    client.invoke(relay, ZERO_ADDRESS, b"", b"", "", caller=caller)
                assert isinstance(exc.value.cause, InvalidTarget)

        assert client.get_events(admin) == []
        assert client.get_events(public) == []

    def test_public_relay_records_actual_caller(self, client, public_relay, accounts):
        event = client.invoke(public_relay, accounts[0].address, "A", "B", "t", caller=accounts[2])
        assert event.sender == accounts[2].address

    def test_sequential_invokes_produce_independent_events(self, client, admin_relay, accounts):
        first = client.invoke(admin_relay, accounts[1].address, "0x01", "0x02", "one")
        second = client.invoke(admin_relay, accounts[2].address, "0x03", "0x04", "two")

        assert first.transaction_hash != second.transaction_hash
        assert first.block_number < second.block_number

        events = client.get_events(admin_relay)
        assert [e.topic for e in events] == ["one", "two"]
        assert events[1].target == accounts[2].address


class TestDeploy:
    """Construction transactions."""

    def test_deploy_result(self, client, chain, accounts):
        result = client.deploy(RelayVariant.PUBLIC)

        assert result.variant is RelayVariant.PUBLIC
        assert result.contract_name == "PublicRelay"
        assert result.deployer_address == accounts[0].address
        assert result.chain_id == chain.chain_id
        assert result.receipt.succeeded
        assert result.transaction_hash == result.receipt.transaction_hash
        assert chain.get_contract(result.contract_address) is not None

    def test_unfunded_deployer(self, client):
        with pytest.raises(DeploymentReverted, match="insufficient funds"):
            client.deploy(RelayVariant.ADMIN, deployer=Account.create())

    def test_missing_bytecode(self, chain, accounts):
        client = RelayClient(chain, account=accounts[0], artifacts=ArtifactStore(), poll_interval=0.01)
        with pytest.raises(ArtifactNotFound):
            client.deploy(RelayVariant.ADMIN)

    def test_no_account(self, chain):
        client = RelayClient(chain, artifacts=simulated_artifacts(), poll_interval=0.01)
        with pytest.raises(ValueError, match="signing account"):
            client.deploy(RelayVariant.ADMIN)

    def test_estimate_failure_is_deployment_failure(self, accounts):
        client = RelayClient(
            UnreachableEstimateChain(), account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01
        )
        with pytest.raises(DeploymentReverted, match="header not found"):
            client.deploy(RelayVariant.ADMIN)

    def test_confirmation_timeout(self, accounts):
        client = RelayClient(StuckChain(), account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01)
        with pytest.raises(ConfirmationTimeout):
            client.deploy(RelayVariant.ADMIN, timeout=0.05)


class TestInvokeFailures:
    """Host rejections and post-inclusion failures."""

    def test_reverted_receipt_recovers_cause(self, accounts):
        chain = NoPreflightChain()
        client = RelayClient(chain, account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01)
        relay = client.deploy(RelayVariant.ADMIN)

        with pytest.raises(RelayRejected) as exc:
            client.invoke(relay, accounts[1].address, b"", b"", "", caller=accounts[1])

        assert isinstance(exc.value.cause, Unauthorized)
        assert exc.value.tx_hash is not None
        assert chain.get_receipt(exc.value.tx_hash).status == 0

    def test_host_rejection_has_no_contract_cause(self, client, public_relay):
        with pytest.raises(RelayRejected, match="insufficient funds") as exc:
            client.invoke(public_relay, public_relay.deployer_address, b"", b"", "", caller=Account.create())
        assert exc.value.cause is None

    def test_event_not_found(self, accounts):
        client = RelayClient(LoglessChain(), account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01)
        relay = client.deploy(RelayVariant.PUBLIC)

        with pytest.raises(EventNotFound) as exc:
            client.invoke(relay, accounts[1].address, b"", b"", "")
        assert exc.value.tx_hash.startswith("0x")


class TestInvokeMany:
    """Concurrent invocations."""

    def test_partial_failure_in_request_order(self, client, admin_relay, accounts):
        a, b, c = accounts
        requests = [
            InvokeRequest(b.address, "0x01", "0x02", "ok-1"),
            InvokeRequest(ZERO_ADDRESS, "0x01", "0x02", "zero"),
            InvokeRequest(b.address, "0x01", "0x02", "stranger", caller=c),
            InvokeRequest(c.address, "0x03", "0x04", "ok-2", caller=a),
        ]
        outcomes = client.invoke_many(admin_relay, requests)

        assert [o.request for o in outcomes] == requests
        assert [o.success for o in outcomes] == [True, False, False, True]
        assert outcomes[0].event.topic == "ok-1"
        assert isinstance(outcomes[1].error.cause, InvalidTarget)
        assert isinstance(outcomes[2].error.cause, Unauthorized)
        assert outcomes[3].event.target == c.address

    def test_same_sender_gets_distinct_nonces(self, client, chain, public_relay, accounts):
        sender = accounts[0].address
        before = chain.get_transaction_count(sender)
        requests = [InvokeRequest(accounts[1].address, b"", b"", f"msg-{i}") for i in range(6)]

        outcomes = client.invoke_many(public_relay, requests, max_workers=6)

        assert all(o.success for o in outcomes)
        assert chain.get_transaction_count(sender) == before + 6
        assert sorted(e.topic for e in client.get_events(public_relay)) == sorted(r.topic for r in requests)

    def test_rejected_submission_does_not_strand_later_nonces(self, accounts):
        chain = RejectOnceChain()
        client = RelayClient(chain, account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01)
        relay = client.deploy(RelayVariant.PUBLIC)
        sender = accounts[0].address
        before = chain.get_transaction_count(sender)

        chain.reject_next = True
        requests = [InvokeRequest(accounts[1].address, b"", b"", f"msg-{i}") for i in range(3)]
        outcomes = client.invoke_many(relay, requests, max_workers=3, timeout=5.0)

        failed = [o for o in outcomes if not o.success]
        assert len(failed) == 1
        assert isinstance(failed[0].error, RelayRejected)
        assert failed[0].error.cause is None
        assert chain.get_transaction_count(sender) == before + 2
        assert len(client.get_events(relay)) == 2

    def test_invalid_argument_is_reported_per_call(self, client, public_relay, accounts):
        requests = [
            InvokeRequest(accounts[1].address, "x" * 40, b"", "too long"),
            InvokeRequest(accounts[1].address, b"", b"", "fine"),
        ]
        outcomes = client.invoke_many(public_relay, requests)
        assert isinstance(outcomes[0].error, ValueError)
        assert outcomes[1].success


class TestReads:
    """Owner, events and balances."""

    def test_get_owner(self, client, admin_relay, accounts):
        assert client.get_owner(admin_relay) == accounts[0].address
        assert client.get_owner(admin_relay.contract_address) == accounts[0].address

    def test_public_relay_has_no_owner(self, client, public_relay):
        with pytest.raises(ValueError):
            client.get_owner(public_relay)
        with pytest.raises(ValueError):
            client.get_owner(public_relay.contract_address)

    def test_get_balance(self, client, accounts):
        before = client.get_balance(accounts[0].address)
        client.deploy(RelayVariant.PUBLIC)
        assert client.get_balance(accounts[0].address) < before


class TestNonceManager:
    """Local nonce allocation."""

    def test_seeds_from_backend_then_counts_locally(self):
        backend = MagicMock()
        backend.get_transaction_count.return_value = 5
        nonces = NonceManager(backend)

        reserved = []
        for _ in range(3):
            with nonces.reserve("0xabc") as nonce:
                reserved.append(nonce)

        assert reserved == [5, 6, 7]
        backend.get_transaction_count.assert_called_once_with("0xabc")

    def test_rejected_nonce_is_reused(self):
        backend = MagicMock()
        backend.get_transaction_count.side_effect = [3, 3]
        nonces = NonceManager(backend)

        with pytest.raises(TransactionRejected):
            with nonces.reserve("0xabc") as nonce:
                assert nonce == 3
                raise TransactionRejected("nonce too low")
        with nonces.reserve("0xabc") as nonce:
            assert nonce == 3
        with nonces.reserve("0xabc") as nonce:
            assert nonce == 4

    def test_other_failures_do_not_consume_nonce(self):
        backend = MagicMock()
        backend.get_transaction_count.return_value = 0
        nonces = NonceManager(backend)

        with pytest.raises(ValueError):
            with nonces.reserve("0xabc"):
                raise ValueError("signing failed")
        with nonces.reserve("0xabc") as nonce:
            assert nonce == 0
        backend.get_transaction_count.assert_called_once_with("0xabc")

    def test_reset_rereads(self):
        backend = MagicMock()
        backend.get_transaction_count.side_effect = [0, 4]
        nonces = NonceManager(backend)

        with nonces.reserve("0xabc") as nonce:
            assert nonce == 0
        nonces.reset("0xabc")
        with nonces.reserve("0xabc") as nonce:
            assert nonce == 4
