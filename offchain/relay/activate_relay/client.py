"""
Relay client: deploys relay contracts, invokes sendDataToTarget and decodes
the resulting DataSentToTarget events.

Every write goes through the same path on any backend:
estimate gas (preflight) -> allocate nonce -> sign locally -> submit raw
transaction -> poll for the receipt -> map the outcome.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Optional, Sequence, Union

import structlog
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from .abi import decode_address, encode_get_owner, encode_send_data
from .artifacts import ArtifactStore
from .chain import BlockIdentifier, ChainBackend, Receipt
from .errors import (
    ConfirmationTimeout,
    ContractError,
    DeploymentReverted,
    EventNotFound,
    ExecutionReverted,
    RelayError,
    RelayRejected,
    TransactionRejected,
    decode_revert,
)
from .events import DATA_SENT_TOPIC, decode_all
from .models import (
    DataSentEvent,
    DeploymentResult,
    InvokeOutcome,
    InvokeRequest,
    RelayVariant,
)

if TYPE_CHECKING:
    from .descriptor import DeploymentDescriptor

logger = structlog.get_logger()

RelayRef = Union[str, DeploymentResult, "DeploymentDescriptor"]

DEFAULT_GAS_MULTIPLIER = 1.2
DEFAULT_POLL_INTERVAL = 1.0


class NonceManager:
    """
    Hands out sequential nonces per sender.

    Seeded from the backend's pending transaction count the first time an
    address is seen, then counted locally so that concurrent submissions
    from one account get distinct nonces.

    reserve() holds the sender's lock until the transaction is accepted, so
    a nonce the node refuses is handed out again before any higher one is
    submitted.
    """

    def __init__(self, backend: ChainBackend):
        self.backend = backend
        self._lock = threading.Lock()
        self._next: dict[str, int] = {}
        self._sender_locks: dict[str, threading.Lock] = {}

    @contextmanager
    def reserve(self, address: str) -> Iterator[int]:
        """
        Yield the next nonce for address and consume it only if the body
        completes. A TransactionRejected in the body re-reads the chain
        count on the next reservation.
        """
        with self._lock:
            sender_lock = self._sender_locks.setdefault(address, threading.Lock())

        with sender_lock:
            with self._lock:
                if address not in self._next:
                    self._next[address] = self.backend.get_transaction_count(address)
                nonce = self._next[address]
            try:
                yield nonce
            except TransactionRejected:
                self.reset(address)
                raise
            with self._lock:
                self._next[address] = nonce + 1

    def reset(self, address: str) -> None:
        """Forget the local counter; the next allocation re-reads the chain."""
        with self._lock:
            self._next.pop(address, None)


def _relay_address(relay: RelayRef) -> str:
    if isinstance(relay, str):
        return to_checksum_address(relay)
    return to_checksum_address(relay.contract_address)


def _relay_variant(relay: RelayRef) -> Optional[RelayVariant]:
    if isinstance(relay, DeploymentResult):
        return relay.variant
    contract_name = getattr(relay, "contract_name", None)
    if contract_name is None:
        return None
    try:
        return RelayVariant.from_contract_name(contract_name)
    except ValueError:
        return None


class RelayClient:
    """Drives one chain backend on behalf of one or more signing accounts."""

    def __init__(
        self,
        backend: ChainBackend,
        account: Optional[LocalAccount] = None,
        artifacts: Optional[ArtifactStore] = None,
        gas_multiplier: float = DEFAULT_GAS_MULTIPLIER,
        gas_price_wei: Optional[int] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.backend = backend
        self.account = account
        self.artifacts = artifacts or ArtifactStore()
        self.gas_multiplier = gas_multiplier
        self.gas_price_wei = gas_price_wei
        self.poll_interval = poll_interval
        self.nonces = NonceManager(backend)
        self._chain_id: Optional[int] = None

        logger.info(
            "relay_client_initialized",
            sender=account.address if account else None,
        )

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = self.backend.get_chain_id()
        return self._chain_id

    def _signer(self, caller: Optional[LocalAccount]) -> LocalAccount:
        signer = caller or self.account
        if signer is None:
            raise ValueError("No signing account configured (set PRIVATE_KEY)")
        return signer

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        """Poll until the transaction is mined. Without a timeout, waits indefinitely."""
        started = time.monotonic()
        while True:
            receipt = self.backend.get_receipt(tx_hash)
            if receipt is not None and receipt.block_number is not None:
                return receipt
            if timeout is not None and time.monotonic() - started >= timeout:
                raise ConfirmationTimeout(tx_hash, timeout)
            time.sleep(self.poll_interval)

    def transact(
        self,
        signer: LocalAccount,
        data: bytes,
        to: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Receipt:
        """
        Sign and submit one transaction, then wait for its receipt.

        Raises ExecutionReverted if the preflight estimate reverts and
        TransactionRejected if the node refuses the raw transaction. A
        transaction that reverts after inclusion is returned with status 0.
        """
        call: dict[str, Any] = {"from": signer.address, "data": "0x" + data.hex(), "value": 0}
        if to is not None:
            call["to"] = to

        gas = int(self.backend.estimate_gas(call) * self.gas_multiplier)
        gas_price = self.gas_price_wei or self.backend.get_gas_price()
        chain_id = self.chain_id

        with self.nonces.reserve(signer.address) as nonce:
            tx: dict[str, Any] = {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas,
                "value": 0,
                "data": call["data"],
                "chainId": chain_id,
            }
            if to is not None:
                tx["to"] = to

            signed = signer.sign_transaction(tx)
            tx_hash = self.backend.send_raw_transaction(signed.raw_transaction)

        logger.info(
            "transaction_sent",
            tx_hash=tx_hash,
            sender=signer.address,
            to=to,
            nonce=nonce,
            gas=gas,
        )
        return self.wait_for_receipt(tx_hash, timeout)

    def _replay_revert(self, sender: str, to: str, data: bytes, block: BlockIdentifier) -> Optional[ContractError]:
        """Re-run a reverted call to recover its revert reason."""
        try:
            self.backend.call({"from": sender, "to": to, "data": "0x" + data.hex()}, block)
        except ExecutionReverted as e:
            return decode_revert(e.data)
        except TransactionRejected as e:
            logger.warning("revert_replay_failed", relay=to, error=str(e))
        return None

    # ------------------------------------------------------------------
    # Relay operations
    # ------------------------------------------------------------------

    def deploy(
        self,
        variant: RelayVariant,
        deployer: Optional[LocalAccount] = None,
        timeout: Optional[float] = None,
    ) -> DeploymentResult:
        """Deploy a relay contract and wait for the construction receipt."""
        signer = self._signer(deployer)
        bytecode = self.artifacts.bytecode(variant.contract_name)

        logger.info("deploy_started", contract=variant.contract_name, deployer=signer.address)

        try:
            receipt = self.transact(signer, bytecode, timeout=timeout)
        except (ExecutionReverted, TransactionRejected) as e:
            logger.error("deploy_failed", contract=variant.contract_name, error=str(e))
            raise DeploymentReverted(str(e)) from e

        if not receipt.succeeded:
            logger.error("deploy_reverted", tx_hash=receipt.transaction_hash)
            raise DeploymentReverted("construction transaction reverted", receipt.transaction_hash)
        if receipt.contract_address is None:
            raise DeploymentReverted("receipt carries no contract address", receipt.transaction_hash)

        logger.info(
            "deploy_confirmed",
            contract=variant.contract_name,
            address=receipt.contract_address,
            tx_hash=receipt.transaction_hash,
            block=receipt.block_number,
            gas_used=receipt.gas_used,
        )

        return DeploymentResult(
            variant=variant,
            contract_address=receipt.contract_address,
            deployer_address=signer.address,
            chain_id=self.chain_id,
            receipt=receipt,
        )

    def invoke(
        self,
        relay: RelayRef,
        target: str,
        owner_param: Union[bytes, str],
        action_ref: Union[bytes, str],
        topic: str,
        caller: Optional[LocalAccount] = None,
        timeout: Optional[float] = None,
    ) -> DataSentEvent:
        """Call sendDataToTarget and return the decoded event."""
        signer = self._signer(caller)
        address = _relay_address(relay)
        data = encode_send_data(target, owner_param, action_ref, topic)

        try:
            receipt = self.transact(signer, data, to=address, timeout=timeout)
        except ExecutionReverted as e:
            cause = decode_revert(e.data)
            logger.warning("invoke_rejected", relay=address, caller=signer.address, error=str(cause or e))
            raise RelayRejected(str(cause or e), cause=cause) from e
        except TransactionRejected as e:
            logger.warning("invoke_rejected", relay=address, caller=signer.address, error=str(e))
            raise RelayRejected(str(e)) from e

        if not receipt.succeeded:
            cause = self._replay_revert(signer.address, address, data, receipt.block_number or "latest")
            message = str(cause) if cause else "transaction reverted"
            logger.warning("invoke_reverted", relay=address, tx_hash=receipt.transaction_hash, error=message)
            raise RelayRejected(message, cause=cause, tx_hash=receipt.transaction_hash)

        events = decode_all(receipt.logs, address)
        if not events:
            raise EventNotFound(receipt.transaction_hash)

        event = events[0]
        logger.info(
            "data_sent",
            relay=address,
            tx_hash=receipt.transaction_hash,
            sender=event.sender,
            target=event.target,
            topic=event.topic,
        )
        return event

    def invoke_many(
        self,
        relay: RelayRef,
        requests: Sequence[InvokeRequest],
        max_workers: int = 4,
        timeout: Optional[float] = None,
    ) -> list[InvokeOutcome]:
        """
        Issue several invocations concurrently.

        Each call is confirmed on its own; one failure never fails the
        batch. Outcomes are returned in request order.
        """

        def run(request: InvokeRequest) -> InvokeOutcome:
            try:
                event = self.invoke(
                    relay,
                    request.target,
                    request.owner_param,
                    request.action_ref,
                    request.topic,
                    caller=request.caller,
                    timeout=timeout,
                )
            except (RelayError, ValueError) as e:
                return InvokeOutcome(request=request, error=e)
            return InvokeOutcome(request=request, event=event)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(run, requests))

        logger.info(
            "invoke_batch_finished",
            total=len(outcomes),
            failed=sum(1 for o in outcomes if not o.success),
        )
        return outcomes

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_owner(self, relay: RelayRef) -> str:
        """Owner of an admin relay. Public relays have none."""
        address = _relay_address(relay)
        if _relay_variant(relay) is RelayVariant.PUBLIC:
            raise ValueError(f"Relay {address} is a public relay and has no owner")

        try:
            output = self.backend.call({"to": address, "data": "0x" + encode_get_owner().hex()})
        except ExecutionReverted as e:
            raise ValueError(f"Relay {address} has no owner accessor") from e
        if len(output) < 32:
            raise ValueError(f"No relay contract at {address}")
        return decode_address(output)

    def get_events(
        self,
        relay: RelayRef,
        from_block: BlockIdentifier = 0,
        to_block: BlockIdentifier = "latest",
    ) -> list[DataSentEvent]:
        """Confirmed DataSentToTarget events of one relay, in log order."""
        address = _relay_address(relay)
        logs = self.backend.get_logs(address, [DATA_SENT_TOPIC], from_block, to_block)
        return decode_all(logs, address)

    def get_balance(self, address: str) -> int:
        return self.backend.get_balance(address)
