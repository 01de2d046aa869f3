"""
In-process chain for development and tests.

SimulatedChain implements ChainBackend without a node: it accepts real
EIP-155 signed legacy transactions, recovers the sender from the signature,
and executes relay contracts with the Python state machine in contract.py.

Mining model (like an auto-mining dev node):
- each executable transaction is mined immediately into its own block
- a transaction whose nonce is ahead of the sender's is held until the gap
  closes, then mined in nonce order
- a reverted transaction is still mined (status 0) and pays for its gas

Gas figures are approximations of EVM costs, good enough for balance
accounting; they are not meant to match a real node.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

import rlp
import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import big_endian_to_int, keccak, to_checksum_address
from hexbytes import HexBytes

from .artifacts import Artifact, ArtifactStore
from .chain import BlockIdentifier, LogEntry, Receipt
from .contract import RelayContract, create_relay
from .errors import ContractError, ExecutionReverted, TransactionRejected
from .events import encode_data_sent
from .models import ZERO_ADDRESS, DataSentEvent, RelayVariant

logger = structlog.get_logger()

SIMULATED_CHAIN_ID = 1337
DEFAULT_BALANCE_WEI = 10_000 * 10**18
DEFAULT_GAS_PRICE_WEI = 1_000_000_000  # 1 gwei

TX_BASE_GAS = 21_000
TX_CREATE_GAS = 32_000
TX_DATA_ZERO_GAS = 4
TX_DATA_NONZERO_GAS = 16
CALL_BASE_GAS = 2_600
CREATE_EXECUTION_GAS = 150_000
LOG_BASE_GAS = 375
LOG_TOPIC_GAS = 375
LOG_DATA_GAS = 8


def dev_accounts(count: int = 4) -> list[LocalAccount]:
    """Deterministic, publicly known development keys. Never fund them on a real chain."""
    return [Account.from_key(keccak(text=f"activate-relay/dev/{i}")) for i in range(count)]


def simulated_creation_code(variant: RelayVariant) -> bytes:
    """Creation code the simulated chain maps to a relay variant."""
    return b"\xfe" + keccak(text=f"activate-relay/simulated/{variant.contract_name}")


def simulated_artifacts(base: Optional[ArtifactStore] = None) -> ArtifactStore:
    """Artifact store whose relay bytecode deploys on SimulatedChain."""
    store = base or ArtifactStore()
    for variant in RelayVariant:
        store.add(
            Artifact(
                contract_name=variant.contract_name,
                abi=store.abi(variant.contract_name),
                bytecode=simulated_creation_code(variant),
            )
        )
    return store


def contract_address_for(sender: str, nonce: int) -> str:
    """CREATE address: keccak(rlp([sender, nonce]))[12:]."""
    encoded = rlp.encode([bytes.fromhex(sender[2:]), nonce])
    return to_checksum_address("0x" + keccak(encoded)[12:].hex())


def intrinsic_gas(data: bytes, create: bool) -> int:
    gas = TX_BASE_GAS + (TX_CREATE_GAS if create else 0)
    for byte in data:
        gas += TX_DATA_ZERO_GAS if byte == 0 else TX_DATA_NONZERO_GAS
    return gas


def _log_gas(topics: Sequence[bytes], data: bytes) -> int:
    return LOG_BASE_GAS + LOG_TOPIC_GAS * len(topics) + LOG_DATA_GAS * len(data)


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    return bytes(HexBytes(value))


@dataclass(frozen=True)
class SignedTx:
    """A decoded legacy transaction with its recovered sender."""

    hash: str
    sender: str
    nonce: int
    gas_price: int
    gas: int
    to: Optional[str]
    value: int
    data: bytes

    @property
    def max_cost(self) -> int:
        return self.gas * self.gas_price + self.value


class SimulatedChain:
    """ChainBackend that executes relay contracts in-process."""

    def __init__(
        self,
        chain_id: int = SIMULATED_CHAIN_ID,
        accounts: Iterable[LocalAccount] = (),
        balance_wei: int = DEFAULT_BALANCE_WEI,
        gas_price_wei: int = DEFAULT_GAS_PRICE_WEI,
    ):
        self.chain_id = chain_id
        self.gas_price_wei = gas_price_wei
        self.accounts = list(accounts) or dev_accounts()

        self._lock = threading.RLock()
        self._block_number = 0
        self._balances: dict[str, int] = {}
        self._nonces: dict[str, int] = {}
        self._contracts: dict[str, RelayContract] = {}
        self._receipts: dict[str, Receipt] = {}
        self._logs: list[LogEntry] = []
        self._held: dict[str, dict[int, SignedTx]] = {}
        self._creation_codes = {simulated_creation_code(v): v for v in RelayVariant}

        for account in self.accounts:
            self._balances[account.address] = balance_wei

        logger.info(
            "simulated_chain_started",
            chain_id=chain_id,
            accounts=len(self.accounts),
        )

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    @property
    def block_number(self) -> int:
        return self._block_number

    def fund(self, address: str, amount_wei: int) -> None:
        address = to_checksum_address(address)
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount_wei

    def get_contract(self, address: str) -> Optional[RelayContract]:
        return self._contracts.get(to_checksum_address(address))

    # ------------------------------------------------------------------
    # ChainBackend
    # ------------------------------------------------------------------

    def get_chain_id(self) -> int:
        return self.chain_id

    def get_balance(self, address: str) -> int:
        return self._balances.get(to_checksum_address(address), 0)

    def get_transaction_count(self, address: str) -> int:
        return self._nonces.get(to_checksum_address(address), 0)

    def get_gas_price(self) -> int:
        return self.gas_price_wei

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        sender = to_checksum_address(tx.get("from") or ZERO_ADDRESS)
        data = _as_bytes(tx.get("data"))
        to = tx.get("to")

        if not to:
            if data not in self._creation_codes:
                raise ExecutionReverted(b"", "unknown creation code")
            return intrinsic_gas(data, create=True) + CREATE_EXECUTION_GAS

        with self._lock:
            contract = self._contracts.get(to_checksum_address(to))
            if contract is None:
                return intrinsic_gas(data, create=False)
            events = self._execute(contract, sender, data)
        return intrinsic_gas(data, create=False) + self._execution_gas(events)

    def call(self, tx: dict[str, Any], block_identifier: BlockIdentifier = "latest") -> bytes:
        sender = to_checksum_address(tx.get("from") or ZERO_ADDRESS)
        to = tx.get("to")
        if not to:
            return b""

        with self._lock:
            contract = self._contracts.get(to_checksum_address(to))
            if contract is None:
                return b""
            try:
                return contract.execute(sender, _as_bytes(tx.get("data"))).output
            except ContractError as e:
                raise ExecutionReverted(e.revert_data, f"execution reverted: {e}") from e

    def send_raw_transaction(self, raw_tx: bytes) -> str:
        tx = self.decode_transaction(raw_tx)

        with self._lock:
            expected = self._nonces.get(tx.sender, 0)
            if tx.nonce < expected:
                raise TransactionRejected(
                    f"nonce too low: next nonce {expected}, tx nonce {tx.nonce}"
                )
            if tx.hash in self._receipts or tx.nonce in self._held.get(tx.sender, {}):
                raise TransactionRejected("already known")

            # held transactions already reserve part of the balance
            queued = sum(held.max_cost for held in self._held.get(tx.sender, {}).values())
            cost = tx.max_cost
            balance = self._balances.get(tx.sender, 0) - queued
            if cost > balance:
                raise TransactionRejected(
                    f"insufficient funds for gas * price + value: "
                    f"address {tx.sender} have {balance} want {cost}"
                )

            if tx.nonce > expected:
                self._held.setdefault(tx.sender, {})[tx.nonce] = tx
                logger.debug("transaction_held", tx_hash=tx.hash, nonce=tx.nonce, next_nonce=expected)
                return tx.hash

            self._mine(tx)
            self._mine_held(tx.sender)

        return tx.hash

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        return self._receipts.get(tx_hash.lower())

    def get_logs(
        self,
        address: str,
        topics: Sequence[bytes] = (),
        from_block: BlockIdentifier = 0,
        to_block: BlockIdentifier = "latest",
    ) -> list[LogEntry]:
        address = to_checksum_address(address)
        start = self._resolve_block(from_block)
        end = self._resolve_block(to_block)

        with self._lock:
            return [
                log
                for log in self._logs
                if log.address == address
                and start <= log.block_number <= end
                and all(i < len(log.topics) and log.topics[i] == t for i, t in enumerate(topics))
            ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def decode_transaction(self, raw_tx: bytes) -> SignedTx:
        """Decode a signed legacy transaction and recover its sender."""
        raw_tx = bytes(raw_tx)
        if not raw_tx or raw_tx[0] < 0xC0:
            raise TransactionRejected("only legacy (EIP-155) transactions are supported")

        try:
            fields = rlp.decode(raw_tx)
            sender = Account.recover_transaction(raw_tx)
        except Exception as e:
            raise TransactionRejected(f"invalid transaction: {e}") from e

        if len(fields) != 9:
            raise TransactionRejected("invalid transaction: expected 9 RLP fields")

        nonce, gas_price, gas, to, value, data, v = fields[:7]
        v_int = big_endian_to_int(v)
        if v_int < 35 or (v_int - 35) // 2 != self.chain_id:
            raise TransactionRejected(f"invalid chain id for this network (v={v_int})")

        return SignedTx(
            hash="0x" + keccak(raw_tx).hex(),
            sender=to_checksum_address(sender),
            nonce=big_endian_to_int(nonce),
            gas_price=big_endian_to_int(gas_price),
            gas=big_endian_to_int(gas),
            to=to_checksum_address("0x" + to.hex()) if to else None,
            value=big_endian_to_int(value),
            data=bytes(data),
        )

    def _resolve_block(self, block: BlockIdentifier) -> int:
        if isinstance(block, int):
            return block
        if block == "earliest":
            return 0
        return self._block_number

    def _execute(self, contract: RelayContract, sender: str, data: bytes) -> tuple[DataSentEvent, ...]:
        try:
            return contract.execute(sender, data).events
        except ContractError as e:
            raise ExecutionReverted(e.revert_data, f"execution reverted: {e}") from e

    @staticmethod
    def _execution_gas(events: Sequence[DataSentEvent]) -> int:
        gas = CALL_BASE_GAS
        for event in events:
            topics, data = encode_data_sent(event)
            gas += _log_gas(topics, data)
        return gas

    def _mine_held(self, sender: str) -> None:
        held = self._held.get(sender, {})
        while self._nonces.get(sender, 0) in held:
            self._mine(held.pop(self._nonces[sender]))

    def _mine(self, tx: SignedTx) -> None:
        """Execute tx atomically in a new block. Caller holds the lock."""
        self._block_number += 1
        self._nonces[tx.sender] = tx.nonce + 1

        create = tx.to is None
        gas_needed = intrinsic_gas(tx.data, create)
        status = 1
        events: tuple[DataSentEvent, ...] = ()
        new_contract: Optional[RelayContract] = None
        error = ""

        try:
            if create:
                variant = self._creation_codes.get(tx.data)
                if variant is None:
                    raise ExecutionReverted(b"", "unknown creation code")
                address = contract_address_for(tx.sender, tx.nonce)
                new_contract = create_relay(variant, address, tx.sender)
                gas_needed += CREATE_EXECUTION_GAS
            else:
                target = self._contracts.get(tx.to)  # type: ignore[arg-type]
                if target is not None:
                    events = self._execute(target, tx.sender, tx.data)
                    gas_needed += self._execution_gas(events)
        except ExecutionReverted as e:
            status, error = 0, str(e)

        if gas_needed > tx.gas:
            status, error = 0, "out of gas"
            gas_used = tx.gas
        else:
            gas_used = gas_needed

        if status == 0:
            events, new_contract = (), None

        self._balances[tx.sender] -= gas_used * tx.gas_price
        if status == 1 and tx.value:
            recipient = new_contract.address if new_contract else tx.to
            self._balances[tx.sender] -= tx.value
            self._balances[recipient] = self._balances.get(recipient, 0) + tx.value  # type: ignore[index]

        if new_contract is not None:
            self._contracts[new_contract.address] = new_contract

        logs = []
        for index, event in enumerate(events):
            topics, data = encode_data_sent(event)
            logs.append(
                LogEntry(
                    address=event.contract_address or tx.to or "",
                    topics=topics,
                    data=data,
                    block_number=self._block_number,
                    transaction_hash=tx.hash,
                    log_index=index,
                )
            )
        self._logs.extend(logs)

        self._receipts[tx.hash] = Receipt(
            transaction_hash=tx.hash,
            block_number=self._block_number,
            status=status,
            gas_used=gas_used,
            from_address=tx.sender,
            contract_address=new_contract.address if new_contract else None,
            logs=tuple(logs),
        )

        if status == 1:
            logger.debug("transaction_mined", tx_hash=tx.hash, block=self._block_number, gas_used=gas_used)
        else:
            logger.info("transaction_reverted", tx_hash=tx.hash, block=self._block_number, error=error)
