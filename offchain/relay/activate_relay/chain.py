"""
Chain access for the relay client.

The client needs only a small capability set from the host chain: submit a
signed transaction, read receipts and logs, estimate gas, read balances.
ChainBackend describes that set; Web3Backend provides it over JSON-RPC and
SimulatedChain (simulator.py) provides it in-process.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

import structlog
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from .errors import ExecutionReverted, TransactionRejected

logger = structlog.get_logger()

BlockIdentifier = Union[int, str]


@dataclass(frozen=True)
class LogEntry:
    """A log emitted by a confirmed transaction."""

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    block_number: int
    transaction_hash: str
    log_index: int


@dataclass(frozen=True)
class Receipt:
    """Backend-neutral transaction receipt."""

    transaction_hash: str
    block_number: Optional[int]
    status: int
    gas_used: int
    from_address: str
    contract_address: Optional[str] = None
    logs: tuple[LogEntry, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@runtime_checkable
class ChainBackend(Protocol):
    """Minimal RPC capability set used by RelayClient."""

    def get_chain_id(self) -> int: ...

    def get_balance(self, address: str) -> int: ...

    def get_transaction_count(self, address: str) -> int: ...

    def get_gas_price(self) -> int: ...

    def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    def call(self, tx: dict[str, Any], block_identifier: BlockIdentifier = "latest") -> bytes: ...

    def send_raw_transaction(self, raw_tx: bytes) -> str: ...

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]: ...

    def get_logs(
        self,
        address: str,
        topics: Sequence[bytes] = (),
        from_block: BlockIdentifier = 0,
        to_block: BlockIdentifier = "latest",
    ) -> list[LogEntry]: ...


def _to_hex(value: Any) -> str:
    return Web3.to_hex(HexBytes(value))


def log_from_web3(raw: Mapping[str, Any]) -> LogEntry:
    return LogEntry(
        address=to_checksum_address(raw["address"]),
        topics=tuple(bytes(HexBytes(t)) for t in raw["topics"]),
        data=bytes(HexBytes(raw["data"])),
        block_number=int(raw["blockNumber"]),
        transaction_hash=_to_hex(raw["transactionHash"]),
        log_index=int(raw["logIndex"]),
    )


def receipt_from_web3(raw: Mapping[str, Any]) -> Receipt:
    """Convert a web3 TxReceipt (AttributeDict) to a Receipt."""
    contract_address = raw.get("contractAddress")
    block_number = raw.get("blockNumber")
    return Receipt(
        transaction_hash=_to_hex(raw["transactionHash"]),
        block_number=int(block_number) if block_number is not None else None,
        status=int(raw.get("status", 0)),
        gas_used=int(raw.get("gasUsed", 0)),
        from_address=to_checksum_address(raw["from"]),
        contract_address=to_checksum_address(contract_address) if contract_address else None,
        logs=tuple(log_from_web3(log) for log in raw.get("logs", [])),
    )


def revert_data_from_error(error: ContractLogicError) -> bytes:
    """Extract raw revert bytes from a web3 ContractLogicError."""
    data: Any = getattr(error, "data", None)
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str) and data.startswith("0x"):
        try:
            return bytes.fromhex(data[2:])
        except ValueError:
            return b""
    return b""


def rpc_error_message(error: Exception) -> str:
    """Node error text, unwrapped from web3's error payloads."""
    if error.args and isinstance(error.args[0], dict):
        return str(error.args[0].get("message", error))
    return str(error)


def _rejected(method: str, error: Exception) -> TransactionRejected:
    message = rpc_error_message(error)
    logger.error("rpc_request_rejected", method=method, error=message)
    return TransactionRejected(message)


class Web3Backend:
    """ChainBackend over a JSON-RPC endpoint, using web3.py."""

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 30.0,
        w3: Optional[Web3] = None,
    ):
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

        logger.info("web3_backend_initialized", rpc_url=rpc_url)

    def get_chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    def get_balance(self, address: str) -> int:
        return int(self.w3.eth.get_balance(to_checksum_address(address)))

    def get_transaction_count(self, address: str) -> int:
        """Next nonce, counting transactions still in the mempool."""
        return int(self.w3.eth.get_transaction_count(to_checksum_address(address), "pending"))

    def get_gas_price(self) -> int:
        return int(self.w3.eth.gas_price)

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        try:
            return int(self.w3.eth.estimate_gas(tx))  # type: ignore[arg-type]
        except ContractLogicError as e:
            raise ExecutionReverted(revert_data_from_error(e), str(e)) from e
        except (ValueError, Web3Exception) as e:
            raise _rejected("estimate_gas", e) from e

    def call(self, tx: dict[str, Any], block_identifier: BlockIdentifier = "latest") -> bytes:
        try:
            return bytes(self.w3.eth.call(tx, block_identifier))  # type: ignore[arg-type]
        except ContractLogicError as e:
            raise ExecutionReverted(revert_data_from_error(e), str(e)) from e
        except (ValueError, Web3Exception) as e:
            raise _rejected("eth_call", e) from e

    def send_raw_transaction(self, raw_tx: bytes) -> str:
        try:
            tx_hash = self.w3.eth.send_raw_transaction(raw_tx)
        except (ValueError, Web3Exception) as e:
            raise _rejected("send_raw_transaction", e) from e
        return _to_hex(tx_hash)

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        try:
            raw = self.w3.eth.get_transaction_receipt(tx_hash)  # type: ignore[arg-type]
        except TransactionNotFound:
            return None
        if raw is None:
            return None
        return receipt_from_web3(raw)

    def get_logs(
        self,
        address: str,
        topics: Sequence[bytes] = (),
        from_block: BlockIdentifier = 0,
        to_block: BlockIdentifier = "latest",
    ) -> list[LogEntry]:
        params: dict[str, Any] = {
            "address": to_checksum_address(address),
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        if topics:
            params["topics"] = [_to_hex(t) for t in topics]
        return [log_from_web3(log) for log in self.w3.eth.get_logs(params)]  # type: ignore[arg-type]
