"""
Domain records shared by the relay contract, client and descriptor generator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from eth_account.signers.local import LocalAccount

from .chain import Receipt

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class RelayVariant(str, Enum):
    """Authorization policy of a relay deployment."""

    ADMIN = "admin"
    PUBLIC = "public"

    @property
    def contract_name(self) -> str:
        return "AdminRelay" if self is RelayVariant.ADMIN else "PublicRelay"

    @classmethod
    def from_contract_name(cls, name: str) -> "RelayVariant":
        for variant in cls:
            if variant.contract_name == name:
                return variant
        raise ValueError(f"Unknown relay contract: {name}")


@dataclass(frozen=True)
class DataSentEvent:
    """One DataSentToTarget log entry."""

    sender: str  # Actual caller (msg.sender), never a claimed identity
    target: str
    owner_param: bytes  # 32 bytes
    action_ref: bytes  # 32 bytes
    topic: str

    # Provenance, filled in when decoded from a confirmed log
    contract_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.target,
            "ownerParam": "0x" + self.owner_param.hex(),
            "actionRef": "0x" + self.action_ref.hex(),
            "topic": self.topic,
            "contractAddress": self.contract_address,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "logIndex": self.log_index,
        }


@dataclass(frozen=True)
class DeploymentResult:
    """A confirmed relay deployment."""

    variant: RelayVariant
    contract_address: str
    deployer_address: str
    chain_id: int
    receipt: Receipt

    @property
    def contract_name(self) -> str:
        return self.variant.contract_name

    @property
    def transaction_hash(self) -> str:
        return self.receipt.transaction_hash


@dataclass
class InvokeRequest:
    """Arguments of one sendData call."""

    target: str
    owner_param: Union[bytes, str]
    action_ref: Union[bytes, str]
    topic: str
    caller: Optional[LocalAccount] = None  # Client default account if omitted


@dataclass
class InvokeOutcome:
    """Per-call result of a concurrent batch of invocations."""

    request: InvokeRequest
    event: Optional[DataSentEvent] = None
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None
