"""
Deployment descriptor: the language-portable record of one relay deployment.

A descriptor is built once from a confirmed construction receipt and the
contract ABI, then rendered into every output format by exporters.py. Field
names on the wire are camelCase and shared by all encodings.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from eth_utils import to_checksum_address
from pydantic import BaseModel, Field, ValidationError, field_validator

from .artifacts import ArtifactStore
from .errors import DescriptorError
from .models import DeploymentResult

logger = structlog.get_logger()

_TX_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class DeploymentDescriptor(BaseModel):
    """Normalized configuration record for one deployed relay."""

    model_config = {"populate_by_name": True, "frozen": True}

    network: str = Field(..., description="Network name (sepolia, gnosis, ...)")
    chain_id: int = Field(..., alias="chainId", description="EIP-155 chain id")
    contract_name: str = Field(..., alias="contractName", description="AdminRelay or PublicRelay")
    contract_address: str = Field(..., alias="contractAddress", description="Checksummed relay address")
    contract_abi: list[dict[str, Any]] = Field(..., alias="contractABI")
    deployer_address: str = Field(..., alias="deployerAddress")
    private_key: Optional[str] = Field(
        None,
        alias="privateKey",
        description="Deployer key, only present when explicitly exported",
    )
    rpc_url: str = Field(..., alias="rpcUrl")
    block_number: int = Field(..., alias="blockNumber", ge=0)
    transaction_hash: str = Field(..., alias="transactionHash")
    gas_used: str = Field(..., alias="gasUsed", description="Decimal string")
    deployed_at: str = Field(..., alias="deployedAt")
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")

    @field_validator("contract_address", "deployer_address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return to_checksum_address(value)

    @field_validator("transaction_hash")
    @classmethod
    def _lowercase_hash(cls, value: str) -> str:
        value = value.lower()
        if not value.startswith("0x"):
            value = "0x" + value
        if not _TX_HASH_RE.match(value):
            raise ValueError(f"invalid transaction hash: {value}")
        return value

    @field_validator("gas_used")
    @classmethod
    def _decimal(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError(f"gasUsed must be a decimal string, got {value!r}")
        return value

    @property
    def contract_url(self) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/address/{self.contract_address}"

    @property
    def transaction_url(self) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{self.transaction_hash}"

    def to_json_dict(self) -> dict[str, Any]:
        """Wire form: camelCase keys, optional fields omitted when unset."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> "DeploymentDescriptor":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DescriptorError(f"invalid deployment descriptor: {e}") from e


def _validate_abi(abi: Any) -> None:
    if not isinstance(abi, list) or not all(isinstance(e, dict) and "type" in e for e in abi):
        raise DescriptorError("malformed ABI: expected a list of typed entries")
    if not any(e.get("type") == "function" and e.get("name") == "sendDataToTarget" for e in abi):
        raise DescriptorError("malformed ABI: sendDataToTarget is missing")


def generate_descriptor(
    deployment: DeploymentResult,
    network: str,
    rpc_url: str,
    artifacts: ArtifactStore,
    explorer_url: Optional[str] = None,
    private_key: Optional[str] = None,
    deployed_at: Optional[datetime] = None,
) -> DeploymentDescriptor:
    """
    Build the descriptor for a confirmed deployment.

    Raises ArtifactNotFound when the ABI cannot be loaded and DescriptorError
    when the receipt is not confirmed or the ABI is malformed. private_key is
    only recorded when the caller passes it.
    """
    receipt = deployment.receipt
    if receipt.block_number is None or not receipt.succeeded:
        raise DescriptorError(
            f"deployment {receipt.transaction_hash} is not confirmed"
        )
    if receipt.contract_address is None or (
        to_checksum_address(receipt.contract_address) != to_checksum_address(deployment.contract_address)
    ):
        raise DescriptorError(
            f"receipt {receipt.transaction_hash} did not create {deployment.contract_address}"
        )

    abi = artifacts.abi(deployment.contract_name)
    _validate_abi(abi)

    try:
        descriptor = DeploymentDescriptor(
            network=network,
            chain_id=deployment.chain_id,
            contract_name=deployment.contract_name,
            contract_address=deployment.contract_address,
            contract_abi=abi,
            deployer_address=deployment.deployer_address,
            private_key=private_key,
            rpc_url=rpc_url,
            block_number=receipt.block_number,
            transaction_hash=receipt.transaction_hash,
            gas_used=str(receipt.gas_used),
            deployed_at=format_timestamp(deployed_at or datetime.now(timezone.utc)),
            explorer_url=explorer_url,
        )
    except ValidationError as e:
        raise DescriptorError(f"invalid deployment data: {e}") from e

    if private_key:
        logger.warning("descriptor_includes_private_key", network=network)

    logger.info(
        "descriptor_generated",
        network=network,
        contract=descriptor.contract_name,
        address=descriptor.contract_address,
        block=descriptor.block_number,
    )
    return descriptor
