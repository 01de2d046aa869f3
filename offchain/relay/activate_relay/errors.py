"""
Error types for the relay contract, client and descriptor generator.

Contract errors (InvalidTarget, Unauthorized) describe why the relay itself
refused a write. Client errors describe what happened to a submission.
Descriptor errors never imply that a deployment failed.
"""

from typing import ClassVar, Optional

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


class RelayError(Exception):
    """Base class for every error raised by activate_relay."""


# ============================================================================
# Contract-level errors
# ============================================================================


class ContractError(RelayError):
    """A validation failure raised by the relay contract."""

    signature: ClassVar[str] = ""

    @classmethod
    def selector(cls) -> bytes:
        return function_signature_to_4byte_selector(cls.signature)

    @property
    def revert_data(self) -> bytes:
        """ABI-encoded custom error, exactly as the EVM returns it."""
        return self.selector()


class InvalidTarget(ContractError):
    """sendData was called with the zero address as target."""

    signature = "InvalidTarget()"

    def __init__(self, message: str = "target cannot be zero address"):
        super().__init__(message)


class Unauthorized(ContractError):
    """A non-owner called sendData on the admin relay."""

    signature = "Unauthorized(address)"

    def __init__(self, account: str):
        self.account = to_checksum_address(account)
        super().__init__(f"account {self.account} is not the relay owner")

    @property
    def revert_data(self) -> bytes:
        return self.selector() + encode(["address"], [self.account])


# Encodings produced by the original OpenZeppelin-based deployments
_LEGACY_UNAUTHORIZED = function_signature_to_4byte_selector(
    "OwnableUnauthorizedAccount(address)"
)
_ERROR_STRING = function_signature_to_4byte_selector("Error(string)")


def decode_revert(data: bytes) -> Optional[ContractError]:
    """
    Map raw revert data to the contract error it encodes.

    Returns None when the data is empty or not a relay error.
    """
    if len(data) < 4:
        return None

    selector, payload = data[:4], data[4:]

    if selector == InvalidTarget.selector():
        return InvalidTarget()

    if selector in (Unauthorized.selector(), _LEGACY_UNAUTHORIZED) and len(payload) >= 32:
        (account,) = decode(["address"], payload[:32])
        return Unauthorized(account)

    if selector == _ERROR_STRING and len(payload) >= 64:
        (reason,) = decode(["string"], payload)
        if "zero address" in reason:
            return InvalidTarget(reason)

    return None


# ============================================================================
# Client-level errors
# ============================================================================


class DeploymentReverted(RelayError):
    """The host chain rejected or reverted a construction transaction."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class ArtifactNotFound(RelayError):
    """No artifact (ABI or bytecode) could be located for a contract."""

    def __init__(self, contract_name: str, detail: str = ""):
        self.contract_name = contract_name
        message = f"artifact not found for contract {contract_name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RelayRejected(RelayError):
    """A sendData transaction was refused, by the contract or by the chain."""

    def __init__(
        self,
        message: str,
        cause: Optional[ContractError] = None,
        tx_hash: Optional[str] = None,
    ):
        self.cause = cause
        self.tx_hash = tx_hash
        super().__init__(message)


class EventNotFound(RelayError):
    """A confirmed transaction carried no decodable DataSentToTarget log."""

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"no DataSentToTarget event in transaction {tx_hash}")


class DescriptorError(RelayError):
    """A deployment descriptor could not be generated or written."""


# ============================================================================
# Chain-level errors (raised by backends)
# ============================================================================


class ChainError(RelayError):
    """Failure reported by the chain backend."""


class ExecutionReverted(ChainError):
    """Execution reverted during estimation, call, or inclusion."""

    def __init__(self, data: bytes = b"", message: str = "execution reverted"):
        self.data = data
        super().__init__(message)


class TransactionRejected(ChainError):
    """The node refused a raw transaction or RPC request (funds, nonce, chain id)."""


class ConfirmationTimeout(ChainError):
    """A transaction was not confirmed within the caller's time bound."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"transaction {tx_hash} not confirmed after {timeout}s")
