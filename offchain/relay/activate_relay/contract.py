"""
Relay contract state machine.

Python rendition of contracts/AdminRelay.sol and contracts/PublicRelay.sol,
executed by the simulated chain. Both variants share one write operation:

    sendDataToTarget(target, ownerParam, actionRef, topic)

The zero-target check runs before the owner check, so a zero target is
reported as InvalidTarget whoever the caller is. The only persistent state is
the admin variant's owner, fixed at construction.
"""

from dataclasses import dataclass
from typing import ClassVar, Union

from eth_abi import encode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from .abi import (
    GET_ADMIN_SELECTOR,
    OWNER_SELECTOR,
    SEND_DATA_SELECTOR,
    decode_send_data,
    to_bytes32,
)
from .errors import ExecutionReverted, InvalidTarget, Unauthorized
from .models import ZERO_ADDRESS, DataSentEvent, RelayVariant


@dataclass(frozen=True)
class Execution:
    """Outcome of one successful message call."""

    output: bytes = b""
    events: tuple[DataSentEvent, ...] = ()


class RelayContract:
    """Behaviour shared by both relay variants."""

    variant: ClassVar[RelayVariant]

    def __init__(self, address: str):
        self._address = to_checksum_address(address)

    @property
    def address(self) -> str:
        return self._address

    def authorize(self, caller: str) -> None:
        """Raise Unauthorized if caller may not emit events."""

    def send_data(
        self,
        caller: str,
        target: str,
        owner_param: Union[bytes, str],
        action_ref: Union[bytes, str],
        topic: str,
    ) -> DataSentEvent:
        """Validate a write and return the event it emits."""
        target = to_checksum_address(target)
        if target == ZERO_ADDRESS:
            raise InvalidTarget()

        caller = to_checksum_address(caller)
        self.authorize(caller)

        return DataSentEvent(
            sender=caller,
            target=target,
            owner_param=to_bytes32(owner_param),
            action_ref=to_bytes32(action_ref),
            topic=topic,
            contract_address=self._address,
        )

    def execute(self, caller: str, calldata: bytes) -> Execution:
        """
        Dispatch raw calldata by function selector.

        Raises ContractError for relay validation failures and
        ExecutionReverted (empty data) for unknown or malformed calls,
        matching what the Solidity contracts do.
        """
        selector, payload = calldata[:4], calldata[4:]

        if selector == SEND_DATA_SELECTOR:
            try:
                target, owner_param, action_ref, topic = decode_send_data(payload)
            except (DecodingError, UnicodeDecodeError) as e:
                raise ExecutionReverted(b"", "malformed calldata") from e
            event = self.send_data(caller, target, owner_param, action_ref, topic)
            return Execution(events=(event,))

        return self._execute_view(selector)

    def _execute_view(self, selector: bytes) -> Execution:
        raise ExecutionReverted(b"", f"unknown function selector 0x{selector.hex()}")


class PublicRelay(RelayContract):
    """Any caller may emit; provenance is carried by the from field."""

    variant = RelayVariant.PUBLIC


class AdminRelay(RelayContract):
    """Only the deploying account may emit."""

    variant = RelayVariant.ADMIN

    def __init__(self, address: str, owner: str):
        super().__init__(address)
        self._owner = to_checksum_address(owner)

    @property
    def owner(self) -> str:
        return self._owner

    def get_owner(self) -> str:
        return self._owner

    def authorize(self, caller: str) -> None:
        if to_checksum_address(caller) != self._owner:
            raise Unauthorized(caller)

    def _execute_view(self, selector: bytes) -> Execution:
        if selector in (GET_ADMIN_SELECTOR, OWNER_SELECTOR):
            return Execution(output=encode(["address"], [self._owner]))
        return super()._execute_view(selector)


def create_relay(variant: RelayVariant, address: str, deployer: str) -> RelayContract:
    """Run the constructor of the given variant."""
    if variant is RelayVariant.ADMIN:
        return AdminRelay(address, owner=deployer)
    return PublicRelay(address)
