"""
Shared fixtures: a fresh simulated chain per test with funded dev accounts.
"""

from typing import Any

import pytest

from activate_relay.client import RelayClient
from activate_relay.config import simulated_chain
from activate_relay.descriptor import DeploymentDescriptor
from activate_relay.models import RelayVariant
from activate_relay.simulator import SimulatedChain, dev_accounts, simulated_artifacts

SETTINGS_ENV = [
    "NETWORK",
    "RPC_URL",
    "PRIVATE_KEY",
    "SEPOLIA_RPC_URL",
    "GNOSIS_RPC_URL",
    "CHIADO_RPC_URL",
    "ARTIFACTS_DIR",
    "DEPLOYMENTS_DIR",
    "EXPORT_PRIVATE_KEY",
    "CONFIRMATION_TIMEOUT",
    "POLL_INTERVAL",
    "GAS_MULTIPLIER",
    "GAS_PRICE_WEI",
    "LOG_JSON",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from settings in the caller's environment."""
    for name in SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    simulated_chain.cache_clear()
    yield
    simulated_chain.cache_clear()


@pytest.fixture
def accounts():
    return dev_accounts(3)


@pytest.fixture
def chain():
    return SimulatedChain()


@pytest.fixture
def client(chain, accounts):
    return RelayClient(chain, account=accounts[0], artifacts=simulated_artifacts(), poll_interval=0.01)


@pytest.fixture
def admin_relay(client):
    return client.deploy(RelayVariant.ADMIN)


@pytest.fixture
def public_relay(client):
    return client.deploy(RelayVariant.PUBLIC)


def make_descriptor(**overrides: Any) -> DeploymentDescriptor:
    fields: dict[str, Any] = {
        "network": "sepolia",
        "chain_id": 11155111,
        "contract_name": "AdminRelay",
        "contract_address": "0x5fbdb2315678afecb367f032d93f642f64180aa3",
        "contract_abi": [
            {
                "type": "function",
                "name": "sendDataToTarget",
                "inputs": [],
                "outputs": [],
                "stateMutability": "nonpayable",
            }
        ],
        "deployer_address": "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266",
        "rpc_url": "https://rpc.sepolia.org",
        "block_number": 42,
        "transaction_hash": "0x" + "AB" * 32,
        "gas_used": "123456",
        "deployed_at": "2024-01-02T03:04:05.678Z",
        "explorer_url": "https://sepolia.etherscan.io",
    }
    fields.update(overrides)
    return DeploymentDescriptor(**fields)


@pytest.fixture
def descriptor():
    return make_descriptor()


@pytest.fixture
def descriptor_factory():
    return make_descriptor
