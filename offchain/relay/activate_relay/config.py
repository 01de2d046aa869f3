"""
Configuration for ACTivate Relay.

Settings come from the environment and an optional .env file. Network
presets mirror the chains the relay has been deployed to.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .artifacts import ArtifactStore
from .chain import ChainBackend, Web3Backend
from .client import RelayClient
from .simulator import SIMULATED_CHAIN_ID, SimulatedChain, dev_accounts, simulated_artifacts


@dataclass(frozen=True)
class NetworkConfig:
    """Connection preset for one chain."""

    name: str
    chain_id: int
    rpc_url: str
    explorer_url: Optional[str] = None
    gas_price_wei: Optional[int] = None
    simulated: bool = False


NETWORKS: dict[str, NetworkConfig] = {
    "simulated": NetworkConfig("simulated", SIMULATED_CHAIN_ID, "simulated://", simulated=True),
    "localhost": NetworkConfig("localhost", 1337, "http://127.0.0.1:8545"),
    "sepolia": NetworkConfig(
        "sepolia",
        11155111,
        "https://rpc.sepolia.org",
        explorer_url="https://sepolia.etherscan.io",
        gas_price_wei=20_000_000_000,  # 20 gwei
    ),
    "gnosis": NetworkConfig(
        "gnosis",
        100,
        "https://rpc.gnosischain.com",
        explorer_url="https://gnosisscan.io",
        gas_price_wei=1_000_000_000,
    ),
    "chiado": NetworkConfig(
        "chiado",
        10200,
        "https://rpc.chiadochain.net",
        explorer_url="https://gnosis-chiado.blockscout.com",
        gas_price_wei=1_000_000_000,
    ),
}


class Settings(BaseSettings):
    """
    Relay tooling settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    network: str = Field(default="simulated", description="Network preset name")
    rpc_url: Optional[str] = Field(default=None, description="Overrides the preset RPC URL")
    private_key: Optional[str] = Field(
        default=None,
        description="Deployer / caller key (required outside the simulated network)",
    )

    # Per-network RPC overrides, as in the Hardhat configuration
    sepolia_rpc_url: Optional[str] = None
    gnosis_rpc_url: Optional[str] = None
    chiado_rpc_url: Optional[str] = None

    artifacts_dir: Optional[Path] = Field(
        default=None,
        description="Directory with compiled artifacts (flat or Hardhat layout)",
    )
    deployments_dir: Path = Field(default=Path("deployments"), description="Descriptor output directory")
    export_private_key: bool = Field(
        default=False,
        description="Write the deployer key into descriptor files",
    )

    confirmation_timeout: Optional[float] = Field(default=180.0, gt=0)
    poll_interval: float = Field(default=1.0, gt=0)
    gas_multiplier: float = Field(default=1.2, ge=1.0)
    gas_price_wei: Optional[int] = Field(default=None, gt=0)

    log_json: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("network")
    @classmethod
    def _known_network(cls, value: str) -> str:
        value = value.lower()
        if value not in NETWORKS:
            raise ValueError(f"unknown network {value!r}; choose from {', '.join(NETWORKS)}")
        return value

    @property
    def network_config(self) -> NetworkConfig:
        return NETWORKS[self.network]

    def resolved_rpc_url(self) -> str:
        override = getattr(self, f"{self.network}_rpc_url", None)
        return self.rpc_url or override or self.network_config.rpc_url

    def resolved_gas_price(self) -> Optional[int]:
        return self.gas_price_wei or self.network_config.gas_price_wei


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def simulated_chain() -> SimulatedChain:
    """Process-wide simulated chain, shared by every command in one run."""
    return SimulatedChain()


def build_backend(settings: Settings) -> ChainBackend:
    if settings.network_config.simulated:
        return simulated_chain()
    return Web3Backend(settings.resolved_rpc_url())


def build_account(settings: Settings) -> Optional[LocalAccount]:
    """Signing account from PRIVATE_KEY; the first dev key on the simulated network."""
    if settings.private_key:
        return Account.from_key(settings.private_key)
    if settings.network_config.simulated:
        return dev_accounts()[0]
    return None


def build_artifacts(settings: Settings) -> ArtifactStore:
    dirs = [settings.artifacts_dir] if settings.artifacts_dir else []
    store = ArtifactStore(dirs)
    if settings.network_config.simulated:
        return simulated_artifacts(store)
    return store


def build_client(settings: Settings, backend: Optional[ChainBackend] = None) -> RelayClient:
    return RelayClient(
        backend or build_backend(settings),
        account=build_account(settings),
        artifacts=build_artifacts(settings),
        gas_multiplier=settings.gas_multiplier,
        gas_price_wei=settings.resolved_gas_price(),
        poll_interval=settings.poll_interval,
    )
