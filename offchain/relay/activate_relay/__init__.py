"""
ACTivate Relay

Access-controlled relay contracts that emit DataSentToTarget events, plus
the tooling to deploy them, invoke them and export their deployment
descriptors (JSON, .env, Go) for downstream services.

Usage:
    # Walk through both variants on a simulated chain
    activate-relay demo

    # Deploy the admin relay to Sepolia and write deployments/sepolia-*
    NETWORK=sepolia PRIVATE_KEY=0x... activate-relay deploy --variant admin

    # Send data through the last deployment
    activate-relay --network sepolia send 0xTarget... 0x01 0x02 "topic"
"""

__version__ = "0.1.0"

from .artifacts import Artifact, ArtifactStore
from .chain import ChainBackend, LogEntry, Receipt, Web3Backend
from .client import RelayClient
from .config import NETWORKS, NetworkConfig, Settings
from .contract import AdminRelay, PublicRelay
from .descriptor import DeploymentDescriptor, generate_descriptor
from .errors import (
    ArtifactNotFound,
    DeploymentReverted,
    DescriptorError,
    EventNotFound,
    InvalidTarget,
    RelayError,
    RelayRejected,
    Unauthorized,
)
from .exporters import write_descriptor
from .models import DataSentEvent, DeploymentResult, InvokeOutcome, InvokeRequest, RelayVariant
from .simulator import SimulatedChain

__all__ = [
    "__version__",
    "AdminRelay",
    "Artifact",
    "ArtifactNotFound",
    "ArtifactStore",
    "ChainBackend",
    "DataSentEvent",
    "DeploymentDescriptor",
    "DeploymentResult",
    "DeploymentReverted",
    "DescriptorError",
    "EventNotFound",
    "InvalidTarget",
    "InvokeOutcome",
    "InvokeRequest",
    "LogEntry",
    "NETWORKS",
    "NetworkConfig",
    "PublicRelay",
    "Receipt",
    "RelayClient",
    "RelayError",
    "RelayRejected",
    "RelayVariant",
    "Settings",
    "SimulatedChain",
    "Unauthorized",
    "Web3Backend",
    "generate_descriptor",
    "write_descriptor",
]
