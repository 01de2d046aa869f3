"""
Descriptor encodings and their loaders.

Every format is rendered from one DeploymentDescriptor instance, so field
values and address casing agree across files:

    <network>-deployment.json   structured record
    <network>.env               flat KEY=value pairs
    constants.go                Go const bindings, ABI as a raw string
    <network>-config.go         Go struct + loader embedding the JSON record
"""

import errno
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Union

import structlog
from dotenv import dotenv_values

from .descriptor import DeploymentDescriptor
from .errors import DescriptorError

logger = structlog.get_logger()


def json_filename(network: str) -> str:
    return f"{network}-deployment.json"


def env_filename(network: str) -> str:
    return f"{network}.env"


GO_CONSTANTS_FILENAME = "constants.go"


def go_config_filename(network: str) -> str:
    return f"{network}-config.go"


def go_identifier(name: str) -> str:
    """sepolia -> Sepolia, gnosis-chiado -> GnosisChiado"""
    ident = "".join(part[:1].upper() + part[1:] for part in re.split(r"[^0-9A-Za-z]+", name) if part)
    if not ident or ident[0].isdigit():
        ident = "N" + ident
    return ident


def _go_string(value: str) -> str:
    # JSON string escapes are valid Go interpreted-string escapes
    return json.dumps(value)


def _go_raw_string(value: str) -> str:
    if "`" in value:
        return _go_string(value)
    return f"`{value}`"


def _compact_abi(descriptor: DeploymentDescriptor) -> str:
    return json.dumps(descriptor.contract_abi, separators=(",", ":"))


# ============================================================================
# Renderers
# ============================================================================


def render_json(descriptor: DeploymentDescriptor) -> str:
    return json.dumps(descriptor.to_json_dict(), indent=2) + "\n"


def render_env(descriptor: DeploymentDescriptor) -> str:
    lines = [
        f"# {descriptor.contract_name} {descriptor.network} deployment",
        f"# Generated on {descriptor.deployed_at}",
        "",
        "# Network",
        f"NETWORK={descriptor.network}",
        f"CHAIN_ID={descriptor.chain_id}",
        f"RPC_URL={descriptor.rpc_url}",
        "",
        "# Contract",
        f"CONTRACT_ADDRESS={descriptor.contract_address}",
        f"DEPLOYER_ADDRESS={descriptor.deployer_address}",
        "",
        "# Transaction",
        f"DEPLOYMENT_TX_HASH={descriptor.transaction_hash}",
        f"DEPLOYMENT_BLOCK={descriptor.block_number}",
        f"GAS_USED={descriptor.gas_used}",
    ]
    if descriptor.private_key:
        lines += ["", "# Private key (keep secure!)", f"PRIVATE_KEY={descriptor.private_key}"]
    if descriptor.explorer_url:
        lines += [
            "",
            "# Explorer",
            f"EXPLORER_CONTRACT_URL={descriptor.contract_url}",
            f"EXPLORER_TX_URL={descriptor.transaction_url}",
        ]
    return "\n".join(lines) + "\n"


def render_go_constants(descriptor: DeploymentDescriptor, package: str = "main") -> str:
    net = go_identifier(descriptor.network)
    contract = go_identifier(descriptor.contract_name)

    out = [
        f"package {package}",
        "",
        f"// {contract} {descriptor.network} deployment constants",
        f"// Generated on {descriptor.deployed_at}",
        "",
        "const (",
        f"\t{net}ChainID = {descriptor.chain_id}",
        f"\t{net}RPCURL = {_go_string(descriptor.rpc_url)}",
        "",
        f"\t{contract}Address = {_go_string(descriptor.contract_address)}",
        f"\tDeployerAddress = {_go_string(descriptor.deployer_address)}",
        "",
        f"\tDeploymentTxHash = {_go_string(descriptor.transaction_hash)}",
        f"\tDeploymentBlock = {descriptor.block_number}",
        f"\tGasUsed = {_go_string(descriptor.gas_used)}",
        ")",
        "",
    ]
    if descriptor.private_key:
        out += [
            "// PrivateKey is the deployer key. Prefer loading it from the environment.",
            f"const PrivateKey = {_go_string(descriptor.private_key)}",
            "",
        ]
    out += [
        f"// {contract}ABI contains the contract ABI as a JSON string",
        f"const {contract}ABI = {_go_raw_string(_compact_abi(descriptor))}",
        "",
    ]
    if descriptor.explorer_url:
        out += [
            "const (",
            f"\tExplorerContractURL = {_go_string(descriptor.contract_url or '')}",
            f"\tExplorerTxURL = {_go_string(descriptor.transaction_url or '')}",
            ")",
            "",
        ]
    return "\n".join(out)


def render_go_config(descriptor: DeploymentDescriptor, package: str = "main") -> str:
    net = go_identifier(descriptor.network)
    contract = go_identifier(descriptor.contract_name)
    record = json.dumps(descriptor.to_json_dict(), indent=2)

    return f"""package {package}

import (
\t"encoding/json"
\t"log"
)

// {net}{contract}Config contains the deployment information for {descriptor.network}
type {net}{contract}Config struct {{
\tNetwork         string      `json:"network"`
\tChainID         int64       `json:"chainId"`
\tContractName    string      `json:"contractName"`
\tContractAddress string      `json:"contractAddress"`
\tContractABI     interface{{}} `json:"contractABI"`
\tDeployerAddress string      `json:"deployerAddress"`
\tPrivateKey      string      `json:"privateKey,omitempty"`
\tRPCUrl          string      `json:"rpcUrl"`
\tBlockNumber     int64       `json:"blockNumber"`
\tTransactionHash string      `json:"transactionHash"`
\tGasUsed         string      `json:"gasUsed"`
\tDeployedAt      string      `json:"deployedAt"`
\tExplorerURL     string      `json:"explorerUrl,omitempty"`
}}

// Get{net}Config returns the deployment configuration for {descriptor.network}
func Get{net}Config() *{net}{contract}Config {{
\tconfigJSON := {_go_raw_string(record)}

\tvar config {net}{contract}Config
\tif err := json.Unmarshal([]byte(configJSON), &config); err != nil {{
\t\tlog.Fatalf("Failed to unmarshal config: %v", err)
\t}}

\treturn &config
}}
"""


# ============================================================================
# Writing
# ============================================================================


def _stage(path: Path, content: str) -> str:
    """Write content to a temporary file beside path and return its name."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
    except BaseException:
        os.unlink(tmp)
        raise
    return tmp


def _restore(replaced: list[tuple[Path, Optional[str]]]) -> None:
    """Put back the files a failed write already replaced."""
    for path, previous in reversed(replaced):
        try:
            if previous is None:
                path.unlink()
            else:
                tmp = _stage(path, previous)
                try:
                    os.replace(tmp, path)
                except OSError:
                    os.unlink(tmp)
                    raise
        except OSError as e:
            logger.error("descriptor_restore_failed", path=str(path), error=str(e))


def write_descriptor(
    descriptor: DeploymentDescriptor,
    out_dir: Union[str, Path],
    go_package: str = "main",
) -> dict[str, Path]:
    """
    Write all encodings into out_dir, replacing earlier files of the same
    network. Returns the written paths keyed by format.

    All files are staged before any is replaced. If a replacement fails,
    the files already replaced are restored, so the encodings on disk never
    mix two deployments.

    Raises DescriptorError on any filesystem failure. The deployment itself
    is unaffected.
    """
    out_dir = Path(out_dir)
    network = descriptor.network
    rendered = {
        "json": (out_dir / json_filename(network), render_json(descriptor)),
        "env": (out_dir / env_filename(network), render_env(descriptor)),
        "go_constants": (out_dir / GO_CONSTANTS_FILENAME, render_go_constants(descriptor, go_package)),
        "go_config": (out_dir / go_config_filename(network), render_go_config(descriptor, go_package)),
    }

    staged: list[tuple[Path, str]] = []
    replaced: list[tuple[Path, Optional[str]]] = []
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        for path, content in rendered.values():
            if path.exists() and not path.is_file():
                raise IsADirectoryError(errno.EISDIR, "not a regular file", str(path))
            staged.append((path, _stage(path, content)))
        for path, tmp in staged:
            previous = path.read_text(encoding="utf-8") if path.is_file() else None
            os.replace(tmp, path)
            replaced.append((path, previous))
    except OSError as e:
        for _, tmp in staged:
            if os.path.exists(tmp):
                os.unlink(tmp)
        _restore(replaced)
        logger.error("descriptor_write_failed", out_dir=str(out_dir), error=str(e))
        raise DescriptorError(f"failed to write deployment files to {out_dir}: {e}") from e

    written = {kind: path for kind, (path, _) in rendered.items()}
    logger.info(
        "descriptor_written",
        network=network,
        files=[str(p) for p in written.values()],
    )
    return written


# ============================================================================
# Loaders
# ============================================================================


def load_json(path: Union[str, Path]) -> DeploymentDescriptor:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise DescriptorError(f"cannot read descriptor {path}: {e}") from e
    return DeploymentDescriptor.from_json_dict(data)


def load_env(path: Union[str, Path]) -> dict[str, str]:
    path = Path(path)
    if not path.is_file():
        raise DescriptorError(f"env file not found: {path}")
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


_GO_CONST_RE = re.compile(
    r'^\s*(?:const\s+)?(?P<name>[A-Za-z_]\w*)\s*=\s*(?P<value>"(?:[^"\\]|\\.)*"|`[^`]*`|-?\d+)\s*$',
    re.MULTILINE,
)


def load_go_constants(path: Union[str, Path]) -> dict[str, Union[str, int]]:
    """Parse the const bindings of a generated constants.go."""
    try:
        source = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise DescriptorError(f"cannot read {path}: {e}") from e

    constants: dict[str, Union[str, int]] = {}
    for match in _GO_CONST_RE.finditer(source):
        value = match.group("value")
        if value.startswith('"'):
            constants[match.group("name")] = json.loads(value)
        elif value.startswith("`"):
            constants[match.group("name")] = value[1:-1]
        else:
            constants[match.group("name")] = int(value)
    return constants


def find_descriptor(deployments_dir: Union[str, Path], network: str) -> Optional[Path]:
    """Path of the JSON descriptor for network, if one was written."""
    path = Path(deployments_dir) / json_filename(network)
    return path if path.is_file() else None
