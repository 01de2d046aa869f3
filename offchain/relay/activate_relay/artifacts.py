"""
Contract artifact lookup and Solidity compilation.

An artifact is the compiler output for one contract: its ABI and its
creation bytecode. Lookup order:

1. artifacts registered in memory (ArtifactStore.add)
2. each configured directory, flat (<Name>.json) or Hardhat layout
   (contracts/<Name>.sol/<Name>.json)
3. the ABI-only artifacts bundled with this package
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import solcx
import structlog

from .errors import ArtifactNotFound

logger = structlog.get_logger()

BUNDLED_ARTIFACTS_DIR = Path(__file__).parent / "bundled"

SOLC_VERSION = "0.8.20"
OPTIMIZER_RUNS = 200


@dataclass(frozen=True)
class Artifact:
    """ABI and creation bytecode of one contract."""

    contract_name: str
    abi: list[dict[str, Any]]
    bytecode: bytes = b""
    path: Optional[Path] = None

    def to_json(self) -> dict[str, Any]:
        return {
            "contractName": self.contract_name,
            "abi": self.abi,
            "bytecode": "0x" + self.bytecode.hex(),
        }


def _parse_bytecode(value: Any) -> bytes:
    if isinstance(value, dict):  # solc standard-json shape
        value = value.get("object", "")
    if not value:
        return b""
    text = str(value)
    if text.startswith("0x"):
        text = text[2:]
    return bytes.fromhex(text)


def read_artifact(contract_name: str, path: Path) -> Artifact:
    """Load an artifact JSON file (Hardhat, solc or our flat format)."""
    try:
        with path.open() as f:
            data = json.load(f)
        abi = data["abi"]
        bytecode = _parse_bytecode(data.get("bytecode", ""))
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise ArtifactNotFound(contract_name, f"unreadable artifact {path}: {e}") from e

    if not isinstance(abi, list):
        raise ArtifactNotFound(contract_name, f"artifact {path} has no ABI list")

    return Artifact(contract_name=contract_name, abi=abi, bytecode=bytecode, path=path)


class ArtifactStore:
    """Lookup from contract name to its artifact."""

    def __init__(
        self,
        search_dirs: Iterable[Union[str, Path]] = (),
        include_bundled: bool = True,
    ):
        self.search_dirs = [Path(d) for d in search_dirs]
        if include_bundled:
            self.search_dirs.append(BUNDLED_ARTIFACTS_DIR)
        self._registered: dict[str, Artifact] = {}

    def add(self, artifact: Artifact) -> None:
        """Register an in-memory artifact, shadowing files on disk."""
        self._registered[artifact.contract_name] = artifact

    def candidate_paths(self, contract_name: str) -> list[Path]:
        paths = []
        for directory in self.search_dirs:
            paths.append(directory / f"{contract_name}.json")
            paths.append(directory / "contracts" / f"{contract_name}.sol" / f"{contract_name}.json")
        return paths

    def load(self, contract_name: str) -> Artifact:
        if contract_name in self._registered:
            return self._registered[contract_name]

        for path in self.candidate_paths(contract_name):
            if path.is_file():
                logger.debug("artifact_loaded", contract=contract_name, path=str(path))
                return read_artifact(contract_name, path)

        searched = ", ".join(str(d) for d in self.search_dirs) or "<none>"
        raise ArtifactNotFound(contract_name, f"searched {searched}")

    def abi(self, contract_name: str) -> list[dict[str, Any]]:
        return self.load(contract_name).abi

    def bytecode(self, contract_name: str) -> bytes:
        """Creation bytecode; ABI-only artifacts are skipped."""
        registered = self._registered.get(contract_name)
        if registered is not None and registered.bytecode:
            return registered.bytecode

        for path in self.candidate_paths(contract_name):
            if path.is_file():
                artifact = read_artifact(contract_name, path)
                if artifact.bytecode:
                    return artifact.bytecode

        raise ArtifactNotFound(
            contract_name,
            "no creation bytecode (compile with `activate-relay compile`)",
        )


def compile_contracts(
    source_dir: Path,
    output_dir: Path,
    solc_version: str = SOLC_VERSION,
    optimizer_runs: int = OPTIMIZER_RUNS,
) -> list[Artifact]:
    """
    Compile every .sol file in source_dir and write flat artifacts.

    Downloads the requested solc release on first use.
    """
    sources = {
        path.name: {"content": path.read_text()}
        for path in sorted(source_dir.glob("*.sol"))
    }
    if not sources:
        raise FileNotFoundError(f"No Solidity sources in {source_dir}")

    solcx.install_solc(solc_version)
    compiled = solcx.compile_standard(
        {
            "language": "Solidity",
            "sources": sources,
            "settings": {
                "optimizer": {"enabled": True, "runs": optimizer_runs},
                "outputSelection": {"*": {"*": ["abi", "evm.bytecode.object"]}},
            },
        },
        solc_version=solc_version,
    )

    output_dir.mkdir(parents=True, exist_ok=True)
    artifacts = []
    for contracts in compiled["contracts"].values():
        for name, output in contracts.items():
            path = output_dir / f"{name}.json"
            artifact = Artifact(
                contract_name=name,
                abi=output["abi"],
                bytecode=_parse_bytecode(output["evm"]["bytecode"]),
                path=path,
            )
            path.write_text(json.dumps(artifact.to_json(), indent=2) + "\n")
            artifacts.append(artifact)
            logger.info(
                "contract_compiled",
                contract=name,
                bytecode_size=len(artifact.bytecode),
                path=str(path),
            )

    return artifacts
