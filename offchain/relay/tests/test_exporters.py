"""
Tests for descriptor encodings, file writing and loaders.
"""

import errno
import json
import os
import re
from collections import Counter
from pathlib import Path

import pytest

from activate_relay.errors import DescriptorError
from activate_relay.exporters import (
    go_identifier,
    load_env,
    load_go_constants,
    load_json,
    render_env,
    render_go_config,
    render_go_constants,
    render_json,
    write_descriptor,
)

OTHER_ADDRESS = "0x" + "11" * 20


class TestWriteDescriptor:
    """Writing all encodings for one deployment."""

    def test_writes_four_files(self, descriptor, tmp_path):
        paths = write_descriptor(descriptor, tmp_path)

        assert paths["json"] == tmp_path / "sepolia-deployment.json"
        assert paths["env"] == tmp_path / "sepolia.env"
        assert paths["go_constants"] == tmp_path / "constants.go"
        assert paths["go_config"] == tmp_path / "sepolia-config.go"
        assert all(p.is_file() for p in paths.values())
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]

    def test_round_trip_consistency(self, descriptor, tmp_path):
        """Every encoding yields the same address, chain id and tx hash."""
        paths = write_descriptor(descriptor, tmp_path)

        from_json = load_json(paths["json"])
        env = load_env(paths["env"])
        go = load_go_constants(paths["go_constants"])

        assert from_json == descriptor

        assert env["CONTRACT_ADDRESS"] == descriptor.contract_address
        assert int(env["CHAIN_ID"]) == descriptor.chain_id
        assert env["DEPLOYMENT_TX_HASH"] == descriptor.transaction_hash

        assert go["AdminRelayAddress"] == descriptor.contract_address
        assert go["SepoliaChainID"] == descriptor.chain_id
        assert go["DeploymentTxHash"] == descriptor.transaction_hash
        assert json.loads(go["AdminRelayABI"]) == descriptor.contract_abi

    def test_creates_directory(self, descriptor, tmp_path):
        out_dir = tmp_path / "nested" / "deployments"
        write_descriptor(descriptor, out_dir)
        assert (out_dir / "sepolia-deployment.json").is_file()

    def test_overwrites_previous_deployment(self, descriptor_factory, tmp_path):
        write_descriptor(descriptor_factory(block_number=1), tmp_path)
        write_descriptor(descriptor_factory(block_number=2), tmp_path)
        assert load_json(tmp_path / "sepolia-deployment.json").block_number == 2

    def test_write_failure(self, descriptor, tmp_path):
        blocker = tmp_path / "deployments"
        blocker.write_text("not a directory")
        with pytest.raises(DescriptorError):
            write_descriptor(descriptor, blocker)

    def test_failed_rewrite_leaves_previous_deployment(self, descriptor_factory, tmp_path):
        first = descriptor_factory()
        write_descriptor(first, tmp_path)
        (tmp_path / "constants.go").unlink()
        (tmp_path / "constants.go").mkdir()

        with pytest.raises(DescriptorError):
            write_descriptor(descriptor_factory(contract_address=OTHER_ADDRESS), tmp_path)

        assert load_json(tmp_path / "sepolia-deployment.json").contract_address == first.contract_address
        assert load_env(tmp_path / "sepolia.env")["CONTRACT_ADDRESS"] == first.contract_address
        assert first.contract_address in (tmp_path / "sepolia-config.go").read_text()
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]

    def test_failed_replace_restores_replaced_files(self, descriptor_factory, tmp_path, monkeypatch):
        first = descriptor_factory()
        write_descriptor(first, tmp_path)
        real_replace = os.replace

        def replace(src, dst):
            if Path(dst).name == "constants.go":
                raise PermissionError(errno.EACCES, "read-only", str(dst))
            real_replace(src, dst)

        monkeypatch.setattr(os, "replace", replace)
        with pytest.raises(DescriptorError, match="read-only"):
            write_descriptor(descriptor_factory(contract_address=OTHER_ADDRESS), tmp_path)
        monkeypatch.undo()

        assert load_json(tmp_path / "sepolia-deployment.json").contract_address == first.contract_address
        assert load_env(tmp_path / "sepolia.env")["CONTRACT_ADDRESS"] == first.contract_address
        assert load_go_constants(tmp_path / "constants.go")["AdminRelayAddress"] == first.contract_address
        assert OTHER_ADDRESS not in (tmp_path / "sepolia-config.go").read_text()
        assert not [p for p in tmp_path.iterdir() if p.name.endswith(".tmp")]

    def test_networks_share_one_go_package(self, descriptor_factory, tmp_path):
        """Deployments to several networks in one directory declare no Go name twice."""
        write_descriptor(descriptor_factory(), tmp_path)
        write_descriptor(
            descriptor_factory(network="gnosis", chain_id=100, explorer_url="https://gnosisscan.io"),
            tmp_path,
        )

        declared = Counter()
        for path in tmp_path.glob("*.go"):
            source = path.read_text()
            declared.update(re.findall(r"^type (\w+)", source, re.MULTILINE))
            declared.update(re.findall(r"^func (\w+)", source, re.MULTILINE))
            declared.update(load_go_constants(path))

        assert declared["SepoliaAdminRelayConfig"] == 1
        assert declared["GnosisAdminRelayConfig"] == 1
        assert [name for name, count in declared.items() if count > 1] == []


class TestRenderEnv:
    """Flat key=value encoding."""

    def test_keys(self, descriptor, tmp_path):
        path = tmp_path / "sepolia.env"
        path.write_text(render_env(descriptor))
        env = load_env(path)

        assert env["NETWORK"] == "sepolia"
        assert env["RPC_URL"] == "https://rpc.sepolia.org"
        assert env["DEPLOYER_ADDRESS"] == descriptor.deployer_address
        assert env["DEPLOYMENT_BLOCK"] == "42"
        assert env["GAS_USED"] == "123456"
        assert env["EXPLORER_CONTRACT_URL"] == descriptor.contract_url
        assert env["EXPLORER_TX_URL"] == descriptor.transaction_url

    def test_private_key_only_when_exported(self, descriptor_factory):
        assert "PRIVATE_KEY" not in render_env(descriptor_factory())
        exported = render_env(descriptor_factory(private_key="0x" + "22" * 32))
        assert "PRIVATE_KEY=0x" + "22" * 32 in exported

    def test_no_explorer(self, descriptor_factory):
        text = render_env(descriptor_factory(explorer_url=None))
        assert "EXPLORER_" not in text


class TestRenderGo:
    """Go source encodings."""

    def test_constants(self, descriptor):
        source = render_go_constants(descriptor)
        assert source.startswith("package main\n")
        assert "SepoliaChainID = 11155111" in source
        assert "PrivateKey" not in source
        assert "ExplorerContractURL" in source

    def test_constants_package_and_private_key(self, descriptor_factory):
        source = render_go_constants(descriptor_factory(private_key="0xabc"), package="relay")
        assert source.startswith("package relay\n")
        assert 'const PrivateKey = "0xabc"' in source

    def test_config_embeds_json_record(self, descriptor):
        source = render_go_config(descriptor)
        assert "func GetSepoliaConfig() *SepoliaAdminRelayConfig {" in source
        assert "type SepoliaAdminRelayConfig struct {" in source

        record = source.split("configJSON := `", 1)[1].split("`", 1)[0]
        assert json.loads(record) == descriptor.to_json_dict()

    def test_go_identifier(self):
        assert go_identifier("sepolia") == "Sepolia"
        assert go_identifier("gnosis-chiado") == "GnosisChiado"
        assert go_identifier("AdminRelay") == "AdminRelay"
        assert go_identifier("1337") == "N1337"


class TestLoaders:
    """Reading encodings back."""

    def test_render_json_is_indented(self, descriptor):
        text = render_json(descriptor)
        assert text.endswith("}\n")
        assert '\n  "chainId": 11155111' in text

    def test_load_json_missing_file(self, tmp_path):
        with pytest.raises(DescriptorError):
            load_json(tmp_path / "missing.json")

    def test_load_json_invalid_content(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(DescriptorError):
            load_json(path)

    def test_load_env_missing_file(self, tmp_path):
        with pytest.raises(DescriptorError):
            load_env(tmp_path / "missing.env")
