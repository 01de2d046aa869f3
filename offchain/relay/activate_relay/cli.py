"""
CLI entry point for ACTivate Relay.
"""

from pathlib import Path
from typing import NoReturn, Optional, Union

import structlog
import typer
from eth_account import Account
from pydantic import ValidationError
from web3 import Web3

from .abi import bytes32_to_text
from .artifacts import SOLC_VERSION, compile_contracts
from .client import RelayClient
from .config import Settings, build_client
from .descriptor import DeploymentDescriptor, generate_descriptor
from .errors import InvalidTarget, RelayError, RelayRejected
from .exporters import find_descriptor, load_json, write_descriptor
from .models import ZERO_ADDRESS, DataSentEvent, InvokeRequest, RelayVariant
from .simulator import SimulatedChain, dev_accounts, simulated_artifacts


def configure_logging(json_logs: bool = False) -> None:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
    )


configure_logging()

app = typer.Typer(
    name="activate-relay",
    help="ACTivate Relay: deploy, invoke and export access-controlled relay contracts",
    add_completion=False,
)


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _client(settings: Settings) -> RelayClient:
    client = build_client(settings)
    if client.account is None:
        _fail(f"PRIVATE_KEY is required on network {settings.network}")
    return client


def _resolve_relay(settings: Settings, contract: Optional[str]) -> Union[str, DeploymentDescriptor]:
    """--contract if given, else the descriptor written by `deploy`."""
    if contract:
        if not Web3.is_address(contract):
            _fail(f"invalid contract address: {contract}")
        return contract

    path = find_descriptor(settings.deployments_dir, settings.network)
    if path is None:
        _fail(
            f"no deployment found for {settings.network} in {settings.deployments_dir}; "
            "pass --contract or run `activate-relay deploy` first"
        )
    try:
        return load_json(path)
    except RelayError as e:
        _fail(str(e))


def _echo_event(event: DataSentEvent) -> None:
    typer.echo(f"  From:      {event.sender}")
    typer.echo(f"  To:        {event.target}")
    typer.echo(f"  Owner:     0x{event.owner_param.hex()}")
    typer.echo(f"  ActionRef: 0x{event.action_ref.hex()}")
    typer.echo(f"  Topic:     {event.topic!r}")
    if event.transaction_hash:
        typer.echo(f"  Tx:        {event.transaction_hash} (block {event.block_number})")


@app.callback()
def main_callback(
    ctx: typer.Context,
    network: Optional[str] = typer.Option(
        None,
        "--network",
        "-n",
        help="Network preset: simulated, localhost, sepolia, gnosis, chiado (env: NETWORK)",
    ),
    env_file: Optional[Path] = typer.Option(
        None,
        "--env-file",
        help="Path to .env configuration file",
    ),
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log lines"),
) -> None:
    """Load settings shared by every command."""
    overrides = {"network": network} if network else {}
    try:
        settings = Settings(_env_file=env_file, **overrides) if env_file else Settings(**overrides)
    except ValidationError as e:
        _fail(f"invalid configuration: {e}")

    configure_logging(log_json or settings.log_json)
    ctx.obj = settings


@app.command()
def deploy(
    ctx: typer.Context,
    variant: RelayVariant = typer.Option(
        RelayVariant.ADMIN,
        "--variant",
        "-v",
        case_sensitive=False,
        help="admin: only the deployer may send; public: anyone may send",
    ),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o", help="Descriptor directory (env: DEPLOYMENTS_DIR)"),
    export_private_key: bool = typer.Option(
        False,
        "--export-private-key",
        help="Include the deployer private key in descriptor files",
    ),
    write: bool = typer.Option(True, "--write/--no-write", help="Write descriptor files"),
    go_package: str = typer.Option("main", "--go-package", help="Package name of generated Go files"),
) -> None:
    """
    Deploy a relay contract and export its deployment descriptor.
    """
    settings = _settings(ctx)
    client = _client(settings)
    network = settings.network_config

    typer.echo(f"Deploying {variant.contract_name} to {network.name} (chain {client.chain_id})...")
    typer.echo(f"  Deployer: {client.account.address}")

    try:
        result = client.deploy(variant, timeout=settings.confirmation_timeout)
    except RelayError as e:
        _fail(f"deployment failed: {e}")

    typer.echo(f"\n{variant.contract_name} deployed!")
    typer.echo(f"  Address:  {result.contract_address}")
    typer.echo(f"  Tx:       {result.transaction_hash}")
    typer.echo(f"  Block:    {result.receipt.block_number}")
    typer.echo(f"  Gas used: {result.receipt.gas_used}")

    if variant is RelayVariant.ADMIN:
        owner = client.get_owner(result)
        status = "PASSED" if owner == result.deployer_address else "FAILED"
        typer.echo(f"  Admin:    {owner} ({status})")

    if not write:
        return

    private_key = None
    if export_private_key or settings.export_private_key:
        typer.echo("\nWarning: the deployer private key will be written to the descriptor files.", err=True)
        private_key = Web3.to_hex(client.account.key)

    try:
        descriptor = generate_descriptor(
            result,
            network=network.name,
            rpc_url=settings.resolved_rpc_url(),
            artifacts=client.artifacts,
            explorer_url=network.explorer_url,
            private_key=private_key,
        )
        paths = write_descriptor(descriptor, out_dir or settings.deployments_dir, go_package)
    except RelayError as e:
        typer.echo(f"\nDeployment succeeded but descriptor files were not written: {e}", err=True)
        raise typer.Exit(1)

    typer.echo("\nDeployment files:")
    for path in paths.values():
        typer.echo(f"  {path}")
    if descriptor.contract_url:
        typer.echo(f"\nView on explorer: {descriptor.contract_url}")


@app.command()
def send(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Target address (non-zero)"),
    owner_param: str = typer.Argument(..., help="bytes32 owner value (0x-hex or text up to 31 bytes)"),
    action_ref: str = typer.Argument(..., help="bytes32 action reference (0x-hex or text up to 31 bytes)"),
    topic: str = typer.Argument("", help="Free-form topic string"),
    contract: Optional[str] = typer.Option(None, "--contract", "-c", help="Relay address (default: last deployment)"),
    caller_key: Optional[str] = typer.Option(None, "--caller-key", help="Sign as this key instead of PRIVATE_KEY"),
) -> None:
    """
    Send data to a target through the relay.
    """
    settings = _settings(ctx)
    client = _client(settings)
    relay = _resolve_relay(settings, contract)
    caller = Account.from_key(caller_key) if caller_key else None

    if not Web3.is_address(target):
        _fail(f"invalid target address: {target}")

    try:
        event = client.invoke(
            relay,
            target,
            owner_param,
            action_ref,
            topic,
            caller=caller,
            timeout=settings.confirmation_timeout,
        )
    except ValueError as e:
        _fail(str(e))
    except RelayRejected as e:
        reason = type(e.cause).__name__ if e.cause else "rejected"
        _fail(f"relay refused the call ({reason}): {e}")
    except RelayError as e:
        _fail(str(e))

    typer.echo("DataSentToTarget emitted:")
    _echo_event(event)


@app.command()
def events(
    ctx: typer.Context,
    contract: Optional[str] = typer.Option(None, "--contract", "-c", help="Relay address (default: last deployment)"),
    from_block: int = typer.Option(0, "--from-block", help="First block to scan"),
) -> None:
    """
    List DataSentToTarget events emitted by a relay.
    """
    settings = _settings(ctx)
    client = build_client(settings)
    relay = _resolve_relay(settings, contract)

    found = client.get_events(relay, from_block=from_block)
    if not found:
        typer.echo("No events found.")
        return

    typer.echo(f"Found {len(found)} events:\n")
    for event in found:
        _echo_event(event)
        typer.echo("")


@app.command()
def owner(
    ctx: typer.Context,
    contract: Optional[str] = typer.Option(None, "--contract", "-c", help="Relay address (default: last deployment)"),
) -> None:
    """
    Show the admin of an admin relay.
    """
    settings = _settings(ctx)
    client = build_client(settings)
    relay = _resolve_relay(settings, contract)

    try:
        typer.echo(client.get_owner(relay))
    except (ValueError, RelayError) as e:
        _fail(str(e))


@app.command()
def balance(
    ctx: typer.Context,
    address: Optional[str] = typer.Argument(None, help="Address to check (default: configured account)"),
) -> None:
    """
    Show the native balance of an address.
    """
    settings = _settings(ctx)
    client = build_client(settings)

    if address is None:
        if client.account is None:
            _fail("pass an address or set PRIVATE_KEY")
        address = client.account.address
    if not Web3.is_address(address):
        _fail(f"invalid address: {address}")

    wei = client.get_balance(address)
    typer.echo(f"Network: {settings.network}")
    typer.echo(f"Address: {Web3.to_checksum_address(address)}")
    typer.echo(f"Balance: {Web3.from_wei(wei, 'ether')} ({wei} wei)")
    if wei == 0:
        typer.echo("Warning: this account cannot pay for gas.", err=True)


@app.command()
def keygen() -> None:
    """
    Generate a new random keypair.
    """
    account = Account.create()
    typer.echo("Generated keypair:")
    typer.echo(f"  Private key: {Web3.to_hex(account.key)}")
    typer.echo(f"  Address:     {account.address}")
    typer.echo("\nSave this private key securely. Fund the address before deploying.")


@app.command("check-zero-address")
def check_zero_address(
    ctx: typer.Context,
    contract: Optional[str] = typer.Option(
        None,
        "--contract",
        "-c",
        help="Relay to probe (default: deploy a fresh public relay)",
    ),
) -> None:
    """
    Verify that a relay refuses the zero address as target.
    """
    settings = _settings(ctx)
    client = _client(settings)

    if contract:
        relay: Union[str, DeploymentDescriptor] = _resolve_relay(settings, contract)
    else:
        try:
            relay = client.deploy(RelayVariant.PUBLIC, timeout=settings.confirmation_timeout).contract_address
        except RelayError as e:
            _fail(f"deployment failed: {e}")
        typer.echo(f"Fresh relay deployed at: {relay}")

    typer.echo(f"Sending to zero address {ZERO_ADDRESS}...")
    try:
        client.invoke(relay, ZERO_ADDRESS, "ERROR_TEST", "ERROR_ACTION", "This should fail")
    except RelayRejected as e:
        if isinstance(e.cause, InvalidTarget):
            typer.echo(f"PASS: rejected with InvalidTarget ({e})")
            return
        _fail(f"rejected for another reason: {e}")
    except RelayError as e:
        _fail(str(e))

    _fail("zero-address target was accepted")


@app.command("compile")
def compile_command(
    source_dir: Path = typer.Option(Path("contracts"), "--source-dir", help="Directory with .sol files"),
    out_dir: Path = typer.Option(Path("artifacts"), "--out-dir", "-o", help="Artifact output directory"),
    solc_version: str = typer.Option(SOLC_VERSION, "--solc-version", help="solc release to use"),
) -> None:
    """
    Compile the relay contracts with solc.
    """
    try:
        artifacts = compile_contracts(source_dir, out_dir, solc_version=solc_version)
    except FileNotFoundError as e:
        _fail(str(e))

    for artifact in artifacts:
        typer.echo(f"Compiled {artifact.contract_name} -> {artifact.path} ({len(artifact.bytecode)} bytes)")
    typer.echo(f"\nSet ARTIFACTS_DIR={out_dir} to deploy these artifacts.")


@app.command()
def demo(
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-o", help="Also write descriptors here"),
) -> None:
    """
    Walk through both relay variants on a throwaway simulated chain.
    """
    chain = SimulatedChain()
    admin, user1, user2 = dev_accounts(3)
    client = RelayClient(chain, account=admin, artifacts=simulated_artifacts(), poll_interval=0.01)

    typer.echo("=== Admin Relay ===")
    typer.echo(f"Admin: {admin.address}")
    typer.echo(f"User1: {user1.address}")
    typer.echo(f"User2: {user2.address}\n")

    deployment = client.deploy(RelayVariant.ADMIN)
    typer.echo(f"Deployed at {deployment.contract_address}")
    typer.echo(f"Admin reported by contract: {client.get_owner(deployment)}\n")

    typer.echo("--- Sending data to User1 ---")
    _echo_event(client.invoke(deployment, user1.address, "0x01", "0x02", "x"))

    typer.echo("\n--- Access control: User2 sends ---")
    try:
        client.invoke(deployment, user1.address, "0x01", "0x02", "x", caller=user2)
        typer.echo("ERROR: non-admin was able to send data!")
    except RelayRejected as e:
        typer.echo(f"Rejected as expected: {e}")

    typer.echo("\n--- Zero address target ---")
    try:
        client.invoke(deployment, ZERO_ADDRESS, "0x01", "0x02", "x")
        typer.echo("ERROR: zero target was accepted!")
    except RelayRejected as e:
        typer.echo(f"Rejected as expected: {e}")

    typer.echo("\n=== Public Relay ===")
    public = client.deploy(RelayVariant.PUBLIC, deployer=user1)
    typer.echo(f"Deployed at {public.contract_address}\n")

    requests = [
        InvokeRequest(admin.address, "ALICE", "ACT_1", "hello", caller=user2),
        InvokeRequest(ZERO_ADDRESS, "BOB", "ACT_2", "should fail", caller=user2),
        InvokeRequest(user2.address, "CAROL", "ACT_3", "", caller=admin),
    ]
    typer.echo("--- Concurrent sends ---")
    for outcome in client.invoke_many(public, requests):
        if outcome.success and outcome.event is not None:
            owner_text = bytes32_to_text(outcome.event.owner_param)
            typer.echo(f"  ok    {outcome.event.sender} -> {outcome.event.target} owner={owner_text}")
        else:
            typer.echo(f"  error {outcome.request.target}: {outcome.error}")

    typer.echo(f"\nEvents on public relay: {len(client.get_events(public))}")

    if out_dir is not None:
        descriptor = generate_descriptor(deployment, "simulated", "simulated://", client.artifacts)
        for path in write_descriptor(descriptor, out_dir).values():
            typer.echo(f"Wrote {path}")

    typer.echo("\n=== Demo complete ===")


@app.command()
def version() -> None:
    """Show the tool version."""
    from activate_relay import __version__
    typer.echo(f"activate-relay v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
