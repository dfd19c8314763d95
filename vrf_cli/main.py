"""
vrf - request randomness, watch fulfillment and inspect subscriptions.
"""
import logging
import sys
from typing import Optional

import typer

from vrf_sdk import NetworkConfig, VRFClient, VRFError, WatchState
from vrf_sdk.models import WatchResult

app = typer.Typer(help="Request verifiable randomness from a VRF coordinator and confirm delivery.")

NETWORK_OPTION = typer.Option("sepolia", "--network", "-n", envvar="VRF_NETWORK", help="Network name")
RPC_OPTION = typer.Option(None, "--rpc-url", envvar="VRF_RPC_URL", help="Override the network RPC URL")
COORDINATOR_OPTION = typer.Option(None, "--coordinator", help="Override the coordinator address")
TOKEN_OPTION = typer.Option(None, "--token", help="Override the payment token address")
KEY_OPTION = typer.Option(None, "--private-key", envvar="PRIVATE_KEY", help="Signing key", show_default=False)


def should_use_color() -> bool:
    return sys.stdout.isatty()


def _styled(text: str, color: str) -> str:
    if should_use_color():
        return typer.style(text, fg=color)
    return text


def parse_int(value: str) -> int:
    """Parse a decimal or 0x-prefixed integer."""
    try:
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    except ValueError:
        raise typer.BadParameter(f"not an integer: {value}")


def build_client(
    network: str,
    rpc_url: Optional[str],
    coordinator: Optional[str],
    token: Optional[str],
    consumer: Optional[str],
    private_key: Optional[str],
) -> VRFClient:
    kwargs = {}
    if coordinator:
        kwargs["coordinator_address"] = coordinator
    if token:
        kwargs["token_address"] = token
    if "coordinator_address" in kwargs:
        return VRFClient(
            rpc_url=NetworkConfig.get_rpc_url(network, rpc_url),
            consumer_address=consumer,
            priv_key=private_key,
            expected_chain_id=NetworkConfig.get_chain_id(network),
            **kwargs
        )
    return VRFClient.from_network(
        network, consumer_address=consumer, priv_key=private_key, rpc_url=rpc_url, **kwargs
    )


def _fail(message: str) -> None:
    typer.echo(_styled(f"Error: {message}", "red"), err=True)
    raise typer.Exit(code=1)


def _report_watch(result: WatchResult) -> None:
    if result.state == WatchState.FULFILLED:
        typer.echo(_styled(f"Request {result.request_id} fulfilled after {result.ticks} checks", "green"))
        if result.random_words:
            typer.echo("Random words: " + ", ".join(str(w) for w in result.random_words))
        if result.payment is not None:
            typer.echo(f"Payment: {result.payment}")
    elif result.state == WatchState.TIMED_OUT:
        typer.echo(_styled(
            f"Request {result.request_id} not fulfilled after {result.ticks} checks; "
            f"resume with: vrf watch {result.request_id}", "yellow"
        ))
    elif result.cancelled:
        typer.echo(f"Watch of request {result.request_id} cancelled")
    for item in result.evidence:
        typer.echo(f"  evidence: {item}")
    if result.state == WatchState.FAILED:
        _fail(f"watch failed: {result.error}")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def request(
    consumer: str = typer.Option(..., "--consumer", help="Consumer contract address"),
    subid: Optional[str] = typer.Option(None, "--subid", help="Existing subscription id"),
    numwords: int = typer.Option(1, "--numwords", help="Number of random words"),
    confirmations: int = typer.Option(3, "--confirmations", help="Minimum request confirmations"),
    callbackgas: int = typer.Option(100000, "--callbackgas", help="Callback gas limit"),
    fund_token: int = typer.Option(0, "--fund-token", help="Payment token amount to fund with"),
    fund_native: int = typer.Option(0, "--fund-native", help="Native amount to fund with"),
    key_hash: Optional[str] = typer.Option(None, "--key-hash", help="Key hash (defaults to the network's)"),
    network: str = NETWORK_OPTION,
    rpc_url: Optional[str] = RPC_OPTION,
    coordinator: Optional[str] = COORDINATOR_OPTION,
    token: Optional[str] = TOKEN_OPTION,
    private_key: Optional[str] = KEY_OPTION,
):
    """Resolve a subscription, fund it, request randomness and wait for it."""
    if not private_key:
        _fail("a private key is required (--private-key or PRIVATE_KEY)")
    try:
        client = build_client(network, rpc_url, coordinator, token, consumer, private_key)
        result = client.request_randomness(
            sub_id=parse_int(subid) if subid else None,
            num_words=numwords,
            confirmations=confirmations,
            callback_gas_limit=callbackgas,
            token_amount=fund_token,
            native_amount=fund_native,
            key_hash=key_hash,
        )
    except (VRFError, ValueError) as e:
        _fail(str(e))

    sub = result.subscription
    typer.echo(f"Subscription: {sub.sub_id} (strategy={sub.strategy}, new={sub.is_new})")
    if not sub.verified:
        typer.echo(_styled("Warning: subscription ownership could not be verified", "yellow"))
    typer.echo(f"Request ID: {result.request.request_id}")
    typer.echo(f"Transaction: {client.tx_url(result.request.tx_hash)}")
    _report_watch(result.watch)


@app.command()
def watch(
    request_id: str = typer.Argument(..., help="Request id (decimal or 0x hex)"),
    consumer: Optional[str] = typer.Option(None, "--consumer", help="Consumer contract address"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds to wait"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between checks"),
    network: str = NETWORK_OPTION,
    rpc_url: Optional[str] = RPC_OPTION,
    coordinator: Optional[str] = COORDINATOR_OPTION,
):
    """Watch an already submitted request until it is fulfilled or the deadline passes."""
    rid = parse_int(request_id)
    try:
        client = build_client(network, rpc_url, coordinator, None, consumer, None)
        if timeout is not None or interval is not None:
            update = {k: v for k, v in (("timeout", timeout), ("interval", interval)) if v is not None}
            client.watcher_settings = client.watcher_settings.model_copy(update=update)
        result = client.watch(rid)
    except (VRFError, ValueError) as e:
        _fail(str(e))
    _report_watch(result)


@app.command()
def commitment(
    request_id: str = typer.Argument(..., help="Request id (decimal or 0x hex)"),
    consumer: Optional[str] = typer.Option(None, "--consumer", help="Consumer contract address"),
    lookback: int = typer.Option(1000, "--lookback", help="Blocks to search for the request event"),
    network: str = NETWORK_OPTION,
    rpc_url: Optional[str] = RPC_OPTION,
    coordinator: Optional[str] = COORDINATOR_OPTION,
):
    """Show the coordinator commitment of a request and where it was announced."""
    rid = parse_int(request_id)
    try:
        client = build_client(network, rpc_url, coordinator, None, consumer, None)
        value = client.commitment(rid)
        events = client.find_request_events(rid, lookback=lookback)
    except (VRFError, ValueError) as e:
        _fail(str(e))

    if any(value):
        typer.echo(f"Commitment: 0x{value.hex()} (pending)")
    else:
        typer.echo("Commitment: none (fulfilled, or never requested)")
    if not events:
        typer.echo(f"No request event found in the last {lookback} blocks")
    for event in events:
        block = event.log.block_number if event.log else None
        typer.echo(f"Requested via {event.source} in block {block} (subscription {event.sub_id})")


@app.command()
def subscription(
    subid: Optional[str] = typer.Option(None, "--subid", help="Subscription id to show"),
    network: str = NETWORK_OPTION,
    rpc_url: Optional[str] = RPC_OPTION,
    coordinator: Optional[str] = COORDINATOR_OPTION,
    private_key: Optional[str] = KEY_OPTION,
):
    """Show a subscription; without --subid, resolve (or create) one for the signer."""
    try:
        client = build_client(network, rpc_url, coordinator, None, None, private_key)
        if subid is not None:
            sub = client.get_subscription(parse_int(subid))
        else:
            if not private_key:
                _fail("a private key is required to resolve a subscription")
            resolution = client.resolve_subscription()
            typer.echo(f"Resolved subscription {resolution.sub_id} via {resolution.strategy}")
            sub = client.get_subscription(resolution.sub_id)
    except (VRFError, ValueError) as e:
        _fail(str(e))

    typer.echo(f"Subscription {sub.sub_id}")
    typer.echo(f"  owner: {sub.owner}")
    typer.echo(f"  balance: {sub.balance}")
    typer.echo(f"  native balance: {sub.native_balance}")
    typer.echo(f"  requests: {sub.req_count}")
    typer.echo(f"  consumers: {', '.join(sub.consumers) or '-'}")


if __name__ == "__main__":
    app()
