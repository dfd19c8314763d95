#!/usr/bin/env python3
"""
Example of requesting randomness with network configuration.
"""
import logging
import os

from vrf_sdk import NetworkConfig, VRFClient, VRFError, WatchState


def main():
    """
    Demonstrate the full randomness lifecycle on a configured network.

    This example shows how to:
    1. Initialize the client from a network configuration
    2. Resolve (or create) a subscription owned by the signer
    3. Fund it and register the consumer
    4. Submit a request and wait for the random words
    """
    logging.basicConfig(level=logging.INFO)

    # Read environment variables
    PRIVATE_KEY = os.environ.get("PRIVATE_KEY")
    CONSUMER = os.environ.get("CONSUMER_ADDRESS")
    NETWORK = os.environ.get("VRF_NETWORK", "sepolia")

    # Verify configuration
    if not PRIVATE_KEY or not CONSUMER:
        print("ERROR: PRIVATE_KEY and CONSUMER_ADDRESS environment variables are required")
        return

    print("Available networks:")
    for network_name in NetworkConfig.load_networks().keys():
        print(f"  - {network_name}")
    print()

    client = VRFClient.from_network(NETWORK, consumer_address=CONSUMER, priv_key=PRIVATE_KEY)
    client.assert_chain_id()
    print(f"Connected to network: {NETWORK} as {client.address}")

    try:
        result = client.request_randomness(num_words=2, token_amount=2 * 10 ** 18)
    except VRFError as e:
        print(f"Request failed: {e}")
        return
    finally:
        client.close()

    sub = result.subscription
    print(f"Subscription {sub.sub_id} (found via {sub.strategy}, new={sub.is_new})")
    print(f"Request {result.request.request_id}: {client.tx_url(result.request.tx_hash)}")

    if result.watch.state == WatchState.FULFILLED:
        print(f"Random words: {result.watch.random_words}")
    elif result.watch.state == WatchState.TIMED_OUT:
        print(f"Not fulfilled yet; resume with: vrf watch {result.request.request_id} --consumer {CONSUMER}")
    else:
        print(f"Watch failed: {result.watch.error}")


if __name__ == "__main__":
    main()
