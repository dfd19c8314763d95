"""
Network configuration and tunable settings for the VRF SDK.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from typing import Any, ClassVar, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ENV_PREFIX = "VRF_"

S = TypeVar('S', bound='EnvSettings')


class NetworkConfig:
    """Coordinator, token and RPC defaults for known networks."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load the bundled network table, caching it on the class.

        Returns:
            Mapping of network name to network configuration
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        resource = importlib.resources.files("vrf_sdk").joinpath("networks.json")
        with resource.open("r", encoding="utf-8") as f:
            cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get the configuration of one network.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        Resolve the RPC URL for a network.

        Precedence: explicit override, then ``<NETWORK>_RPC_URL`` from the
        environment, then the bundled default.
        """
        if override:
            return override
        env_var = f"{network.upper().replace('-', '_')}_RPC_URL"
        env_url = os.environ.get(env_var)
        if env_url:
            return env_url
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])

    @classmethod
    def get_coordinator_address(cls, network: str) -> str:
        return cls._require(network, "coordinator")

    @classmethod
    def get_token_address(cls, network: str) -> Optional[str]:
        return cls.get_network(network).get("token")

    @classmethod
    def get_key_hash(cls, network: str) -> Optional[str]:
        return cls.get_network(network).get("keyHash")

    @classmethod
    def _require(cls, network: str, key: str) -> str:
        value = cls.get_network(network).get(key)
        if not value:
            raise ValueError(f"Network '{network}' has no '{key}' configured")
        return value


def validate_rpc_url(url: str, name: str = "rpc_url") -> str:
    """
    Require https unless the endpoint is on localhost.

    Raises:
        ValueError: If the URL uses another scheme against a remote host
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.netloc.split(':')[0] if parsed.netloc else ''
    is_local = host in ('localhost', '127.0.0.1')
    if parsed.scheme != 'https' and not is_local:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")
    return url


class EnvSettings(BaseModel):
    """
    Base for settings models that can be overridden from the environment.

    A field ``foo_bar`` of a model with ``env_section = "WATCH"`` is read
    from ``VRF_WATCH_FOO_BAR``.
    """

    env_section: ClassVar[str] = ""

    @classmethod
    def from_env(cls: Type[S], environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> S:
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{cls.env_section}_{name}".upper()
            if key in environ:
                values[name] = environ[key]
        values.update({k: v for k, v in overrides.items() if v is not None})
        if values:
            logger.debug(f"{cls.__name__} overrides: {sorted(values)}")
        return cls(**values)
