"""
Environment-driven configuration.

Resolution order for every setting: explicit argument, environment
variable, built-in default.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from slotscribe.errors import InvalidClusterError
from slotscribe.models import Cluster

_HOME_DIR = ".slotscribe"

DEFAULT_BASE_URL = "https://slotscribe.xyz"

_DEFAULT_RPC_URLS = {
    Cluster.MAINNET: "https://api.mainnet-beta.solana.com",
    Cluster.TESTNET: "https://api.testnet.solana.com",
    Cluster.DEVNET: "https://api.devnet.solana.com",
    Cluster.LOCALNET: "http://localhost:8899",
}

_RPC_URL_ENV = {
    Cluster.MAINNET: "MAINNET_RPC_URL",
    Cluster.DEVNET: "DEVNET_RPC_URL",
}

_CLUSTER_ALIASES = {
    "mainnet": Cluster.MAINNET,
    "mainnet-beta": Cluster.MAINNET,
    "devnet": Cluster.DEVNET,
    "testnet": Cluster.TESTNET,
    "localnet": Cluster.LOCALNET,
    "localhost": Cluster.LOCALNET,
    "127.0.0.1": Cluster.LOCALNET,
}


def slotscribe_home() -> Path:
    """Return the SlotScribe data directory (SLOTSCRIBE_HOME or ~/.slotscribe)."""
    env = os.environ.get("SLOTSCRIBE_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / _HOME_DIR


def default_traces_dir() -> Path:
    env = os.environ.get("SLOTSCRIBE_TRACES_DIR") or os.environ.get("TRACES_DIR")
    if env:
        return Path(env).expanduser()
    return slotscribe_home() / "traces"


def normalize_cluster(cluster: Union[str, Cluster]) -> Cluster:
    """Map a user-supplied cluster name onto a Cluster.

    Raises InvalidClusterError for unknown names.
    """
    if isinstance(cluster, Cluster):
        return cluster
    name = str(cluster).strip().lower()
    try:
        return _CLUSTER_ALIASES[name]
    except KeyError:
        raise InvalidClusterError(
            f'Invalid Solana cluster: "{cluster}". '
            'Valid values are: "mainnet-beta", "devnet", "testnet", "localnet"'
        ) from None


def default_cluster() -> Cluster:
    return normalize_cluster(os.environ.get("SLOTSCRIBE_CLUSTER", Cluster.MAINNET.value))


def get_rpc_url(cluster: Union[str, Cluster], override_url: Optional[str] = None) -> str:
    """RPC endpoint for *cluster*; an explicit override always wins."""
    if override_url:
        return override_url
    normalized = normalize_cluster(cluster)
    env_name = _RPC_URL_ENV.get(normalized)
    if env_name and os.environ.get(env_name):
        return os.environ[env_name]
    return _DEFAULT_RPC_URLS[normalized]


def default_base_url() -> str:
    return os.environ.get("SLOTSCRIBE_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


__all__ = [
    "DEFAULT_BASE_URL",
    "slotscribe_home",
    "default_traces_dir",
    "normalize_cluster",
    "default_cluster",
    "get_rpc_url",
    "default_base_url",
]
