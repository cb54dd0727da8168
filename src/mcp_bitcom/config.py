"""Configuration loading and management."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

try:
    import tomli
except ImportError:  # pragma: no cover
    import tomllib as tomli  # Python 3.11+


class ConnectionMethod(Enum):
    """Bitcoin node connection method."""
    CLI = "cli"
    RPC = "rpc"


class Network(Enum):
    """Bitcoin network."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


# Default RPC ports per network
DEFAULT_PORTS = {
    Network.MAINNET: 8332,
    Network.TESTNET: 18332,
    Network.SIGNET: 38332,
    Network.REGTEST: 18443,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Server configuration."""

    # Connection settings
    connection_method: ConnectionMethod = ConnectionMethod.CLI
    network: Network = Network.MAINNET

    # CLI settings
    cli_path: str = "bitcoin-cli"
    cli_datadir: str = ""

    # RPC settings
    rpc_host: str = "127.0.0.1"
    rpc_port: Optional[int] = None
    rpc_user: str = ""
    rpc_password: str = ""

    # Decoder settings
    verify_signatures: bool = True
    max_script_size: int = 102400  # 100KB

    # Logging
    log_level: str = "WARNING"

    @property
    def default_rpc_port(self) -> int:
        """Get default RPC port for current network."""
        return DEFAULT_PORTS[self.network]

    def get_rpc_port(self) -> int:
        """Get configured or default RPC port."""
        return self.rpc_port if self.rpc_port else self.default_rpc_port


DEFAULT_CONFIG = Config()


def load_config(path: Path) -> Config:
    """Load configuration from TOML file.

    Args:
        path: Path to config file

    Returns:
        Loaded configuration, merged with defaults

    Raises:
        ValueError: If a setting has an unknown value
    """
    if not path.exists():
        return Config()

    with open(path, "rb") as f:
        data = tomli.load(f)

    # Parse connection section
    conn = data.get("connection", {})
    method_str = conn.get("method", "cli")
    network_str = conn.get("network", "mainnet")

    # Parse CLI section
    cli = data.get("cli", {})

    # Parse RPC section
    rpc = data.get("rpc", {})

    # Parse decoder section
    decoder = data.get("decoder", {})
    max_script_size = decoder.get("max_script_size", 102400)
    if max_script_size <= 0:
        raise ValueError(f"max_script_size must be positive, got {max_script_size}")

    # Parse logging section
    log_level = str(data.get("logging", {}).get("level", "WARNING")).upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {log_level}")

    return Config(
        connection_method=ConnectionMethod(method_str),
        network=Network(network_str),
        cli_path=cli.get("path", "bitcoin-cli"),
        cli_datadir=cli.get("datadir", ""),
        rpc_host=rpc.get("host", "127.0.0.1"),
        rpc_port=rpc.get("port"),
        rpc_user=rpc.get("user", ""),
        rpc_password=rpc.get("password", ""),
        verify_signatures=decoder.get("verify_signatures", True),
        max_script_size=max_script_size,
        log_level=log_level,
    )
