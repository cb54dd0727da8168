"""Tests for configuration loading."""

import pytest
from mcp_bitcom.config import (
    Config,
    ConnectionMethod,
    Network,
    load_config,
    DEFAULT_CONFIG,
)


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_network_is_mainnet(self):
        """Bitcom data lives on mainnet."""
        config = Config()
        assert config.network == Network.MAINNET

    def test_default_connection_is_cli(self):
        """Default connection method is bitcoin-cli."""
        config = Config()
        assert config.connection_method == ConnectionMethod.CLI

    def test_signatures_verified_by_default(self):
        """Signature verification is on by default."""
        assert DEFAULT_CONFIG.verify_signatures is True

    def test_default_max_script_size(self):
        """Max script size should be 100KB."""
        config = Config()
        assert config.max_script_size == 102400

    def test_default_log_level(self):
        """Only warnings are logged by default."""
        assert Config().log_level == "WARNING"


class TestConfigLoading:
    """Test configuration file loading."""

    def test_load_from_toml_string(self, tmp_path):
        """Load configuration from TOML file."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('''
[connection]
method = "rpc"
network = "signet"

[rpc]
host = "192.168.1.100"
port = 38332
user = "bitcoinrpc"
password = "secret123"

[decoder]
verify_signatures = false
max_script_size = 50000

[logging]
level = "debug"
''')

        config = load_config(config_file)

        assert config.connection_method == ConnectionMethod.RPC
        assert config.network == Network.SIGNET
        assert config.rpc_host == "192.168.1.100"
        assert config.rpc_port == 38332
        assert config.verify_signatures is False
        assert config.max_script_size == 50000
        assert config.log_level == "DEBUG"

    def test_load_missing_file_uses_defaults(self, tmp_path):
        """Missing config file should use defaults."""
        config = load_config(tmp_path / "nonexistent.toml")

        assert config == Config()

    def test_partial_config_merges_with_defaults(self, tmp_path):
        """Partial config should merge with defaults."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('''
[connection]
network = "regtest"
''')

        config = load_config(config_file)

        assert config.network == Network.REGTEST
        assert config.connection_method == ConnectionMethod.CLI  # default
        assert config.verify_signatures is True  # default

    def test_unknown_network(self, tmp_path):
        """Unknown network names are rejected."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('[connection]\nnetwork = "moonnet"\n')

        with pytest.raises(ValueError):
            load_config(config_file)

    def test_unknown_log_level(self, tmp_path):
        """Unknown log levels are rejected."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('[logging]\nlevel = "chatty"\n')

        with pytest.raises(ValueError, match="Unknown log level"):
            load_config(config_file)

    def test_non_positive_script_size(self, tmp_path):
        """The script size limit must be positive."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('[decoder]\nmax_script_size = 0\n')

        with pytest.raises(ValueError, match="max_script_size"):
            load_config(config_file)


class TestNetworkPorts:
    """Test default RPC ports per network."""

    @pytest.mark.parametrize("network,expected_port", [
        (Network.MAINNET, 8332),
        (Network.TESTNET, 18332),
        (Network.SIGNET, 38332),
        (Network.REGTEST, 18443),
    ])
    def test_default_port_for_network(self, network, expected_port):
        """Each network has correct default RPC port."""
        config = Config(network=network)
        assert config.default_rpc_port == expected_port

    def test_explicit_port_wins(self):
        """A configured port overrides the network default."""
        assert Config(rpc_port=9999).get_rpc_port() == 9999
