"""Tests for configuration loading and validation."""

from decimal import Decimal

import pytest
from tronpy.keys import PrivateKey

from forwarder.config import ForwardingConfig, Settings, derive_address
from forwarder.exceptions import ConfigurationError


class TestForwardingConfig:
    """Tests for ForwardingConfig.from_settings."""

    @pytest.fixture
    def key(self):
        return PrivateKey.random()

    @pytest.fixture
    def monitored(self, key):
        return key.public_key.to_base58check_address()

    @pytest.fixture
    def destination(self):
        return PrivateKey.random().public_key.to_base58check_address()

    @pytest.fixture
    def make_settings(self, key, monitored, destination):
        def _make(**overrides):
            values = dict(
                private_key=key.hex(),
                monitored_address=monitored,
                destination_address=destination,
            )
            values.update(overrides)
            return Settings(_env_file=None, **values)

        return _make

    def test_valid(self, make_settings, monitored, destination):
        config = ForwardingConfig.from_settings(make_settings())

        assert config.monitored_address == monitored
        assert config.destination_address == destination
        assert config.fee_reserve == 500_000
        assert config.poll_interval == 3.0
        assert config.max_attempts == 3

    def test_fee_reserve_in_sun(self, make_settings):
        config = ForwardingConfig.from_settings(make_settings(fee_reserve_trx=Decimal("1.25")))
        assert config.fee_reserve == 1_250_000

    def test_hex_prefix_accepted(self, make_settings, key):
        config = ForwardingConfig.from_settings(make_settings(private_key="0x" + key.hex()))
        assert config.private_key == key.hex()

    def test_missing_values_named(self, make_settings):
        with pytest.raises(ConfigurationError, match="FORWARDER_PRIVATE_KEY"):
            ForwardingConfig.from_settings(make_settings(private_key=""))

    def test_invalid_destination(self, make_settings):
        with pytest.raises(ConfigurationError, match="destination_address"):
            ForwardingConfig.from_settings(make_settings(destination_address="not-an-address"))

    def test_destination_must_differ(self, make_settings, monitored):
        with pytest.raises(ConfigurationError, match="must differ"):
            ForwardingConfig.from_settings(make_settings(destination_address=monitored))

    def test_key_must_control_monitored_address(self, make_settings):
        other = PrivateKey.random()
        with pytest.raises(ConfigurationError, match="not monitored address"):
            ForwardingConfig.from_settings(make_settings(private_key=other.hex()))

    def test_malformed_private_key(self, make_settings):
        with pytest.raises(ConfigurationError, match="Invalid private key"):
            ForwardingConfig.from_settings(make_settings(private_key="zz" * 32))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"fee_reserve_trx": Decimal("-1")},
            {"poll_interval": 0},
            {"max_attempts": 0},
            {"heartbeat_every": 0},
        ],
    )
    def test_out_of_range_values(self, make_settings, overrides):
        with pytest.raises(ConfigurationError):
            ForwardingConfig.from_settings(make_settings(**overrides))

    def test_repr_hides_private_key(self, make_settings, key):
        config = ForwardingConfig.from_settings(make_settings(ledger_api_key="secret-api-key"))

        assert key.hex() not in repr(config)
        assert key.hex() not in str(config)
        view = config.public_view()
        assert "private_key" not in view
        assert "ledger_api_key" not in view
        assert view["monitored_address"] == config.monitored_address


class TestDeriveAddress:
    """Tests for derive_address."""

    def test_matches_tronpy(self):
        key = PrivateKey.random()
        assert derive_address(key.hex()) == key.public_key.to_base58check_address()

    def test_wrong_length(self):
        with pytest.raises(ConfigurationError):
            derive_address("abcd")
