"""Application configuration.

Settings are read once from the environment (or a ``.env`` file) and turned
into an immutable ``ForwardingConfig``. Any invalid value is fatal: the
forwarder must not start with a credential that does not control the
monitored account.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict
from tronpy.exceptions import BadKey
from tronpy.keys import PrivateKey, is_base58check_address

from forwarder.exceptions import ConfigurationError
from forwarder_core.amounts import trx_to_sun

SHASTA_ENDPOINT = "https://api.shasta.trongrid.io"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FORWARDER_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Monitored (receiving) wallet
    private_key: str = ""
    monitored_address: str = ""

    # Forwarding target
    destination_address: str = ""
    fee_reserve_trx: Decimal = Decimal("0.5")

    # Ledger
    ledger_endpoint: str = SHASTA_ENDPOINT
    ledger_api_key: str = ""

    # Timing (seconds)
    poll_interval: float = 3.0
    forward_delay: float = 2.0
    settlement_delay: float = 5.0
    retry_delay: float = 3.0
    signer_timeout: float | None = None  # None = wait for the operator indefinitely

    # Forwarding policy
    max_attempts: int = 3
    heartbeat_every: int = 20

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def derive_address(private_key: str) -> str:
    """Base58 address controlled by a hex private key."""
    try:
        key = PrivateKey(bytes.fromhex(private_key.removeprefix("0x")))
    except (ValueError, TypeError, BadKey) as e:
        raise ConfigurationError(f"Invalid private key: {e}") from e
    return key.public_key.to_base58check_address()


class ForwardingConfig(BaseModel):
    """Validated, immutable forwarding configuration (amounts in sun)."""

    model_config = ConfigDict(frozen=True)

    private_key: str
    monitored_address: str
    destination_address: str
    fee_reserve: int
    poll_interval: float
    ledger_endpoint: str
    ledger_api_key: str = ""
    forward_delay: float = 2.0
    settlement_delay: float = 5.0
    retry_delay: float = 3.0
    signer_timeout: float | None = None
    max_attempts: int = 3
    heartbeat_every: int = 20

    def __repr__(self) -> str:
        # Never leak the credential into logs or tracebacks
        return (
            f"ForwardingConfig(monitored_address={self.monitored_address!r}, "
            f"destination_address={self.destination_address!r}, "
            f"fee_reserve={self.fee_reserve}, poll_interval={self.poll_interval}, "
            f"ledger_endpoint={self.ledger_endpoint!r})"
        )

    __str__ = __repr__

    @classmethod
    def from_settings(cls, settings: Settings) -> "ForwardingConfig":
        """Validate settings and build the config.

        Raises:
            ConfigurationError: on a missing or invalid value, or when the
                credential does not control the monitored address.
        """
        missing = [
            name
            for name in ("private_key", "monitored_address", "destination_address")
            if not getattr(settings, name)
        ]
        if missing:
            env_names = ", ".join(f"FORWARDER_{name.upper()}" for name in missing)
            raise ConfigurationError(f"Missing configuration: {env_names}")

        for name in ("monitored_address", "destination_address"):
            value = getattr(settings, name)
            if not is_base58check_address(value):
                raise ConfigurationError(f"{name} is not a valid TRON address: {value}")

        if settings.monitored_address == settings.destination_address:
            raise ConfigurationError("destination_address must differ from monitored_address")

        derived = derive_address(settings.private_key)
        if derived != settings.monitored_address:
            raise ConfigurationError(
                f"Private key controls {derived}, not monitored address {settings.monitored_address}"
            )

        if settings.fee_reserve_trx < 0:
            raise ConfigurationError("fee_reserve_trx must not be negative")
        if settings.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if settings.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if settings.heartbeat_every < 1:
            raise ConfigurationError("heartbeat_every must be at least 1")

        return cls(
            private_key=settings.private_key.removeprefix("0x"),
            monitored_address=settings.monitored_address,
            destination_address=settings.destination_address,
            fee_reserve=trx_to_sun(settings.fee_reserve_trx),
            poll_interval=settings.poll_interval,
            ledger_endpoint=settings.ledger_endpoint.rstrip("/"),
            ledger_api_key=settings.ledger_api_key,
            forward_delay=settings.forward_delay,
            settlement_delay=settings.settlement_delay,
            retry_delay=settings.retry_delay,
            signer_timeout=settings.signer_timeout,
            max_attempts=settings.max_attempts,
            heartbeat_every=settings.heartbeat_every,
        )

    def public_view(self) -> dict:
        """Config fields safe to expose over the API."""
        return self.model_dump(exclude={"private_key", "ledger_api_key"})
