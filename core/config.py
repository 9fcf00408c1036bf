"""Application configuration for the DeFi interaction farm.

Central configuration module powered by Pydantic v2.  Settings are loaded from
environment variables (with ``.env`` file support) and an optional
``config/config.txt`` file of ``KEY=VALUE`` overrides.

Key exports:
    BotSettings: Root settings model (instantiate once in ``main.py``).
    RetryPolicy / TimingConfig / DelayRange: Explicit config structs handed
        to the retry executor, sequencer and cycle runner.
    NetworkConfig / ApiConfig / InteractionParams: Protocol-facing settings.
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import logging
import random
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.utils import load_key_values

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime input files (keys, proxies, wallets)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


class DelayRange(BaseModel):
    """Inclusive ``[min_ms, max_ms]`` pacing window.

    Attributes:
        min_ms: Lower bound in milliseconds.
        max_ms: Upper bound in milliseconds.
    """

    min_ms: int = Field(ge=0)
    max_ms: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "DelayRange":
        if self.min_ms > self.max_ms:
            raise ValueError(
                f"min_ms ({self.min_ms}) must not exceed "
                f"max_ms ({self.max_ms})"
            )
        return self

    def sample(self, rng: Optional[random.Random] = None) -> float:
        """Draw a uniformly distributed delay.

        Args:
            rng: Optional random source (defaults to the ``random``
                module).

        Returns:
            Delay in **seconds**.
        """
        source = rng or random
        return source.uniform(self.min_ms, self.max_ms) / 1000.0

    def as_tuple(self) -> Tuple[int, int]:
        return self.min_ms, self.max_ms


class RetryPolicy(BaseModel):
    """Bounded retry with deterministic exponential backoff.

    Attributes:
        max_retries: Extra attempts after the first one (``0`` disables
            retrying).
        base_delay_ms: Backoff unit; attempt ``k`` waits
            ``2**k * base_delay_ms``.
    """

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=2000, gt=0)

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed attempt number *attempt* (1-indexed)."""
        return (2 ** attempt) * self.base_delay_ms / 1000.0


class TimingConfig(BaseModel):
    """Pacing between operations, identities and cycles."""

    inter_operation_delay: DelayRange = Field(
        default_factory=lambda: DelayRange(min_ms=2000, max_ms=5000)
    )
    inter_identity_delay: DelayRange = Field(
        default_factory=lambda: DelayRange(min_ms=5000, max_ms=15000)
    )
    cycle_interval_minutes: int = Field(default=30, gt=0)
    # Per-request HTTP / RPC timeout
    request_timeout_ms: int = Field(default=30000, gt=0)

    @property
    def cycle_interval_seconds(self) -> float:
        return self.cycle_interval_minutes * 60.0


class NetworkConfig(BaseModel):
    """Target EVM network.

    Attributes:
        name: Display name (e.g. ``"Ethereum Sepolia"``).
        chain_id: Expected chain id; connections to another chain fail.
        rpc_url: JSON-RPC endpoint.
        symbol: Native token ticker used in log lines.
        token_address: Optional ERC-20 contract whose balance is included
            in balance snapshots.
    """

    name: str = "Target Network"
    chain_id: int = 1
    rpc_url: str = "https://rpc-endpoint"
    symbol: str = "ETH"
    token_address: Optional[str] = None


class ApiConfig(BaseModel):
    """Protocol HTTP API endpoints."""

    base_url: str = "https://api.protocol.xyz"
    auth_endpoint: str = "/auth"
    faucet_endpoint: str = "/faucet"
    auth_message: str = "auth_message"
    # Used when fake_useragent cannot produce a value
    user_agent: str = "Mozilla/5.0 (compatible)"


class InteractionParams(BaseModel):
    """Amounts and counts for ledger interactions.

    Attributes:
        transfer_amount: Base amount per transfer, in ether units, kept as
            a string so the decimal precision survives randomisation.
        transfer_count: Transfers per identity per cycle.
        randomize: Apply ``+/- variation`` to every amount.
        variation: Fractional variation (``0.1`` = +/-10%).
        gas_limit: Gas limit for native transfers.
        gas_reserve: Ether kept back for fees; transfers that would dip
            below it are declined.
    """

    transfer_amount: str = "0.000001234"
    transfer_count: int = Field(default=10, ge=0)
    randomize: bool = True
    variation: float = Field(default=0.1, ge=0.0, lt=1.0)
    gas_limit: int = Field(default=21000, gt=0)
    gas_reserve: str = "0.001"


def _to_int(value: str) -> int:
    return int(value)


# config.txt key -> (section attribute, field, converter)
CUSTOM_CONFIG_KEYS: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "MAX_RETRIES": ("retry", "max_retries", _to_int),
    "RETRY_DELAY_BASE": ("retry", "base_delay_ms", _to_int),
    "CYCLE_INTERVAL": ("timing", "cycle_interval_minutes", _to_int),
    "TRANSFER_COUNT": ("interactions", "transfer_count", _to_int),
    "TRANSFER_AMOUNT": ("interactions", "transfer_amount", str),
    "RPC_URL": ("network", "rpc_url", str),
    "CHAIN_ID": ("network", "chain_id", _to_int),
    "NETWORK_NAME": ("network", "name", str),
    "TOKEN_ADDRESS": ("network", "token_address", str),
    "API_BASE_URL": ("api", "base_url", str),
}


class BotSettings(BaseSettings):
    """Root configuration model for the farm.

    All fields can be set via environment variables or a ``.env`` file;
    nested sections use a double underscore
    (``RETRY__MAX_RETRIES=5``, ``NETWORK__RPC_URL=...``).  After
    construction the optional ``config.txt`` file is merged in.

    Section overview:
        * **Core** -- log level, file logging, protocol selection.
        * **Inputs** -- private keys, proxies and target wallet files.
        * **Retry / Timing** -- structs consumed by the resilience core.
        * **Network / API / Interactions** -- protocol collaborators.
    """

    # Core
    log_level: str = "INFO"
    # File logging is off by default to save disk space
    log_to_file: bool = False
    protocol: str = "template"

    # Inputs
    private_keys_file: str = str(CONFIG_DIR / "privatekeys.txt")
    proxies_file: str = str(CONFIG_DIR / "proxies.txt")
    wallets_file: str = str(CONFIG_DIR / "wallets.txt")
    custom_config_file: str = str(CONFIG_DIR / "config.txt")

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    interactions: InteractionParams = Field(
        default_factory=InteractionParams
    )
    # Filled from config.txt during post-init
    applied_overrides: Dict[str, str] = Field(
        default_factory=dict, exclude=True
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Merge ``config.txt`` overrides after Pydantic construction."""
        self.applied_overrides = self._load_custom_config()

    def _load_custom_config(self) -> Dict[str, str]:
        """Apply ``KEY=VALUE`` overrides from ``custom_config_file``.

        Only keys listed in :data:`CUSTOM_CONFIG_KEYS` are honoured;
        unknown keys are logged at debug level and values that fail
        conversion or the section's field constraints are logged and
        skipped, leaving the previous value in place.

        Returns:
            The overrides that were actually applied.
        """
        raw = load_key_values(self.custom_config_file)
        applied: Dict[str, str] = {}
        for key, value in raw.items():
            target = CUSTOM_CONFIG_KEYS.get(key.upper())
            if target is None:
                logger.debug("Ignoring unknown config key %s", key)
                continue
            section_name, field_name, convert = target
            section = getattr(self, section_name)
            try:
                updated = type(section).model_validate(
                    {**section.model_dump(), field_name: convert(value)}
                )
            except (ValueError, ValidationError) as exc:
                logger.warning(
                    "Invalid value for %s in %s: %s",
                    key, self.custom_config_file, exc,
                )
                continue
            setattr(self, section_name, updated)
            applied[key.upper()] = value

        if applied:
            logger.info(
                "Loaded custom configuration with %d settings",
                len(applied),
            )
        return applied
