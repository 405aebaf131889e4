"""
Wallet and Electrum client configuration.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Mapping
from typing import Any, Literal

from btccore.models import NetworkType
from btccore.network import Endpoint, TransportProtocol
from btccore.rpc import DEFAULT_REQUEST_TIMEOUT
from loguru import logger
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from btcwallet.errors import UnsupportedBipError

SUPPORTED_BIPS = (44, 84)
DEFAULT_BIP = 84


class WalletConfig(BaseModel):
    """
    Per-signer wallet configuration.

    bip selects the script type (44 -> P2PKH, 84 -> P2WPKH) and network the
    address prefix. Build instances through normalize_config() so defaults and
    validation are applied in one place.
    """

    bip: Literal[44, 84] = DEFAULT_BIP
    network: NetworkType = NetworkType.MAINNET

    model_config = {"frozen": True}


def normalize_config(config: WalletConfig | Mapping[str, Any] | None = None) -> WalletConfig:
    """
    Apply defaults (bip=84, network=mainnet) and validate.

    Raises:
        UnsupportedBipError: If bip is not one of 44, 84
    """
    if isinstance(config, WalletConfig):
        return config

    data = dict(config or {})
    bip = data.get("bip")
    if bip is None:
        bip = DEFAULT_BIP
    if bip not in SUPPORTED_BIPS:
        raise UnsupportedBipError(f"Invalid bip specification: {bip}. Supported bips: 44, 84.")

    network = NetworkType.parse(data.get("network"))
    return WalletConfig(bip=bip, network=network)


class PersistencePolicy(BaseModel):
    """
    Reconnection behaviour of a persistent Electrum client.

    A client makes 1 + max_retry connection attempts spaced retry_period
    seconds apart (linear) before giving up and calling on_exhausted.
    """

    max_retry: int = Field(default=2, ge=0)
    retry_period: float = Field(default=1.0, ge=0, description="Seconds between attempts")
    ping_period: float = Field(default=120.0, gt=0, description="Seconds between keep-alive pings")
    on_exhausted: Callable[[BaseException | None], None] | None = None

    model_config = {"frozen": True}


class ElectrumSettings(BaseSettings):
    """Electrum connection settings loaded from ELECTRUM_* environment variables or .env."""

    model_config = SettingsConfigDict(
        env_prefix="ELECTRUM_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    host: str = "electrum.blockstream.info"
    port: int = 50001
    protocol: TransportProtocol = TransportProtocol.TCP
    path: str = ""
    verify_tls: bool = True

    timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retry: int = 2
    retry_period: float = 1.0
    ping_period: float = 120.0

    log_level: str = "INFO"

    def endpoint(self) -> Endpoint:
        return Endpoint(
            host=self.host,
            port=self.port,
            protocol=self.protocol,
            path=self.path,
            verify_tls=self.verify_tls,
        )

    def policy(self, on_exhausted: Callable[[BaseException | None], None] | None = None) -> PersistencePolicy:
        return PersistencePolicy(
            max_retry=self.max_retry,
            retry_period=self.retry_period,
            ping_period=self.ping_period,
            on_exhausted=on_exhausted,
        )


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
