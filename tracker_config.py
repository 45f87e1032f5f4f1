# tracker_config.py
# Environment-driven configuration for the universal packet tracker.

import os
from typing import Optional

from dotenv import load_dotenv
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ConfigManager:
    """
    Manages application configuration, loading from environment variables.

    A `.env` file in the working directory is honoured. The source chain is where
    packets are sent and acknowledged; the destination chain is where they are
    received.
    """
    def __init__(self):
        load_dotenv()
        self.SOURCE_CHAIN_RPC_URL = os.getenv("SOURCE_CHAIN_RPC_URL", "https://sepolia.base.org")
        self.SOURCE_CHAIN_ID = _int_env("SOURCE_CHAIN_ID", 84532)
        self.DESTINATION_CHAIN_RPC_URL = os.getenv("DESTINATION_CHAIN_RPC_URL", "https://sepolia.optimism.io")
        self.DESTINATION_CHAIN_ID = _int_env("DESTINATION_CHAIN_ID", 11155420)

        self.SOURCE_DISPATCHER_ADDRESS = _address_env(
            "SOURCE_DISPATCHER_ADDRESS", "0x0dE926fE2001B2c96e9cA6b79089CEB276325E9F")
        self.DESTINATION_DISPATCHER_ADDRESS = _address_env(
            "DESTINATION_DISPATCHER_ADDRESS", "0x6C9427E8d770Ad9e5a493D201280Cc178125CEc0")
        # Universal channel middleware contracts acting as IBC ports
        self.SOURCE_PORT_ADDRESS = _address_env("SOURCE_PORT_ADDRESS", ZERO_ADDRESS)
        self.DESTINATION_PORT_ADDRESS = _address_env("DESTINATION_PORT_ADDRESS", ZERO_ADDRESS)
        self.SOURCE_CHANNEL_ID = os.getenv("SOURCE_CHANNEL_ID", "channel-11")
        self.DESTINATION_CHANNEL_ID = os.getenv("DESTINATION_CHANNEL_ID", "channel-10")

        self.LOOKBACK_BLOCKS = _int_env("LOOKBACK_BLOCKS", 3600)
        self.LOG_CHUNK_BLOCKS = _int_env("LOG_CHUNK_BLOCKS", 1000)
        self.RPC_TIMEOUT_SECONDS = _int_env("RPC_TIMEOUT_SECONDS", 10)
        self.POLL_INTERVAL_SECONDS = _int_env("POLL_INTERVAL_SECONDS", 15)

        self.SOURCE_EXPLORER_URL = os.getenv(
            "SOURCE_EXPLORER_URL", "https://base-sepolia.blockscout.com").rstrip("/")
        self.DESTINATION_EXPLORER_URL = os.getenv(
            "DESTINATION_EXPLORER_URL", "https://optimism-sepolia.blockscout.com").rstrip("/")
        self.STATE_FILE_PATH = os.getenv("STATE_FILE_PATH", "packets.json")

    def validate(self) -> None:
        """
        Rejects settings the tracker cannot work with.

        Raises:
            ValueError: If a port address is still the placeholder, a channel name
                        does not fit in bytes32, or a window size is not positive.
        """
        for name in ("SOURCE_PORT_ADDRESS", "DESTINATION_PORT_ADDRESS",
                     "SOURCE_DISPATCHER_ADDRESS", "DESTINATION_DISPATCHER_ADDRESS"):
            if getattr(self, name) == ZERO_ADDRESS:
                raise ValueError(f"Placeholder {name} detected. Please set a real address in your configuration.")
        for name in ("SOURCE_CHANNEL_ID", "DESTINATION_CHANNEL_ID"):
            value = getattr(self, name)
            if not value or len(value.encode("utf-8")) > 31:
                raise ValueError(f"{name} must be a non-empty string of at most 31 bytes, got {value!r}")
        for name in ("LOOKBACK_BLOCKS", "LOG_CHUNK_BLOCKS", "RPC_TIMEOUT_SECONDS", "POLL_INTERVAL_SECONDS"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

    def source_tx_url(self, tx_id: Optional[str]) -> Optional[str]:
        return f"{self.SOURCE_EXPLORER_URL}/tx/{tx_id}" if tx_id else None

    def destination_tx_url(self, tx_id: Optional[str]) -> Optional[str]:
        return f"{self.DESTINATION_EXPLORER_URL}/tx/{tx_id}" if tx_id else None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _address_env(name: str, default: str) -> str:
    raw = os.getenv(name, default)
    if not Web3.is_address(raw):
        raise ValueError(f"{name} is not a valid address: {raw!r}")
    return Web3.to_checksum_address(raw)
