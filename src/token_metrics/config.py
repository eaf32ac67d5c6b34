import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from dotenv import load_dotenv

from .models import TierThresholds
from .utils import is_valid_method_selector

# Load environment variables from .env file
load_dotenv()


def parse_contracts(value: Optional[str]) -> Dict[str, str]:
    """Parse 'LZAR=0x...,LUSD=0x...' into a symbol -> address mapping."""
    contracts: Dict[str, str] = {}
    if not value:
        return contracts

    for entry in value.split(","):
        if "=" not in entry:
            continue
        symbol, address = entry.split("=", 1)
        symbol, address = symbol.strip().upper(), address.strip().lower()
        if symbol and address:
            contracts[symbol] = address
    return contracts


def parse_threshold(name: str, default: str) -> Decimal:
    """Read a tier cutoff (percent of supply) from the environment."""
    value = os.getenv(name, default)
    try:
        threshold = Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not threshold.is_finite() or threshold < 0:
        raise ValueError(f"{name} must be a non-negative number, got {value!r}")
    return threshold


@dataclass
class Config:
    """Application configuration."""

    # API Keys
    moralis_api_key: str

    # API settings
    moralis_base_url: str = "https://deep-index.moralis.io/api/v2.2"
    chain: str = "0x46f"  # Lisk
    page_limit: int = 100
    max_pages: Optional[int] = None
    rate_limit_delay: float = 0.2  # seconds between API calls
    request_timeout: float = 30.0

    # Aggregation settings
    token_decimals: int = 18
    payment_method_id: str = "0xa9059cbb"  # transfer(address,uint256)
    exclude_mint_burn: bool = False
    whale_threshold: Decimal = Decimal("1")
    large_threshold: Decimal = Decimal("0.1")
    medium_threshold: Decimal = Decimal("0.01")

    # Tracked tokens and storage
    contracts: Dict[str, str] = field(default_factory=dict)
    store_path: str = "token_metrics.json"
    sync_interval_days: int = 7

    # Output settings
    output_format: str = "table"  # table, csv, json

    @property
    def tier_thresholds(self) -> TierThresholds:
        return TierThresholds(
            whale=self.whale_threshold,
            large=self.large_threshold,
            medium=self.medium_threshold,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        moralis_key = os.getenv("MORALIS_API_KEY")
        if not moralis_key:
            raise ValueError(
                "MORALIS_API_KEY environment variable is required")

        max_pages = os.getenv("MAX_PAGES")

        payment_method_id = os.getenv("PAYMENT_METHOD_ID", "0xa9059cbb").strip().lower()
        if not is_valid_method_selector(payment_method_id):
            raise ValueError(
                f"PAYMENT_METHOD_ID must be a 4-byte selector like 0xa9059cbb, got {payment_method_id!r}")

        return cls(
            moralis_api_key=moralis_key,
            moralis_base_url=os.getenv(
                "MORALIS_BASE_URL", "https://deep-index.moralis.io/api/v2.2"),
            chain=os.getenv("CHAIN", "0x46f"),
            page_limit=int(os.getenv("PAGE_LIMIT", "100")),
            max_pages=int(max_pages) if max_pages else None,
            rate_limit_delay=float(os.getenv("RATE_LIMIT_DELAY", "0.2")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            token_decimals=int(os.getenv("TOKEN_DECIMALS", "18")),
            payment_method_id=payment_method_id,
            exclude_mint_burn=os.getenv(
                "EXCLUDE_MINT_BURN", "false").lower() == "true",
            whale_threshold=parse_threshold("WHALE_THRESHOLD", "1"),
            large_threshold=parse_threshold("LARGE_THRESHOLD", "0.1"),
            medium_threshold=parse_threshold("MEDIUM_THRESHOLD", "0.01"),
            contracts=parse_contracts(os.getenv("TOKEN_CONTRACTS")),
            store_path=os.getenv("STORE_PATH", "token_metrics.json"),
            sync_interval_days=int(os.getenv("SYNC_INTERVAL_DAYS", "7")),
            output_format=os.getenv("OUTPUT_FORMAT", "table"),
        )
