"""
Data models for token metrics aggregation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List
from decimal import Decimal


@dataclass
class TokenInfo:
    """Information about a token contract."""
    name: str
    symbol: str
    contract_address: str
    decimals: int
    total_supply: Optional[str] = None


@dataclass
class TransferEvent:
    """One on-chain token transfer."""
    timestamp: datetime  # raw provider strings are tolerated too
    from_address: str
    to_address: str
    value_decimal: Decimal
    tx_hash: Optional[str] = None


@dataclass
class DailyAggregate:
    """Transfer count and volume for one day, plus running totals."""
    date: date
    daily_tx_count: int
    daily_tx_amount: Decimal
    cumulative_tx_count: int
    cumulative_tx_amount: Decimal


@dataclass
class DailyWalletAggregate:
    """Wallet growth for one day."""
    date: date
    unique_wallet_count: int  # distinct addresses seen through this day
    new_wallets: int  # first seen on this day
    active_wallets: int  # seen on this day


@dataclass
class TransactionLog:
    """Decoded event parameters of a single emitted log, in ABI order."""
    decoded_params: List[Optional[str]] = field(default_factory=list)
    data: Optional[str] = None


@dataclass
class RawTransaction:
    """A contract call as returned by the provider."""
    timestamp: datetime
    input: str
    logs: Optional[List[TransactionLog]] = None  # None: no decoded logs available
    tx_hash: Optional[str] = None


@dataclass
class WeeklyPaymentAggregate:
    """Payment totals for the week starting on a Monday."""
    week_start_date: date
    total_payments_amount: Decimal
    payment_count: int
    average_payment: Decimal


@dataclass
class HolderRecord:
    """Holder snapshot row as reported by the provider."""
    address: str
    balance_formatted: Optional[str]
    percentage_of_supply: Optional[Decimal] = None
    balance_raw: Optional[str] = None


@dataclass
class Holder:
    """A validated holder with a parsed balance."""
    address: str
    balance: Decimal
    balance_formatted: str
    percentage: Decimal


@dataclass
class TierDistribution:
    """Holder counts per tier."""
    whales: int = 0
    large: int = 0
    medium: int = 0
    small: int = 0

    def total(self) -> int:
        return self.whales + self.large + self.medium + self.small


@dataclass(frozen=True)
class TierThresholds:
    """
    Percentage-of-supply cutoffs for the holder tiers.

    Ranges are right-closed: a holder above `whale` is a whale, above `large`
    (up to and including `whale`) is large, above `medium` is medium, and
    everything else is small.
    """
    whale: Decimal = Decimal("1")
    large: Decimal = Decimal("0.1")
    medium: Decimal = Decimal("0.01")

    def classify(self, percentage: Decimal) -> str:
        if percentage > self.whale:
            return "whales"
        if percentage > self.large:
            return "large"
        if percentage > self.medium:
            return "medium"
        return "small"


@dataclass
class HolderDistribution:
    """Snapshot of a token's holders bucketed into tiers."""
    total_holders: int
    total_supply: Decimal
    holders: List[Holder]
    distribution: TierDistribution


@dataclass
class TierSummary:
    """One slice of the tier summary (pie chart)."""
    tier: str
    category: str
    count: int
    percentage: Decimal  # share of all holders, 0-100


@dataclass
class HolderBubble:
    """A holder annotated for bubble-style charts."""
    address: str
    balance: Decimal
    balance_formatted: str
    percentage: Decimal
    size: Decimal
    tier: str
    x: int
    y: Decimal


@dataclass
class TokenStats:
    """Headline numbers for one token, derived from stored aggregates."""
    symbol: str
    name: str
    contract_address: str
    circulating_supply: Decimal
    unique_users: int
    transactions_processed: int
    unique_users_growth: Optional[Decimal] = None  # percent vs. the previous stored day
    transactions_growth: Optional[Decimal] = None
    last_sync_at: Optional[datetime] = None
