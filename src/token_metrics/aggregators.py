"""
Aggregation of provider records into dated metric rows.

Every function here is a pure, single-pass reduction over an already fetched
sequence. Malformed records are logged and skipped; only invalid arguments
(a missing sequence, a bad selector, negative decimals) raise ValueError.
"""

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .models import (
    DailyAggregate,
    DailyWalletAggregate,
    Holder,
    HolderBubble,
    HolderDistribution,
    HolderRecord,
    RawTransaction,
    TierDistribution,
    TierSummary,
    TierThresholds,
    TokenInfo,
    TokenStats,
    TransferEvent,
    WeeklyPaymentAggregate,
)
from .utils import (
    decode_amount_from_input,
    is_mint_or_burn,
    is_valid_method_selector,
    normalize_address,
    parse_big_int,
    scale_token_amount,
    to_decimal,
    to_utc_date,
    week_start_date,
)

logger = logging.getLogger(__name__)

DEFAULT_TIER_THRESHOLDS = TierThresholds()
TIERS = ("whales", "large", "medium", "small")

# Payment amount lives in the third decoded parameter of Transfer(from, to, value)
PAYMENT_PARAM_INDEX = 2

BUBBLE_MIN_SIZE = Decimal(10)
BUBBLE_MAX_SIZE = Decimal(50)
BUBBLE_SCALE = Decimal(10)


def _require_argument(value, name: str):
    if value is None:
        raise ValueError(f"{name} must not be None")


def _require_decimals(decimals: int):
    if decimals is None or decimals < 0:
        raise ValueError(f"decimals must be a non-negative integer, got {decimals}")


def aggregate_cumulative_growth(transfers: Iterable[TransferEvent],
                                exclude_mint_burn: bool = False) -> List[DailyAggregate]:
    """
    Group transfers by UTC day and attach running totals.

    Returns one row per day that had at least one transfer, ordered by date.
    With `exclude_mint_burn`, transfers from or to the zero address are left out.
    """
    _require_argument(transfers, "transfers")

    daily_counts: Dict[date, int] = defaultdict(int)
    daily_amounts: Dict[date, Decimal] = defaultdict(Decimal)

    for transfer in transfers:
        if exclude_mint_burn and is_mint_or_burn(transfer):
            continue

        day = to_utc_date(transfer.timestamp)
        if day is None:
            logger.warning(
                f"Skipping transfer {transfer.tx_hash} with bad timestamp: {transfer.timestamp!r}")
            continue

        amount = to_decimal(transfer.value_decimal)
        if amount is None:
            logger.warning(
                f"Skipping transfer {transfer.tx_hash} with bad amount: {transfer.value_decimal!r}")
            continue

        daily_counts[day] += 1
        daily_amounts[day] += amount

    rows = []
    cumulative_count = 0
    cumulative_amount = Decimal(0)

    for day in sorted(daily_counts):
        cumulative_count += daily_counts[day]
        cumulative_amount += daily_amounts[day]
        rows.append(DailyAggregate(
            date=day,
            daily_tx_count=daily_counts[day],
            daily_tx_amount=daily_amounts[day],
            cumulative_tx_count=cumulative_count,
            cumulative_tx_amount=cumulative_amount,
        ))

    logger.info(f"Aggregated cumulative growth over {len(rows)} days")
    return rows


def aggregate_wallet_activity(transfers: Iterable[TransferEvent]) -> List[DailyWalletAggregate]:
    """Daily active, new and cumulative unique wallets, ordered by date."""
    _require_argument(transfers, "transfers")

    daily_wallets: Dict[date, Set[str]] = defaultdict(set)

    for transfer in transfers:
        day = to_utc_date(transfer.timestamp)
        from_address = normalize_address(transfer.from_address)
        to_address = normalize_address(transfer.to_address)

        if day is None or not from_address or not to_address:
            logger.warning(
                f"Skipping transfer {transfer.tx_hash} with missing timestamp or address")
            continue

        daily_wallets[day].update((from_address, to_address))

    rows = []
    seen_wallets: Set[str] = set()

    for day in sorted(daily_wallets):
        active = daily_wallets[day]
        new = active - seen_wallets
        seen_wallets |= new
        rows.append(DailyWalletAggregate(
            date=day,
            unique_wallet_count=len(seen_wallets),
            new_wallets=len(new),
            active_wallets=len(active),
        ))

    logger.info(
        f"Aggregated wallet activity over {len(rows)} days, {len(seen_wallets)} unique wallets")
    return rows


def payment_amount(transaction: RawTransaction, decimals: int = 18,
                   param_index: int = PAYMENT_PARAM_INDEX) -> Decimal:
    """
    Token amount moved by a payment transaction.

    Sums the `param_index` decoded parameter over the transaction's logs when
    at least one log yields an amount; otherwise reads the amount argument
    from the raw call data. Values that cannot be decoded count as zero.
    """
    total = Decimal(0)
    decoded_any = False
    for log in transaction.logs or []:
        params = log.decoded_params or []
        raw_value = params[param_index] if len(params) > param_index else None
        if raw_value is None:
            continue

        value = parse_big_int(raw_value)
        if value is None:
            logger.warning(
                f"Unparseable log amount {raw_value!r} in transaction {transaction.tx_hash}")
            continue
        total += scale_token_amount(value, decimals)
        decoded_any = True

    if decoded_any:
        return total

    amount = decode_amount_from_input(transaction.input, decimals)
    if amount is None:
        logger.warning(
            f"Could not decode payment amount for transaction {transaction.tx_hash}")
        return Decimal(0)
    return amount


def aggregate_weekly_payments(transactions: Iterable[RawTransaction], method_selector: str,
                              decimals: int = 18,
                              param_index: int = PAYMENT_PARAM_INDEX) -> List[WeeklyPaymentAggregate]:
    """
    Total, count and average of payments per Monday-start week.

    Only transactions whose call data starts with `method_selector` are
    payments. A payment whose amount cannot be decoded still counts towards
    `payment_count` with a zero amount.
    """
    _require_argument(transactions, "transactions")
    if not is_valid_method_selector(method_selector):
        raise ValueError(f"Invalid method selector: {method_selector!r}")
    _require_decimals(decimals)

    selector = method_selector.lower()
    weekly_totals: Dict[date, Decimal] = defaultdict(Decimal)
    weekly_counts: Dict[date, int] = defaultdict(int)

    for tx in transactions:
        if not (tx.input or "").lower().startswith(selector):
            continue

        day = to_utc_date(tx.timestamp)
        if day is None:
            logger.warning(
                f"Skipping transaction {tx.tx_hash} with bad timestamp: {tx.timestamp!r}")
            continue

        week = week_start_date(day)
        weekly_totals[week] += payment_amount(tx, decimals, param_index)
        weekly_counts[week] += 1

    rows = []
    for week in sorted(weekly_counts):
        count = weekly_counts[week]
        total = weekly_totals[week]
        rows.append(WeeklyPaymentAggregate(
            week_start_date=week,
            total_payments_amount=total,
            payment_count=count,
            average_payment=total / count if count > 0 else Decimal(0),
        ))

    logger.info(f"Aggregated payments over {len(rows)} weeks")
    return rows


def _holder_balance(record: HolderRecord, decimals: int) -> Optional[Decimal]:
    if record.balance_formatted not in (None, ""):
        return to_decimal(record.balance_formatted)

    raw = parse_big_int(record.balance_raw)
    if raw is None:
        return None
    return scale_token_amount(raw, decimals)


def classify_holders(holders: Iterable[HolderRecord], decimals: int,
                     thresholds: TierThresholds = DEFAULT_TIER_THRESHOLDS) -> HolderDistribution:
    """
    Bucket holders into whale/large/medium/small tiers by share of supply.

    Holders come back sorted by balance, largest first. A record without an
    address or a parsable balance is skipped. `decimals` scales `balance_raw`
    for records that carry no formatted balance.
    """
    _require_argument(holders, "holders")
    _require_decimals(decimals)

    valid: List[Holder] = []
    for record in holders:
        if not record.address:
            logger.warning(f"Skipping holder with missing address: {record}")
            continue

        balance = _holder_balance(record, decimals)
        if balance is None:
            logger.warning(f"Skipping holder {record.address} with invalid balance")
            continue

        percentage = to_decimal(record.percentage_of_supply)
        valid.append(Holder(
            address=record.address,
            balance=balance,
            balance_formatted=record.balance_formatted or str(balance),
            percentage=percentage if percentage is not None else Decimal(0),
        ))

    valid.sort(key=lambda h: h.balance, reverse=True)

    distribution = TierDistribution()
    for holder in valid:
        tier = thresholds.classify(holder.percentage)
        setattr(distribution, tier, getattr(distribution, tier) + 1)

    return HolderDistribution(
        total_holders=len(valid),
        total_supply=sum((h.balance for h in valid), Decimal(0)),
        holders=valid,
        distribution=distribution,
    )


def _pct(value: Decimal) -> str:
    return f"{value.normalize():f}"


def tier_labels(thresholds: TierThresholds = DEFAULT_TIER_THRESHOLDS) -> Dict[str, str]:
    return {
        "whales": f"Whales (>{_pct(thresholds.whale)}%)",
        "large": f"Large ({_pct(thresholds.large)}-{_pct(thresholds.whale)}%)",
        "medium": f"Medium ({_pct(thresholds.medium)}-{_pct(thresholds.large)}%)",
        "small": f"Small (<{_pct(thresholds.medium)}%)",
    }


def format_for_pie_chart(distribution: HolderDistribution,
                         thresholds: TierThresholds = DEFAULT_TIER_THRESHOLDS) -> List[TierSummary]:
    """Non-empty tiers with their share of all holders."""
    _require_argument(distribution, "distribution")

    labels = tier_labels(thresholds)
    total = distribution.total_holders
    summary = []

    for tier in TIERS:
        count = getattr(distribution.distribution, tier)
        if count == 0:
            continue
        percentage = Decimal(count) / Decimal(total) * 100 if total else Decimal(0)
        summary.append(TierSummary(
            tier=tier,
            category=labels[tier],
            count=count,
            percentage=percentage,
        ))

    return summary


def format_for_bubble_chart(distribution: HolderDistribution,
                            thresholds: TierThresholds = DEFAULT_TIER_THRESHOLDS) -> List[HolderBubble]:
    """Per-holder rows with a bubble size clamped to [10, 50]."""
    _require_argument(distribution, "distribution")

    bubbles = []
    for index, holder in enumerate(distribution.holders):
        size = max(BUBBLE_MIN_SIZE, min(BUBBLE_MAX_SIZE, holder.percentage * BUBBLE_SCALE))
        bubbles.append(HolderBubble(
            address=holder.address,
            balance=holder.balance,
            balance_formatted=holder.balance_formatted,
            percentage=holder.percentage,
            size=size,
            tier=thresholds.classify(holder.percentage),
            x=index,
            y=holder.percentage,
        ))
    return bubbles


def growth_percentage(current: int, previous: int) -> Decimal:
    """Percent change from `previous` to `current`, one decimal place; +100 from zero."""
    if previous == 0:
        return Decimal(100)
    change = (Decimal(current) - Decimal(previous)) / Decimal(previous) * 100
    return change.quantize(Decimal("0.1"))


def _latest_and_previous(rows: Sequence[Dict[str, Any]], field: str):
    values = [int(row.get(field) or 0) for row in rows]
    latest = values[-1] if values else 0
    previous = values[-2] if len(values) > 1 else None
    return latest, previous


def summarize_token_stats(token_info: TokenInfo,
                          cumulative_rows: Sequence[Dict[str, Any]],
                          wallet_rows: Sequence[Dict[str, Any]],
                          last_sync_at: Optional[datetime] = None) -> TokenStats:
    """
    Headline stats from stored, date-ordered aggregate rows.

    Unique users is the latest wallet row's running wallet count and
    transactions processed the latest cumulative transfer count. Growth
    compares the latest row with the one before it and is None with fewer
    than two rows.
    """
    _require_argument(token_info, "token_info")
    _require_argument(cumulative_rows, "cumulative_rows")
    _require_argument(wallet_rows, "wallet_rows")

    raw_supply = parse_big_int(token_info.total_supply)
    supply = scale_token_amount(raw_supply, token_info.decimals) if raw_supply is not None else Decimal(0)

    users, previous_users = _latest_and_previous(wallet_rows, "unique_wallet_count")
    transactions, previous_transactions = _latest_and_previous(cumulative_rows, "cumulative_tx_count")

    return TokenStats(
        symbol=token_info.symbol,
        name=token_info.name,
        contract_address=token_info.contract_address,
        circulating_supply=supply,
        unique_users=users,
        transactions_processed=transactions,
        unique_users_growth=(growth_percentage(users, previous_users)
                             if previous_users is not None else None),
        transactions_growth=(growth_percentage(transactions, previous_transactions)
                             if previous_transactions is not None else None),
        last_sync_at=last_sync_at,
    )
