"""
Utility functions for parsing provider data and token amount arithmetic.
"""

from typing import List, Dict, Any, Optional, Union
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
import re
import logging

from web3 import Web3

from .models import TransferEvent, RawTransaction, TransactionLog, HolderRecord

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ABI words are 32 bytes, i.e. 64 hex characters
WORD_HEX_LENGTH = 64
SELECTOR_HEX_LENGTH = 8


def is_valid_ethereum_address(address: str) -> bool:
    """Check if a string is a valid Ethereum address."""
    if not address:
        return False

    if address.startswith('0x'):
        address = address[2:]

    return bool(re.match(r'^[0-9a-fA-F]{40}$', address))


def normalize_address(address: Optional[str]) -> str:
    """Normalize an address to lowercase with 0x prefix."""
    if not address:
        return ""

    address = address.strip().lower()
    if not address.startswith('0x'):
        address = '0x' + address

    return address


def is_mint_or_burn(transfer: TransferEvent) -> bool:
    """True when either side of the transfer is the zero address."""
    return (normalize_address(transfer.from_address) == ZERO_ADDRESS or
            normalize_address(transfer.to_address) == ZERO_ADDRESS)


def is_valid_method_selector(selector: str) -> bool:
    """Check for a 0x-prefixed 4-byte method selector."""
    return bool(selector) and bool(re.match(r'^0x[0-9a-fA-F]{8}$', selector))


def method_selector(signature: str) -> str:
    """Compute the 4-byte selector of a function signature, e.g. 'transfer(address,uint256)'."""
    signature = signature.replace(" ", "")
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a provider numeric field into a Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        return None

    return result if result.is_finite() else None


def parse_big_int(value: Any) -> Optional[int]:
    """Parse an unsigned integer given as int, decimal string or 0x-hex string."""
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, int):
            result = value
        else:
            text = str(value).strip()
            if text.lower().startswith('0x'):
                result = int(text, 16)
            else:
                result = int(text, 10)
    except (ValueError, TypeError):
        return None

    return result if result >= 0 else None


def scale_token_amount(value: int, decimals: int = 18) -> Decimal:
    """
    Scale an integer amount of base units down by 10**decimals.

    Uses integer division and remainder so that values far beyond 2**53
    convert without rounding, e.g. 1500000000000000000 -> Decimal('1.5').
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    if value < 0:
        raise ValueError(f"amount must be non-negative, got {value}")
    if decimals == 0:
        return Decimal(value)

    integer_part, fraction_part = divmod(value, 10 ** decimals)
    fraction_str = str(fraction_part).rjust(decimals, '0').rstrip('0')
    if fraction_str:
        return Decimal(f"{integer_part}.{fraction_str}")
    return Decimal(integer_part)


def decode_amount_from_input(input_data: Optional[str], decimals: int = 18) -> Optional[Decimal]:
    """
    Decode the amount argument straight from ABI-encoded call data.

    Layout: 4-byte selector, 32-byte recipient address, 32-byte big-endian
    amount. Returns None when the call data is too short or not hex.
    """
    if not input_data:
        return None

    data = input_data[2:] if input_data.lower().startswith('0x') else input_data
    start = SELECTOR_HEX_LENGTH + WORD_HEX_LENGTH
    end = start + WORD_HEX_LENGTH
    if len(data) < end:
        return None

    raw = parse_big_int('0x' + data[start:end])
    if raw is None:
        return None
    return scale_token_amount(raw, decimals)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a datetime, ISO-8601 string or unix seconds into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)

        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)

        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return datetime.fromtimestamp(int(text), tz=timezone.utc)
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            return parse_timestamp(datetime.fromisoformat(text))
    except (ValueError, TypeError, OverflowError, OSError):
        return None

    return None


def to_utc_date(value: Any) -> Optional[date]:
    """UTC calendar day of a timestamp, or None when it cannot be parsed."""
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def week_start_date(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def parse_moralis_transfers(raw_transfers: List[Dict[str, Any]],
                            decimals: int = 18) -> List[TransferEvent]:
    """Parse raw Moralis ERC-20 transfer records into TransferEvent objects."""
    transfers: List[TransferEvent] = []

    if not raw_transfers:
        return transfers

    for tx in raw_transfers:
        tx_hash = tx.get('transaction_hash', 'unknown') if isinstance(tx, dict) else 'unknown'
        try:
            required_fields = ['block_timestamp', 'from_address', 'to_address']
            if not all(tx.get(field) for field in required_fields):
                logger.warning(
                    f"Skipping transfer with missing fields: {tx_hash}")
                continue

            timestamp = parse_timestamp(tx['block_timestamp'])
            if timestamp is None:
                logger.warning(
                    f"Skipping transfer {tx_hash} with bad timestamp: {tx['block_timestamp']}")
                continue

            value = to_decimal(tx.get('value_decimal'))
            if value is None:
                raw_value = parse_big_int(tx.get('value'))
                token_decimals = parse_big_int(tx.get('token_decimals'))
                if raw_value is None:
                    logger.warning(
                        f"Skipping transfer {tx_hash} with bad value: {tx.get('value')}")
                    continue
                value = scale_token_amount(
                    raw_value, decimals if token_decimals is None else token_decimals)

            transfers.append(TransferEvent(
                timestamp=timestamp,
                from_address=normalize_address(tx['from_address']),
                to_address=normalize_address(tx['to_address']),
                value_decimal=value,
                tx_hash=tx.get('transaction_hash'),
            ))

        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Error parsing transfer {tx_hash}: {e}")
            continue

    logger.info(
        f"Parsed {len(transfers)} valid transfers from {len(raw_transfers)} raw transfers")
    return transfers


def _parse_logs(raw_logs: Any) -> Optional[List[TransactionLog]]:
    if not isinstance(raw_logs, list):
        return None

    logs = []
    for raw_log in raw_logs:
        if not isinstance(raw_log, dict):
            continue
        decoded = raw_log.get('decoded_event')
        if not isinstance(decoded, dict):
            decoded = {}
        params = decoded.get('params')
        if not isinstance(params, list):
            params = []
        logs.append(TransactionLog(
            decoded_params=[p.get('value') if isinstance(p, dict) else None for p in params],
            data=raw_log.get('data'),
        ))
    return logs


def parse_moralis_transactions(raw_transactions: List[Dict[str, Any]]) -> List[RawTransaction]:
    """Parse raw Moralis verbose transactions into RawTransaction objects."""
    transactions: List[RawTransaction] = []

    if not raw_transactions:
        return transactions

    for tx in raw_transactions:
        if not isinstance(tx, dict):
            logger.warning(f"Skipping non-object transaction record: {tx!r}")
            continue

        timestamp = parse_timestamp(tx.get('block_timestamp') or tx.get('blockTimestamp'))
        if timestamp is None:
            logger.warning(
                f"Skipping transaction {tx.get('hash', 'unknown')} with bad timestamp")
            continue

        transactions.append(RawTransaction(
            timestamp=timestamp,
            input=tx.get('input') or '',
            logs=_parse_logs(tx.get('logs')),
            tx_hash=tx.get('hash'),
        ))

    logger.info(
        f"Parsed {len(transactions)} valid transactions from {len(raw_transactions)} raw transactions")
    return transactions


def parse_moralis_holders(raw_holders: List[Dict[str, Any]]) -> List[HolderRecord]:
    """Map Moralis token owner records onto HolderRecord; validation happens during classification."""
    holders: List[HolderRecord] = []

    for holder in raw_holders or []:
        if not isinstance(holder, dict):
            logger.warning(f"Skipping non-object holder record: {holder!r}")
            continue

        balance_formatted = holder.get('balance_formatted')
        holders.append(HolderRecord(
            address=normalize_address(holder.get('owner_address')),
            balance_formatted=str(balance_formatted) if balance_formatted is not None else None,
            percentage_of_supply=to_decimal(
                holder.get('percentage_relative_to_total_supply')),
            balance_raw=holder.get('balance'),
        ))

    return holders


def format_number(number: Union[Decimal, int, float], decimals: int = 2) -> str:
    """Format a number with K/M/B suffixes."""
    try:
        if number == 0:
            return "0"

        num = float(number)

        if num >= 1_000_000_000:
            return f"{num / 1_000_000_000:.{decimals}f}B"
        elif num >= 1_000_000:
            return f"{num / 1_000_000:.{decimals}f}M"
        elif num >= 1_000:
            return f"{num / 1_000:.{decimals}f}K"
        else:
            return f"{num:.{decimals}f}"
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Error formatting number {number}: {e}")
        return str(number)
