"""
JSON file store for aggregated token metrics.

Rows are upserted by (contract address, day) so repeated syncs overwrite
instead of appending.
"""

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import (
    DailyAggregate,
    DailyWalletAggregate,
    HolderDistribution,
    TokenInfo,
    WeeklyPaymentAggregate,
)

logger = logging.getLogger(__name__)

CUMULATIVE_METRICS = "cumulative_metrics"
WALLETS = "wallets"
PAYMENTS = "payments"
HOLDERS = "holders"


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Dataclass row to a JSON-friendly dict (Decimals as strings, dates as ISO)."""
    if not is_dataclass(row):
        raise TypeError(f"Expected a dataclass instance, got {type(row).__name__}")
    return _plain(asdict(row))


class MetricsStore:
    """Aggregated metrics per token contract, persisted as one JSON document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"tokens": {}}

        with open(self.path) as f:
            data = json.load(f)
        data.setdefault("tokens", {})
        return data

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        logger.info(f"Saved metrics store to {self.path}")

    def _token(self, contract_address: str) -> Dict[str, Any]:
        tokens = self._data["tokens"]
        return tokens.setdefault(contract_address.lower(), {
            CUMULATIVE_METRICS: {},
            WALLETS: {},
            PAYMENTS: {},
            HOLDERS: {},
            "last_sync_at": None,
        })

    def _upsert(self, contract_address: str, table: str, key_field: str, rows: List[Any]) -> int:
        bucket = self._token(contract_address).setdefault(table, {})
        for row in rows:
            record = row_to_dict(row)
            bucket[record[key_field]] = record
        return len(rows)

    def _rows(self, contract_address: str, table: str) -> List[Dict[str, Any]]:
        token = self._data["tokens"].get(contract_address.lower(), {})
        bucket = token.get(table, {})
        return [bucket[key] for key in sorted(bucket)]

    def upsert_cumulative_metrics(self, contract_address: str, rows: List[DailyAggregate]) -> int:
        return self._upsert(contract_address, CUMULATIVE_METRICS, "date", rows)

    def upsert_wallet_data(self, contract_address: str, rows: List[DailyWalletAggregate]) -> int:
        return self._upsert(contract_address, WALLETS, "date", rows)

    def upsert_payment_data(self, contract_address: str, rows: List[WeeklyPaymentAggregate]) -> int:
        return self._upsert(contract_address, PAYMENTS, "week_start_date", rows)

    def upsert_token_holders(self, contract_address: str, distribution: HolderDistribution,
                             snapshot_date: Optional[date] = None):
        """Store today's holder snapshot, replacing any earlier one from the same day."""
        snapshot_date = snapshot_date or datetime.now(timezone.utc).date()
        record = row_to_dict(distribution)
        record["date"] = snapshot_date.isoformat()
        self._token(contract_address)[HOLDERS][record["date"]] = record

    def save_token_info(self, token_info: TokenInfo):
        self._token(token_info.contract_address)["token_info"] = row_to_dict(token_info)

    def get_token_info(self, contract_address: str) -> Optional[TokenInfo]:
        token = self._data["tokens"].get(contract_address.lower(), {})
        record = token.get("token_info")
        return TokenInfo(**record) if record else None

    def has_metrics(self, contract_address: str) -> bool:
        return bool(self._rows(contract_address, CUMULATIVE_METRICS)
                    or self._rows(contract_address, WALLETS))

    def get_cumulative_metrics(self, contract_address: str) -> List[Dict[str, Any]]:
        return self._rows(contract_address, CUMULATIVE_METRICS)

    def get_wallet_data(self, contract_address: str) -> List[Dict[str, Any]]:
        return self._rows(contract_address, WALLETS)

    def get_payment_data(self, contract_address: str) -> List[Dict[str, Any]]:
        return self._rows(contract_address, PAYMENTS)

    def get_token_holders(self, contract_address: str) -> Optional[Dict[str, Any]]:
        """Latest holder snapshot."""
        snapshots = self._rows(contract_address, HOLDERS)
        return snapshots[-1] if snapshots else None

    def mark_synced(self, contract_address: str, when: Optional[datetime] = None):
        when = when or datetime.now(timezone.utc)
        self._token(contract_address)["last_sync_at"] = when.isoformat()

    def last_sync(self, contract_address: str) -> Optional[datetime]:
        token = self._data["tokens"].get(contract_address.lower(), {})
        value = token.get("last_sync_at")
        return datetime.fromisoformat(value) if value else None

    def needs_sync(self, contract_address: str, interval: timedelta,
                   now: Optional[datetime] = None) -> bool:
        """True when the token was never synced or the last sync is older than `interval`."""
        last = self.last_sync(contract_address)
        if last is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now - last >= interval
