import time
import logging
from typing import Optional, List, Dict, Any

import requests

from .config import Config
from .models import TokenInfo

# Set up logging
logger = logging.getLogger(__name__)


class MoralisAPIError(Exception):
    """Raised when the Moralis API cannot be reached or returns an error."""


class MoralisClient:
    """Client for the Moralis EVM REST API."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.moralis_base_url.rstrip("/")
        self.api_key = config.moralis_api_key
        self.session = session or requests.Session()

    def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make a request to the Moralis API."""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {"X-API-Key": self.api_key, "accept": "application/json"}

        request_params = {"chain": self.config.chain}
        request_params.update(params or {})

        try:
            response = self.session.get(
                url, params=request_params, headers=headers,
                timeout=self.config.request_timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise MoralisAPIError(f"Moralis API request to {endpoint} failed: {e}") from e
        except ValueError as e:
            raise MoralisAPIError(f"Moralis API returned invalid JSON for {endpoint}: {e}") from e

        # Rate limiting
        time.sleep(self.config.rate_limit_delay)

        return data

    def _paginate(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Follow the response cursor until the provider reports no more pages."""
        results: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        pages = 0

        while True:
            page_params = {"limit": self.config.page_limit}
            page_params.update(params or {})
            if cursor:
                page_params["cursor"] = cursor

            data = self._make_request(endpoint, page_params)
            results.extend(data.get("result") or [])
            pages += 1

            cursor = data.get("cursor")
            if not cursor:
                break
            if self.config.max_pages is not None and pages >= self.config.max_pages:
                logger.warning(
                    f"Stopping {endpoint} after {pages} pages (max_pages reached)")
                break

        logger.info(f"Fetched {len(results)} records from {endpoint} in {pages} pages")
        return results

    def get_token_transfers(self, contract_address: str) -> List[Dict[str, Any]]:
        """Get all ERC-20 transfer events for a token."""
        return self._paginate(f"erc20/{contract_address.lower()}/transfers")

    def get_contract_transactions(self, contract_address: str) -> List[Dict[str, Any]]:
        """Get all transactions sent to a contract, with decoded logs."""
        return self._paginate(f"{contract_address.lower()}/verbose", {"order": "DESC"})

    def get_token_owners(self, contract_address: str) -> List[Dict[str, Any]]:
        """Get the current holder snapshot of a token."""
        return self._paginate(f"erc20/{contract_address.lower()}/owners", {"order": "DESC"})

    def get_token_metadata(self, contract_address: str) -> TokenInfo:
        """Get token name, symbol and decimals."""
        address = contract_address.lower()
        try:
            data = self._make_request("erc20/metadata", {"addresses[]": address})
            if data and isinstance(data, list):
                token_data = data[0]
                decimals = token_data.get("decimals")
                return TokenInfo(
                    name=token_data.get("name") or "Unknown Token",
                    symbol=token_data.get("symbol") or "UNKNOWN",
                    contract_address=address,
                    decimals=int(decimals) if decimals not in (None, "") else 18,
                    total_supply=token_data.get("total_supply"),
                )
        except (MoralisAPIError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Token metadata lookup failed for {address}: {e}")

        return TokenInfo(
            name="Unknown Token",
            symbol="UNKNOWN",
            contract_address=address,
            decimals=18,
            total_supply=None
        )
