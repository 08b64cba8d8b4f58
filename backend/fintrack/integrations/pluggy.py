"""
Pluggy open-finance aggregator client.

Documentation: https://docs.pluggy.ai

Every call authenticates with an ``X-API-KEY`` obtained from ``POST /auth``
using the client id/secret. The key is cached process-wide until it expires.
"""
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import httpx

from fintrack.errors import ConfigurationError
from fintrack.integrations.base import AggregatorClient
from fintrack.integrations.credentials import ExpiringCredentialCache

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.pluggy.ai"
DEFAULT_API_KEY_TTL_SECONDS = 110 * 60
PAGE_SIZE = 500


class PluggyClient(AggregatorClient):
    """Client for the Pluggy REST API."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the Pluggy client.

        Args:
            client_id: Pluggy client id
            client_secret: Pluggy client secret
            base_url: API base URL
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.client_id = (client_id or "").strip()
        self.client_secret = (client_secret or "").strip()

        self.client = httpx.Client(
            base_url=base_url,
            timeout=30.0,
            transport=transport,
        )
        self.api_key_cache = ExpiringCredentialCache(self._fetch_api_key)

    def _resolve_credentials(self) -> Dict[str, str]:
        if not self.client_id or not self.client_secret:
            message = (
                "PLUGGY_CLIENT_ID and/or PLUGGY_CLIENT_SECRET are not configured. "
                "Set them before using the aggregator integration."
            )
            logger.error(message)
            raise ConfigurationError(message)
        return {"clientId": self.client_id, "clientSecret": self.client_secret}

    def _fetch_api_key(self) -> Tuple[str, float]:
        credentials = self._resolve_credentials()
        try:
            response = self.client.post("/auth", json=credentials)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"HTTP error authenticating with Pluggy: {e}")
            raise

        data = response.json()
        key = data.get("apiKey") or data.get("accessToken") or data.get("token")
        if not key:
            raise ConfigurationError("Pluggy authentication response did not include an API key.")

        ttl = data.get("expiresIn")
        ttl_seconds = float(ttl) if ttl else DEFAULT_API_KEY_TTL_SECONDS
        return key, ttl_seconds

    def _auth_headers(self) -> Dict[str, str]:
        return {"X-API-KEY": self.api_key_cache.get()}

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.client.request(method, path, headers=self._auth_headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling Pluggy {method} {path}: {e}")
            raise
        return response.json()

    def _list_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Fetch every page of a paginated listing."""
        results: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = self._request("GET", path, params={**params, "pageSize": PAGE_SIZE, "page": page})
            if isinstance(data, list):
                results.extend(data)
                return results

            results.extend(data.get("results") or [])
            total_pages = data.get("totalPages") or 1
            if page >= total_pages:
                return results
            page += 1

    def list_accounts(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/accounts", {"itemId": item_id})

    def list_transactions(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/transactions", {"itemId": item_id})

    def list_credit_cards(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/credit-cards", {"itemId": item_id})

    def list_credit_card_transactions(self, credit_card_id: str) -> List[Dict[str, Any]]:
        return self._list_all(f"/credit-cards/{credit_card_id}/transactions", {})

    def list_investments(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/investments", {"itemId": item_id})

    def list_investment_transactions(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/investments/transactions", {"itemId": item_id})

    def list_loans(self, item_id: str) -> List[Dict[str, Any]]:
        return self._list_all("/loans", {"itemId": item_id})

    def list_loan_transactions(self, loan_id: str) -> List[Dict[str, Any]]:
        return self._list_all(f"/loans/{loan_id}/transactions", {})

    def create_connect_token(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return self._request("POST", "/connect_token", json=payload or {})
        except httpx.HTTPError:
            logger.warning("Pluggy /connect_token failed, falling back to /link/token")
            return self._request("POST", "/link/token", json=payload or {})


@lru_cache(maxsize=1)
def get_pluggy_client() -> PluggyClient:
    """Process-wide client so the cached API key is shared by all requests."""
    return PluggyClient(
        client_id=os.getenv("PLUGGY_CLIENT_ID"),
        client_secret=os.getenv("PLUGGY_CLIENT_SECRET"),
        base_url=os.getenv("PLUGGY_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
    )


def get_aggregator_client() -> AggregatorClient:
    """FastAPI dependency; tests override it with an in-memory client."""
    return get_pluggy_client()
