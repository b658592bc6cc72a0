"""
Async HTTP client for the WooCommerce REST API (wp-json/wc/v3).

Features:
- Consumer key/secret auth, either as query-string params (WC_AUTH_MODE=qs)
  or HTTP basic auth (WC_AUTH_MODE=basic)
- Page-by-page listing until a short page comes back
- Retry with backoff on network errors and 5xx
- Circuit breaker per client so a dead store does not stall a whole sync
"""
from typing import Any, Dict, List, Optional

import httpx

from core.config import config
from core.exceptions import IntegrationAPIError, IntegrationConfigError, IntegrationConnectionError
from core.observability import get_correlation_id, get_logger, Timer
from core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    RetryConfig,
    retry_with_backoff,
)

logger = get_logger(__name__)

USER_AGENT = "WooAnalyticsSync/1.0"

RETRY_CONFIG = RetryConfig(
    max_attempts=config.woo.max_retries,
    base_delay=0.5,
    max_delay=10.0,
    exponential_base=2.0,
)


class WooServerError(IntegrationAPIError):
    """5xx from the store; worth retrying."""


class WooCommerceClient:
    """
    Usage:
        async with WooCommerceClient(base_url, key, secret) as client:
            orders = await client.get_orders({"after": "2025-01-01T00:00:00"})
    """

    def __init__(
        self,
        base_url: str,
        consumer_key: Optional[str],
        consumer_secret: Optional[str],
        auth_mode: str = None,
        per_page: int = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise IntegrationConfigError("Store has no WooCommerce base URL")
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.auth_mode = auth_mode or config.woo.auth_mode
        self.per_page = per_page or config.woo.per_page
        self.timeout = timeout or config.woo.request_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._breaker = CircuitBreaker(
            name=f"woo:{self.base_url}",
            config=CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0),
        )

    @classmethod
    def for_store(cls, store: Dict[str, Any], **kwargs) -> "WooCommerceClient":
        return cls(store.get("woo_base_url"), store.get("woo_key"), store.get("woo_secret"), **kwargs)

    @property
    def _has_credentials(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret)

    def _auth_params(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = dict(extra or {})
        if self._has_credentials and self.auth_mode == "qs":
            params = {
                "consumer_key": self.consumer_key,
                "consumer_secret": self.consumer_secret,
                **params,
            }
        return params

    async def connect(self) -> None:
        if self._client is None:
            auth = None
            if self._has_credentials and self.auth_mode == "basic":
                auth = httpx.BasicAuth(self.consumer_key, self.consumer_secret)
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/wp-json",
                auth=auth,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WooCommerceClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not await self._breaker.can_execute():
            raise CircuitOpenError(f"Circuit {self._breaker.name} is open, GET {path} rejected")
        try:
            result = await retry_with_backoff(
                self._do_get, path, params,
                config=RETRY_CONFIG,
                retryable_exceptions=(IntegrationConnectionError, WooServerError),
            )
        except (IntegrationConnectionError, IntegrationAPIError):
            await self._breaker.record_failure()
            raise
        await self._breaker.record_success()
        return result

    async def _do_get(self, path: str, params: Optional[Dict[str, Any]]) -> Any:
        if not self._client:
            await self.connect()
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        try:
            with Timer(f"woo GET {path}", logger):
                response = await self._client.get(
                    path, params=self._auth_params(params), headers=headers or None
                )
        except httpx.TimeoutException as e:
            raise IntegrationConnectionError(f"Request timeout after {self.timeout}s", path) from e
        except httpx.RequestError as e:
            raise IntegrationConnectionError(f"Request failed: GET {path}", str(e)) from e

        if response.status_code >= 400:
            brief = response.text[:240]
            error_cls = WooServerError if response.status_code >= 500 else IntegrationAPIError
            raise error_cls(
                f"HTTP {response.status_code} {brief}",
                status_code=response.status_code,
                body=brief,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationAPIError(
                f"Non-JSON response from GET {path}",
                details=str(e),
                status_code=response.status_code,
                body=response.text[:240],
            ) from e

    async def paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Every record of a list endpoint, fetched page by page."""
        params = dict(params or {})
        per_page = int(params.pop("per_page", self.per_page))
        results: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self._get(path, {"per_page": per_page, "page": page, **params})
            batch = batch if isinstance(batch, list) else []
            results.extend(batch)
            if len(batch) < per_page:
                break
            page += 1
        logger.debug(f"Fetched {len(results)} records from {path} in {page} pages")
        return results

    async def test_connection(self) -> Dict[str, Any]:
        """Never raises; returns {success, data|error}."""
        try:
            data = await self._get("wc/v3/system_status")
            return {"success": True, "data": data}
        except (IntegrationConnectionError, IntegrationAPIError, CircuitOpenError) as e:
            return {"success": False, "error": str(e)}

    async def get_products(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.paginate("wc/v3/products", params)

    async def get_customers(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.paginate("wc/v3/customers", params)

    async def get_orders(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.paginate("wc/v3/orders", params)

    async def get_order_refunds(self, order_id: Any) -> List[Dict[str, Any]]:
        data = await self._get(f"wc/v3/orders/{order_id}/refunds")
        return data if isinstance(data, list) else []
