"""
Async HTTP client for the GoHighLevel (LeadConnector) API.

Features:
- Private integration token auth with the pinned API Version header
- 429 handling: up to 3 retries, honouring Retry-After (seconds) and
  otherwise doubling a 400 ms delay
- Errors carry the action name: "GHL fetch contact failed 404: ..."
"""
import html
import json as jsonlib
from typing import Any, Dict, List, Optional

import httpx

from core.config import config
from core.exceptions import (
    IntegrationAPIError,
    IntegrationConfigError,
    IntegrationConnectionError,
    RateLimitedError,
)
from core.observability import get_correlation_id, get_logger, Timer
from core.resilience import RetryConfig, retry_with_backoff

logger = get_logger(__name__)

DUPLICATE_CONTACT_MARKER = "does not allow duplicated contacts"


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("retry-after")
    try:
        value = float(int(raw)) if raw else None
    except ValueError:
        return None
    return value if value and value > 0 else None


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty optional fields the API rejects."""
    return {k: v for k, v in payload.items() if v not in (None, "")}


def to_email_html(message: str) -> str:
    return html.escape(message, quote=False).replace("\n", "<br />")


class GHLClient:
    """
    Usage:
        async with GHLClient() as client:
            contact = await client.fetch_contact("abc123")
    """

    def __init__(
        self,
        token: str = None,
        base_url: str = None,
        version: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token or config.ghl.pit
        self.base_url = (base_url or config.ghl.api_base).rstrip("/")
        self.version = version or config.ghl.version
        self.timeout = timeout or config.ghl.request_timeout
        self.retry_config = RetryConfig(
            max_attempts=config.ghl.max_retries + 1,
            base_delay=0.4,
            exponential_base=2.0,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.token:
            raise IntegrationConfigError("GHL_PIT missing")

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": self.version,
        }

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GHLClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _send(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> httpx.Response:
        """One attempt; 429 raises RateLimitedError so the retry loop can wait."""
        if not self._client:
            await self.connect()
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id
        try:
            with Timer(f"ghl {method} {path}", logger):
                response = await self._client.request(method, path, json=body, headers=headers or None)
        except httpx.RequestError as e:
            raise IntegrationConnectionError(f"GHL request failed: {method} {path}", str(e)) from e
        if response.status_code == 429:
            raise RateLimitedError("GHL rate limited (429)", retry_after=_retry_after(response))
        return response

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await retry_with_backoff(
            self._send, method, path, body,
            config=self.retry_config,
            retryable_exceptions=(RateLimitedError,),
        )

    @staticmethod
    def _parse(response: httpx.Response, action: str) -> Any:
        if response.status_code >= 400:
            text = response.text
            logger.error(
                f"{action} failed",
                extra={"status_code": response.status_code, "body": text[:500]}
            )
            raise IntegrationAPIError(
                f"{action} failed {response.status_code}: {text}",
                status_code=response.status_code,
                body=text,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationAPIError(
                f"{action} returned a non-JSON body",
                details=str(e),
                status_code=response.status_code,
                body=response.text[:500],
            ) from e

    # ═══════════════════════════════════════════════════════════════════════════
    # CONTACTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def update_contact(
        self,
        contact_id: str,
        tags: List[str],
        email: Optional[str] = None,
        phone: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        custom_fields: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        body = _compact({
            "email": email,
            "phone": phone,
            "firstName": first_name,
            "lastName": last_name,
            "customFields": custom_fields,
        })
        body["tags"] = tags
        response = await self._request("PUT", f"/contacts/{contact_id}", body)
        return self._parse(response, "GHL update contact")

    async def upsert_contact_with_tags(
        self,
        location_id: str,
        tags: List[str],
        contact_id: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        custom_fields: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Update the contact when its id is known, otherwise create it.

        A create rejected as a duplicate falls back to updating the existing
        contact named in the error's ``meta.contactId``.
        """
        fields = dict(
            tags=tags, email=email, phone=phone, first_name=first_name,
            last_name=last_name, custom_fields=custom_fields,
        )
        if contact_id:
            return await self.update_contact(contact_id, **fields)

        body = _compact({
            "locationId": location_id,
            "email": email,
            "phone": phone,
            "firstName": first_name,
            "lastName": last_name,
            "customFields": custom_fields,
        })
        body["tags"] = tags
        response = await self._request("POST", "/contacts/", body)
        text = response.text

        if response.status_code == 400 and DUPLICATE_CONTACT_MARKER in text:
            try:
                existing_id = (jsonlib.loads(text).get("meta") or {}).get("contactId")
            except (ValueError, AttributeError):
                existing_id = None
            if existing_id:
                logger.info("GHL duplicate contact, updating existing", extra={"contact_id": existing_id})
                return await self.update_contact(existing_id, **fields)
            raise IntegrationAPIError(
                f"GHL duplicate contact and no id returned: {text}",
                status_code=400,
                body=text,
            )

        return self._parse(response, "GHL upsert")

    async def fetch_contact(self, contact_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/contacts/{contact_id}")
        data = self._parse(response, "GHL fetch contact")
        return data.get("contact", data) if isinstance(data, dict) else data

    async def search_contacts(
        self,
        location_id: str,
        query: str = "",
        page: int = 1,
        page_limit: int = 50,
    ) -> Dict[str, Any]:
        """Full-text contact search; returns {contacts, total, nextPage}."""
        body = {
            "locationId": location_id,
            "page": page,
            "pageLimit": min(max(page_limit or 50, 1), 200),
            "query": query or "",
        }
        response = await self._request("POST", "/contacts/search", body)
        data = self._parse(response, "GHL search contacts")
        contacts = data.get("contacts") if isinstance(data, dict) else None
        if not isinstance(contacts, list):
            return {"contacts": [], "total": 0, "nextPage": None}
        valid = [c for c in contacts if isinstance(c, dict) and c.get("id")]
        return {
            "contacts": valid,
            "total": data.get("total"),
            "nextPage": page + 1 if valid else None,
        }

    async def list_custom_fields(self, location_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/locations/{location_id}/customFields")
        return self._parse(response, "GHL list custom fields")

    # ═══════════════════════════════════════════════════════════════════════════
    # CONVERSATIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def send_conversation_email(
        self,
        contact_id: str,
        subject: str,
        message: str,
        location_id: Optional[str] = None,
        email_from: Optional[str] = None,
        from_name: Optional[str] = None,
        email_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = {
            "type": "Email",
            "contactId": contact_id,
            "subject": subject,
            "message": message,
            "html": to_email_html(message),
            "text": message,
        }
        body.update(_compact({
            "locationId": location_id,
            "emailFrom": email_from,
            "fromName": from_name,
            "emailTo": email_to,
        }))
        response = await self._request("POST", "/conversations/messages", body)
        return self._parse(response, "GHL send email")


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_client_instance: Optional[GHLClient] = None


def get_ghl_client() -> GHLClient:
    """Shared client; raises IntegrationConfigError when GHL_PIT is unset."""
    global _client_instance
    if _client_instance is None:
        _client_instance = GHLClient()
    return _client_instance


async def close_ghl_client() -> None:
    global _client_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
