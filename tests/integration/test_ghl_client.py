"""
Integration tests for core/ghl_client.py against an httpx MockTransport.
"""
import dataclasses
import json

import httpx
import pytest

from core.config import GHLConfig, config
from core.exceptions import IntegrationAPIError, IntegrationConfigError, RateLimitedError
from core.ghl_client import GHLClient, to_email_html
from core.resilience import RetryConfig
from web.services.customer_service import customer_profile


def make_client(handler) -> GHLClient:
    client = GHLClient(
        token="pit-test",
        base_url="https://ghl.test",
        transport=httpx.MockTransport(handler),
    )
    client.retry_config = RetryConfig(max_attempts=4, base_delay=0.001)
    return client


class TestGHLClientConfig:
    """Construction and headers."""

    def test_requires_token(self):
        with pytest.raises(IntegrationConfigError):
            GHLClient(token="")

    def test_headers(self):
        client = GHLClient(token="pit-test", base_url="https://ghl.test/")
        assert client.base_url == "https://ghl.test"
        assert client.headers["Authorization"] == "Bearer pit-test"
        assert client.headers["Version"] == "2021-07-28"


class TestContacts:
    """Contact fetch, update and upsert."""

    @pytest.mark.asyncio
    async def test_fetch_contact_unwraps(self):
        def handler(request):
            assert request.url.path == "/contacts/c1"
            return httpx.Response(200, json={"contact": {"id": "c1", "tags": ["vip"]}})

        async with make_client(handler) as client:
            contact = await client.fetch_contact("c1")
        assert contact == {"id": "c1", "tags": ["vip"]}

    @pytest.mark.asyncio
    async def test_error_names_the_action(self):
        def handler(request):
            return httpx.Response(404, text="Contact not found")

        async with make_client(handler) as client:
            with pytest.raises(IntegrationAPIError) as exc_info:
                await client.fetch_contact("missing")
        assert str(exc_info.value) == "GHL fetch contact failed 404: Contact not found"
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_update_drops_empty_fields(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"contact": {"id": "c1"}})

        async with make_client(handler) as client:
            await client.upsert_contact_with_tags("loc", ["a", "b"], contact_id="c1", email="x@y.co", phone="")
        assert seen["method"] == "PUT"
        assert seen["body"] == {"email": "x@y.co", "tags": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_duplicate_create_updates_existing(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            if request.method == "POST":
                return httpx.Response(400, json={
                    "message": "This location does not allow duplicated contacts.",
                    "meta": {"contactId": "existing-9"},
                })
            return httpx.Response(200, json={"contact": {"id": "existing-9"}})

        async with make_client(handler) as client:
            result = await client.upsert_contact_with_tags("loc", ["winback"], email="dup@example.com")
        assert calls == [("POST", "/contacts/"), ("PUT", "/contacts/existing-9")]
        assert result == {"contact": {"id": "existing-9"}}

    @pytest.mark.asyncio
    async def test_html_body_raises_api_error(self):
        """A 200 from a proxy error page is not JSON."""
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>", headers={"Content-Type": "text/html"})

        async with make_client(handler) as client:
            with pytest.raises(IntegrationAPIError) as exc_info:
                await client.search_contacts("loc", "ann@example.com")
        assert exc_info.value.message == "GHL search contacts returned a non-JSON body"
        assert exc_info.value.body == "<html>oops</html>"

    @pytest.mark.asyncio
    async def test_search_filters_invalid_contacts(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["pageLimit"] == 200
            return httpx.Response(200, json={"contacts": [{"id": "c1"}, {"name": "no id"}], "total": 2})

        async with make_client(handler) as client:
            result = await client.search_contacts("loc", "ann", page=2, page_limit=500)
        assert result == {"contacts": [{"id": "c1"}], "total": 2, "nextPage": 3}


class TestRateLimiting:
    """429 handling."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={"contact": {"id": "c1"}})

        async with make_client(handler) as client:
            contact = await client.fetch_contact("c1")
        assert contact["id"] == "c1"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            return httpx.Response(429)

        async with make_client(handler) as client:
            with pytest.raises(RateLimitedError):
                await client.fetch_contact("c1")
        assert len(attempts) == 4


class TestLocationAndConversations:
    """Custom fields and conversation email."""

    @pytest.mark.asyncio
    async def test_list_custom_fields(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/locations/loc-1/customFields"
            return httpx.Response(200, json={"customFields": [{"id": "f1", "name": "Quiz score"}]})

        async with make_client(handler) as client:
            result = await client.list_custom_fields("loc-1")
        assert result["customFields"][0]["id"] == "f1"

    @pytest.mark.asyncio
    async def test_send_conversation_email(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"messageId": "m1"})

        async with make_client(handler) as client:
            result = await client.send_conversation_email("c1", "We miss you", "Hi Ann\n10% off", location_id="loc-1")

        assert result == {"messageId": "m1"}
        assert seen["path"] == "/conversations/messages"
        assert seen["body"]["type"] == "Email"
        assert seen["body"]["html"] == "Hi Ann<br />10% off"
        assert seen["body"]["locationId"] == "loc-1"
        assert "emailFrom" not in seen["body"]


class TestEmailHtml:
    """Tests for to_email_html."""

    def test_escapes_and_breaks_lines(self):
        assert to_email_html("Hi <b>Ann</b>\nSee you") == "Hi &lt;b&gt;Ann&lt;/b&gt;<br />See you"


class TestProfileContactMatch:
    """The customer profile's GHL match is best effort."""

    @pytest.fixture
    def ghl_configured(self, monkeypatch):
        monkeypatch.setattr(
            "web.services.customer_service.config",
            dataclasses.replace(config, ghl=GHLConfig(pit="pit-test", location_id="loc-1")),
        )

    @pytest.mark.asyncio
    async def test_matches_by_email(self, seeded, ghl_configured):
        def handler(request):
            assert json.loads(request.content)["query"] == "alice@example.com"
            return httpx.Response(200, json={"contacts": [
                {"id": "other", "email": "alice.ng@example.com"},
                {"id": "c-alice", "email": "Alice@Example.com", "tags": ["vip"]},
            ]})

        async with make_client(handler) as client:
            profile = await customer_profile(seeded.store, seeded.store_id, seeded.ids["alice"], ghl_client=client)

        assert profile["ghl"]["id"] == "c-alice"
        assert profile["ghl"]["tags"] == ["vip"]

    @pytest.mark.asyncio
    async def test_non_json_answer_gives_null(self, seeded, ghl_configured):
        def handler(request):
            return httpx.Response(200, content=b"<html>oops</html>", headers={"Content-Type": "text/html"})

        async with make_client(handler) as client:
            profile = await customer_profile(seeded.store, seeded.store_id, seeded.ids["alice"], ghl_client=client)

        assert profile["ghl"] is None
        assert profile["stats"]["ordersCount"] == 3
