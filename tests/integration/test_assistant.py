"""
Integration tests for the assistant: ToolExecutor over an httpx
MockTransport, and AssistantService with a scripted LLM.
"""
import json

import httpx
import pytest

from core.assistant_tools import ToolExecutor
from core.exceptions import IntegrationAPIError, IntegrationError, ValidationError
from web.services.assistant_service import AssistantService


def tools_for(handler) -> ToolExecutor:
    return ToolExecutor(base_url="http://api.test", transport=httpx.MockTransport(handler))


class TestToolExecutor:
    """Tests for ToolExecutor."""

    @pytest.mark.asyncio
    async def test_defaults_and_cleaning(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, dict(request.url.params)))
            return httpx.Response(200, json=[])

        async with tools_for(handler) as tools:
            await tools.execute("get_top_categories", {"storeId": "s1", "coupon": None})
            await tools.execute("get_recent_orders", {"storeId": "s1", "limit": 3})

        assert seen[0] == ("/categories/top", {"storeId": "s1", "limit": "10"})
        assert seen[1] == ("/orders/recent", {"storeId": "s1", "limit": "3"})

    @pytest.mark.asyncio
    async def test_error_status(self):
        def handler(request):
            return httpx.Response(500, json={"error": "boom"})

        async with tools_for(handler) as tools:
            with pytest.raises(IntegrationAPIError) as exc_info:
                await tools.execute("get_kpis", {"storeId": "s1"})
        assert exc_info.value.message == "kpis 500"

    @pytest.mark.asyncio
    async def test_inactive_customers_follows_cursor(self):
        cursors = []

        def handler(request):
            cursor = int(request.url.params["cursor"])
            cursors.append(cursor)
            pages = {
                0: {"cutoff": "c", "count": 2, "nextCursor": 2, "segmentCounts": {"ONE_TIME_LAPSED": 2},
                    "data": [{"customerId": 1}, {"customerId": 2}]},
                2: {"cutoff": "c", "count": 1, "nextCursor": None, "segmentCounts": {"ONE_TIME_LAPSED": 1},
                    "data": [{"customerId": 3}]},
            }
            return httpx.Response(200, json=pages[cursor])

        async with tools_for(handler) as tools:
            result = await tools.execute("get_inactive_customers", {"storeId": "s1", "limit": 2})

        assert cursors == [0, 2]
        assert result["count"] == 3
        assert result["days"] == 30
        assert result["segmentCounts"] == {"ONE_TIME_LAPSED": 3}
        assert [r["customerId"] for r in result["data"]] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_winback_path(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"eligible": False, "reason": "not_idle"})

        async with tools_for(handler) as tools:
            await tools.execute("get_winback_suggestion", {"storeId": "s1", "customerId": 42, "days": 60})
            with pytest.raises(ValueError):
                await tools.execute("get_winback_suggestion", {"storeId": "s1"})

        assert seen["path"] == "/customers/42/winback"
        assert seen["params"] == {"storeId": "s1", "days": "60"}


class TestToolsAgainstApp:
    """Tools executed in-process through ASGITransport against the seeded routes."""

    @pytest.mark.asyncio
    async def test_top_categories(self, client, seeded):
        async with ToolExecutor(base_url="") as tools:
            rows = await tools.execute("get_top_categories", {"storeId": seeded.store_id})

        assert rows == [
            {"name": "Footwear", "units": 2, "revenue": 180.0},
            {"name": "Accessories", "units": 5, "revenue": 85.0},
        ]

    @pytest.mark.asyncio
    async def test_route_error_surfaces(self, client):
        """A failing route raises instead of handing the model an error string."""
        async with ToolExecutor(base_url="") as tools:
            with pytest.raises(IntegrationAPIError) as exc_info:
                await tools.execute("get_top_categories", {})
        assert exc_info.value.message == "categories 400"


class FakeLLM:
    """Returns scripted responses and records every call."""

    def __init__(self, *responses, available=True):
        self.responses = list(responses)
        self.calls = []
        self.is_available = available

    async def chat(self, messages, tools=None, system=None, max_tokens=None):
        self.calls.append({"messages": messages, "tools": tools, "system": system})
        return self.responses.pop(0)


class FakeTools:
    """Stands in for ToolExecutor; answers from a dict keyed by tool name."""

    def __init__(self, results=None, default_store=None):
        self.results = results or {}
        self.default_store = default_store
        self.executed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None

    async def get_json(self, path, params, label):
        if self.default_store is None:
            raise IntegrationAPIError(f"{label} 404", status_code=404)
        return self.default_store

    async def execute(self, name, args):
        self.executed.append((name, args))
        return self.results[name]


class TestAssistantService:
    """Tests for AssistantService.query."""

    @pytest.mark.asyncio
    async def test_tool_round_trip(self):
        llm = FakeLLM(
            {"content": "", "tool_calls": [
                {"id": "t1", "name": "get_kpis", "input": {"storeId": "other", "category": "Balls"}},
            ]},
            {"content": "**Revenue** was 1,200.", "tool_calls": []},
        )
        tools = FakeTools({"get_kpis": {"revenue": 1200}})
        service = AssistantService(llm=llm, tools_factory=lambda: tools)

        result = await service.query({
            "message": "Revenue last week?",
            "storeId": "s1",
            "filters": {"from": "2025-01-01", "to": "2025-01-07"},
        })

        assert result["answer"] == "Revenue was 1,200."
        expected_args = {"storeId": "s1", "from": "2025-01-01", "to": "2025-01-07"}
        assert tools.executed == [("get_kpis", expected_args)]
        assert result["dataUsed"] == [{"tool": "get_kpis", "args": expected_args, "result": {"revenue": 1200}}]

        follow_up = llm.calls[1]["messages"]
        assert follow_up[-2]["role"] == "assistant"
        assert follow_up[-2]["content"][0]["type"] == "tool_use"
        assert follow_up[-1]["content"][0]["tool_use_id"] == "t1"
        assert json.loads(follow_up[-1]["content"][0]["content"]) == {"revenue": 1200}
        assert "storeId=s1" in llm.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_history_filtered(self):
        llm = FakeLLM({"content": "Hello", "tool_calls": []})
        service = AssistantService(llm=llm, tools_factory=FakeTools)

        await service.query({
            "message": "hi",
            "storeId": "s1",
            "history": [{"role": "system", "content": "x"}, {"role": "user", "content": "before"}, "junk"],
        })

        assert llm.calls[0]["messages"] == [
            {"role": "user", "content": "before"},
            {"role": "user", "content": "hi"},
        ]

    @pytest.mark.asyncio
    async def test_unknown_tool_not_executed(self):
        llm = FakeLLM({"content": "No data.", "tool_calls": [{"id": "t9", "name": "drop_tables", "input": {}}]})
        tools = FakeTools()
        service = AssistantService(llm=llm, tools_factory=lambda: tools)

        result = await service.query({"message": "do it", "storeId": "s1"})

        assert tools.executed == []
        assert result == {"answer": "No data.", "dataUsed": []}
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_llm_error_raises(self):
        llm = FakeLLM({"error": True, "content": "API error: overloaded"})
        service = AssistantService(llm=llm, tools_factory=FakeTools)

        with pytest.raises(IntegrationError, match="overloaded"):
            await service.query({"message": "revenue", "storeId": "s1"})

    @pytest.mark.asyncio
    async def test_message_required(self):
        service = AssistantService(llm=FakeLLM(), tools_factory=FakeTools)
        with pytest.raises(ValidationError):
            await service.query({"message": ""})
        with pytest.raises(ValidationError):
            await service.query({"message": 42})

    @pytest.mark.asyncio
    async def test_default_store_resolved(self):
        tools = FakeTools({"get_kpis": {"revenue": 5, "orders": 1, "aov": 5}}, default_store={"id": "first"})
        service = AssistantService(llm=FakeLLM(available=False), tools_factory=lambda: tools)

        result = await service.query({"message": "revenue"})

        assert tools.executed[0][1]["storeId"] == "first"
        assert result["answer"] == "Revenue: 5, Orders: 1, AOV: 5."

    @pytest.mark.asyncio
    async def test_default_store_failure(self):
        service = AssistantService(llm=FakeLLM(), tools_factory=FakeTools)
        with pytest.raises(IntegrationError, match="Failed to resolve default store"):
            await service.query({"message": "revenue"})

    @pytest.mark.asyncio
    async def test_mock_mode_survives_tool_failure(self):
        class FailingTools(FakeTools):
            async def execute(self, name, args):
                raise IntegrationAPIError("kpis 500", status_code=500)

        service = AssistantService(llm=FakeLLM(), tools_factory=FailingTools)
        result = await service.query({"message": "revenue", "storeId": "s1", "mock": True})

        assert result["dataUsed"] == []
        assert result["answer"] == "Assistant mock mode: no LLM available. (KPI fetch failed: kpis 500)"


class TestAssistantRouteMockFlag:
    """Only a JSON ``true`` turns on mock mode."""

    @pytest.fixture
    def llm(self, client, monkeypatch):
        llm = FakeLLM({"content": "From the model.", "tool_calls": []})
        tools = FakeTools({"get_kpis": {"revenue": 5, "orders": 1, "aov": 5}})
        monkeypatch.setattr(
            "web.routes.api.assistant.AssistantService",
            lambda: AssistantService(llm=llm, tools_factory=lambda: tools),
        )
        return llm

    @pytest.mark.parametrize("flag", ["1", "true", "yes", 1])
    def test_truthy_strings_do_not_enable_mock(self, client, llm, flag):
        response = client.post("/assistant/query", json={"message": "revenue", "storeId": "store-1", "mock": flag})

        assert response.status_code == 200
        assert response.json()["answer"] == "From the model."
        assert len(llm.calls) == 1

    def test_json_true_enables_mock(self, client, llm):
        response = client.post("/assistant/query", json={"message": "revenue", "storeId": "store-1", "mock": True})

        assert response.status_code == 200
        assert response.json()["answer"] == "Revenue: 5, Orders: 1, AOV: 5."
        assert llm.calls == []
