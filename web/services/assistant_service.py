"""
Assistant service: answers analytics questions with Claude and the API's own
endpoints as tools.

One request = one round trip:
1. Resolve store and date range
2. Ask the LLM with the allowed tools
3. Run the requested tools in order
4. One follow-up call with the tool results (only if any tool ran)
"""
import json
import re
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.assistant_tools import ENDPOINTS, TOOL_NAMES, TOOLS, ToolExecutor
from core.config import config
from core.dates import utc_now
from core.exceptions import IntegrationAPIError, IntegrationError, ValidationError
from core.llm_client import LLMClient, SYSTEM_PROMPT, get_llm_client, tool_use_blocks
from core.observability import get_logger

logger = get_logger(__name__)

SHORT_WINDOW_PHRASES = ("last 7", "past 7", "previous week", "last week")
SHORT_WINDOW_DAYS = 7
DEFAULT_WINDOW_DAYS = 30
FILTER_KEYS = ("category", "coupon")

_BOLD = re.compile(r"\*\*(.*?)\*\*")
_HEADING = re.compile(r"^#{1,6}\s*", re.MULTILINE)


def resolve_date_range(message: str, filters: Optional[Dict[str, Any]] = None) -> Tuple[str, str]:
    """
    ``filters.from``/``filters.to`` when both are set, else a 7- or 30-day
    window ending today (UTC) picked from the wording of the message.
    """
    filters = filters or {}
    if filters.get("from") and filters.get("to"):
        return str(filters["from"]), str(filters["to"])
    text = (message or "").lower()
    days = SHORT_WINDOW_DAYS if any(p in text for p in SHORT_WINDOW_PHRASES) else DEFAULT_WINDOW_DAYS
    end = utc_now().date()
    return (end - timedelta(days=days - 1)).isoformat(), end.isoformat()


def select_tools(message: str) -> List[Dict[str, Any]]:
    """Drop the category tool for product questions and vice versa."""
    text = message.lower()
    mentions_product = "product" in text
    mentions_category = "category" in text
    if mentions_product and not mentions_category:
        return [t for t in TOOLS if t["name"] != "get_top_categories"]
    if mentions_category and not mentions_product:
        return [t for t in TOOLS if t["name"] != "get_top_products"]
    return list(TOOLS)


def sanitize_answer(text: Optional[str]) -> Optional[str]:
    """Strip markdown bold and headings the prompt asks the model not to use."""
    if not text:
        return text
    return _HEADING.sub("", _BOLD.sub(r"\1", text)).strip()


def merge_args(args: Dict[str, Any], base: Dict[str, Any]) -> Dict[str, Any]:
    """The model's arguments with store, dates and filters forced to the request's."""
    merged = {k: v for k, v in (args or {}).items() if k not in FILTER_KEYS}
    merged.update(base)
    return merged


def filters_message(base: Dict[str, Any]) -> str:
    return (
        "Use these filters unless the user overrides them explicitly: "
        f"storeId={base['storeId']}, from={base['from']}, to={base['to']}, "
        f"category={base.get('category') or 'none'}, coupon={base.get('coupon') or 'none'}. "
        "Always reflect these dates/filters in the answer."
    )


def is_known_tool(name: str) -> bool:
    return name in TOOL_NAMES or name in ENDPOINTS


class AssistantService:
    """Runs one assistant query against the LLM and the internal API."""

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        tools_factory: Callable[[], ToolExecutor] = ToolExecutor,
    ):
        self.llm = llm or get_llm_client()
        self.tools_factory = tools_factory

    async def resolve_store_id(self, tools: ToolExecutor, passed: Any = None) -> str:
        if passed:
            return str(passed)
        if config.assistant.default_store_id:
            return config.assistant.default_store_id
        try:
            store = await tools.get_json("/stores/default", {}, "stores/default")
        except IntegrationAPIError:
            raise IntegrationError("Failed to resolve default store")
        if not isinstance(store, dict) or not store.get("id"):
            raise IntegrationError("Default store missing id")
        return str(store["id"])

    def is_mock(self, body: Dict[str, Any]) -> bool:
        return config.assistant.mock or body.get("mock") is True or not self.llm.is_available

    async def query(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Answer ``body["message"]``.

        Returns:
            {answer, dataUsed: [{tool, args, result}]}

        Raises:
            ValidationError: message missing or not a string
            IntegrationError: Store resolution, a tool call or the LLM failed
        """
        message = body.get("message")
        if not message or not isinstance(message, str):
            raise ValidationError("message", "message is required")
        filters = body.get("filters") if isinstance(body.get("filters"), dict) else {}
        history = body.get("history") if isinstance(body.get("history"), list) else []

        async with self.tools_factory() as tools:
            store_id = await self.resolve_store_id(tools, body.get("storeId"))
            date_from, date_to = resolve_date_range(message, filters)
            base = {"storeId": store_id, "from": date_from, "to": date_to}
            for key in FILTER_KEYS:
                if filters.get(key):
                    base[key] = filters[key]

            if self.is_mock(body):
                return await self._mock_answer(tools, base)
            return await self._llm_answer(tools, message, history, base)

    async def _mock_answer(self, tools: ToolExecutor, base: Dict[str, Any]) -> Dict[str, Any]:
        data_used = []
        summary = "Assistant mock mode: no LLM available."
        try:
            kpis = await tools.execute("get_kpis", base)
            data_used.append({"tool": "get_kpis", "args": base, "result": kpis})
            summary = (
                f"Revenue: {kpis.get('revenue', 'n/a')}, Orders: {kpis.get('orders', 'n/a')}, "
                f"AOV: {kpis.get('aov', 'n/a')}."
            )
        except IntegrationError as e:
            summary += f" (KPI fetch failed: {e})"
        return {"answer": summary, "dataUsed": data_used}

    async def _llm_answer(
        self,
        tools: ToolExecutor,
        message: str,
        history: List[Dict[str, Any]],
        base: Dict[str, Any],
    ) -> Dict[str, Any]:
        allowed = select_tools(message)
        system = f"{SYSTEM_PROMPT}\n\n{filters_message(base)}"
        messages = [m for m in history if isinstance(m, dict) and m.get("role") in ("user", "assistant")]
        messages.append({"role": "user", "content": message})

        response = await self.llm.chat(messages=messages, tools=allowed, system=system)
        if response.get("error"):
            raise IntegrationError(response.get("content") or "Assistant query failed")

        data_used: List[Dict[str, Any]] = []
        results: List[Dict[str, Any]] = []
        for call in response.get("tool_calls") or []:
            if not is_known_tool(call["name"]):
                logger.warning(f"Assistant requested unknown tool {call['name']}")
                results.append({
                    "type": "tool_result",
                    "tool_use_id": call["id"],
                    "content": f"Unknown tool {call['name']}",
                    "is_error": True,
                })
                continue
            args = merge_args(call.get("input") or {}, base)
            result = await tools.execute(call["name"], args)
            data_used.append({"tool": call["name"], "args": args, "result": result})
            results.append({
                "type": "tool_result",
                "tool_use_id": call["id"],
                "content": json.dumps(result, ensure_ascii=False),
            })

        answer = response.get("content")
        if data_used:
            follow_up = await self.llm.chat(
                messages=messages + [
                    {"role": "assistant", "content": tool_use_blocks(response)},
                    {"role": "user", "content": results},
                ],
                tools=allowed,
                system=system,
            )
            if follow_up.get("error"):
                raise IntegrationError(follow_up.get("content") or "Assistant query failed")
            answer = follow_up.get("content")

        logger.info(
            "Assistant query answered",
            extra={"store_id": base["storeId"], "tools": [d["tool"] for d in data_used]}
        )
        return {"answer": sanitize_answer(answer), "dataUsed": data_used}
