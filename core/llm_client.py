"""
LLM client for the analytics assistant using Anthropic Claude.

Non-streaming Messages API calls with tool use. API failures are
returned as ``{"error": True, "content": ...}`` rather than raised, so the
assistant route can decide how to answer.
"""
from typing import Optional, List, Dict, Any

import anthropic
from anthropic import AsyncAnthropic

from core.config import config
from core.observability import get_logger, Timer

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are the WooAnalytics assistant. Use the provided tools to answer with real data only. Always:
- Use tools to fetch metrics; never invent numbers.
- Keep output plain text with simple bullets and line breaks. Do NOT use markdown (no headings, no bold/italics, no tables).
- Only include metrics that were asked for. Revenue questions: revenue (and % change vs previous if available) only; add orders/AOV only if explicitly requested. Top lists: name + revenue + units, limited to the requested count.
- Customer tasks: use the customer tools for last order, inactive customers and win-back suggestions; do not list unrelated categories or products unless asked.
- When the user asks for a contact, name or example from inactive or last-order data, call the customer tools with a small limit and return name, email, lastOrderAt and an order summary instead of refusing.
- Be concise and factual; no marketing language.
- If data is missing for a request, say so and suggest the closest available.
- Include date ranges when relevant, but do not echo filter details (storeId/category/coupon) unless the user asks.
Available metrics: KPIs, sales timeseries, aov/cumulative/rolling, refunds/discounts, shipping/tax, new vs returning, top products/categories, segments, RFM, cohorts, recent orders, peaks, anomalies, repeat purchase, high-value and aging orders, inactive customers."""


def tool_use_blocks(result: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Assistant turn content to replay before sending tool results back."""
    blocks: List[Dict[str, Any]] = []
    if result.get("content"):
        blocks.append({"type": "text", "text": result["content"]})
    for call in result.get("tool_calls") or []:
        blocks.append({
            "type": "tool_use",
            "id": call["id"],
            "name": call["name"],
            "input": call["input"],
        })
    return blocks


class LLMClient:
    """Async client for Claude."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514"):
        self.api_key = api_key
        self.model = model
        self._client: Optional[AsyncAnthropic] = None

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy-initialize Anthropic client."""
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        system: str = SYSTEM_PROMPT,
        max_tokens: int = None,
    ) -> Dict[str, Any]:
        """
        Send one Messages API request.

        Args:
            messages: Anthropic message dicts (user/assistant turns)
            tools: Tool definitions with ``input_schema``
            system: System prompt
            max_tokens: Max response tokens

        Returns:
            {content, tool_calls: [{id, name, input}], stop_reason, usage}
            or {"error": True, "content": message}
        """
        if not self.is_available:
            return {
                "content": "Assistant is not configured. Please set ANTHROPIC_API_KEY.",
                "error": True
            }

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens or config.assistant.max_tokens,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            with Timer("anthropic.messages.create", logger):
                response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            return {
                "content": f"API error: {e.message}",
                "error": True
            }

        result = {
            "id": response.id,
            "content": "",
            "tool_calls": [],
            "stop_reason": response.stop_reason,
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens
            }
        }
        for block in response.content:
            if block.type == "text":
                result["content"] += block.text
            elif block.type == "tool_use":
                result["tool_calls"].append({
                    "id": block.id,
                    "name": block.name,
                    "input": block.input or {}
                })
        return result


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get singleton LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(
            api_key=config.assistant.anthropic_api_key,
            model=config.assistant.model
        )
    return _llm_client
