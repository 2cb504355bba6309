"""
Claude API Client for Snapshot Analysis

Thin async wrapper around the Anthropic SDK used by the analysis enricher.
Tracks token usage and cost, and collects the source URLs Claude consulted
when the web search tool is enabled.
"""

import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

import anthropic

logger = logging.getLogger(__name__)


WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
    "max_uses": 3,
}


@dataclass
class TokenUsage:
    """Track token usage for cost calculation."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def estimated_cost(self) -> float:
        """Estimate cost based on Claude Sonnet 4 pricing."""
        # Sonnet 4 pricing: $3/1M input, $15/1M output
        input_cost = (self.input_tokens / 1_000_000) * 3.0
        output_cost = (self.output_tokens / 1_000_000) * 15.0
        return input_cost + output_cost


@dataclass
class AnalysisResponse:
    """Response from Claude analysis."""
    content: str
    usage: TokenUsage
    model: str
    stop_reason: str
    sources: List[str] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None


def _block_sources(block: Any) -> List[str]:
    """URLs from a web_search_tool_result block (empty for other blocks)."""
    if getattr(block, "type", None) != "web_search_tool_result":
        return []
    results = getattr(block, "content", None)
    if not isinstance(results, list):
        return []
    return [r.url for r in results if isinstance(getattr(r, "url", None), str)]


class ClaudeClient:
    """
    Async client for Claude.

    Usage:
        client = ClaudeClient(api_key="sk-ant-...", timeout=20.0)
        response = await client.analyze(prompt, system=SYSTEM_PROMPT)
    """

    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    MAX_TOKENS = 1024
    TEMPERATURE = 0.2

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        timeout: float = 20.0,
        web_search: bool = False,
        async_client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        """
        Initialize Claude client.

        Args:
            api_key: Anthropic API key
            model: Model to use (defaults to Sonnet 4)
            timeout: Request timeout in seconds
            web_search: Let Claude consult the web (sources are collected)
            async_client: Pre-built SDK client (tests)
        """
        if not api_key and async_client is None:
            raise ValueError("ANTHROPIC_API_KEY not provided")

        self.model = model or self.DEFAULT_MODEL
        self.timeout = timeout
        self.web_search = web_search
        # The SDK's own retries are disabled; a failed analysis is simply re-triggered later
        self.async_client = async_client or anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )

        # Track cumulative usage
        self.total_usage = TokenUsage()
        self.call_count = 0

    async def analyze(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
    ) -> AnalysisResponse:
        """
        Send analysis prompt to Claude.

        Args:
            prompt: User prompt
            system: System prompt
            max_tokens: Maximum output tokens
            temperature: Sampling temperature

        Returns:
            AnalysisResponse with content, usage and consulted sources
        """
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if self.web_search:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        try:
            response = await self.async_client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            return AnalysisResponse(
                content="",
                usage=TokenUsage(),
                model=self.model,
                stop_reason="error",
                success=False,
                error=str(e),
            )

        content = ""
        sources: List[str] = []
        for block in response.content:
            if getattr(block, "type", None) == "text":
                content += block.text
            sources.extend(_block_sources(block))

        usage = TokenUsage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        self.total_usage.input_tokens += usage.input_tokens
        self.total_usage.output_tokens += usage.output_tokens
        self.call_count += 1

        logger.info(
            f"Claude call: {usage.input_tokens} in, {usage.output_tokens} out, "
            f"${usage.estimated_cost:.4f}"
        )

        return AnalysisResponse(
            content=content,
            usage=usage,
            model=self.model,
            stop_reason=response.stop_reason,
            sources=sources,
        )

    def get_usage_summary(self) -> Dict[str, Any]:
        """Get summary of all API usage."""
        return {
            "total_calls": self.call_count,
            "input_tokens": self.total_usage.input_tokens,
            "output_tokens": self.total_usage.output_tokens,
            "total_tokens": self.total_usage.total_tokens,
            "estimated_cost": self.total_usage.estimated_cost,
        }

    async def close(self):
        await self.async_client.close()
