import asyncio
import os
import time
from typing import Protocol, Union

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from triage_repair.models.schemas import TokenUsage
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_RETRIES = 3
RETRY_DELAYS = (2, 5, 15)  # seconds

# Plain text, or Anthropic content blocks (text + base64 images).
UserContent = Union[str, list[dict]]


class ReasoningBackend(Protocol):
    """Black-box completion service used by every stage agent."""

    async def invoke(
        self,
        system_prompt: str,
        user_content: UserContent,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str: ...


class LLMResponse:
    """Wrapper for Anthropic API response."""
    def __init__(self, text: str, input_tokens: int, output_tokens: int):
        self.text = text
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens


def _preview(content: UserContent, limit: int) -> str:
    if isinstance(content, str):
        return content[:limit] + "..." if len(content) > limit else content
    texts = [b.get("text", "") for b in content if b.get("type") == "text"]
    images = sum(1 for b in content if b.get("type") == "image")
    return _preview("\n".join(texts), limit) + (f" [+{images} image(s)]" if images else "")


def _is_transient(error: Exception) -> bool:
    if isinstance(error, APIStatusError):
        return error.status_code in (429, 529) or error.status_code >= 500
    return isinstance(error, APIConnectionError)


class AnthropicClient:
    """Anthropic API client with cumulative token tracking."""

    def __init__(
        self,
        agent_name: str = "unknown",
        model: str = "",
        retry_delays: tuple = RETRY_DELAYS,
    ):
        self.agent_name = agent_name
        self.model = model or os.getenv("ANTHROPIC_MODEL", DEFAULT_MODEL)
        self.retry_delays = retry_delays
        self._client = AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))
        self._total_input_tokens = 0
        self._total_output_tokens = 0

    async def chat(
        self,
        prompt: UserContent,
        system: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """Send a message to Claude and track token usage.

        Overloaded (429/529), 5xx and connection errors are retried up to
        MAX_RETRIES times; anything else propagates to the caller.
        """
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        logger.info("LLM call", extra={
            "agent_name": self.agent_name,
            "action": "llm_call",
            "tokens": {"max_tokens": max_tokens},
            "extra": {
                "model": self.model,
                "system": (system[:500] + "...") if system and len(system) > 500 else system,
                "prompt": _preview(prompt, 1000),
                "temperature": temperature,
            },
        })

        start = time.monotonic()
        response = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._client.messages.create(**kwargs)
                break
            except Exception as e:
                if _is_transient(e) and attempt < MAX_RETRIES:
                    delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
                    logger.warning("LLM call failed, retrying", extra={
                        "agent_name": self.agent_name, "action": "llm_retry",
                        "extra": {"attempt": attempt + 1, "delay_s": delay, "error": str(e)},
                    })
                    await asyncio.sleep(delay)
                    continue
                logger.error("LLM call failed", extra={"agent_name": self.agent_name, "action": "llm_error", "extra": str(e)})
                raise

        elapsed_ms = round((time.monotonic() - start) * 1000)
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        self._total_input_tokens += input_tokens
        self._total_output_tokens += output_tokens

        text = response.content[0].text if response.content else ""

        logger.info("LLM response", extra={
            "agent_name": self.agent_name,
            "action": "llm_response",
            "tokens": {"input": input_tokens, "output": output_tokens},
            "duration_ms": elapsed_ms,
            "extra": {
                "response": text[:2000] + "..." if len(text) > 2000 else text,
                "stop_reason": response.stop_reason,
            },
        })

        return LLMResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def invoke(
        self,
        system_prompt: str,
        user_content: UserContent,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        """ReasoningBackend entry point: system prompt + user content in, text out."""
        response = await self.chat(
            prompt=user_content,
            system=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.text

    def get_total_usage(self) -> TokenUsage:
        """Get cumulative token usage for this client instance."""
        return TokenUsage(
            agent_name=self.agent_name,
            input_tokens=self._total_input_tokens,
            output_tokens=self._total_output_tokens,
            total_tokens=self._total_input_tokens + self._total_output_tokens,
        )

    def reset_usage(self) -> None:
        """Reset token counters."""
        self._total_input_tokens = 0
        self._total_output_tokens = 0
