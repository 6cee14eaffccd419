import asyncio
import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from triage_repair.models.schemas import FailureContext, PriorOutputs, StageResult
from triage_repair.utils.llm_client import ReasoningBackend, UserContent
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AgentParseError(ValueError):
    """Backend reply could not be read as the stage's output schema."""


@dataclass(frozen=True)
class AgentConfig:
    timeout_ms: int = 60000
    temperature: float = 0.3
    max_tokens: int = 4000
    verbose: bool = False


def get_framework_label(framework: Optional[str]) -> str:
    if framework == "webdriverio":
        return "WebDriverIO"
    if framework == "cypress":
        return "Cypress"
    return "unknown"


def extract_json(text: str) -> dict:
    """Pull the outermost JSON object out of a reply (handles fences and prose around it)."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise AgentParseError("no JSON object found in response")
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError as e:
        raise AgentParseError(f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise AgentParseError("response JSON is not an object")
    return data


class BaseAgent(ABC, Generic[T]):
    """One reasoning stage: builds prompts, calls the backend once, validates the reply.

    Subclasses set ``agent_name`` and ``output_model`` and implement the two
    prompt builders. Agents hold no state between calls; every failure is
    returned as an unsuccessful StageResult and never retried here.
    """

    agent_name: str = "base_agent"
    output_model: type[BaseModel]
    default_config: AgentConfig = AgentConfig()

    def __init__(self, backend: ReasoningBackend, config: Optional[AgentConfig] = None):
        self.backend = backend
        self.config = config or self.default_config

    @abstractmethod
    def _build_system_prompt(self) -> str:
        """Stage-specific instructions, including the JSON output schema."""
        ...

    @abstractmethod
    def _build_user_prompt(self, prior: PriorOutputs, context: FailureContext) -> str:
        """Serialize the context and prior stage outputs for this stage."""
        ...

    def _validate_inputs(self, prior: PriorOutputs) -> None:
        """Raise ValueError when a required prior output is missing."""

    def _parse_response(self, text: str) -> T:
        data = extract_json(text)
        try:
            return self.output_model.model_validate(data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'response'}: {err['msg']}"
                for err in e.errors()[:5]
            )
            raise AgentParseError(f"schema validation failed ({problems})") from e

    def _post_process(self, data: T, prior: PriorOutputs, context: FailureContext) -> T:
        """Local, backend-free adjustments to a parsed reply."""
        return data

    def _build_user_content(self, prompt: str, context: FailureContext) -> UserContent:
        images = [s for s in context.screenshots if s.base64_data]
        if not images:
            return prompt
        content: list[dict] = [{"type": "text", "text": prompt}]
        for shot in images:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": "image/png", "data": shot.base64_data},
            })
        return content

    def _result(self, start: float, api_calls: int, data=None, error: Optional[str] = None) -> StageResult[T]:
        return StageResult[self.output_model](
            success=error is None,
            data=data if error is None else None,
            error=error,
            duration_ms=round((time.monotonic() - start) * 1000),
            api_calls=api_calls,
        )

    async def execute(self, prior: PriorOutputs, context: FailureContext) -> StageResult[T]:
        """Run this stage once against the backend."""
        start = time.monotonic()
        api_calls = 0
        logger.info("Stage started", extra={"agent_name": self.agent_name, "action": "stage_start"})

        try:
            self._validate_inputs(prior)
            system_prompt = self._build_system_prompt()
            user_prompt = self._build_user_prompt(prior, context)
            if self.config.verbose:
                logger.debug("Stage prompts", extra={
                    "agent_name": self.agent_name, "action": "prompts",
                    "extra": {"system": system_prompt[:200], "user": user_prompt[:200]},
                })

            api_calls += 1
            text = await asyncio.wait_for(
                self.backend.invoke(
                    system_prompt,
                    self._build_user_content(user_prompt, context),
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                ),
                timeout=self.config.timeout_ms / 1000,
            )
            data = self._post_process(self._parse_response(text), prior, context)
        except asyncio.TimeoutError:
            error = f"Agent timed out after {self.config.timeout_ms}ms"
        except AgentParseError as e:
            error = f"Failed to parse agent response: {e}"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            result = self._result(start, api_calls, data=data)
            logger.info("Stage completed", extra={
                "agent_name": self.agent_name, "action": "stage_complete",
                "duration_ms": result.duration_ms,
            })
            return result

        result = self._result(start, api_calls, error=error)
        logger.warning("Stage failed", extra={
            "agent_name": self.agent_name, "action": "stage_failed",
            "duration_ms": result.duration_ms, "extra": error,
        })
        return result
