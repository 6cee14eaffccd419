"""
Single-prompt repair strategy used when the agentic pipeline gives up.

One backend call with everything known about the failure; returns a fix
recommendation or None. Never raises.
"""

from typing import Optional, Protocol

from pydantic import ValidationError

from triage_repair.agents.base_agent import AgentParseError, extract_json, get_framework_label
from triage_repair.agents.results import to_fix_recommendation
from triage_repair.models.schemas import FailureContext, FixGenerationOutput, FixRecommendation
from triage_repair.utils.llm_client import ReasoningBackend
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

MIN_SINGLE_SHOT_CONFIDENCE = 50

SYSTEM_PROMPT = """You are an expert test engineer. Given a failing end-to-end test, propose the smallest code change that makes it pass.

Respond with ONLY a JSON object:
{
  "changes": [
    {"file": "<path>", "line": <line>, "old_code": "<exact code to replace>", "new_code": "<replacement>", "justification": "<why>"}
  ],
  "confidence": <0-100>,
  "summary": "<one sentence>",
  "reasoning": "<why the fix works>",
  "evidence": ["<supporting evidence>"]
}"""


class SingleShotStrategy(Protocol):
    async def generate_fix_recommendation(self, context: FailureContext) -> Optional[FixRecommendation]: ...


class SingleShotRepairAgent:
    """Non-agentic fallback: one prompt, one answer."""

    agent_name = "single_shot"

    def __init__(self, backend: ReasoningBackend, temperature: float = 0.3, max_tokens: int = 4000):
        self.backend = backend
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _build_prompt(self, context: FailureContext) -> str:
        parts = [
            "## Test Failure Context",
            f"- **Test File:** {context.test_file}",
            f"- **Test Name:** {context.test_name}",
            f"- **Test framework:** {get_framework_label(context.framework)}",
        ]
        if context.error_type:
            parts.append(f"- **Error Type:** {context.error_type}")
        if context.error_selector:
            parts.append(f"- **Failed Selector:** {context.error_selector}")
        parts += ["", "## Error Message", "```", context.error_message, "```"]

        if context.stack_trace:
            parts += ["", "## Stack Trace", "```", context.stack_trace, "```"]
        if context.logs:
            parts += ["", "## Test Logs", "```", "\n".join(context.logs)[:1000], "```"]
        if context.pr_diff and context.pr_diff.files:
            parts += ["", "## Pull Request Changes", f"- **Total Files Changed:** {len(context.pr_diff.files)}"]
            for f in context.pr_diff.files[:5]:
                parts.append(f"- **{f.filename}** ({f.status})")
                if f.patch:
                    parts += ["```diff", f.patch[:1000], "```"]
        if context.source_file_content:
            parts += ["", "## Test File Content", "```javascript", context.source_file_content, "```"]
        return "\n".join(parts)

    async def generate_fix_recommendation(self, context: FailureContext) -> Optional[FixRecommendation]:
        """Return a fix recommendation, or None when no confident fix can be produced."""
        logger.info("Generating single-shot fix recommendation", extra={"agent_name": self.agent_name, "action": "single_shot_start"})
        try:
            text = await self.backend.invoke(
                SYSTEM_PROMPT,
                self._build_prompt(context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            fix = FixGenerationOutput.model_validate(extract_json(text))
        except (AgentParseError, ValidationError) as e:
            logger.warning("Single-shot response unusable", extra={"agent_name": self.agent_name, "action": "parse_error", "extra": str(e)[:300]})
            return None
        except Exception as e:
            logger.warning("Single-shot backend call failed", extra={"agent_name": self.agent_name, "action": "backend_error", "extra": str(e)})
            return None

        if fix.confidence < MIN_SINGLE_SHOT_CONFIDENCE:
            logger.info("Cannot generate confident fix recommendation", extra={
                "agent_name": self.agent_name, "action": "low_confidence", "extra": {"confidence": fix.confidence},
            })
            return None

        recommendation = to_fix_recommendation(fix)
        logger.info("Single-shot fix recommendation generated", extra={
            "agent_name": self.agent_name, "action": "single_shot_complete", "extra": {"confidence": recommendation.confidence},
        })
        return recommendation
