"""
Analysis stage: classifies the root cause of a failing test from the context alone.
"""

from triage_repair.agents.base_agent import BaseAgent, get_framework_label
from triage_repair.models.schemas import AnalysisOutput, FailureContext, PriorOutputs

SYSTEM_PROMPT = """You are an expert test failure analyst specializing in Cypress and WebDriverIO end-to-end tests.

Your job is to analyze test failures and identify the root cause with high precision.

## Root Cause Categories

- SELECTOR_MISMATCH: The selector used in the test doesn't match any element or matches the wrong one
  (changed class names, IDs or data attributes, missing or moved elements, responsive layout changes).
- TIMING_ISSUE: Race conditions, insufficient waits for async operations, animations, request timing.
- STATE_DEPENDENCY: The test depends on application state that isn't set up (login, initial data, leftovers from previous tests).
- NETWORK_ISSUE: Failed API calls, request timeouts, unexpected response data.
- ELEMENT_VISIBILITY: The element exists but isn't visible or interactable (covered, outside viewport, hidden).
- ASSERTION_MISMATCH: Wrong expected values, wrong assertion method, exact match where partial is needed.
- DATA_DEPENDENCY: The test depends on specific data that changed or doesn't exist.
- ENVIRONMENT_ISSUE: Problems with the test environment, not the test or the app.
- UNKNOWN: The root cause can't be determined from the available information.

## Output Format

Respond with ONLY a JSON object matching this schema:
{
  "root_cause_category": "<one of the categories above>",
  "contributing_factors": ["<additional categories that may contribute>"],
  "confidence": <number 0-100>,
  "explanation": "<detailed explanation>",
  "selectors": ["<every selector found in the error>"],
  "elements": ["<element descriptions mentioned>"],
  "issue_location": "<TEST_CODE|APP_CODE|BOTH|UNKNOWN>",
  "patterns": {
    "has_timeout": <boolean>,
    "has_visibility_issue": <boolean>,
    "has_network_call": <boolean>,
    "has_state_assertion": <boolean>,
    "has_dynamic_content": <boolean>,
    "has_responsive_issue": <boolean>
  },
  "suggested_approach": "<one sentence describing the likely fix>"
}"""


class AnalysisAgent(BaseAgent[AnalysisOutput]):
    """Classifies the failure; needs no prior stage output."""

    agent_name = "analysis_agent"
    output_model = AnalysisOutput

    def _build_system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def _build_user_prompt(self, prior: PriorOutputs, context: FailureContext) -> str:
        parts = [
            "## Error Analysis Request",
            "",
            "### Test Information",
            f"- **Test File:** {context.test_file}",
            f"- **Test Name:** {context.test_name}",
            f"- **Test framework:** {get_framework_label(context.framework)}",
        ]
        if context.error_type:
            parts.append(f"- **Error Type:** {context.error_type}")
        if context.error_selector:
            parts.append(f"- **Failed Selector:** {context.error_selector}")

        parts += ["", "### Error Message", "```", context.error_message, "```"]

        if context.stack_trace:
            parts += ["", "### Stack Trace", "```", context.stack_trace[:2000], "```"]

        if context.logs:
            parts += ["", "### Relevant Logs", "```", "\n".join(context.logs)[:3000], "```"]

        if context.pr_diff and context.pr_diff.files:
            parts += ["", "### Recent Changes (PR Diff)"]
            parts += [f"- {f.filename} ({f.status})" for f in context.pr_diff.files]

        if context.screenshots:
            parts += [
                "",
                "### Screenshots",
                f"{len(context.screenshots)} screenshot(s) attached. Look for visual cues about the failure.",
            ]

        parts += [
            "",
            "## Instructions",
            "Analyze the information above and return your root cause analysis in the required JSON format.",
            "Be specific about which selectors are problematic and why.",
        ]
        return "\n".join(parts)
