"""
Fix Generation stage: turns analysis + investigation into concrete code changes.

On a retry the previous (rejected) fix and the review issues that rejected it
are included in the prompt, and the stage is told to address them.
"""

from triage_repair.agents.base_agent import AgentConfig, BaseAgent, get_framework_label
from triage_repair.models.schemas import (
    FailureContext,
    FixGenerationOutput,
    PriorOutputs,
    ReviewOutput,
)

SYSTEM_PROMPT = """You are an expert test engineer who fixes failing end-to-end tests (Cypress or WebDriverIO).

## Your Task

Generate precise, working code changes that fix the failing test, based on the analysis and investigation provided. Match the framework used in the source.

## Code Change Requirements

1. Exact matching: "old_code" MUST match the original code character for character, including whitespace, punctuation, quotes and indentation.
2. Minimal changes: only change what is needed to fix the issue.
3. Working code: "new_code" must be syntactically valid.
4. Preserve style: match the existing quotes, semicolons and indentation.

## Common Fix Patterns (Cypress)

- Selector update: cy.get('.old-class') -> cy.get('[data-testid="submit-button"]')
- Visibility: cy.get('#element').click() -> cy.get('#element').should('be.visible').click()
- Async wait: cy.intercept('GET', '/api/data').as('getData'); cy.wait('@getData') before reading results

## Common Fix Patterns (WebDriverIO)

- Visibility: await $('#el').waitForDisplayed() before interacting
- Clickability: await $('button').waitForClickable() before click()
- Conditions: await browser.waitUntil(async () => (await $('#result').isDisplayed()), { timeout: 10000 })

## Output Format

Respond with ONLY a JSON object matching this schema:
{
  "changes": [
    {
      "file": "<file path>",
      "line": <approximate line number>,
      "old_code": "<EXACT code to replace, including all whitespace>",
      "new_code": "<replacement code>",
      "justification": "<why this change fixes the issue>",
      "change_type": "<SELECTOR_UPDATE|WAIT_ADDITION|LOGIC_CHANGE|ASSERTION_UPDATE|OTHER>"
    }
  ],
  "confidence": <0-100>,
  "summary": "<one sentence summary of the fix>",
  "reasoning": "<why this fix will work>",
  "evidence": ["<evidence supporting this fix>"],
  "risks": ["<potential risks>"],
  "alternatives": ["<other approaches that could work>"]
}

"old_code" is used for find-and-replace. Include enough context (usually 3-5 lines) to identify the location uniquely."""


def format_review_feedback(review: ReviewOutput) -> str:
    """Render review issues as one line each: ``[SEVERITY] description (suggestion)``."""
    lines = []
    for issue in review.issues:
        line = f"[{issue.severity.value}] change {issue.change_index}: {issue.description}"
        if issue.suggestion:
            line += f" (suggestion: {issue.suggestion})"
        lines.append(line)
    if not lines and review.assessment:
        lines.append(review.assessment)
    return "\n".join(lines)


class FixGenerationAgent(BaseAgent[FixGenerationOutput]):
    agent_name = "fix_generation_agent"
    output_model = FixGenerationOutput
    default_config = AgentConfig(max_tokens=6000)

    def _validate_inputs(self, prior: PriorOutputs) -> None:
        if prior.analysis is None or prior.investigation is None:
            raise ValueError("Fix generation requires the analysis and investigation outputs")

    def _build_system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def _build_user_prompt(self, prior: PriorOutputs, context: FailureContext) -> str:
        analysis = prior.analysis
        investigation = prior.investigation
        primary = investigation.primary_finding.description if investigation.primary_finding else "None"

        parts = [
            "## Fix Generation Request",
            "",
            "### Test Information",
            f"- **File:** {context.test_file}",
            f"- **Test Name:** {context.test_name}",
            f"- **Test framework:** {get_framework_label(context.framework)}",
            "",
            "### Analysis Summary",
            f"- **Root Cause:** {analysis.root_cause_category.value}",
            f"- **Confidence:** {analysis.confidence}%",
            f"- **Explanation:** {analysis.explanation}",
            f"- **Suggested Approach:** {analysis.suggested_approach}",
            "",
            "### Investigation Findings",
            f"- **Primary Finding:** {primary}",
            f"- **Is Test Code Fixable:** {investigation.is_test_code_fixable}",
            f"- **Recommended Approach:** {investigation.recommended_approach}",
        ]

        if investigation.selectors_to_update:
            parts += ["", "### Selectors to Update"]
            for sel in investigation.selectors_to_update:
                parts += [f"- Current: `{sel.current}`", f"  Reason: {sel.reason}"]
                if sel.suggested_replacement:
                    parts.append(f"  Suggested: `{sel.suggested_replacement}`")

        parts += ["", "### Error Message", "```", context.error_message, "```"]

        if context.source_file_content:
            parts += ["", "### Test File Content", "```javascript", context.source_file_content, "```"]

        if prior.proposed_fix is not None:
            parts += ["", "### Previous Fix Attempt (rejected)"]
            for i, change in enumerate(prior.proposed_fix.changes):
                parts += [
                    f"#### Change {i}: {change.file}",
                    "Old code:", "```", change.old_code, "```",
                    "New code:", "```", change.new_code, "```",
                ]

        if prior.review is not None:
            parts += [
                "",
                "### Previous Review Feedback",
                "The previous fix attempt was rejected. Your new fix MUST address every issue below:",
                "```",
                format_review_feedback(prior.review),
                "```",
            ]

        parts += [
            "",
            "## Instructions",
            "1. Generate the code changes needed to fix the test",
            "2. Make sure old_code matches EXACTLY what appears in the test file",
            "3. Keep changes minimal and targeted",
            "4. Justify each change",
            "",
            "Respond with the JSON object as specified in the system prompt.",
        ]
        return "\n".join(parts)
