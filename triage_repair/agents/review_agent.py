"""
Review stage: approves or rejects a proposed fix with itemized issues and a
revised confidence.
"""

from triage_repair.agents.base_agent import BaseAgent, get_framework_label
from triage_repair.models.schemas import (
    CodeChange,
    FailureContext,
    PriorOutputs,
    ReviewIssue,
    ReviewOutput,
    ReviewSeverity,
)
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a senior QA engineer reviewing proposed fixes for failing end-to-end tests.

## Your Role

1. Verify the fix addresses the root cause
2. Check that old_code matches the actual file content
3. Ensure new_code is syntactically valid
4. Make sure the fix won't introduce new failures

## Review Criteria

CRITICAL (must fix): old_code doesn't match the file, syntax errors in new_code, fix doesn't address the root cause, fix could break other tests.
WARNING (should fix): suboptimal selector choice, fragile timing assumptions, missing waits or visibility checks, hardcoded values.
INFO (nice to have): style inconsistencies, readability.

## Output Format

Respond with ONLY a JSON object matching this schema:
{
  "approved": <boolean - true only if there are no CRITICAL issues and the fix addresses the root cause>,
  "issues": [
    {
      "severity": "<CRITICAL|WARNING|INFO>",
      "change_index": <index of the change with the issue>,
      "description": "<what's wrong>",
      "suggestion": "<how to fix it>"
    }
  ],
  "assessment": "<overall assessment>",
  "fix_confidence": <0-100 - likelihood the fix will work>,
  "improvements": ["<optional improvement suggestions>"]
}

Any CRITICAL issue means the fix is rejected."""


def validate_old_code_exists(changes: list[CodeChange], file_content: str, file_path: str) -> list[ReviewIssue]:
    """CRITICAL issues for changes to ``file_path`` whose old_code is not verbatim in ``file_content``."""
    issues = []
    for i, change in enumerate(changes):
        if change.file != file_path:
            continue
        if change.old_code not in file_content:
            issues.append(ReviewIssue(
                severity=ReviewSeverity.CRITICAL,
                change_index=i,
                description=f"old_code not found in file. The code to replace doesn't exist in {change.file}",
                suggestion="Copy the exact code from the file, including whitespace and indentation",
            ))
    return issues


class ReviewAgent(BaseAgent[ReviewOutput]):
    agent_name = "review_agent"
    output_model = ReviewOutput

    def _validate_inputs(self, prior: PriorOutputs) -> None:
        if prior.proposed_fix is None or prior.analysis is None:
            raise ValueError("Review requires the proposed fix and the analysis output")

    def _build_system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def _build_user_prompt(self, prior: PriorOutputs, context: FailureContext) -> str:
        fix = prior.proposed_fix
        parts = [
            "## Fix Review Request",
            "",
            f"**Test framework:** {get_framework_label(context.framework)}",
            "",
            "### Root Cause Being Fixed",
            f"- **Category:** {prior.analysis.root_cause_category.value}",
            f"- **Explanation:** {prior.analysis.explanation}",
            "",
            "### Proposed Fix",
            f"- **Summary:** {fix.summary}",
            f"- **Confidence:** {fix.confidence}%",
            f"- **Reasoning:** {fix.reasoning}",
            "",
            "### Code Changes",
        ]
        for i, change in enumerate(fix.changes):
            parts += [
                "",
                f"#### Change {i}: {change.file}",
                f"Line: {change.line if change.line is not None else 'unknown'}",
                f"Type: {change.change_type.value}",
                f"Justification: {change.justification}",
                "",
                "**Old Code:**", "```", change.old_code, "```",
                "",
                "**New Code:**", "```", change.new_code, "```",
            ]

        if context.source_file_content:
            parts += [
                "",
                "### Original File Content (for verification)",
                "```javascript",
                context.source_file_content,
                "```",
            ]

        if fix.risks:
            parts += ["", "### Identified Risks"] + [f"- {r}" for r in fix.risks]

        parts += [
            "",
            "## Review Instructions",
            "1. For each change, verify old_code appears EXACTLY in the file",
            "2. Check that new_code is syntactically valid",
            "3. Verify the fix addresses the root cause",
            "4. Look for side effects",
            "5. Assess the overall likelihood of success",
            "",
            "Respond with the JSON object as specified in the system prompt.",
        ]
        return "\n".join(parts)

    def _post_process(self, data: ReviewOutput, prior: PriorOutputs, context: FailureContext) -> ReviewOutput:
        if not context.source_file_content:
            return data
        local_issues = validate_old_code_exists(
            prior.proposed_fix.changes, context.source_file_content, context.test_file,
        )
        if not local_issues:
            return data
        logger.warning("old_code missing from test file", extra={
            "agent_name": self.agent_name, "action": "old_code_check",
            "extra": {"changes": [i.change_index for i in local_issues]},
        })
        # Re-validate so the CRITICAL-rejects invariant applies to the merged issues.
        return ReviewOutput.model_validate({
            **data.model_dump(),
            "issues": [i.model_dump() for i in data.issues + local_issues],
        })
