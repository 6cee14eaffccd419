"""
Investigation stage: cross-references the analysis with source and PR diffs
to produce concrete findings and a fixability verdict.
"""

from triage_repair.agents.base_agent import BaseAgent, get_framework_label
from triage_repair.models.schemas import FailureContext, InvestigationOutput, PriorOutputs

SYSTEM_PROMPT = """You are an expert investigator for end-to-end test failures. Cross-reference the error analysis with the actual code and recent changes to identify the specific cause of the failure.

## Investigation Process

1. Compare selectors used by the test with what the application renders
2. Trace recent changes (PR diff) that could have broken the test
3. Check timing between test expectations and app behavior
4. Verify test assumptions about application state

## Finding Types

- SELECTOR_CHANGE: A selector in the test no longer matches elements in the app
- MISSING_ELEMENT: An element the test expects doesn't exist
- TIMING_GAP: The test is too fast or too slow for the app's behavior
- STATE_ISSUE: The test depends on state that isn't set up correctly
- CODE_CHANGE: Recent code changes broke the test
- OTHER: Something else

## Output Format

Respond with ONLY a JSON object matching this schema:
{
  "findings": [
    {
      "type": "<finding type>",
      "severity": "<LOW|MEDIUM|HIGH|CRITICAL>",
      "description": "<what was found>",
      "evidence": ["<supporting evidence>"],
      "location": {"file": "<file path>", "line": <line number>, "code": "<relevant snippet>"},
      "relation_to_error": "<how this finding explains the error>"
    }
  ],
  "primary_finding": <the most important finding object>,
  "is_test_code_fixable": <boolean - can this be fixed by changing test code?>,
  "recommended_approach": "<one paragraph describing the fix approach>",
  "selectors_to_update": [
    {"current": "<current selector>", "reason": "<why>", "suggested_replacement": "<new selector if known>"}
  ],
  "confidence": <0-100>
}"""


class InvestigationAgent(BaseAgent[InvestigationOutput]):
    agent_name = "investigation_agent"
    output_model = InvestigationOutput

    def _validate_inputs(self, prior: PriorOutputs) -> None:
        if prior.analysis is None:
            raise ValueError("Investigation requires the analysis output")

    def _build_system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def _build_user_prompt(self, prior: PriorOutputs, context: FailureContext) -> str:
        analysis = prior.analysis
        patterns = analysis.patterns
        parts = [
            "## Investigation Request",
            "",
            f"**Test framework:** {get_framework_label(context.framework)}",
            "",
            "### Error Analysis Results",
            f"- **Root Cause Category:** {analysis.root_cause_category.value}",
            f"- **Analysis Confidence:** {analysis.confidence}%",
            f"- **Issue Location:** {analysis.issue_location.value}",
            f"- **Explanation:** {analysis.explanation}",
            "",
            "### Identified Selectors",
        ]
        if analysis.selectors:
            parts += [f"- `{s}`" for s in analysis.selectors]
        else:
            parts.append("- No selectors identified")

        parts += [
            "",
            "### Detected Patterns",
            f"- Timeout: {patterns.has_timeout}",
            f"- Visibility Issue: {patterns.has_visibility_issue}",
            f"- Network Call: {patterns.has_network_call}",
            f"- State Assertion: {patterns.has_state_assertion}",
            f"- Dynamic Content: {patterns.has_dynamic_content}",
            f"- Responsive Issue: {patterns.has_responsive_issue}",
            "",
            "### Error Message",
            "```",
            context.error_message,
            "```",
        ]

        if context.source_file_content:
            parts += ["", "### Test File Content", "```javascript", context.source_file_content[:4000], "```"]

        if context.related_files:
            parts += ["", "### Related Files"]
            for rf in context.related_files[:3]:
                parts += ["", f"#### {rf.path}"]
                if rf.relevance:
                    parts.append(f"Relevance: {rf.relevance}")
                parts += ["```", rf.content[:1500], "```"]

        if context.pr_diff and context.pr_diff.files:
            parts += ["", "### Recent Changes (PR Diff)"]
            for f in context.pr_diff.files[:5]:
                parts.append(f"- **{f.filename}** ({f.status})")
                if f.patch:
                    parts += ["```diff", f.patch[:1000], "```"]

        if context.screenshots:
            parts += [
                "",
                "### Screenshots",
                f"{len(context.screenshots)} screenshot(s) attached. Use them to check which elements are visible.",
            ]

        parts += [
            "",
            "## Instructions",
            "1. Identify all findings that explain or contribute to the failure",
            "2. Determine the primary cause",
            "3. Decide whether the issue can be fixed in test code",
            "4. List any selectors that need to be updated",
            "5. Recommend a fix approach",
            "",
            "Respond with the JSON object as specified in the system prompt.",
        ]
        return "\n".join(parts)
