import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from triage_repair.models.schemas import ChangedFile, FailureContext, PRDiff

LOGIN_SPEC = """describe('login', () => {
  it('submits credentials', () => {
    cy.visit('/login')
    cy.get('[data-testid="email-input"]').type('user@example.com')
    cy.get('[data-testid="submit"]').click()
  })
})
"""

EMAIL_PATCH = """@@ -12,7 +12,7 @@ export function LoginForm() {
-      <input data-testid="email-input" type="email" />
+      <input data-testid="email-field" type="email" />
"""


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def reply(payload) -> str:
    return json.dumps(payload)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_backend():
    """Backend whose invoke() returns (or raises) the given replies in order.

    dicts are serialized to JSON, strings are returned verbatim and
    exceptions are raised.
    """
    def _make(*replies):
        backend = MagicMock()
        backend.invoke = AsyncMock(side_effect=[
            reply(r) if isinstance(r, dict) else r for r in replies
        ])
        return backend
    return _make


@pytest.fixture
def login_context():
    """Selector renamed from email-input to email-field in the PR under test."""
    return FailureContext(
        error_message='Timed out retrying after 4000ms: Expected to find element: [data-testid="email-input"], but never found it.',
        test_file="cypress/e2e/login.cy.ts",
        test_name="login submits credentials",
        error_type="ELEMENT_NOT_FOUND",
        error_selector='[data-testid="email-input"]',
        stack_trace="AssertionError: Timed out retrying\n    at Context.eval (cypress/e2e/login.cy.ts:4:8)",
        pr_diff=PRDiff(files=(
            ChangedFile(filename="src/components/LoginForm.tsx", status="modified", patch=EMAIL_PATCH),
        )),
        framework="cypress",
        source_file_content=LOGIN_SPEC,
    )


@pytest.fixture
def analysis_payload():
    return {
        "root_cause_category": "SELECTOR_MISMATCH",
        "contributing_factors": [],
        "confidence": 88,
        "explanation": "The email input's data-testid was renamed in the PR.",
        "selectors": ['[data-testid="email-input"]'],
        "elements": ["email input"],
        "issue_location": "TEST_CODE",
        "patterns": {
            "has_timeout": True,
            "has_visibility_issue": False,
            "has_network_call": False,
            "has_state_assertion": False,
            "has_dynamic_content": False,
            "has_responsive_issue": False,
        },
        "suggested_approach": "Update the selector to the new data-testid.",
    }


@pytest.fixture
def investigation_payload():
    return {
        "findings": [
            {
                "type": "SELECTOR_CHANGE",
                "severity": "HIGH",
                "description": "data-testid email-input renamed to email-field in LoginForm.tsx",
                "evidence": ['-      <input data-testid="email-input"', '+      <input data-testid="email-field"'],
                "location": {"file": "src/components/LoginForm.tsx", "line": 12},
                "relation_to_error": "The test still queries the old data-testid.",
            }
        ],
        "is_test_code_fixable": True,
        "recommended_approach": "Point the test at the renamed data-testid.",
        "selectors_to_update": [
            {
                "current": '[data-testid="email-input"]',
                "reason": "Renamed in LoginForm.tsx",
                "suggested_replacement": '[data-testid="email-field"]',
            }
        ],
        "confidence": 85,
    }


@pytest.fixture
def fix_payload():
    return {
        "changes": [
            {
                "file": "cypress/e2e/login.cy.ts",
                "line": 4,
                "old_code": "cy.get('[data-testid=\"email-input\"]').type('user@example.com')",
                "new_code": "cy.get('[data-testid=\"email-field\"]').type('user@example.com')",
                "justification": "The input's data-testid is now email-field.",
                "change_type": "SELECTOR_UPDATE",
            }
        ],
        "confidence": 85,
        "summary": "Update email selector to the renamed data-testid",
        "reasoning": "The PR renamed the data-testid; the test must follow.",
        "evidence": ["LoginForm.tsx diff renames email-input to email-field"],
        "risks": [],
    }


@pytest.fixture
def approved_review_payload():
    return {
        "approved": True,
        "issues": [],
        "assessment": "Selector update matches the component change.",
        "fix_confidence": 90,
    }


@pytest.fixture
def rejected_review_payload():
    return {
        "approved": False,
        "issues": [
            {
                "severity": "WARNING",
                "change_index": 0,
                "description": "Typing before the field is visible is flaky",
                "suggestion": "Assert should('be.visible') before typing",
            }
        ],
        "assessment": "Needs a visibility check.",
        "fix_confidence": 55,
    }
