import pytest

from triage_repair.agents.analysis_agent import AnalysisAgent
from triage_repair.agents.fix_generation_agent import FixGenerationAgent, format_review_feedback
from triage_repair.agents.investigation_agent import InvestigationAgent
from triage_repair.agents.review_agent import ReviewAgent, validate_old_code_exists
from triage_repair.models.schemas import (
    AnalysisOutput,
    CodeChange,
    FixGenerationOutput,
    InvestigationOutput,
    PriorOutputs,
    RelatedFile,
    ReviewOutput,
    ReviewSeverity,
    RootCauseCategory,
)


@pytest.fixture
def analysis(analysis_payload):
    return AnalysisOutput.model_validate(analysis_payload)


@pytest.fixture
def investigation(investigation_payload):
    return InvestigationOutput.model_validate(investigation_payload)


@pytest.fixture
def fix(fix_payload):
    return FixGenerationOutput.model_validate(fix_payload)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def test_analysis_prompt_includes_failure_details(login_context):
    prompt = AnalysisAgent(None)._build_user_prompt(PriorOutputs(), login_context)
    assert "cypress/e2e/login.cy.ts" in prompt
    assert "Test framework:** Cypress" in prompt
    assert '[data-testid="email-input"]' in prompt
    assert "src/components/LoginForm.tsx (modified)" in prompt


@pytest.mark.asyncio
async def test_analysis_selector_mismatch(make_backend, analysis_payload, login_context):
    result = await AnalysisAgent(make_backend(analysis_payload)).execute(PriorOutputs(), login_context)
    assert result.data.root_cause_category == RootCauseCategory.SELECTOR_MISMATCH
    assert result.data.patterns.has_timeout is True


# ---------------------------------------------------------------------------
# Investigation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_investigation_requires_analysis(make_backend, login_context):
    backend = make_backend()
    result = await InvestigationAgent(backend).execute(PriorOutputs(), login_context)
    assert not result.success
    assert "requires the analysis output" in result.error
    backend.invoke.assert_not_called()


def test_investigation_prompt_includes_diff_and_related_files(analysis, login_context):
    ctx = login_context.model_copy(update={
        "related_files": (RelatedFile(path="cypress/support/pages/login.ts", content="export const email = 'x'"),),
    })
    prompt = InvestigationAgent(None)._build_user_prompt(PriorOutputs(analysis=analysis), ctx)
    assert "```diff" in prompt
    assert 'data-testid="email-field"' in prompt
    assert "#### cypress/support/pages/login.ts" in prompt
    assert "- Timeout: True" in prompt


@pytest.mark.asyncio
async def test_investigation_selector_update(make_backend, investigation_payload, analysis, login_context):
    result = await InvestigationAgent(make_backend(investigation_payload)).execute(
        PriorOutputs(analysis=analysis), login_context,
    )
    assert result.success
    assert result.data.selectors_to_update[0].suggested_replacement == '[data-testid="email-field"]'


# ---------------------------------------------------------------------------
# Fix Generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fix_generation_requires_investigation(make_backend, analysis, login_context):
    result = await FixGenerationAgent(make_backend()).execute(PriorOutputs(analysis=analysis), login_context)
    assert not result.success
    assert "requires the analysis and investigation" in result.error


def test_fix_generation_default_max_tokens():
    assert FixGenerationAgent(None).config.max_tokens == 6000


def test_fix_prompt_without_feedback(analysis, investigation, login_context):
    prompt = FixGenerationAgent(None)._build_user_prompt(
        PriorOutputs(analysis=analysis, investigation=investigation), login_context,
    )
    assert "Suggested: `[data-testid=\"email-field\"]`" in prompt
    assert "Previous Review Feedback" not in prompt
    assert "Previous Fix Attempt" not in prompt


def test_fix_prompt_carries_review_feedback(analysis, investigation, fix, rejected_review_payload, login_context):
    review = ReviewOutput.model_validate(rejected_review_payload)
    prompt = FixGenerationAgent(None)._build_user_prompt(
        PriorOutputs(analysis=analysis, investigation=investigation, proposed_fix=fix, review=review),
        login_context,
    )
    assert "### Previous Fix Attempt (rejected)" in prompt
    assert fix.changes[0].new_code in prompt
    assert "[WARNING] change 0: Typing before the field is visible is flaky" in prompt
    assert "should('be.visible')" in prompt


def test_format_review_feedback_falls_back_to_assessment():
    review = ReviewOutput(approved=False, assessment="Does not address root cause")
    assert format_review_feedback(review) == "Does not address root cause"


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

def test_validate_old_code_exists_flags_missing_code(login_context):
    changes = [
        CodeChange(file="cypress/e2e/login.cy.ts", old_code="cy.get('#email')", new_code="cy.get('#e')"),
        CodeChange(file="cypress/e2e/login.cy.ts", old_code="cy.visit('/login')", new_code="cy.visit('/')"),
        CodeChange(file="src/other.ts", old_code="nope", new_code="yes"),
    ]
    issues = validate_old_code_exists(changes, login_context.source_file_content, login_context.test_file)
    assert [i.change_index for i in issues] == [0]
    assert issues[0].severity == ReviewSeverity.CRITICAL


@pytest.mark.asyncio
async def test_review_requires_proposed_fix(make_backend, analysis, login_context):
    result = await ReviewAgent(make_backend()).execute(PriorOutputs(analysis=analysis), login_context)
    assert not result.success


@pytest.mark.asyncio
async def test_review_approves(make_backend, approved_review_payload, analysis, fix, login_context):
    result = await ReviewAgent(make_backend(approved_review_payload)).execute(
        PriorOutputs(analysis=analysis, proposed_fix=fix), login_context,
    )
    assert result.data.approved
    assert result.data.fix_confidence == 90


@pytest.mark.asyncio
async def test_review_local_check_overrides_approval(make_backend, approved_review_payload, analysis, fix_payload, login_context):
    fix_payload["changes"][0]["old_code"] = "cy.get('#email').type('user@example.com')"
    fix = FixGenerationOutput.model_validate(fix_payload)

    result = await ReviewAgent(make_backend(approved_review_payload)).execute(
        PriorOutputs(analysis=analysis, proposed_fix=fix), login_context,
    )

    assert result.success
    assert result.data.approved is False
    assert result.data.has_critical_issues


def test_review_prompt_shows_changes_and_file(analysis, fix, login_context):
    prompt = ReviewAgent(None)._build_user_prompt(PriorOutputs(analysis=analysis, proposed_fix=fix), login_context)
    assert "#### Change 0: cypress/e2e/login.cy.ts" in prompt
    assert "Original File Content" in prompt
