import pytest

from triage_repair.agents.results import (
    confidence_gate,
    final_confidence,
    meets_threshold,
    to_fix_recommendation,
)
from triage_repair.models.schemas import FixGenerationOutput, ReviewOutput


@pytest.fixture
def fix(fix_payload):
    return FixGenerationOutput.model_validate(fix_payload)


def test_meets_threshold_is_inclusive():
    assert meets_threshold(70, 70)
    assert not meets_threshold(69, 70)


def test_gate_requires_review():
    assert confidence_gate(None, 70) is False


def test_gate_requires_approval():
    review = ReviewOutput(approved=False, fix_confidence=95)
    assert confidence_gate(review, 70) is False


def test_gate_uses_review_confidence():
    assert confidence_gate(ReviewOutput(approved=True, fix_confidence=60), 70) is False
    assert confidence_gate(ReviewOutput(approved=True, fix_confidence=70), 70) is True


def test_gate_is_deterministic():
    review = ReviewOutput(approved=True, fix_confidence=80)
    assert {confidence_gate(review, 70) for _ in range(10)} == {True}


def test_final_confidence(fix):
    assert final_confidence(fix) == 85
    assert final_confidence(fix, ReviewOutput(approved=True, fix_confidence=92)) == 92
    assert final_confidence(fix, ReviewOutput(approved=False, fix_confidence=20)) == 85


def test_to_fix_recommendation(fix):
    rec = to_fix_recommendation(fix, ReviewOutput(approved=True, fix_confidence=90))
    assert rec.confidence == 90
    assert rec.summary == fix.summary
    assert rec.proposed_changes[0].new_code == fix.changes[0].new_code
    assert rec.proposed_changes[0].line == 4
    assert rec.evidence == fix.evidence
