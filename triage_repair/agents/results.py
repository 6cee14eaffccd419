"""
Confidence gating and conversion of stage output into the caller-facing fix.

All functions here are pure: same inputs, same decision.
"""

from typing import Optional

from triage_repair.models.schemas import (
    FixGenerationOutput,
    FixRecommendation,
    ProposedChange,
    ReviewOutput,
)


def meets_threshold(confidence: int, min_confidence: int) -> bool:
    return confidence >= min_confidence


def confidence_gate(review: Optional[ReviewOutput], min_confidence: int) -> bool:
    """Approval decision for one iteration.

    Accepts only an approved review whose revised confidence clears the bar.
    A missing review (failed or skipped) never approves.
    """
    if review is None or not review.approved:
        return False
    return meets_threshold(review.fix_confidence, min_confidence)


def final_confidence(fix: FixGenerationOutput, review: Optional[ReviewOutput] = None) -> int:
    """Review's revised confidence when it approved, otherwise the fix's own."""
    if review is not None and review.approved:
        return review.fix_confidence
    return fix.confidence


def to_fix_recommendation(
    fix: FixGenerationOutput,
    review: Optional[ReviewOutput] = None,
) -> FixRecommendation:
    return FixRecommendation(
        confidence=final_confidence(fix, review),
        summary=fix.summary,
        proposed_changes=[
            ProposedChange(
                file=c.file,
                line=c.line,
                old_code=c.old_code,
                new_code=c.new_code,
                justification=c.justification,
            )
            for c in fix.changes
        ],
        evidence=list(fix.evidence),
        reasoning=fix.reasoning,
    )
