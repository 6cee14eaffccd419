"""
Agent Orchestrator: runs the four-stage repair pipeline for one failing test.

Analysis -> Investigation -> loop { Fix Generation -> Review } with a
wall-clock deadline checked before every stage, confidence gating on the
final fix, and an optional single-shot fallback when the pipeline gives up.
Every failure is returned as an OrchestrationResult; nothing is raised to
the caller.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from triage_repair.agents.analysis_agent import AnalysisAgent
from triage_repair.agents.base_agent import AgentConfig
from triage_repair.agents.fix_generation_agent import FixGenerationAgent
from triage_repair.agents.investigation_agent import InvestigationAgent
from triage_repair.agents.results import (
    confidence_gate,
    final_confidence,
    meets_threshold,
    to_fix_recommendation,
)
from triage_repair.agents.review_agent import ReviewAgent
from triage_repair.agents.single_shot import SingleShotRepairAgent, SingleShotStrategy
from triage_repair.config import OrchestratorConfig
from triage_repair.models.schemas import (
    AgentResults,
    FailureContext,
    FixGenerationOutput,
    FixRecommendation,
    OrchestrationPhase,
    OrchestrationResult,
    PriorOutputs,
    RetryState,
    ReviewIssue,
    ReviewOutput,
    ReviewSeverity,
)
from triage_repair.utils.event_emitter import EventEmitter
from triage_repair.utils.llm_client import ReasoningBackend
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

__all__ = [
    "AgentOrchestrator",
    "create_orchestrator",
    "confidence_gate",
    "final_confidence",
    "meets_threshold",
    "to_fix_recommendation",
]


@dataclass
class _Run:
    run_id: str
    start: float
    deadline: float
    agent_results: AgentResults = field(default_factory=AgentResults)
    iterations: int = 0
    phase: Optional[OrchestrationPhase] = None


@dataclass
class _Outcome:
    fix: Optional[FixRecommendation] = None
    error: Optional[str] = None
    timed_out: bool = False


class AgentOrchestrator:
    """Sequences the stage agents and owns the Fix Generation / Review loop."""

    AGENT_NAME = "orchestrator"

    def __init__(
        self,
        backend: ReasoningBackend,
        config: Optional[OrchestratorConfig] = None,
        single_shot: Optional[SingleShotStrategy] = None,
        event_emitter: Optional[EventEmitter] = None,
        agent_config: Optional[AgentConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            backend: reasoning backend shared by all stages
            config: loop limits and switches (defaults to OrchestratorConfig())
            single_shot: fallback strategy used when fallback_to_single_shot is on
            event_emitter: receives phase transitions (optional)
            agent_config: per-stage overrides; each stage keeps its own default otherwise
            clock: monotonic time source in seconds
        """
        self.config = config or OrchestratorConfig()
        self.single_shot = single_shot
        self.event_emitter = event_emitter
        self._clock = clock

        self.analysis_agent = AnalysisAgent(backend, agent_config)
        self.investigation_agent = InvestigationAgent(backend, agent_config)
        self.fix_generation_agent = FixGenerationAgent(backend, agent_config)
        self.review_agent = ReviewAgent(backend, agent_config)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def orchestrate(self, context: FailureContext) -> OrchestrationResult:
        """Run the pipeline once for ``context``."""
        start = self._clock()
        run = _Run(
            run_id=self.event_emitter.run_id if self.event_emitter else uuid.uuid4().hex[:12],
            start=start,
            deadline=start + self.config.total_timeout_ms / 1000,
        )
        logger.info("Starting agentic repair pipeline", extra={
            "run_id": run.run_id, "action": "orchestration_start",
            "extra": {"test_file": context.test_file, "test_name": context.test_name},
        })
        await self._emit(run, "started", f"Repairing {context.test_name}")

        try:
            outcome = await self._run_pipeline(context, run)
        except Exception as e:
            logger.error("Orchestration failed unexpectedly", exc_info=True, extra={
                "run_id": run.run_id, "action": "orchestration_error", "stage": run.phase,
            })
            outcome = _Outcome(error=f"Orchestration failed: {e}")

        await self._enter(run, OrchestrationPhase.DONE)

        if outcome.fix is not None:
            total_time_ms = self._elapsed_ms(run)
            logger.info("Agentic repair completed", extra={
                "run_id": run.run_id, "action": "orchestration_complete",
                "duration_ms": total_time_ms, "iteration": run.iterations,
                "extra": {"confidence": outcome.fix.confidence},
            })
            await self._emit(run, "success", f"Fix ready after {run.iterations} iteration(s)",
                             {"confidence": outcome.fix.confidence})
            return OrchestrationResult(
                success=True,
                approach="agentic",
                iterations=run.iterations,
                total_time_ms=total_time_ms,
                fix=outcome.fix,
                agent_results=run.agent_results,
            )

        logger.warning("Agentic repair did not produce a fix", extra={
            "run_id": run.run_id, "action": "orchestration_failed", "extra": outcome.error,
        })

        if not outcome.timed_out and self.config.fallback_to_single_shot:
            fallback_fix = await self._run_single_shot(context, run)
            if fallback_fix is not None:
                await self._emit(run, "success", "Single-shot fallback produced a fix",
                                 {"confidence": fallback_fix.confidence})
                return OrchestrationResult(
                    success=True,
                    approach="single-shot",
                    iterations=run.iterations,
                    total_time_ms=self._elapsed_ms(run),
                    fix=fallback_fix,
                    agent_results=run.agent_results,
                )

        await self._emit(run, "error", outcome.error or "No fix produced")
        return OrchestrationResult(
            success=False,
            approach="failed",
            iterations=run.iterations,
            total_time_ms=self._elapsed_ms(run),
            error=outcome.error or "Agentic approach did not produce a valid fix",
            agent_results=run.agent_results,
        )

    # =========================================================================
    # State machine
    # =========================================================================

    async def _run_pipeline(self, context: FailureContext, run: _Run) -> _Outcome:
        min_confidence = self.config.min_confidence
        max_iterations = self.config.max_iterations

        # ---- ANALYZING ----
        if self._deadline_passed(run):
            return self._timeout(run)
        await self._enter(run, OrchestrationPhase.ANALYZING)
        analysis_result = await self.analysis_agent.execute(PriorOutputs(), context)
        run.agent_results.analysis = analysis_result
        if not analysis_result.success:
            return _Outcome(error=f"Analysis agent failed: {analysis_result.error}")
        analysis = analysis_result.data
        logger.info("Analysis complete", extra={
            "run_id": run.run_id, "stage": "analysis", "action": "analysis_result",
            "extra": {"root_cause": analysis.root_cause_category.value, "confidence": analysis.confidence},
        })

        # ---- INVESTIGATING ----
        if self._deadline_passed(run):
            return self._timeout(run)
        await self._enter(run, OrchestrationPhase.INVESTIGATING)
        investigation_result = await self.investigation_agent.execute(
            PriorOutputs(analysis=analysis), context,
        )
        run.agent_results.investigation = investigation_result
        if not investigation_result.success:
            return _Outcome(error=f"Investigation agent failed: {investigation_result.error}")
        investigation = investigation_result.data
        logger.info("Investigation complete", extra={
            "run_id": run.run_id, "stage": "investigation", "action": "investigation_result",
            "extra": {
                "findings": len(investigation.findings),
                "test_code_fixable": investigation.is_test_code_fixable,
                "confidence": investigation.confidence,
            },
        })

        # ---- GENERATING_FIX <-> REVIEWING ----
        retry: Optional[RetryState] = None
        last_fix: Optional[FixGenerationOutput] = None
        last_fix_error: Optional[str] = None

        for iteration in range(1, max_iterations + 1):
            if self._deadline_passed(run):
                return self._timeout(run)
            run.iterations = iteration
            await self._enter(run, OrchestrationPhase.GENERATING_FIX)

            fix_result = await self.fix_generation_agent.execute(
                PriorOutputs(
                    analysis=analysis,
                    investigation=investigation,
                    proposed_fix=retry.last_fix if retry else None,
                    review=retry.last_review if retry else None,
                ),
                context,
            )
            run.agent_results.fix_generation = fix_result
            if not fix_result.success:
                # Consumes the iteration; feedback from the last review carries forward.
                last_fix_error = fix_result.error
                logger.warning("Fix generation failed", extra={
                    "run_id": run.run_id, "stage": "fix_generation", "iteration": iteration,
                    "action": "fix_generation_failed", "extra": fix_result.error,
                })
                continue

            fix = fix_result.data
            last_fix = fix
            logger.info("Fix generated", extra={
                "run_id": run.run_id, "stage": "fix_generation", "iteration": iteration,
                "action": "fix_generated",
                "extra": {"confidence": fix.confidence, "changes": len(fix.changes)},
            })

            if not self.config.require_review:
                if meets_threshold(fix.confidence, min_confidence):
                    if self._deadline_passed(run):
                        return self._timeout(run)
                    await self._enter(run, OrchestrationPhase.APPROVED)
                    return _Outcome(fix=to_fix_recommendation(fix))
                retry = RetryState(last_fix=fix, last_review=self._low_confidence_feedback(fix, min_confidence))
                if iteration < max_iterations:
                    await self._enter(run, OrchestrationPhase.RETRY)
                continue

            if self._deadline_passed(run):
                return self._timeout(run)
            await self._enter(run, OrchestrationPhase.REVIEWING)
            review_result = await self.review_agent.execute(
                PriorOutputs(analysis=analysis, proposed_fix=fix), context,
            )
            run.agent_results.review = review_result
            review = review_result.data if review_result.success else None

            if review is None:
                # Review unavailable is non-approval, not a fatal error.
                logger.warning("Review failed, treating fix as unreviewed", extra={
                    "run_id": run.run_id, "stage": "review", "iteration": iteration,
                    "action": "review_failed", "extra": review_result.error,
                })
            else:
                logger.info("Review complete", extra={
                    "run_id": run.run_id, "stage": "review", "iteration": iteration,
                    "action": "review_result",
                    "extra": {
                        "approved": review.approved,
                        "issues": len(review.issues),
                        "fix_confidence": review.fix_confidence,
                    },
                })

            if confidence_gate(review, min_confidence):
                # A stage that overran the deadline cannot produce an accepted fix.
                if self._deadline_passed(run):
                    return self._timeout(run)
                await self._enter(run, OrchestrationPhase.APPROVED)
                return _Outcome(fix=to_fix_recommendation(fix, review))

            retry = RetryState(
                last_fix=fix,
                last_review=review or self._unavailable_review(fix, review_result.error),
            )
            if iteration < max_iterations:
                await self._enter(run, OrchestrationPhase.RETRY)

        # ---- EXHAUSTED ----
        if self._deadline_passed(run):
            return self._timeout(run)
        await self._enter(run, OrchestrationPhase.EXHAUSTED)
        if last_fix is None:
            return _Outcome(error=f"Fix generation failed after {max_iterations} iterations: {last_fix_error}")
        if meets_threshold(last_fix.confidence, min_confidence):
            logger.warning("Max iterations reached, returning best unapproved fix", extra={
                "run_id": run.run_id, "action": "exhausted_accept",
                "extra": {"confidence": last_fix.confidence},
            })
            return _Outcome(fix=to_fix_recommendation(last_fix))
        return _Outcome(error=f"Fix confidence below threshold after {max_iterations} iterations")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _elapsed_ms(self, run: _Run) -> int:
        return round((self._clock() - run.start) * 1000)

    def _deadline_passed(self, run: _Run) -> bool:
        return self._clock() > run.deadline

    def _timeout(self, run: _Run) -> _Outcome:
        elapsed = self._elapsed_ms(run)
        logger.error("Orchestration deadline exceeded", extra={
            "run_id": run.run_id, "action": "timeout", "stage": run.phase, "duration_ms": elapsed,
        })
        return _Outcome(error=f"Orchestration timed out after {elapsed}ms", timed_out=True)

    @staticmethod
    def _low_confidence_feedback(fix: FixGenerationOutput, min_confidence: int) -> ReviewOutput:
        return ReviewOutput(
            approved=False,
            issues=[ReviewIssue(
                severity=ReviewSeverity.WARNING,
                change_index=0,
                description=f"Confidence too low ({fix.confidence}%, need {min_confidence}%). Please improve the fix.",
            )],
            assessment="Fix confidence below threshold",
            fix_confidence=fix.confidence,
        )

    @staticmethod
    def _unavailable_review(fix: FixGenerationOutput, error: Optional[str]) -> ReviewOutput:
        # TODO: lower fix_confidence here once callers can tell "unreviewed" from "approved".
        return ReviewOutput(
            approved=False,
            assessment=f"Review unavailable: {error}",
            fix_confidence=fix.confidence,
        )

    async def _run_single_shot(self, context: FailureContext, run: _Run) -> Optional[FixRecommendation]:
        if self.single_shot is None:
            logger.warning("Fallback enabled but no single-shot strategy configured", extra={
                "run_id": run.run_id, "action": "fallback_unavailable",
            })
            return None

        logger.info("Falling back to single-shot repair", extra={"run_id": run.run_id, "action": "fallback_start"})
        await self._emit(run, "warning", "Agentic approach failed, falling back to single-shot")
        try:
            fix = await self.single_shot.generate_fix_recommendation(context)
        except Exception as e:
            logger.error("Single-shot fallback raised", exc_info=True, extra={
                "run_id": run.run_id, "action": "fallback_error", "extra": str(e),
            })
            return None

        if fix is None or not meets_threshold(fix.confidence, self.config.min_confidence):
            logger.info("Single-shot fallback did not clear the threshold", extra={
                "run_id": run.run_id, "action": "fallback_rejected",
                "extra": {"confidence": fix.confidence if fix else None},
            })
            return None
        return fix

    async def _enter(self, run: _Run, phase: OrchestrationPhase) -> None:
        run.phase = phase
        logger.info("Phase transition", extra={
            "run_id": run.run_id, "stage": phase.value, "iteration": run.iterations or None,
            "action": "phase_change",
        })
        await self._emit(run, "phase_change", phase.value, {"iteration": run.iterations})

    async def _emit(self, run: _Run, event_type: str, message: str, details: Optional[dict] = None) -> None:
        if self.event_emitter:
            await self.event_emitter.emit(self.AGENT_NAME, event_type, message, details=details)


def create_orchestrator(
    backend: ReasoningBackend,
    config: Optional[OrchestratorConfig] = None,
    event_emitter: Optional[EventEmitter] = None,
) -> AgentOrchestrator:
    """Build an orchestrator with the default single-shot fallback wired in."""
    config = config or OrchestratorConfig()
    single_shot = SingleShotRepairAgent(backend) if config.fallback_to_single_shot else None
    return AgentOrchestrator(backend, config=config, single_shot=single_shot, event_emitter=event_emitter)
