from datetime import datetime
from enum import Enum
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


T = TypeVar("T")


def _coerce_enum(enum_cls, value, default, aliases: dict | None = None):
    """Map a loosely-formatted backend value onto an enum member."""
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    key = str(value).strip().upper().replace("-", "_").replace(" ", "_")
    if aliases and key in aliases:
        return aliases[key]
    try:
        return enum_cls(key)
    except ValueError:
        return default


def _clamp_confidence(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("confidence must be a number")
    return int(round(min(max(value, 0), 100)))


# ── Enums ────────────────────────────────────────────────────────────────


class RootCauseCategory(str, Enum):
    SELECTOR_MISMATCH = "SELECTOR_MISMATCH"
    TIMING_ISSUE = "TIMING_ISSUE"
    STATE_DEPENDENCY = "STATE_DEPENDENCY"
    NETWORK_ISSUE = "NETWORK_ISSUE"
    ELEMENT_VISIBILITY = "ELEMENT_VISIBILITY"
    ASSERTION_MISMATCH = "ASSERTION_MISMATCH"
    DATA_DEPENDENCY = "DATA_DEPENDENCY"
    ENVIRONMENT_ISSUE = "ENVIRONMENT_ISSUE"
    UNKNOWN = "UNKNOWN"


class IssueLocation(str, Enum):
    TEST_CODE = "TEST_CODE"
    APP_CODE = "APP_CODE"
    BOTH = "BOTH"
    UNKNOWN = "UNKNOWN"


class FindingType(str, Enum):
    SELECTOR_CHANGE = "SELECTOR_CHANGE"
    MISSING_ELEMENT = "MISSING_ELEMENT"
    TIMING_GAP = "TIMING_GAP"
    STATE_ISSUE = "STATE_ISSUE"
    CODE_CHANGE = "CODE_CHANGE"
    OTHER = "OTHER"


class FindingSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ChangeType(str, Enum):
    SELECTOR_UPDATE = "SELECTOR_UPDATE"
    WAIT_ADDITION = "WAIT_ADDITION"
    LOGIC_CHANGE = "LOGIC_CHANGE"
    ASSERTION_UPDATE = "ASSERTION_UPDATE"
    OTHER = "OTHER"


class ReviewSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class OrchestrationPhase(str, Enum):
    ANALYZING = "analyzing"
    INVESTIGATING = "investigating"
    GENERATING_FIX = "generating_fix"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    DONE = "done"


# ── Failure context (read-only input to every stage) ────────────────────


class Screenshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    base64_data: Optional[str] = None


class ChangedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    status: str = "modified"
    patch: Optional[str] = None


class PRDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: tuple[ChangedFile, ...] = ()


class RelatedFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    relevance: str = ""


class FailureContext(BaseModel):
    """Everything known about one failing test. Built once by the caller."""

    model_config = ConfigDict(frozen=True)

    error_message: str
    test_file: str
    test_name: str
    error_type: Optional[str] = None
    error_selector: Optional[str] = None
    stack_trace: Optional[str] = None
    logs: tuple[str, ...] = ()
    screenshots: tuple[Screenshot, ...] = ()
    pr_diff: Optional[PRDiff] = None
    framework: Optional[Literal["cypress", "webdriverio"]] = None
    source_file_content: Optional[str] = None
    related_files: tuple[RelatedFile, ...] = ()


# ── Stage outputs ───────────────────────────────────────────────────────


class AnalysisPatterns(BaseModel):
    has_timeout: bool = False
    has_visibility_issue: bool = False
    has_network_call: bool = False
    has_state_assertion: bool = False
    has_dynamic_content: bool = False
    has_responsive_issue: bool = False

    @field_validator("*", mode="before")
    @classmethod
    def _flag(cls, v):
        if isinstance(v, str):
            return v.strip().lower() == "true"
        return bool(v)


class AnalysisOutput(BaseModel):
    root_cause_category: RootCauseCategory
    contributing_factors: list[RootCauseCategory] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)
    explanation: str = ""
    selectors: list[str] = Field(default_factory=list)
    elements: list[str] = Field(default_factory=list)
    issue_location: IssueLocation = IssueLocation.UNKNOWN
    patterns: AnalysisPatterns = Field(default_factory=AnalysisPatterns)
    suggested_approach: str = ""

    @field_validator("root_cause_category", mode="before")
    @classmethod
    def _category(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("root_cause_category is required")
        return _coerce_enum(RootCauseCategory, v, RootCauseCategory.UNKNOWN,
                            aliases={"OTHER": RootCauseCategory.UNKNOWN})

    @field_validator("contributing_factors", mode="before")
    @classmethod
    def _factors(cls, v):
        if not isinstance(v, list):
            return []
        return [_coerce_enum(RootCauseCategory, f, RootCauseCategory.UNKNOWN) for f in v]

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _clamp_confidence(v)

    @field_validator("selectors", "elements", mode="before")
    @classmethod
    def _lists(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("explanation", "suggested_approach", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""

    @field_validator("issue_location", mode="before")
    @classmethod
    def _location(cls, v):
        return _coerce_enum(IssueLocation, v, IssueLocation.UNKNOWN)

    @field_validator("patterns", mode="before")
    @classmethod
    def _patterns(cls, v):
        return v if isinstance(v, (dict, AnalysisPatterns)) else {}


class CodeLocation(BaseModel):
    file: str
    line: Optional[int] = None
    code: Optional[str] = None


class InvestigationFinding(BaseModel):
    type: FindingType = FindingType.OTHER
    severity: FindingSeverity = FindingSeverity.MEDIUM
    description: str = ""
    evidence: list[str] = Field(default_factory=list)
    location: Optional[CodeLocation] = None
    relation_to_error: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return _coerce_enum(FindingType, v, FindingType.OTHER)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        return _coerce_enum(FindingSeverity, v, FindingSeverity.MEDIUM)

    @field_validator("evidence", mode="before")
    @classmethod
    def _evidence(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("description", "relation_to_error", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, v):
        if isinstance(v, dict) and not v.get("file"):
            return None
        return v


class SelectorUpdate(BaseModel):
    current: str = ""
    reason: str = ""
    suggested_replacement: Optional[str] = None


class InvestigationOutput(BaseModel):
    findings: list[InvestigationFinding] = Field(default_factory=list)
    primary_finding: Optional[InvestigationFinding] = None
    is_test_code_fixable: bool = True
    recommended_approach: str = ""
    selectors_to_update: list[SelectorUpdate] = Field(default_factory=list)
    confidence: int = Field(default=50, ge=0, le=100)

    @field_validator("findings", "selectors_to_update", mode="before")
    @classmethod
    def _lists(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("is_test_code_fixable", mode="before")
    @classmethod
    def _fixable(cls, v):
        return v is not False

    @field_validator("recommended_approach", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return 50 if v is None else _clamp_confidence(v)

    @model_validator(mode="after")
    def _default_primary(self):
        if self.primary_finding is None and self.findings:
            self.primary_finding = self.findings[0]
        return self


class CodeChange(BaseModel):
    file: str = Field(min_length=1)
    line: Optional[int] = None
    old_code: str = Field(min_length=1)
    new_code: str = Field(min_length=1)
    justification: str = ""
    change_type: ChangeType = ChangeType.OTHER

    @field_validator("change_type", mode="before")
    @classmethod
    def _change_type(cls, v):
        return _coerce_enum(ChangeType, v, ChangeType.OTHER)

    @field_validator("justification", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""


class FixGenerationOutput(BaseModel):
    changes: list[CodeChange] = Field(min_length=1)
    confidence: int = Field(default=50, ge=0, le=100)
    summary: str = ""
    reasoning: str = ""
    evidence: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    alternatives: Optional[list[str]] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return 50 if v is None else _clamp_confidence(v)

    @field_validator("evidence", "risks", mode="before")
    @classmethod
    def _lists(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("alternatives", mode="before")
    @classmethod
    def _alternatives(cls, v):
        return v if isinstance(v, list) else None

    @field_validator("summary", "reasoning", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""


class ReviewIssue(BaseModel):
    severity: ReviewSeverity = ReviewSeverity.WARNING
    change_index: int = 0
    description: str = ""
    suggestion: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        return _coerce_enum(ReviewSeverity, v, ReviewSeverity.WARNING,
                            aliases={"SUGGESTION": ReviewSeverity.INFO})

    @field_validator("change_index", mode="before")
    @classmethod
    def _index(cls, v):
        return v if isinstance(v, int) and not isinstance(v, bool) else 0

    @field_validator("description", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""


class ReviewOutput(BaseModel):
    approved: bool = False
    issues: list[ReviewIssue] = Field(default_factory=list)
    assessment: str = ""
    fix_confidence: int = Field(default=50, ge=0, le=100)
    improvements: Optional[list[str]] = None

    @field_validator("issues", mode="before")
    @classmethod
    def _issues(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("fix_confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return 50 if v is None else _clamp_confidence(v)

    @field_validator("assessment", mode="before")
    @classmethod
    def _text(cls, v):
        return v or ""

    @field_validator("improvements", mode="before")
    @classmethod
    def _improvements(cls, v):
        return v if isinstance(v, list) else None

    @model_validator(mode="after")
    def _critical_rejects(self):
        # A CRITICAL issue always rejects, whatever the reviewer claimed.
        if self.has_critical_issues:
            self.approved = False
        return self

    @property
    def has_critical_issues(self) -> bool:
        return any(i.severity == ReviewSeverity.CRITICAL for i in self.issues)


# ── Stage plumbing ──────────────────────────────────────────────────────


class StageResult(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    duration_ms: int = 0
    api_calls: int = 0

    @model_validator(mode="after")
    def check_outcome(self):
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("successful StageResult requires data and no error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError("failed StageResult requires an error and no data")
        return self


class PriorOutputs(BaseModel):
    """Outputs of earlier stages, passed forward to the next one."""

    analysis: Optional[AnalysisOutput] = None
    investigation: Optional[InvestigationOutput] = None
    proposed_fix: Optional[FixGenerationOutput] = None
    review: Optional[ReviewOutput] = None


class RetryState(BaseModel):
    """Rejected fix and the feedback that rejected it, for the next iteration."""

    model_config = ConfigDict(frozen=True)

    last_fix: FixGenerationOutput
    last_review: ReviewOutput


# ── Caller-facing result ────────────────────────────────────────────────


class ProposedChange(BaseModel):
    file: str
    line: Optional[int] = None
    old_code: str
    new_code: str
    justification: str = ""


class FixRecommendation(BaseModel):
    confidence: int = Field(ge=0, le=100)
    summary: str
    proposed_changes: list[ProposedChange]
    evidence: list[str] = Field(default_factory=list)
    reasoning: str = ""


class AgentResults(BaseModel):
    analysis: Optional[StageResult[AnalysisOutput]] = None
    investigation: Optional[StageResult[InvestigationOutput]] = None
    fix_generation: Optional[StageResult[FixGenerationOutput]] = None
    review: Optional[StageResult[ReviewOutput]] = None


class OrchestrationResult(BaseModel):
    success: bool
    approach: Literal["agentic", "single-shot", "failed"]
    iterations: int = 0
    total_time_ms: int = 0
    fix: Optional[FixRecommendation] = None
    error: Optional[str] = None
    agent_results: AgentResults = Field(default_factory=AgentResults)


# ── Observability ───────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    agent_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int

    @model_validator(mode="after")
    def check_total(self):
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("total_tokens must equal input_tokens + output_tokens")
        return self


class TaskEvent(BaseModel):
    timestamp: datetime
    run_id: str
    agent_name: str
    event_type: Literal["started", "phase_change", "success", "warning", "error"]
    message: str
    details: Optional[dict] = None
