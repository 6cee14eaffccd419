"""
Runtime configuration for the repair pipeline.

Values are frozen once resolved; environment variables override the
code defaults via OrchestratorConfig.from_env().
"""

import os
from dataclasses import dataclass, fields

from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)

_ENV_KEYS = {
    "max_iterations": "TRIAGE_MAX_ITERATIONS",
    "total_timeout_ms": "TRIAGE_TOTAL_TIMEOUT_MS",
    "min_confidence": "TRIAGE_MIN_CONFIDENCE",
    "require_review": "TRIAGE_REQUIRE_REVIEW",
    "fallback_to_single_shot": "TRIAGE_FALLBACK_SINGLE_SHOT",
}


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Limits and switches for one orchestration run."""
    max_iterations: int = 3            # Fix Generation / Review round trips
    total_timeout_ms: int = 120000     # Wall-clock deadline from orchestration start
    min_confidence: int = 70           # Gate for accepting a fix (0-100)
    require_review: bool = True
    fallback_to_single_shot: bool = True

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if not 0 <= self.min_confidence <= 100:
            raise ValueError("min_confidence must be between 0 and 100")
        if self.total_timeout_ms <= 0:
            raise ValueError("total_timeout_ms must be positive")

    @classmethod
    def from_env(cls, **overrides) -> "OrchestratorConfig":
        """Resolve config: explicit overrides > environment > code defaults."""
        values = {}
        for f in fields(cls):
            raw = os.getenv(_ENV_KEYS[f.name])
            if raw is None or raw == "":
                continue
            try:
                values[f.name] = _parse_bool(raw) if f.type in (bool, "bool") else int(raw)
            except ValueError:
                logger.warning("Ignoring invalid config value", extra={
                    "action": "config_invalid",
                    "extra": {"env": _ENV_KEYS[f.name], "value": raw},
                })
        values.update(overrides)
        return cls(**values)
