import json
import logging

from triage_repair.models.schemas import OrchestrationPhase
from triage_repair.utils.logger import ROOT_LOGGER, JSONFormatter, get_logger


def _record(**extra):
    record = logging.LogRecord("triage_repair.test", logging.INFO, __file__, 1, "Stage completed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_lifts_structured_fields():
    entry = json.loads(JSONFormatter().format(_record(run_id="abc", stage="review", iteration=2, duration_ms=15)))
    assert entry["message"] == "Stage completed"
    assert entry["level"] == "INFO"
    assert entry["run_id"] == "abc"
    assert entry["stage"] == "review"
    assert entry["iteration"] == 2
    assert "agent_name" not in entry


def test_formatter_serializes_non_json_values():
    entry = json.loads(JSONFormatter().format(_record(stage=OrchestrationPhase.REVIEWING)))
    assert "reviewing" in entry["stage"]


def test_module_loggers_share_one_root_handler():
    first = get_logger("triage_repair.agents.one")
    second = get_logger("triage_repair.agents.two")
    get_logger("triage_repair.agents.one")
    assert first.handlers == [] and second.handlers == []
    assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1


def test_foreign_name_attached_under_package():
    assert get_logger("scripts.repair").name == "triage_repair.scripts.repair"
