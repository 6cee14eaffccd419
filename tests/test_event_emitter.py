import pytest
from unittest.mock import AsyncMock
from triage_repair.utils.event_emitter import EventEmitter


@pytest.mark.asyncio
async def test_emitter_sends_event():
    publisher = AsyncMock()
    emitter = EventEmitter(run_id="run-123", publisher=publisher)
    await emitter.emit("analysis_agent", "started", "Analyzing failure")
    publisher.send_message.assert_called_once()
    call_args = publisher.send_message.call_args
    assert call_args[0][0] == "run-123"
    assert call_args[0][1]["type"] == "task_event"
    assert call_args[0][1]["data"]["agent_name"] == "analysis_agent"


@pytest.mark.asyncio
async def test_emitter_stores_events():
    emitter = EventEmitter(run_id="run-123")
    await emitter.emit("orchestrator", "phase_change", "analyzing")
    await emitter.emit("orchestrator", "phase_change", "investigating")
    events = emitter.get_all_events()
    assert len(events) == 2
    assert events[0].message == "analyzing"


@pytest.mark.asyncio
async def test_emitter_get_events_by_agent():
    emitter = EventEmitter(run_id="run-123")
    await emitter.emit("orchestrator", "started", "Repairing login")
    await emitter.emit("single_shot", "warning", "Low confidence")
    await emitter.emit("orchestrator", "success", "Fix ready")
    events = emitter.get_events_by_agent("orchestrator")
    assert len(events) == 2


@pytest.mark.asyncio
async def test_emitter_without_publisher():
    emitter = EventEmitter(run_id="run-123")
    event = await emitter.emit("orchestrator", "phase_change", "done", details={"iteration": 1})
    assert event.details == {"iteration": 1}
    assert len(emitter.get_all_events()) == 1


@pytest.mark.asyncio
async def test_publisher_failure_keeps_event():
    publisher = AsyncMock()
    publisher.send_message.side_effect = ConnectionError("socket closed")
    emitter = EventEmitter(run_id="run-123", publisher=publisher)
    await emitter.emit("orchestrator", "error", "boom")
    assert len(emitter.get_all_events()) == 1


@pytest.mark.asyncio
async def test_events_since_for_late_subscriber():
    emitter = EventEmitter(run_id="run-123")
    for phase in ("analyzing", "investigating", "generating_fix"):
        await emitter.emit("orchestrator", "phase_change", phase)
    assert [e.message for e in emitter.events_since(1)] == ["investigating", "generating_fix"]
