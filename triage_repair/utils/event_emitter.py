"""
Per-run event log for pipeline progress.

Events are kept in memory for the run and pushed to an optional publisher
(anything with ``async send_message(run_id, payload)``, e.g. a websocket hub).
"""

from datetime import datetime, timezone
from typing import Optional, Protocol

from triage_repair.models.schemas import TaskEvent
from triage_repair.utils.logger import get_logger

logger = get_logger(__name__)


class EventPublisher(Protocol):
    async def send_message(self, run_id: str, payload: dict) -> None: ...


class EventEmitter:

    def __init__(self, run_id: str, publisher: Optional[EventPublisher] = None):
        self.run_id = run_id
        self._publisher = publisher
        self._events: list[TaskEvent] = []

    async def emit(
        self,
        agent_name: str,
        event_type: str,
        message: str,
        details: Optional[dict] = None,
    ) -> TaskEvent:
        """Record an event for this run and publish it if a publisher is attached.

        Publishing is best effort: a failing publisher is logged and the
        event stays retrievable through ``events_since``.
        """
        event = TaskEvent(
            timestamp=datetime.now(timezone.utc),
            run_id=self.run_id,
            agent_name=agent_name,
            event_type=event_type,
            message=message,
            details=details,
        )
        self._events.append(event)
        logger.debug("Event recorded", extra={
            "run_id": self.run_id, "agent_name": agent_name, "action": event_type, "extra": message,
        })

        if self._publisher is not None:
            await self._publish(event)
        return event

    async def _publish(self, event: TaskEvent) -> None:
        payload = {"type": "task_event", "data": event.model_dump(mode="json")}
        try:
            await self._publisher.send_message(self.run_id, payload)
        except Exception as e:
            logger.warning("Event publish failed", extra={
                "run_id": self.run_id, "action": "publish_failed",
                "extra": {"event_type": event.event_type, "error": str(e)},
            })

    def events_since(self, index: int) -> list[TaskEvent]:
        """Events recorded after the first ``index`` ones, for late subscribers."""
        return self._events[index:]

    def get_all_events(self) -> list[TaskEvent]:
        return list(self._events)

    def get_events_by_agent(self, agent_name: str) -> list[TaskEvent]:
        return [e for e in self._events if e.agent_name == agent_name]
