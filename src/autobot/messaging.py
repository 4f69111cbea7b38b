"""In-process publish/subscribe for lifecycle events.

The scheduling engine, task executor and budget manager publish; reactive
consumers (auto-pause on budget exhaustion, the operator event feed)
subscribe. Publishers never see a subscriber's failure.
"""

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200


class MessageType(StrEnum):
    SERVICE_STARTED = "service.started"
    SERVICE_COMPLETED = "service.completed"
    SERVICE_ERRORED = "service.errored"
    SERVICE_PAUSED = "service.paused"
    SERVICE_RESUMED = "service.resumed"
    SERVICE_STOPPED = "service.stopped"
    BUDGET_EXHAUSTED = "budget.exhausted"
    BUDGET_ALERT = "budget.alert"
    BUDGET_ADDED = "budget.added"
    COST_RECORDED = "cost.recorded"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_ERRORED = "task.errored"
    TASK_PAUSED = "task.paused"


@dataclass
class Message:
    type: MessageType
    service_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "service_id": self.service_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


MessageHandler = Callable[[Message], Awaitable[None]]


class InProcessMessageBus:
    """Message bus delivering to subscribers in registration order."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._handlers: dict[MessageType, list[MessageHandler]] = {}
        self._history: deque[Message] = deque(maxlen=history_size)

    def subscribe(self, message_type: MessageType, handler: MessageHandler) -> None:
        self._handlers.setdefault(message_type, []).append(handler)

    def unsubscribe(self, message_type: MessageType, handler: MessageHandler) -> None:
        handlers = self._handlers.get(message_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, message: Message) -> None:
        self._history.append(message)
        logger.debug(
            "message_published",
            extra={"message.type": message.type.value, "service.id": message.service_id},
        )
        for handler in list(self._handlers.get(message.type, [])):
            try:
                await handler(message)
            except Exception as e:
                logger.exception(
                    "message_handler_failed",
                    extra={
                        "message.type": message.type.value,
                        "error.message": str(e),
                    },
                )

    async def emit(
        self,
        message_type: MessageType,
        service_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Build and publish a message stamped with the current time."""
        await self.publish(Message(message_type, service_id, payload or {}))

    def recent(
        self, limit: int | None = None, message_type: MessageType | None = None
    ) -> list[Message]:
        """Most recent messages, newest last."""
        messages = [
            m for m in self._history if message_type is None or m.type == message_type
        ]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages
