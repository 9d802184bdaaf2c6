"""Status-change notification sinks for transfer records."""

import asyncio
from abc import ABC, abstractmethod

import structlog

from ..models.transfer import TransferRecord

logger = structlog.get_logger()


class NotificationSink(ABC):
    """Receives a full record snapshot after every status or progress change."""

    @abstractmethod
    async def publish(self, record: TransferRecord) -> None: ...


class LoggingNotificationSink(NotificationSink):
    def __init__(self):
        self.logger = logger.bind(component="transfer_notifications")

    async def publish(self, record: TransferRecord) -> None:
        self.logger.info(
            "Transfer status changed",
            transfer_uuid=record.uuid,
            status=record.status.value,
            progress=record.progress,
            step=record.current_step,
        )


class QueueNotificationSink(NotificationSink):
    """Fans snapshots out to subscriber queues (one queue per listener)."""

    def __init__(self):
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    async def publish(self, record: TransferRecord) -> None:
        snapshot = record.model_copy(deep=True)
        for queue in list(self._subscribers):
            queue.put_nowait(snapshot)


class CompositeNotificationSink(NotificationSink):
    def __init__(self, sinks: list[NotificationSink]):
        self.sinks = list(sinks)
        self.logger = logger.bind(component="transfer_notifications")

    async def publish(self, record: TransferRecord) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(record)
            except Exception as e:
                self.logger.warning(
                    "Notification sink failed",
                    sink=type(sink).__name__,
                    transfer_uuid=record.uuid,
                    error=str(e),
                )
