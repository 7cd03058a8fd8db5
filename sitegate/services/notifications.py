"""Best-effort user notifications. Failures are logged, never raised."""

import uuid
from typing import Optional, Protocol

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.db.engine import unit_of_work
from sitegate.db.models import Notification

logger = structlog.get_logger(__name__)


class NotificationMessage(BaseModel):
    user_id: uuid.UUID
    type: str
    title: str
    message: str


class NotificationSink(Protocol):
    async def send(self, notification: NotificationMessage) -> None:
        ...


class DatabaseNotificationSink:
    """In-app notifications stored for portal polling."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, notification: NotificationMessage) -> None:
        async with unit_of_work(self.session_factory) as session:
            session.add(Notification(**notification.model_dump()))


class LogNotificationSink:
    async def send(self, notification: NotificationMessage) -> None:
        logger.info("notification", **notification.model_dump(mode="json"))


class Notifier:
    """Fire-and-forget front for a NotificationSink."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LogNotificationSink()

    async def notify(self, user_id: Optional[uuid.UUID], type: str, title: str, message: str) -> None:
        if user_id is None:
            return
        try:
            await self.sink.send(
                NotificationMessage(user_id=user_id, type=type, title=title, message=message)
            )
        except Exception as e:
            logger.error("notification_failed", type=type, user_id=str(user_id), error=str(e))
