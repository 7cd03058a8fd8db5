"""
Audit trail emission.

Audit writes never take part in the business transaction and never raise
into the caller: a broken audit pipe must not block a release or a permit.
``AuditLogger`` wraps any ``AuditSink`` with that guarantee.
"""

import uuid
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitegate.db.engine import unit_of_work
from sitegate.db.models import AuditLog

logger = structlog.get_logger(__name__)


class AuditRecord(BaseModel):
    user_id: Optional[uuid.UUID] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    previous_data: Optional[dict[str, Any]] = None
    new_data: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None


class AuditSink(Protocol):
    """Destination for audit records."""

    async def write(self, record: AuditRecord) -> None:
        ...


class DatabaseAuditSink:
    """Persist audit records in their own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def write(self, record: AuditRecord) -> None:
        async with unit_of_work(self.session_factory) as session:
            session.add(AuditLog(
                user_id=record.user_id,
                action=record.action,
                resource=record.resource,
                resource_id=record.resource_id,
                previous_data=record.previous_data,
                new_data=record.new_data,
                metadata_=record.metadata,
            ))


class LogAuditSink:
    """Emit audit records to the structured log only."""

    async def write(self, record: AuditRecord) -> None:
        logger.info("audit_record", **record.model_dump(mode="json", exclude_none=True))


class AuditLogger:
    """Fire-and-forget front for an AuditSink."""

    def __init__(self, sink: Optional[AuditSink] = None):
        self.sink = sink or LogAuditSink()

    async def log(
        self,
        action: str,
        resource: str,
        resource_id: Any = None,
        user_id: Optional[uuid.UUID] = None,
        previous_data: Optional[dict[str, Any]] = None,
        new_data: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            record = AuditRecord(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=str(resource_id) if resource_id is not None else None,
                previous_data=previous_data,
                new_data=new_data,
                metadata=metadata,
            )
            await self.sink.write(record)
        except Exception as e:
            logger.error("audit_log_failed", action=action, resource=resource, error=str(e))
