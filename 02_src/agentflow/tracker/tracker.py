"""Tracker implementation for creating TraceEvents."""

import uuid
from datetime import datetime, timezone
from typing import Protocol

from ..logging_config import get_logger
from ..models import TraceEvent
from ..storage import IFlowStore

logger = get_logger(__name__)


class ITracker(Protocol):
    """Records audit TraceEvents about flows."""

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        """Create TraceEvent and save to storage."""
        ...


class Tracker:
    """Writes TraceEvents to the flow store."""

    def __init__(self, storage: IFlowStore):
        self._storage = storage

    async def track(self, event_type: str, actor: str, data: dict) -> None:
        """Create TraceEvent and save to storage.

        Audit writes never break the operation being audited.
        """
        trace_event = TraceEvent(
            id=str(uuid.uuid4()),
            event_type=event_type,
            actor=actor,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            await self._storage.save_trace_event(trace_event)
        except Exception as e:
            logger.warning("Failed to record trace event %s: %s", event_type, e)
