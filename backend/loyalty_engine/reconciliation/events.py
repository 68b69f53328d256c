"""
Event dispatcher for audit and notification emission.

Audit records and notifications are emitted as background tasks, decoupled
from the reconciliation transaction: a failing or slow sink is logged and
never affects the outcome of the business operation.
"""

import asyncio
from typing import Any, Dict, Optional, Set

import structlog

from ..config import Settings, get_settings
from ..models import AuditAction, NotificationTemplate
from ..storage.base import AuditSink, NotificationSink

logger = structlog.get_logger()


class EventDispatcher:
    """Fire-and-forget emission of audit records and notifications."""

    def __init__(
        self,
        audit_sink: Optional[AuditSink] = None,
        notification_sink: Optional[NotificationSink] = None,
        settings: Optional[Settings] = None,
    ):
        self.audit_sink = audit_sink
        self.notification_sink = notification_sink
        self.settings = settings or get_settings()
        self._pending: Set[asyncio.Task] = set()

    def audit(
        self,
        action: AuditAction,
        entity_ref: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Schedule an audit record."""
        if self.audit_sink is None:
            return
        self._spawn(
            self.audit_sink.record(action.value, entity_ref, dict(metadata or {})),
            kind="audit",
            name=action.value,
        )

    def notify(
        self,
        user_id: str,
        template: NotificationTemplate,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Schedule a notification to a user."""
        if self.notification_sink is None:
            return
        self._spawn(
            self.notification_sink.notify(user_id, template.value, dict(payload or {})),
            kind="notification",
            name=template.value,
        )

    async def drain(self) -> None:
        """Wait for every scheduled emission to finish (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _spawn(self, coro, kind: str, name: str) -> None:
        task = asyncio.ensure_future(self._run(coro, kind, name))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, coro, kind: str, name: str) -> None:
        try:
            await asyncio.wait_for(
                coro, timeout=self.settings.side_effect_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Event emission timed out", kind=kind, event=name)
        except Exception as e:
            logger.error(
                "Event emission failed",
                kind=kind,
                event=name,
                error=str(e),
            )
