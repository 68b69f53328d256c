"""
Settings Version Store.

Append-only, time-versioned commission settings. Historical transactions
are evaluated against the snapshot that was in force when they happened;
when no snapshot qualifies the documented default is returned.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings, get_settings
from ..exceptions import ConfigurationError, TransientError
from ..models import AuditAction, CommissionSettings, DEFAULT_COMMISSION_SETTINGS
from ..storage.base import AuditSink, SettingsBackend
from ..utils.dates import ensure_utc, utc_now

logger = structlog.get_logger()


class SettingsVersionStore:
    """Resolves the commission settings active now or at a given time."""

    def __init__(
        self,
        backend: SettingsBackend,
        settings: Optional[Settings] = None,
        default: CommissionSettings = DEFAULT_COMMISSION_SETTINGS,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.backend = backend
        self.settings = settings or get_settings()
        self.default = default
        self.audit_sink = audit_sink

    async def current(self) -> CommissionSettings:
        """Latest active snapshot, or the default when none exists."""
        snapshot = await self._lookup(self.backend.latest_active(), "current")
        if snapshot is None:
            logger.debug("No active commission settings, using default")
            return self.default
        return snapshot

    async def at_time(self, timestamp: datetime) -> CommissionSettings:
        """Latest snapshot with created_at <= timestamp, or the default."""
        timestamp = ensure_utc(timestamp)
        snapshot = await self._lookup(self.backend.latest_at(timestamp), "at_time")
        if snapshot is None:
            logger.debug(
                "No commission settings before timestamp, using default",
                timestamp=timestamp.isoformat(),
            )
            return self.default
        return snapshot

    async def create_new(
        self,
        data: Dict[str, Any],
        created_by: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> CommissionSettings:
        """
        Append a new snapshot and make it the only active one.

        Missing fields are taken from the currently active snapshot, so a
        partial update only changes what it names.

        Raises:
            ConfigurationError: the resulting snapshot is malformed
        """
        base = (await self.current()).to_dict()
        merged = {**base, **data}
        if isinstance(data.get("tier_multipliers"), dict):
            merged["tier_multipliers"] = {
                **base["tier_multipliers"], **data["tier_multipliers"]
            }
        merged.pop("id", None)
        merged["created_by"] = created_by
        merged["created_at"] = ensure_utc(created_at) if created_at else utc_now()
        merged["is_active"] = True

        snapshot = CommissionSettings.from_dict(merged)
        stored = await self.backend.activate(snapshot)

        logger.info(
            "Commission settings created",
            settings_id=stored.id,
            created_by=created_by,
            base_rate_percent=stored.base_rate_percent,
            commission_cap=stored.commission_cap,
        )
        await self._audit(stored)
        return stored

    async def history(self, limit: Optional[int] = None) -> List[CommissionSettings]:
        """All snapshots, newest first."""
        return await self._lookup(self.backend.history(limit), "history")

    async def _audit(self, stored: CommissionSettings) -> None:
        # The snapshot is already active; an audit failure must not undo it
        if self.audit_sink is None:
            return
        try:
            await asyncio.wait_for(
                self.audit_sink.record(
                    AuditAction.SETTINGS_CREATED.value,
                    f"commission_settings:{stored.id}",
                    stored.to_dict(),
                ),
                timeout=self.settings.side_effect_timeout_seconds,
            )
        except Exception as e:
            logger.error("Settings audit failed", settings_id=stored.id, error=str(e))

    async def _lookup(self, awaitable, operation: str):
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self.settings.lookup_timeout_seconds
            )
        except asyncio.TimeoutError:
            raise TransientError(
                f"Commission settings lookup timed out ({operation})",
                {"operation": operation},
            )
