"""
Audit trail of reconciliation, review and commission decisions.
"""

import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import AuditAction, AuditEntry
from .dates import utc_now

logger = structlog.get_logger()


class AuditLogger:
    """
    Audit sink keeping entries in memory, mirrored to structlog.
    Entries can be exported to a JSON report.
    """

    KNOWN_ACTIONS = frozenset(a.value for a in AuditAction)

    def __init__(self, job_id: str, settings: Optional[Settings] = None):
        self.job_id = job_id
        self.entries: List[AuditEntry] = []
        self.settings = settings or get_settings()

    async def record(
        self,
        action: str,
        entity_ref: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an audit entry. Unknown actions are kept verbatim."""
        action = str(action.value if isinstance(action, AuditAction) else action)
        if action not in self.KNOWN_ACTIONS:
            logger.warning("Unknown audit action recorded", action=action, entity_ref=entity_ref)
        self.log(AuditEntry(
            action=action,
            entity_ref=entity_ref,
            metadata=dict(metadata or {}),
        ))

    def log(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

        logger.info(
            "Audit entry",
            action=entry.action,
            entity_ref=entry.entity_ref,
            job_id=self.job_id,
        )

    def get_entries(
        self,
        action_filter: Optional[str] = None,
        entity_ref: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        entries = self.entries

        if action_filter:
            entries = [e for e in entries if e.action == action_filter]

        if entity_ref:
            entries = [e for e in entries if e.entity_ref == entity_ref]

        return entries

    def export_to_file(self, output_path: Optional[Path] = None) -> Path:
        """Export audit log to JSON file."""
        if output_path is None:
            output_path = Path(self.settings.reports_dir) / f"audit_{self.job_id}.json"

        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "job_id": self.job_id,
            "exported_at": utc_now().isoformat(),
            "total_entries": len(self.entries),
            "entries": [
                {
                    "id": e.id,
                    "timestamp": e.timestamp.isoformat(),
                    "action": e.action,
                    "entity_ref": e.entity_ref,
                    "metadata": e.metadata,
                }
                for e in self.entries
            ],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        logger.info("Audit log exported", path=str(output_path))
        return output_path

    def summary(self) -> dict:
        """Get summary statistics of audit log."""
        action_counts = Counter(e.action for e in self.entries)

        return {
            "total_entries": len(self.entries),
            "entities": len({e.entity_ref for e in self.entries}),
            "action_counts": dict(action_counts),
        }
