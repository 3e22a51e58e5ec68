"""
Audit trail of one draft session: edits, cascaded clears, VAT passes,
entity resolution and ingestion outcomes.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

from ..config import get_settings
from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """
    Keeps every decision taken on a draft, in order.

    Entries are mirrored to structlog as they are recorded and can be
    exported as a JSON report once the draft is submitted.
    """

    def __init__(self, draft_id: str):
        self.draft_id = draft_id
        self.entries: List[AuditEntry] = []
        self.settings = get_settings()
        self._log = logger.bind(draft_id=draft_id)

    def log(self, entry: AuditEntry) -> None:
        entry.draft_id = entry.draft_id or self.draft_id
        self.entries.append(entry)

        event = self._log.info if entry.success else self._log.warning
        event(
            entry.message,
            action=entry.action.value,
            fields=entry.fields,
            generation=entry.generation,
            error=entry.error_message,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        fields: Optional[List[str]] = None,
        generation: Optional[int] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        **details,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            message=message,
            fields=list(fields or []),
            generation=generation,
            details=details,
            success=success,
            error_message=error_message,
        )
        self.log(entry)
        return entry

    def get_entries(
        self,
        action_filter: Optional[Union[AuditAction, str]] = None,
        field_filter: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """
        Entries matching every given filter.

        Args:
            action_filter: AuditAction or its string value
            field_filter: only entries that involve this draft field
            success_only: drop failed steps
        """
        action = AuditAction(action_filter) if action_filter else None
        return [
            e for e in self.entries
            if (action is None or e.action == action)
            and (field_filter is None or e.touches(field_filter))
            and (not success_only or e.success)
        ]

    def history(self, name: str) -> List[Dict[str, Any]]:
        """Value changes of one field, oldest first."""
        return [
            {
                "timestamp": e.timestamp.isoformat(),
                "previous": e.details.get("previous"),
                "value": e.details.get("value"),
            }
            for e in self.get_entries(AuditAction.FIELD_CHANGED, field_filter=name)
        ]

    def summary(self) -> Dict[str, Any]:
        action_counts = Counter(e.action.value for e in self.entries)
        failures = [e for e in self.entries if not e.success]
        field_counts = Counter(
            name for e in self.get_entries(AuditAction.FIELD_CHANGED) for name in e.fields
        )

        return {
            "total_entries": len(self.entries),
            "success_count": len(self.entries) - len(failures),
            "error_count": len(failures),
            "action_counts": dict(action_counts),
            "edited_fields": dict(field_counts),
            "last_error": failures[-1].error_message if failures else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "summary": self.summary(),
            "entries": [e.to_dict() for e in self.entries],
        }

    def export_to_file(self, output_path: Optional[Path] = None) -> Path:
        """Write the trail as a JSON report (default: reports_dir/audit_<draft>.json)."""
        output_path = output_path or self.settings.reports_dir / f"audit_{self.draft_id}.json"
        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()
        data["exported_at"] = datetime.utcnow().isoformat()
        output_path.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")

        self._log.info("Audit log exported", path=str(output_path), entries=len(self.entries))
        return output_path
