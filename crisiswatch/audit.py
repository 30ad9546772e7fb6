"""
Append-Only, Tamper-Evident Audit Trail (Hash-Chained).

Every crisis assessment, every analyzer anomaly, and every intervention
step is recorded as a structured, append-only audit entry tagged with a
compliance retention class.  Entries are linked via a SHA-256 hash chain:
if any entry is modified after the fact, ``verify_chain()`` reports the
first broken link.

``AuditLog`` is the in-process default audit sink.  Deployments that ship
audit events to an external compliance store pass their own object with an
``append(entry)`` method instead.

**Scope note:**  The hash chain gives structural tamper evidence for audit
review.  Long-term retention guarantees (WORM storage, object lock) belong
to the external store.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Audit event types
# ---------------------------------------------------------------------------

class AuditEventType(str, enum.Enum):
    """Auditable events emitted by the pipeline."""

    # Detection
    CRISIS_ASSESSED = "CRISIS_ASSESSED"
    ANALYZER_FAILED = "ANALYZER_FAILED"
    ASSESSMENT_FALLBACK = "ASSESSMENT_FALLBACK"

    # Intervention protocol
    CRISIS_EVENT_CREATED = "CRISIS_EVENT_CREATED"
    CRISIS_RESOURCES_PROVIDED = "CRISIS_RESOURCES_PROVIDED"
    PROFESSIONALS_ALERTED = "PROFESSIONALS_ALERTED"
    EMERGENCY_SERVICES_CONTACTED = "EMERGENCY_SERVICES_CONTACTED"
    FOLLOW_UP_SCHEDULED = "FOLLOW_UP_SCHEDULED"
    INTERVENTION_STAGE_FAILED = "INTERVENTION_STAGE_FAILED"

    # Lifecycle
    CRISIS_EVENT_RESOLVED = "CRISIS_EVENT_RESOLVED"


class AuditSeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Audit entry model
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """A single audit record: who did what, to which entity, for which user."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = Field(..., description="User the event concerns.")
    actor_id: str = Field(default="SYSTEM")
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    target_entity: str = Field(
        default="",
        description="Identifier of the target (assessment ID, crisis event ID).",
    )
    retention_class: str = Field(
        default="clinical_safety",
        description="Compliance retention tag applied by the audit store.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic byte representation used for hashing."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "actor_id": self.actor_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "target_entity": self.target_entity,
            "retention_class": self.retention_class,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# PHI redaction
# ---------------------------------------------------------------------------

_PHI_PATTERNS: dict[str, re.Pattern] = {
    "phone": re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
}

# Free text and identity fields are dropped entirely on export.
_PHI_KEYS = {"message", "message_text", "content", "name", "full_name",
             "email", "phone", "address", "location"}


def redact_phi_from_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``metadata`` with PHI-bearing values redacted.

    Keys in the free-text/identity set are replaced with ``[REDACTED]``;
    phone numbers and e-mail addresses inside other strings are masked.
    Nested dictionaries are handled recursively.
    """
    redacted: dict[str, Any] = {}
    for key, value in metadata.items():
        if key.lower() in _PHI_KEYS:
            redacted[key] = "[REDACTED]"
        elif isinstance(value, str):
            for pattern_name, pattern in _PHI_PATTERNS.items():
                value = pattern.sub(f"[REDACTED-{pattern_name.upper()}]", value)
            redacted[key] = value
        elif isinstance(value, dict):
            redacted[key] = redact_phi_from_metadata(value)
        else:
            redacted[key] = value
    return redacted


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only audit log with SHA-256 hash chaining.

    There are no update or delete methods.  ``query()`` returns copies so
    callers cannot alter stored entries, and ``export_for_review()``
    redacts PHI before anything leaves the process.
    """

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._hashes: list[str] = []

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Link ``entry`` to the chain and store it."""
        entry.previous_hash = self._hashes[-1] if self._hashes else ""
        self._entries.append(entry)
        self._hashes.append(entry.compute_hash())
        return entry

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Walk the log and validate every hash link.

        Returns:
            ``(valid, broken_at)`` where ``broken_at`` is the index of the
            first broken entry, or None when the chain is intact.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = self._entries[i - 1].compute_hash() if i else ""
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        target_entity: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[AuditEntry]:
        """Return copies of the entries matching every given filter, in order."""
        results = []
        for entry in self._entries:
            if user_id is not None and entry.user_id != user_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if target_entity is not None and entry.target_entity != target_entity:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def export_for_review(
        self,
        user_id: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Produce a JSON-serializable, PHI-redacted bundle for compliance review."""
        entries = self.query(user_id=user_id, time_start=time_start, time_end=time_end)

        exported = []
        for entry in entries:
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_phi_from_metadata(entry.metadata)
            exported.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()

        return {
            "export_metadata": {
                "user_id": user_id,
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(exported),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
            },
            "entries": exported,
        }

    def __len__(self) -> int:
        return len(self._entries)
