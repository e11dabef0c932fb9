"""
Bounded audit history.

Thread-safe singleton holding the most recent audits of the session, newest
first. Optionally mirrored to a JSON file so separate CLI invocations share
one history.
"""

import json
import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from auditforge.models import AuditReport

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50


@dataclass
class AuditRecord:
    """One audit in the history."""

    audit_id: str
    timestamp: str
    contract_name: str
    language: str
    duration: float
    report: Dict[str, Any] = field(default_factory=dict)

    @property
    def score(self) -> int:
        return self.report.get('score', 0)

    @property
    def risk_level(self) -> str:
        return self.report.get('riskLevel', 'Unknown')

    @property
    def total_issues(self) -> int:
        return len(self.report.get('vulnerabilities', []))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditRecord':
        return cls(
            audit_id=str(data['audit_id']),
            timestamp=str(data.get('timestamp', '')),
            contract_name=str(data.get('contract_name', 'Unknown')),
            language=str(data.get('language', 'solidity')),
            duration=float(data.get('duration', 0.0)),
            report=dict(data.get('report') or {}),
        )


class AuditHistory:
    """Thread-safe singleton registry of recent audits."""

    _instance: Optional["AuditHistory"] = None
    _instance_lock = threading.Lock()

    @classmethod
    def get_instance(cls, capacity: int = DEFAULT_CAPACITY, storage_path: Optional[Union[str, Path]] = None) -> "AuditHistory":
        """Return the session history; arguments only apply on first creation."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(capacity=capacity, storage_path=storage_path)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._instance_lock:
            cls._instance = None

    def __init__(self, capacity: int = DEFAULT_CAPACITY, storage_path: Optional[Union[str, Path]] = None):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self._lock = threading.Lock()
        self._records: Deque[AuditRecord] = deque(maxlen=capacity)
        self.capacity = capacity
        self.storage_path = Path(storage_path).expanduser() if storage_path else None
        if self.storage_path:
            self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def record(self, report: Union[AuditReport, Dict[str, Any]], contract_name: Optional[str] = None,
               language: str = 'solidity', duration: float = 0.0) -> AuditRecord:
        """Add an audit to the front of the history, evicting the oldest when full."""
        report_data = report.to_dict() if isinstance(report, AuditReport) else dict(report)
        entry = AuditRecord(
            audit_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            contract_name=contract_name or 'Unknown',
            language=language,
            duration=round(duration, 3),
            report=report_data,
        )
        with self._lock:
            self._records.appendleft(entry)
            self._save()
        return entry

    def list(self, limit: int = 10) -> List[AuditRecord]:
        """Most recent records first."""
        with self._lock:
            return list(self._records)[:max(0, limit)]

    def get(self, audit_id: str) -> Optional[AuditRecord]:
        """Newest record whose id equals or starts with ``audit_id``; blank ids match nothing."""
        audit_id = (audit_id or '').strip()
        if not audit_id:
            return None
        with self._lock:
            for entry in self._records:
                if entry.audit_id == audit_id or entry.audit_id.startswith(audit_id):
                    return entry
        return None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._save()

    def _load(self) -> None:
        if not self.storage_path.exists():
            return
        try:
            with open(self.storage_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load audit history from {self.storage_path}: {e}")
            return

        # File is newest first; keep the newest ``capacity`` entries
        for item in data if isinstance(data, list) else []:
            if len(self._records) >= self.capacity:
                break
            try:
                self._records.append(AuditRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed history entry: {e}")

    def _save(self) -> None:
        # Caller holds self._lock
        if not self.storage_path:
            return
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.storage_path, 'w') as f:
                json.dump([entry.to_dict() for entry in self._records], f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save audit history to {self.storage_path}: {e}")
