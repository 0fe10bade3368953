"""
Audit log sink
Append-only record of completed client commands, one line per record
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d|%H:%M:%S" # Local time
FIELD_SEPARATOR = "|"


@dataclass(frozen=True)
class AuditRecord:
    """One audit entry describing a client action and its outcome"""
    client_address: str
    action: str
    completed: bool
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def format(self) -> str:
        status = "Completed" if self.completed else "Not Completed"
        return FIELD_SEPARATOR.join([
            self.timestamp.strftime(TIMESTAMP_FORMAT),
            self.client_address,
            self.action,
            status,
            self.message,
        ])


class AuditLog:
    """File-backed audit sink, safe to share across session threads"""

    def __init__(self, path: str = "log.txt"):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, client_address: str, action: str, completed: bool, message: str = "") -> AuditRecord:
        """Build a record stamped with the current local time and append it"""
        entry = AuditRecord(client_address=client_address, action=action, completed=completed, message=message)
        self.append(entry)
        return entry

    def log_request(self, client_address: str, request: str) -> AuditRecord:
        """Record a request as completed with no message"""
        return self.record(client_address, request, True)

    def append(self, entry: AuditRecord):
        """
        Appends one formatted record.

        A failed write is reported through the server log; it never fails
        the session that produced the record.
        """
        line = entry.format()
        try:
            with self._lock:
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.error(f"Error writing to audit log '{self.path}': {e}")
