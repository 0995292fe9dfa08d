"""
Audit recorder for reward request decisions.

Injected into RequestWorkflow rather than used as a module-level
singleton. Events are written to the ``rewards_ledger.audit`` logger and
kept in a bounded in-memory buffer for inspection.
"""

import logging
from collections import deque
from datetime import datetime
from typing import Any, Dict, List

AUDIT_LOGGER_NAME = 'rewards_ledger.audit'


class AuditRecorder:
    """
    Records workflow events.

    Lifecycle: ``open()`` before the first ``record()``, ``close()`` when
    done. Recording on a closed recorder is a programming error.
    """

    def __init__(self, logger: logging.Logger = None, buffer_size: int = 1000):
        self.logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)
        self._events = deque(maxlen=buffer_size)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> 'AuditRecorder':
        self._open = True
        self.logger.debug('Audit recorder opened')
        return self

    def close(self) -> None:
        if self._open:
            self.logger.debug(f'Audit recorder closed after {len(self._events)} buffered events')
        self._open = False

    def record(self, event: str, level: int = logging.INFO, **fields: Any) -> Dict[str, Any]:
        """
        Record an audit event.

        Args:
            event: Event name, e.g. 'request.approved'
            level: Logging level for the log line
            **fields: Event details (request_id, user_id, ...)
        """
        if not self._open:
            raise RuntimeError(f"Audit recorder is closed, cannot record '{event}'")

        entry = {'event': event, 'at': datetime.utcnow().isoformat(), **fields}
        self._events.append(entry)

        details = ' '.join(f'{key}={value}' for key, value in fields.items())
        self.logger.log(level, f'{event} {details}'.rstrip())
        return entry

    def events(self, event: str = None) -> List[Dict[str, Any]]:
        """Buffered events, oldest first, optionally filtered by name."""
        if event is None:
            return list(self._events)
        return [e for e in self._events if e['event'] == event]

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
