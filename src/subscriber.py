"""Subscriber role: per-message handler persisting telegrams to backup files."""

import logging
from collections.abc import Callable
from datetime import datetime

from src.backup import BackupError, BackupWriter

logger = logging.getLogger(__name__)


class SubscriberBridge:
    """Forwards each received payload to the backup writer.

    Holds no connection state; the subscription itself is owned by
    ``ConnectionSupervisor``. A failed write loses that telegram for backup
    purposes and is not retried.
    """

    def __init__(self, writer: BackupWriter, clock: Callable[[], datetime] = datetime.now):
        self.writer = writer
        self._clock = clock

    def on_message(self, payload: bytes) -> bool:
        received_at = self._clock()
        try:
            self.writer.write(received_at, payload)
        except BackupError as e:
            logger.error("Error saving telegram: %s", e)
            return False
        return True
