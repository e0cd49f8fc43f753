"""Best-effort user and admin notifications.

Delivery is not part of the money-correctness contract: every failure is
caught and logged here and never reaches the caller.
"""

from concurrent.futures import Executor

from refengine.logging_config import get_logger
from refengine.storage.db import Database
from refengine.storage.repo import NotificationRepository

logger = get_logger(__name__)


class Notifier:
    """Fire-and-forget notification dispatch.

    With an ``executor`` the write runs as a side task and is never awaited;
    without one it runs inline, still inside its own error boundary and its
    own transaction.
    """

    def __init__(self, database: Database, executor: Executor | None = None):
        self.database = database
        self.executor = executor

    def notify(self, user_email: str, type: str, title: str, message: str) -> None:
        if self.executor is not None:
            try:
                self.executor.submit(self._deliver, user_email, type, title, message)
            except RuntimeError as e:
                logger.warning("notification_dispatch_failed", user_email=user_email, type=type, error=str(e))
            return
        self._deliver(user_email, type, title, message)

    def _deliver(self, user_email: str, type: str, title: str, message: str) -> None:
        try:
            with self.database.session() as session:
                NotificationRepository(session).create(user_email, type, title, message)
            logger.debug("notification_created", user_email=user_email, type=type)
        except Exception as e:
            logger.warning("notification_failed", user_email=user_email, type=type, error=str(e))
