import logging
from typing import Optional

from fastapi import BackgroundTasks

from ...application.ports.notifier import Notifier

logger = logging.getLogger(__name__)


class BackgroundNotifier(Notifier):
    """Defers delivery until the response has been sent.

    Delivery failures are logged and never reach the request that queued them.
    """

    def __init__(self, inner: Notifier, background_tasks: BackgroundTasks):
        self.inner = inner
        self.background_tasks = background_tasks

    def notify(self, user_id: int, appointment_id: Optional[int], type: str, title: str, message: str) -> None:
        self.background_tasks.add_task(self._deliver, user_id, appointment_id, type, title, message)

    def _deliver(self, user_id: int, appointment_id: Optional[int], type: str, title: str, message: str) -> None:
        try:
            self.inner.notify(user_id, appointment_id, type, title, message)
        except Exception as e:
            logger.error(f"Failed to deliver '{type}' notification to user {user_id}: {e}")
