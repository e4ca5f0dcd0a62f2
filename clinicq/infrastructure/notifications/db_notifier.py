import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from ...application.ports.notifier import Notifier
from ...db.models import Notification

logger = logging.getLogger(__name__)


class DbNotifier(Notifier):
    """Stores in-app notifications.

    Uses its own session so a notification never joins, or rolls back,
    the queue transaction that triggered it.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def notify(self, user_id: int, appointment_id: Optional[int], type: str, title: str, message: str) -> None:
        with Session(self.engine) as session:
            session.add(Notification(
                user_id=user_id,
                appointment_id=appointment_id,
                type=type,
                title=title,
                message=message,
            ))
            session.commit()
        logger.debug(f"Notification '{type}' stored for user {user_id}")
