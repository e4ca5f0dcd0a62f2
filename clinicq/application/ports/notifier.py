from typing import Optional, Protocol


class Notifier(Protocol):
    def notify(self, user_id: int, appointment_id: Optional[int], type: str, title: str, message: str) -> None:
        ...
