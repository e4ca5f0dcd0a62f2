from contextlib import contextmanager
from typing import Iterator, Protocol


class UnitOfWork(Protocol):
    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@contextmanager
def atomic(uow: UnitOfWork) -> Iterator[None]:
    """Commit everything staged inside the block, or roll all of it back."""
    try:
        yield
        uow.commit()
    except Exception:
        uow.rollback()
        raise


class CombinedUnitOfWork:
    """Commit or roll back several repositories as one unit.

    The SQL repositories of a request share one session, so after the
    first commit the others are no-ops.
    """

    def __init__(self, *uows: UnitOfWork):
        self.uows = []
        for uow in uows:
            if uow is not None and all(uow is not seen for seen in self.uows):
                self.uows.append(uow)

    def commit(self) -> None:
        for uow in self.uows:
            uow.commit()

    def rollback(self) -> None:
        for uow in self.uows:
            uow.rollback()
