import functools
import logging

from sqlalchemy.exc import DisconnectionError, OperationalError, TimeoutError as PoolTimeoutError

from ....exceptions import TransientStorageError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, DisconnectionError)


def translate_storage_errors(cls):
    """Class decorator: re-raise transient driver errors as ``TransientStorageError``.

    Applies to every public method of the repository.
    """
    for name, attr in list(vars(cls).items()):
        if name.startswith("_") or not callable(attr):
            continue
        setattr(cls, name, _translated(attr))
    return cls


def _translated(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"{type(self).__name__}.{method.__name__} hit a transient storage error: {e}")
            raise TransientStorageError("Storage temporarily unavailable, please retry") from e

    return wrapper
