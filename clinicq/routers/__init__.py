# Routers package
from . import queue_router
from . import wallet_router

__all__ = [
    "queue_router",
    "wallet_router",
]
