# Schemas package (re-export feature modules for stable imports)
from .common.common import *
from .queue.queue import *
from .wallet.wallet import *
