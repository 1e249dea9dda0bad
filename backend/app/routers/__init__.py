# API Routers

from . import coins, health

__all__ = ["coins", "health"]
