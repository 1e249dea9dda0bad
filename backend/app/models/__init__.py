# Database Models

from .database import Base, create_session_maker, init_db, connect_database
from .coin import Coin

__all__ = [
    "Base",
    "create_session_maker",
    "init_db",
    "connect_database",
    "Coin",
]
