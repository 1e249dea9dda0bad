"""Coin snapshot cache model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime

from .database import Base


class Coin(Base):
    """Most recently known-good market snapshot for one coin."""
    __tablename__ = "coins"

    id = Column(Integer, primary_key=True, index=True)
    coingecko_id = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    symbol = Column(String(50), nullable=False, index=True)  # always upper-cased

    # Market fields
    price = Column(Float, nullable=False, default=0.0)
    market_cap = Column(Float, nullable=False, default=0.0)
    change_24h = Column(Float, nullable=False, default=0.0)
    volume_24h = Column(Float, nullable=False, default=0.0)
    rank = Column(Integer, nullable=False, default=0, index=True)
    image = Column(String(500), nullable=False, default="")

    # Timestamps
    last_updated = Column(DateTime, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Coin(id={self.coingecko_id}, symbol={self.symbol}, rank={self.rank})>"
