"""Persistent coin snapshot cache.

Best-effort store of the most recently known-good snapshot per coin. Writes
never raise into the caller; reads raise CacheUnavailableError so the caller
can treat the cache as absent.
"""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import or_, select, text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.coin import Coin
from .market_data import CoinSnapshot

logger = logging.getLogger(__name__)

DEFAULT_OPERATION_TIMEOUT = 3.0


class CacheUnavailableError(Exception):
    """Raised when the cache cannot be read."""
    pass


def snapshot_from_row(row: Coin) -> CoinSnapshot:
    """Convert a stored row back into a snapshot."""
    return CoinSnapshot(
        coingecko_id=row.coingecko_id,
        symbol=row.symbol,
        name=row.name,
        price=row.price or 0.0,
        market_cap=row.market_cap or 0.0,
        change_24h=row.change_24h or 0.0,
        volume_24h=row.volume_24h or 0.0,
        rank=row.rank or 0,
        image=row.image or "",
        last_updated=row.last_updated,
    )


class CoinCacheStore:
    """SQL-backed snapshot store keyed by CoinGecko id."""

    def __init__(self, session_maker: async_sessionmaker, operation_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        """Initialize the store.

        Args:
            session_maker: Factory for async sessions on the cache database
            operation_timeout: Upper bound in seconds for any single operation
        """
        self.session_maker = session_maker
        self.operation_timeout = operation_timeout

    def _upsert_statement(self, dialect_name: str, snapshot: CoinSnapshot):
        values = {
            "name": snapshot.name,
            "symbol": snapshot.symbol,
            "price": snapshot.price,
            "market_cap": snapshot.market_cap,
            "change_24h": snapshot.change_24h,
            "volume_24h": snapshot.volume_24h,
            "rank": snapshot.rank,
            "image": snapshot.image,
            "last_updated": snapshot.last_updated,
        }
        insert = postgresql_insert if dialect_name == "postgresql" else sqlite_insert
        now = datetime.utcnow()
        stmt = insert(Coin).values(
            coingecko_id=snapshot.coingecko_id, created_at=now, updated_at=now, **values
        )
        # One statement per key; concurrent writers of the same id never hit the unique constraint
        return stmt.on_conflict_do_update(
            index_elements=[Coin.coingecko_id],
            set_={**values, "updated_at": now},
        )

    async def _upsert(self, snapshot: CoinSnapshot) -> None:
        # Closing the session without a commit rolls the write back
        async with self.session_maker() as session:
            await session.execute(self._upsert_statement(session.bind.dialect.name, snapshot))
            await session.commit()

    async def upsert(self, snapshot: CoinSnapshot) -> bool:
        """Insert or replace the snapshot for its coin.

        A failure rolls back only this write; the previously stored snapshot
        stays intact.

        Returns:
            True if persisted, False if the write failed (already logged).
        """
        try:
            await asyncio.wait_for(self._upsert(snapshot), timeout=self.operation_timeout)
            return True
        except Exception as e:
            logger.warning(f"Cache write failed for {snapshot.coingecko_id}: {e!r}")
            return False

    async def upsert_many(self, snapshots: Iterable[CoinSnapshot]) -> int:
        """Upsert each snapshot in its own transaction.

        The whole batch shares one operation_timeout; snapshots not written
        when it expires are skipped.

        Returns:
            Number of snapshots persisted.
        """
        snapshots = list(snapshots)
        persisted = 0

        async def _write_all():
            nonlocal persisted
            for snapshot in snapshots:
                try:
                    await self._upsert(snapshot)
                    persisted += 1
                except Exception as e:
                    logger.warning(f"Cache write failed for {snapshot.coingecko_id}: {e!r}")

        try:
            await asyncio.wait_for(_write_all(), timeout=self.operation_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Cache batch write timed out after {self.operation_timeout}s "
                f"({persisted}/{len(snapshots)} persisted)"
            )
        return persisted

    async def _read(self, query) -> List[Coin]:
        async with self.session_maker() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def _bounded_read(self, query) -> List[Coin]:
        try:
            return await asyncio.wait_for(self._read(query), timeout=self.operation_timeout)
        except asyncio.TimeoutError as e:
            raise CacheUnavailableError(f"Cache read timed out after {self.operation_timeout}s") from e
        except Exception as e:
            raise CacheUnavailableError(f"Cache read failed: {e}") from e

    async def get_all(self, limit: int = 50) -> List[CoinSnapshot]:
        """Get stored snapshots ordered by market cap rank."""
        query = select(Coin).order_by(Coin.rank.asc(), Coin.coingecko_id.asc()).limit(max(0, limit))
        rows = await self._bounded_read(query)
        return [snapshot_from_row(row) for row in rows]

    async def get_one(self, identifier: str) -> Optional[CoinSnapshot]:
        """Look up a coin by symbol (any case) or exact CoinGecko id."""
        query = (
            select(Coin)
            .where(or_(Coin.symbol == identifier.upper(), Coin.coingecko_id == identifier))
            .order_by(Coin.rank.asc())
        )
        rows = await self._bounded_read(query)
        if not rows:
            return None

        # An id match beats a symbol shared by several coins
        for row in rows:
            if row.coingecko_id == identifier:
                return snapshot_from_row(row)
        return snapshot_from_row(rows[0])

    async def get_top_gainers(self, limit: int = 10) -> List[CoinSnapshot]:
        """Get coins with a positive 24h change, biggest gain first."""
        query = (
            select(Coin)
            .where(Coin.change_24h > 0)
            .order_by(Coin.change_24h.desc())
            .limit(max(0, limit))
        )
        rows = await self._bounded_read(query)
        return [snapshot_from_row(row) for row in rows]

    async def ping(self) -> bool:
        """Check that the cache database answers."""
        async def _probe():
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))

        try:
            await asyncio.wait_for(_probe(), timeout=self.operation_timeout)
            return True
        except Exception as e:
            logger.debug(f"Cache ping failed: {e!r}")
            return False
