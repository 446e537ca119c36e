"""
Database connection management and the ledger and prediction schema.
PostgreSQL through asyncpg in production; any SQLAlchemy async URL works.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    create_async_engine,
)

from commodity_oracle.config import Settings, get_settings

logger = structlog.get_logger()


metadata = MetaData()

# Append-only. Corrections are REVERSAL rows; the unique constraint on
# ``reverses`` rejects a second reversal of the same stake. A client
# retry carrying the same ``idempotency_key`` maps back to the first row.
stake_events = Table(
    "stake_events",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(128), nullable=False),
    Column("market_id", String(64), nullable=False),
    Column("side", String(3), nullable=False),
    Column("amount", Numeric(24, 6), nullable=False),
    Column("kind", String(8), nullable=False, server_default="STAKE"),
    Column("reverses", String(32), nullable=True, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("idempotency_key", String(64), nullable=True, unique=True),
    Index("ix_stake_events_market_id", "market_id"),
    Index("ix_stake_events_user_id", "user_id"),
)

# Generated predictions, newest read first per (symbol, region).
commodity_predictions = Table(
    "commodity_predictions",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("symbol", String(16), nullable=False),
    Column("region", String(16), nullable=False),
    Column("horizon", String(4), nullable=False),
    Column("predicted_price", Numeric(24, 6), nullable=True),
    Column("currency", String(8), nullable=False, server_default="USD"),
    Column("confidence", Float, nullable=True),
    Column("narrative", Text, nullable=True),
    Column("model", String(128), nullable=False),
    Column("current_price", Numeric(24, 6), nullable=True),
    Column("quote_stale", Boolean, nullable=False, server_default=text("false")),
    Column("as_of", DateTime(timezone=True), nullable=False),
    Index("ix_commodity_predictions_lookup", "symbol", "region", "as_of"),
)

prediction_signals = Table(
    "prediction_signals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "prediction_id",
        String(32),
        ForeignKey("commodity_predictions.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("signal_type", String(8), nullable=False),
    Column("strength", Float, nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Index("ix_prediction_signals_prediction_id", "prediction_id"),
)


class DatabaseManager:
    """Owns the async engine and hands out transactional connections."""

    def __init__(self, settings: Optional[Settings] = None, url: Optional[str] = None):
        self.settings = settings or get_settings()
        self.url = url or self.settings.database_url_async
        self._async_engine: Optional[AsyncEngine] = None

    # =========================================================================
    # ASYNC ENGINE (SQLAlchemy)
    # =========================================================================

    @property
    def async_engine(self) -> AsyncEngine:
        """Lazy-create async SQLAlchemy engine."""
        if self._async_engine is None:
            kwargs = {"pool_pre_ping": True}
            if self.url.startswith("postgresql"):
                kwargs.update(
                    pool_size=self.settings.db_pool_size,
                    max_overflow=self.settings.db_pool_max_overflow,
                    pool_timeout=30,
                    pool_recycle=1800,
                )
            self._async_engine = create_async_engine(self.url, **kwargs)
            logger.info("Created async SQLAlchemy engine", dialect=self._async_engine.dialect.name)

        return self._async_engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Connection inside one transaction; commits on success, rolls back on error."""
        async with self.async_engine.begin() as conn:
            yield conn

    # =========================================================================
    # SCHEMA, HEALTH & CLEANUP
    # =========================================================================

    async def init_models(self) -> None:
        """Create tables that do not exist yet."""
        async with self.async_engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("Database tables ensured", tables=sorted(metadata.tables))

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.async_engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._async_engine is not None:
            await self._async_engine.dispose()
            self._async_engine = None
            logger.info("Closed async SQLAlchemy engine")
