"""
Ledger backing stores.

Both stores are append-only: ``append`` adds exactly one event atomically and
``snapshot`` returns every event from a single consistent read.
Store outages surface as LedgerUnavailableError.

An event carrying an ``idempotency_key`` that is already stored is not
appended again; ``append`` returns the event stored under that key instead.
"""
import asyncio
from datetime import timezone
from typing import Optional, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from commodity_oracle.database import DatabaseManager, stake_events
from commodity_oracle.exceptions import InvalidStakeError, LedgerUnavailableError
from commodity_oracle.models import StakeEvent, StakeKind, StakeSide

logger = structlog.get_logger()


class LedgerStore(Protocol):
    async def append(self, event: StakeEvent) -> StakeEvent:
        ...

    async def snapshot(self) -> list[StakeEvent]:
        ...

    async def get(self, event_id: str) -> Optional[StakeEvent]:
        ...


class InMemoryLedgerStore:
    """Process-local store. Appends are serialized by an asyncio.Lock."""

    def __init__(self):
        self._events: list[StakeEvent] = []
        self._by_id: dict[str, StakeEvent] = {}
        self._by_key: dict[str, StakeEvent] = {}
        self._reversed: set[str] = set()
        self._lock = asyncio.Lock()

    async def append(self, event: StakeEvent) -> StakeEvent:
        async with self._lock:
            if event.idempotency_key is not None and event.idempotency_key in self._by_key:
                return self._by_key[event.idempotency_key]
            if event.id in self._by_id:
                raise InvalidStakeError(f"Duplicate stake event id: {event.id}")
            if event.reverses is not None and event.reverses in self._reversed:
                raise InvalidStakeError(f"Stake {event.reverses} is already reversed")
            self._events.append(event)
            self._by_id[event.id] = event
            if event.idempotency_key is not None:
                self._by_key[event.idempotency_key] = event
            if event.reverses is not None:
                self._reversed.add(event.reverses)
            return event

    async def snapshot(self) -> list[StakeEvent]:
        return list(self._events)

    async def get(self, event_id: str) -> Optional[StakeEvent]:
        return self._by_id.get(event_id)

    def __len__(self) -> int:
        return len(self._events)


def _row_to_event(row) -> StakeEvent:
    created_at = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return StakeEvent(
        id=row.id,
        user_id=row.user_id,
        market_id=row.market_id,
        side=StakeSide(row.side),
        amount=row.amount,
        created_at=created_at,
        kind=StakeKind(row.kind),
        reverses=row.reverses,
        idempotency_key=row.idempotency_key,
    )


class SqlLedgerStore:
    """SQLAlchemy Core store over the ``stake_events`` table."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def append(self, event: StakeEvent) -> StakeEvent:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    stake_events.insert().values(
                        id=event.id,
                        user_id=event.user_id,
                        market_id=event.market_id,
                        side=event.side.value,
                        amount=event.amount,
                        kind=event.kind.value,
                        reverses=event.reverses,
                        created_at=event.created_at,
                        idempotency_key=event.idempotency_key,
                    )
                )
        except IntegrityError as e:
            if event.idempotency_key is not None:
                existing = await self._get_by_key(event.idempotency_key)
                if existing is not None:
                    logger.info(
                        "Stake already recorded for idempotency key",
                        event_id=existing.id,
                        idempotency_key=event.idempotency_key,
                    )
                    return existing
            logger.warning("Stake event conflicts with stored event", event_id=event.id, reverses=event.reverses)
            raise InvalidStakeError(
                f"Stake event {event.id} conflicts with an existing event"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to append stake event", event_id=event.id, error=str(e))
            raise LedgerUnavailableError(f"Ledger store unavailable: {e}") from e
        return event

    async def snapshot(self) -> list[StakeEvent]:
        try:
            async with self._db.transaction() as conn:
                result = await conn.execute(
                    select(stake_events).order_by(stake_events.c.created_at, stake_events.c.id)
                )
                rows = result.all()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to read ledger snapshot", error=str(e))
            raise LedgerUnavailableError(f"Ledger store unavailable: {e}") from e
        return [_row_to_event(row) for row in rows]

    async def get(self, event_id: str) -> Optional[StakeEvent]:
        return await self._get_one(stake_events.c.id == event_id, event_id=event_id)

    async def _get_by_key(self, idempotency_key: str) -> Optional[StakeEvent]:
        return await self._get_one(
            stake_events.c.idempotency_key == idempotency_key,
            idempotency_key=idempotency_key,
        )

    async def _get_one(self, clause, **log_fields) -> Optional[StakeEvent]:
        try:
            async with self._db.transaction() as conn:
                result = await conn.execute(select(stake_events).where(clause))
                row = result.first()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to read stake event", error=str(e), **log_fields)
            raise LedgerUnavailableError(f"Ledger store unavailable: {e}") from e
        return _row_to_event(row) if row is not None else None
