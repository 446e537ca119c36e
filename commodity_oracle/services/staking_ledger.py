"""
Staking Ledger

Records YES/NO stakes as append-only events and derives aggregate figures
(total value locked, active stakers, average APY) from one snapshot.

Reads degrade to configured fallback figures when the store is down.
Writes never degrade: a stake that was not appended raises
LedgerUnavailableError.
"""
import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Callable, Optional, Sequence
from uuid import uuid4

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import (
    InvalidStakeError,
    LedgerUnavailableError,
    OracleError,
)
from commodity_oracle.models import (
    LedgerAggregate,
    StakeEvent,
    StakeKind,
    StakeSide,
    utcnow,
)
from commodity_oracle.services.ledger_store import LedgerStore
from commodity_oracle.services.market_catalog import MarketCatalog
from commodity_oracle.utils.validation import parse_stake_amount

logger = structlog.get_logger()

YieldPolicy = Callable[[Sequence[StakeEvent]], Decimal]


class FixedYieldPolicy:
    """Constant APY regardless of ledger contents."""

    def __init__(self, apy: Decimal = Decimal("12.4")):
        self.apy = Decimal(apy)

    def __call__(self, events: Sequence[StakeEvent]) -> Decimal:
        return self.apy


def compute_aggregate(events: Sequence[StakeEvent], yield_policy: YieldPolicy) -> LedgerAggregate:
    """Derive aggregate figures from one snapshot of events."""
    total = Decimal("0")
    net_by_user: dict[str, Decimal] = defaultdict(Decimal)
    for event in events:
        total += event.amount
        net_by_user[event.user_id] += event.amount

    return LedgerAggregate(
        total_value_locked=total,
        active_stakers=sum(1 for net in net_by_user.values() if net > 0),
        average_apy=yield_policy(events),
        source="ledger",
        event_count=len(events),
    )


class StakingLedger:
    """Append-only stake ledger with derived aggregates."""

    def __init__(
        self,
        store: LedgerStore,
        catalog: Optional[MarketCatalog] = None,
        yield_policy: Optional[YieldPolicy] = None,
        timeout_seconds: float = 5.0,
        fallback: Optional[LedgerAggregate] = None,
    ):
        self._store = store
        self._catalog = catalog
        self._yield_policy = yield_policy or FixedYieldPolicy()
        self._timeout = timeout_seconds
        self._fallback = fallback or LedgerAggregate(
            total_value_locked=Decimal("2400000"),
            active_stakers=1194,
            average_apy=Decimal("12.4"),
            source="fallback",
        )

    @classmethod
    def from_settings(
        cls,
        store: LedgerStore,
        catalog: Optional[MarketCatalog] = None,
        settings: Optional[Settings] = None,
    ) -> "StakingLedger":
        settings = settings or get_settings()
        return cls(
            store,
            catalog=catalog,
            yield_policy=FixedYieldPolicy(settings.fixed_apy),
            timeout_seconds=settings.ledger_timeout_seconds,
            fallback=LedgerAggregate(
                total_value_locked=settings.fallback_total_value_locked,
                active_stakers=settings.fallback_active_stakers,
                average_apy=settings.fallback_average_apy,
                source="fallback",
            ),
        )

    @property
    def fallback(self) -> LedgerAggregate:
        return self._fallback.model_copy()

    # =========================================================================
    # WRITES
    # =========================================================================

    async def record_stake(
        self,
        user_id: str,
        market_id: str,
        side: "str | StakeSide",
        amount,
        idempotency_key: Optional[str] = None,
    ) -> StakeEvent:
        """
        Append one stake event.

        A retry carrying the same ``idempotency_key`` returns the event that
        was stored the first time instead of appending a second one, so a
        write that committed but timed out can be retried safely.

        Raises:
            InvalidStakeError: empty user, unknown side, amount <= 0 or malformed,
                or a key reused for a different stake
            UnknownMarketError: market id not in the catalog
            LedgerUnavailableError: the store did not accept the write
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidStakeError("User id is required")
        if not isinstance(market_id, str) or not market_id.strip():
            raise InvalidStakeError("Market id is required")
        if idempotency_key is not None:
            if not isinstance(idempotency_key, str) or not idempotency_key.strip():
                raise InvalidStakeError("Idempotency key must be a non-empty string")
            idempotency_key = idempotency_key.strip()
            if len(idempotency_key) > 64:
                raise InvalidStakeError("Idempotency key must be at most 64 characters")
        side = StakeSide.parse(side)
        amount = parse_stake_amount(amount)
        if self._catalog is not None:
            self._catalog.get(market_id)

        event = StakeEvent(
            id=uuid4().hex,
            user_id=user_id.strip(),
            market_id=market_id,
            side=side,
            amount=amount,
            created_at=utcnow(),
            idempotency_key=idempotency_key,
        )
        stored = await self._append(event)
        if stored.id != event.id:
            if (stored.user_id, stored.market_id, stored.side, stored.amount) != (
                event.user_id, event.market_id, event.side, event.amount,
            ):
                raise InvalidStakeError(
                    f"Idempotency key {idempotency_key!r} was already used for a different stake"
                )
            logger.info("Stake replayed", event_id=stored.id, idempotency_key=idempotency_key)
            return stored

        logger.info(
            "Stake recorded",
            event_id=event.id,
            user_id=event.user_id,
            market_id=market_id,
            side=side.value,
            amount=str(amount),
        )
        return event

    async def reverse_stake(self, event_id: str, reason: Optional[str] = None) -> StakeEvent:
        """Append a REVERSAL cancelling a previously recorded stake."""
        original = await self._call(self._store.get(event_id), "get")
        if original is None:
            raise InvalidStakeError(f"Unknown stake event: {event_id}")
        if original.kind is StakeKind.REVERSAL:
            raise InvalidStakeError("A reversal cannot be reversed")

        reversal = StakeEvent(
            id=uuid4().hex,
            user_id=original.user_id,
            market_id=original.market_id,
            side=original.side,
            amount=-original.amount,
            created_at=utcnow(),
            kind=StakeKind.REVERSAL,
            reverses=original.id,
        )
        await self._append(reversal)
        logger.info("Stake reversed", event_id=reversal.id, reverses=original.id, reason=reason)
        return reversal

    async def _append(self, event: StakeEvent) -> StakeEvent:
        return await self._call(self._store.append(event), "append")

    async def _call(self, coro, operation: str):
        try:
            return await asyncio.wait_for(coro, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Ledger operation timed out", operation=operation, timeout=self._timeout)
            raise LedgerUnavailableError(
                f"Ledger {operation} timed out after {self._timeout}s"
            ) from None
        except OracleError:
            raise
        except Exception as e:
            logger.error("Ledger store error", operation=operation, error=str(e))
            raise LedgerUnavailableError(f"Ledger store unavailable: {e}") from e

    # =========================================================================
    # READS
    # =========================================================================

    async def get_aggregate(self) -> LedgerAggregate:
        """Aggregate over one snapshot; fallback figures when the store is unreachable."""
        try:
            events = await self._call(self._store.snapshot(), "snapshot")
        except LedgerUnavailableError as e:
            logger.warning("Serving fallback ledger aggregate", error=str(e))
            return self.fallback
        return compute_aggregate(events, self._yield_policy)

    async def list_events(self, market_id: Optional[str] = None) -> list[StakeEvent]:
        events = await self._call(self._store.snapshot(), "snapshot")
        if market_id is None:
            return events
        return [e for e in events if e.market_id == market_id]
