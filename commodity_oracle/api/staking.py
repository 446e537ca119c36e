"""
Staking API
Aggregate figures, stake recording and reversals
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel

from commodity_oracle.api.deps import get_ledger
from commodity_oracle.services.staking_ledger import StakingLedger

router = APIRouter(prefix="/staking", tags=["staking"])


class StakeRequest(BaseModel):
    """Stake placement. Amount is validated by the ledger."""
    user_id: str
    market_id: str
    side: str
    amount: Any
    idempotency_key: Optional[str] = None


class ReversalRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/aggregate")
async def get_aggregate(ledger: StakingLedger = Depends(get_ledger)):
    """Total value locked, active stakers and average APY."""
    aggregate = await ledger.get_aggregate()
    return aggregate.model_dump(mode="json")


@router.post("/stake", status_code=201)
async def record_stake(
    request: StakeRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    ledger: StakingLedger = Depends(get_ledger),
):
    """Record a stake. Retries with the same idempotency key return the stored event."""
    event = await ledger.record_stake(
        user_id=request.user_id,
        market_id=request.market_id,
        side=request.side,
        amount=request.amount,
        idempotency_key=request.idempotency_key or idempotency_key,
    )
    return event.model_dump(mode="json")


@router.post("/stakes/{event_id}/reverse", status_code=201)
async def reverse_stake(
    event_id: str,
    request: Optional[ReversalRequest] = None,
    ledger: StakingLedger = Depends(get_ledger),
):
    reversal = await ledger.reverse_stake(event_id, reason=request.reason if request else None)
    return reversal.model_dump(mode="json")


@router.get("/events")
async def list_events(
    market_id: Optional[str] = Query(None),
    ledger: StakingLedger = Depends(get_ledger),
):
    events = await ledger.list_events(market_id=market_id)
    return {
        "count": len(events),
        "events": [e.model_dump(mode="json") for e in events],
    }
