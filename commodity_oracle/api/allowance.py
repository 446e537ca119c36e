"""
Allowance API
Tells the client whether a USDC approval is needed before trading
"""
from fastapi import APIRouter, Depends, Query

from commodity_oracle.api.deps import get_gatekeeper
from commodity_oracle.services.settlement_gatekeeper import SettlementGatekeeper

router = APIRouter(tags=["allowance"])


@router.get("/allowance")
async def get_allowance(
    address: str = Query(..., description="Owner wallet address"),
    gatekeeper: SettlementGatekeeper = Depends(get_gatekeeper),
):
    """
    Check the owner's USDC allowance for the prediction market contract.
    RPC failures still answer 200 with needs_approval=true and verified=false.
    """
    status = await gatekeeper.check_default(address)
    return status.model_dump(mode="json")
