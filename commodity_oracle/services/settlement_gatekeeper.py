"""
Settlement Gatekeeper

Decides whether a trade must be preceded by an ERC-20 approval. Fails open:
when the allowance cannot be read, the answer is "needs approval", never an
error. Results are never cached.
"""
import asyncio
from typing import Optional, Protocol

import structlog

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import InvalidAddressError
from commodity_oracle.models import AllowanceStatus
from commodity_oracle.utils.validation import require_checksum_address

logger = structlog.get_logger()


class AllowanceReader(Protocol):
    async def allowance(self, token: str, owner: str, spender: str) -> int:
        ...


class SettlementGatekeeper:
    """Allowance check with fail-open semantics."""

    def __init__(
        self,
        reader: AllowanceReader,
        timeout_seconds: float = 10.0,
        settings: Optional[Settings] = None,
    ):
        self._reader = reader
        self._timeout = timeout_seconds
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, reader: AllowanceReader, settings: Optional[Settings] = None) -> "SettlementGatekeeper":
        settings = settings or get_settings()
        return cls(reader, timeout_seconds=settings.rpc_timeout_seconds, settings=settings)

    async def check_allowance(
        self,
        owner: str,
        token: str,
        spender: str,
        minimum_required: int,
    ) -> AllowanceStatus:
        """
        Compare the on-chain allowance against ``minimum_required``.

        Raises:
            InvalidAddressError: owner is not a valid address
        """
        owner = require_checksum_address(owner, field="owner")
        log = logger.bind(owner=owner, token=token, spender=spender)

        def failed(reason: str) -> AllowanceStatus:
            log.warning("Allowance check failed, assuming approval needed", error=reason)
            return AllowanceStatus(
                owner_address=owner,
                token_address=token or "",
                spender_address=spender or "",
                allowance=0,
                minimum_required=minimum_required,
                needs_approval=True,
                verified=False,
                error=reason,
            )

        try:
            token = require_checksum_address(token, field="token")
            spender = require_checksum_address(spender, field="spender")
        except InvalidAddressError as e:
            return failed(f"Misconfigured contract address: {e}")

        try:
            allowance = await asyncio.wait_for(
                self._reader.allowance(token, owner, spender),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            return failed(f"RPC timed out after {self._timeout}s")
        except Exception as e:
            return failed(str(e) or type(e).__name__)

        status = AllowanceStatus(
            owner_address=owner,
            token_address=token,
            spender_address=spender,
            allowance=int(allowance),
            minimum_required=minimum_required,
            needs_approval=int(allowance) < minimum_required,
        )
        log.debug("Allowance checked", allowance=status.allowance, needs_approval=status.needs_approval)
        return status

    async def check_default(self, owner: str) -> AllowanceStatus:
        """Check against the configured USDC token and prediction-market spender."""
        return await self.check_allowance(
            owner,
            token=self._settings.usdc_address,
            spender=self._settings.prediction_market_address,
            minimum_required=self._settings.min_allowance_units,
        )
