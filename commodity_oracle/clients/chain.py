"""
ERC-20 allowance reader over JSON-RPC.

web3's HTTPProvider is blocking, so calls run in the default executor and
the caller bounds them with its own timeout.
"""
import asyncio
from typing import Optional

import structlog
from web3 import Web3

from commodity_oracle.config import Settings, get_settings
from commodity_oracle.exceptions import AllowanceReadError

logger = structlog.get_logger()


ERC20_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function"
    },
]


class Web3AllowanceReader:
    """Reads ``allowance(owner, spender)`` from an ERC-20 token contract."""

    def __init__(self, settings: Optional[Settings] = None, w3: Optional[Web3] = None):
        self._settings = settings or get_settings()
        self._w3 = w3

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(
                Web3.HTTPProvider(
                    self._settings.rpc_url,
                    request_kwargs={"timeout": self._settings.rpc_timeout_seconds},
                )
            )
        return self._w3

    def _read_allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
        return contract.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        loop = asyncio.get_running_loop()
        try:
            value = await loop.run_in_executor(None, self._read_allowance, token, owner, spender)
        except Exception as e:
            logger.warning("Allowance RPC call failed", token=token, owner=owner, error=str(e))
            raise AllowanceReadError(str(e)) from e
        return int(value)
