# Upstream clients: price sources, LLM and chain
from .alpha_vantage import AlphaVantageClient
from .base import BaseAPIClient, RateLimiter
from .chain import Web3AllowanceReader
from .world_bank import WorldBankClient

__all__ = [
    "AlphaVantageClient",
    "BaseAPIClient",
    "RateLimiter",
    "Web3AllowanceReader",
    "WorldBankClient",
]
