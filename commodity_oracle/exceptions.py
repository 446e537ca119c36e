"""
Exception hierarchy for the commodity oracle.

Validation errors are rejected immediately and never retried. Upstream
errors are raised by adapters and absorbed by each service's own degrade
policy, except ledger writes, which always surface.
"""


class OracleError(Exception):
    """Base class for all commodity oracle errors."""

    retryable: bool = False


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(OracleError):
    """Request failed validation."""


class UnknownSymbolError(ValidationError):
    def __init__(self, symbol: object):
        self.symbol = symbol
        super().__init__(f"Unknown commodity symbol: {symbol!r}")


class UnknownRegionError(ValidationError):
    def __init__(self, region: object):
        self.region = region
        super().__init__(f"Unknown region: {region!r}")


class UnsupportedHorizonError(ValidationError):
    def __init__(self, horizon: object):
        self.horizon = horizon
        super().__init__(f"Unsupported prediction horizon: {horizon!r}")


class InvalidStakeError(ValidationError):
    """Stake request is malformed (amount, side or user)."""


class UnknownMarketError(ValidationError):
    def __init__(self, market_id: object):
        self.market_id = market_id
        super().__init__(f"Unknown market id: {market_id!r}")


class InvalidAddressError(ValidationError):
    """Address is not a valid EVM address."""


# =============================================================================
# UPSTREAM
# =============================================================================

class PriceLookupError(OracleError):
    """No quote could be produced for a (symbol, region) key."""

    retryable = True


class ForecastError(OracleError):
    """Forecasting or narrative capability failed or returned garbage."""

    retryable = True


class AllowanceReadError(OracleError):
    """Chain RPC read failed."""

    retryable = True


class StorageUnavailableError(OracleError):
    """A database-backed store is unreachable or timed out."""

    retryable = True


class LedgerUnavailableError(StorageUnavailableError):
    """Ledger backing store is unreachable; writes were not recorded."""


class PredictionStoreUnavailableError(StorageUnavailableError):
    """Prediction history could not be read or written."""
