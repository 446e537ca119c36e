# Utils module exports
from .logging import setup_logging
from .validation import (
    parse_stake_amount,
    require_checksum_address,
    validate_ethereum_address,
)

__all__ = [
    "setup_logging",
    "parse_stake_amount",
    "require_checksum_address",
    "validate_ethereum_address",
]
