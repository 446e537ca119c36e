"""
Validation Utilities
Input validation for stake amounts and chain addresses
"""
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from web3 import Web3

from commodity_oracle.exceptions import InvalidAddressError, InvalidStakeError


def validate_ethereum_address(address: str) -> Tuple[bool, Optional[str]]:
    """
    Validate Ethereum address

    Args:
        address: Address to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address:
        return False, "Address is required"

    if not isinstance(address, str):
        return False, "Address must be a string"

    if not Web3.is_address(address):
        return False, "Invalid Ethereum address format"

    return True, None


def require_checksum_address(address: str, field: str = "address") -> str:
    """Return the checksummed form of ``address`` or raise InvalidAddressError."""
    is_valid, error = validate_ethereum_address(address)
    if not is_valid:
        raise InvalidAddressError(f"{field}: {error}")
    return Web3.to_checksum_address(address)


def parse_stake_amount(amount) -> Decimal:
    """
    Parse a stake amount into a strictly positive, finite Decimal.

    Raises:
        InvalidStakeError: when the amount is missing, malformed or <= 0
    """
    if amount is None or amount == "":
        raise InvalidStakeError("Amount is required")
    if isinstance(amount, bool):
        raise InvalidStakeError("Invalid amount format")

    try:
        decimal_amount = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidStakeError("Invalid amount format") from None

    if not decimal_amount.is_finite():
        raise InvalidStakeError("Amount must be finite")

    if decimal_amount <= 0:
        raise InvalidStakeError("Amount must be greater than 0")

    return decimal_amount
