"""Wallet address normalization.

Addresses are accepted in any letter case and stored in their EIP-55
checksummed form, so two spellings of the same wallet always compare equal.
"""

from __future__ import annotations

from web3 import Web3


class InvalidWalletAddressError(ValueError):
    """Raised when a strict code path receives a malformed wallet address."""


def normalize_wallet(address: object) -> str | None:
    """Return the checksummed form of ``address``, or None if malformed."""
    if not isinstance(address, str):
        return None
    candidate = address.strip().lower()
    if not candidate.startswith("0x") or not Web3.is_address(candidate):
        return None
    return Web3.to_checksum_address(candidate)


def to_checksum_wallet(address: object) -> str:
    """Strict variant of :func:`normalize_wallet`.

    Raises:
        InvalidWalletAddressError: If the address is not a 20-byte hex address.
    """
    normalized = normalize_wallet(address)
    if normalized is None:
        raise InvalidWalletAddressError(f"Invalid wallet address: {address!r}")
    return normalized
