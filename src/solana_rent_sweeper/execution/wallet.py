"""Wallet address validation and key material resolution."""

from __future__ import annotations

import json
from typing import Union

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..utils.errors import InvalidAddress

SECRET_KEY_LENGTH = 64


def validate_wallet_address(address: Union[str, Pubkey]) -> Pubkey:
    """Parse ``address`` and require it to be a point on the ed25519 curve.

    Program derived addresses and token accounts are off curve, so this rejects
    anything that cannot be a wallet.
    """

    if isinstance(address, Pubkey):
        pubkey = address
    else:
        text = (address or "").strip()
        try:
            pubkey = Pubkey.from_string(text)
        except ValueError as exc:
            raise InvalidAddress(f"Invalid wallet address: {text!r}") from exc
    if not pubkey.is_on_curve():
        raise InvalidAddress(f"Address {pubkey} is not a wallet (off curve)")
    return pubkey


def parse_pubkey(address: Union[str, Pubkey]) -> Pubkey:
    if isinstance(address, Pubkey):
        return address
    try:
        return Pubkey.from_string((address or "").strip())
    except ValueError as exc:
        raise InvalidAddress(f"Invalid address: {address!r}") from exc


def _keypair_from_secret(secret: bytes) -> Keypair:
    if len(secret) != SECRET_KEY_LENGTH:
        raise InvalidAddress(f"Secret key must be {SECRET_KEY_LENGTH} bytes, got {len(secret)}")
    try:
        return Keypair.from_bytes(secret)
    except ValueError as exc:
        raise InvalidAddress("Secret key is not a valid ed25519 keypair") from exc


def resolve_wallet_entry(entry: str) -> Pubkey:
    """Return the wallet public key for a bulk input entry.

    Entries may be a public address, a JSON byte array secret key (the
    ``solana-keygen`` file format) or a base58 encoded secret key.
    """

    text = (entry or "").strip()
    if text.startswith("["):
        try:
            data = json.loads(text)
            secret = bytes(data)
        except (ValueError, TypeError) as exc:
            raise InvalidAddress("Secret key array is malformed") from exc
        return _keypair_from_secret(secret).pubkey()
    try:
        decoded = base58.b58decode(text)
    except ValueError as exc:
        raise InvalidAddress(f"Invalid wallet entry: {text[:8]}...") from exc
    if len(decoded) == SECRET_KEY_LENGTH:
        return _keypair_from_secret(decoded).pubkey()
    return validate_wallet_address(text)


__all__ = ["parse_pubkey", "resolve_wallet_entry", "validate_wallet_address"]
